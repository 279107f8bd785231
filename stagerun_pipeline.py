# stagerun_pipeline.py
# Client + API DevSecOps pipeline: secret scan, static analysis, build,
# image build, image scan per service, then push both images.
from __future__ import annotations

from stagerun.dsl import dir_, git, pipeline, sh, stage, username_password, with_credentials, with_service_env

GITLEAKS = "gitleaks detect --source . --no-git --redact --exit-code 1"


def sonar_scan(project_var: str) -> str:
    return (
        "sonar-scanner \\\n"
        f"  -Dsonar.projectKey=${{{project_var}}} \\\n"
        f"  -Dsonar.projectName=${{{project_var}}} \\\n"
        "  -Dsonar.sources=."
    )


def trivy_scan(image_var: str) -> str:
    return f"trivy image --severity HIGH,CRITICAL --exit-code 1 ${{{image_var}}}:latest"


def service_stages(label: str, path: str, project_var: str, image_var: str, build: str):
    return [
        stage(f"Gitleaks - {label}", dir_(path, sh(GITLEAKS))),
        stage(f"SonarQube - {label}", dir_(path, with_service_env("${SONARQUBE_ENV}", sh(sonar_scan(project_var))))),
        stage(f"Build {label}", dir_(path, sh(build))),
        stage(f"Docker Build - {label}", dir_(path, sh(f"docker build -t ${{{image_var}}}:latest ."))),
        stage(f"Trivy Scan - {label} Image", sh(trivy_scan(image_var))),
    ]


def build_pipeline():
    return pipeline(
        "node-monorepo",
        stage(
            "Checkout Code",
            git("https://github.com/devopsghazali/3-Tier-DevSecOps-Mega-Project.git", branch="main"),
        ),
        stage("Docker Access Test", sh("whoami\nid\ngroups\ndocker ps")),
        *service_stages("Client", "client", "CLIENT_PROJECT", "CLIENT_IMAGE", "npm install\nnpm run build"),
        *service_stages("API", "api", "API_PROJECT", "API_IMAGE", "npm install"),
        stage(
            "Push Images to Docker Hub",
            with_credentials(
                [username_password("hn", username_variable="DOCKER_USER", password_variable="DOCKER_PASS")],
                sh(
                    'echo "$DOCKER_PASS" | docker login -u "$DOCKER_USER" --password-stdin\n'
                    "docker push ${CLIENT_IMAGE}:latest\n"
                    "docker push ${API_IMAGE}:latest\n"
                    "docker logout"
                ),
            ),
        ),
        agent="agent-1",
        environment={
            "SONARQUBE_ENV": "sonarqube",
            "CLIENT_PROJECT": "node-client",
            "API_PROJECT": "node-api",
            "CLIENT_IMAGE": "your-dockerhub-user/node-client",
            "API_IMAGE": "your-dockerhub-user/node-api",
        },
        timestamps=True,
        disable_concurrent_builds=True,
        on_success="CLIENT + API: both images built, scanned and pushed",
        on_failure="PIPELINE FAILED: security or build issue",
    )
