"""
Tests for credential binding, service contexts and secret redaction
"""

import pytest

from stagerun.credentials import (
    ChainCredentialStore,
    Credential,
    EnvCredentialStore,
    FileCredentialStore,
    ServiceRegistry,
    bind,
)
from stagerun.dsl import pipeline, secret_text, sh, stage, username_password, with_credentials, with_service_env
from stagerun.errors import ConfigurationError
from stagerun.reporter import FAILED, FAILURE, SKIPPED
from stagerun.ui.console import Console
from stagerun.ui.redact import MASK

PUSH_BINDING = username_password("hn", username_variable="STAGERUN_T_USER", password_variable="STAGERUN_T_PASS")


class TestCredentialScope:
    """Bound variables exist only inside their block"""

    def test_variables_visible_inside_and_gone_after(self, run, workspace):
        p = pipeline(
            "creds",
            stage(
                "push",
                with_credentials([PUSH_BINDING], sh('echo "$STAGERUN_T_USER:$STAGERUN_T_PASS" > inside.txt')),
                sh('echo "${STAGERUN_T_PASS:-unset}" > after.txt'),
            ),
            stage("later", sh('echo "${STAGERUN_T_USER:-unset}" > later.txt')),
        )

        result = run(p)

        assert result.ok
        assert (workspace / "inside.txt").read_text().strip() == "hub-user-7781:hub-pass-s3cr3t-9921"
        assert (workspace / "after.txt").read_text().strip() == "unset"
        assert (workspace / "later.txt").read_text().strip() == "unset"

    def test_credentials_id_interpolates(self, run, workspace):
        binding = secret_text("${TOKEN_ID}", variable="STAGERUN_T_TOKEN")
        p = pipeline(
            "interp",
            stage("s", with_credentials([binding], sh('echo "$STAGERUN_T_TOKEN" > token.txt'))),
            environment={"TOKEN_ID": "sonar-token"},
        )

        assert run(p).ok
        assert (workspace / "token.txt").read_text().strip() == "squ_token_55aa"

    def test_unknown_credentials_fail_fast_with_configuration_error(self, run, workspace):
        binding = username_password("missing-id", username_variable="U", password_variable="P")
        p = pipeline(
            "missing",
            stage("push", with_credentials([binding], sh("touch never"))),
            stage("after", sh("touch after")),
        )

        result = run(p)

        assert result.status == FAILURE
        assert result.stage_statuses() == {"push": FAILED, "after": SKIPPED}
        assert isinstance(result.error, ConfigurationError)
        assert "missing-id" in str(result.error)
        assert result.stages[0].steps_run == 0
        assert not (workspace / "never").exists()

    def test_wrong_credential_shape_is_a_configuration_error(self, credentials):
        with pytest.raises(ConfigurationError, match="not a secret text"):
            bind(secret_text("hn", variable="X"), credentials)
        with pytest.raises(ConfigurationError, match="username/password"):
            bind(username_password("sonar-token", username_variable="U", password_variable="P"), credentials)


class TestRedaction:
    """Bound secrets never reach a log sink verbatim"""

    def test_secret_is_masked_in_console_and_log_file(self, run, tmp_path, capsys):
        log = tmp_path / "logs" / "run.log"
        console = Console(log_file=log)
        p = pipeline(
            "mask",
            stage("push", with_credentials([PUSH_BINDING], sh('echo "login with $STAGERUN_T_PASS"'))),
            stage("after", sh("echo hub-pass-s3cr3t-9921")),
        )

        result = run(p, console=console)
        console.close()

        assert result.ok
        out = capsys.readouterr().out
        assert "hub-pass-s3cr3t-9921" not in out
        assert f"login with {MASK}" in out
        logged = log.read_text()
        assert "hub-pass-s3cr3t-9921" not in logged
        assert f"login with {MASK}" in logged

    def test_failure_details_are_masked(self, run):
        p = pipeline(
            "fail-mask",
            stage("push", with_credentials([PUSH_BINDING], sh('echo "$STAGERUN_T_PASS"; exit 1'))),
        )

        result = run(p)

        assert result.status == FAILURE
        assert "hub-pass-s3cr3t-9921" not in result.error.output
        assert MASK in result.error.output

    def test_multiline_secret_is_masked_line_by_line(self, run, tmp_path, capsys):
        key = "-----BEGIN KEY-----\nAAAsecretbody123\n-----END KEY-----"
        store = EnvCredentialStore(environ={"STAGERUN_CRED_DEPLOY_KEY_SECRET": key})
        log = tmp_path / "key.log"
        console = Console(log_file=log)
        p = pipeline(
            "deploy-key",
            stage("deploy", with_credentials([secret_text("deploy-key", variable="K")], sh('printf "%s\\n" "$K"'))),
        )

        result = run(p, console=console, credentials=store)
        console.close()

        assert result.ok
        out = capsys.readouterr().out
        logged = log.read_text()
        for text in (out, logged):
            assert "AAAsecretbody123" not in text
            assert "BEGIN KEY" not in text

    def test_credential_repr_hides_values(self):
        cred = Credential("hn", username="u", password="very-secret")
        assert "very-secret" not in repr(cred)


class TestServiceContext:
    """Named analysis-server contexts"""

    def test_service_variables_injected_and_token_masked(self, run, workspace, capsys):
        p = pipeline(
            "sonar",
            stage(
                "scan",
                with_service_env("${SONARQUBE_ENV}", sh('echo "$SONAR_HOST_URL" > host.txt; echo "$SONAR_AUTH_TOKEN"')),
                sh('echo "${SONAR_HOST_URL:-unset}" > after.txt'),
            ),
            environment={"SONARQUBE_ENV": "sonarqube"},
        )

        result = run(p)

        assert result.ok
        assert (workspace / "host.txt").read_text().strip() == "http://sonar.local:9000"
        assert (workspace / "after.txt").read_text().strip() == "unset"
        assert "sq-svc-token-0042" not in capsys.readouterr().out

    def test_unknown_service_is_a_configuration_error(self, run):
        p = pipeline("nosvc", stage("scan", with_service_env("other", sh("true"))))

        result = run(p)

        assert result.status == FAILURE
        assert isinstance(result.error, ConfigurationError)

    def test_registry_from_file(self, tmp_path):
        path = tmp_path / "services.yaml"
        path.write_text("sonarqube:\n  url: http://s:9000\n  token: t0k\n  env:\n    SONAR_SCANNER_OPTS: -Xmx512m\n")

        registry = ServiceRegistry.from_file(path)
        ctx = registry.resolve("sonarqube")

        assert "sonarqube" in registry
        assert "other" not in registry
        assert ctx.variables() == {
            "SONAR_HOST_URL": "http://s:9000",
            "SONAR_CONFIG_NAME": "sonarqube",
            "SONAR_AUTH_TOKEN": "t0k",
            "SONAR_SCANNER_OPTS": "-Xmx512m",
        }
        assert ctx.secrets() == ("t0k",)

    def test_registry_file_requires_url(self, tmp_path):
        path = tmp_path / "services.yaml"
        path.write_text("sonarqube:\n  token: t\n")

        with pytest.raises(ConfigurationError, match="url"):
            ServiceRegistry.from_file(path)


class TestCredentialStores:
    """Env, file and chained credential lookup"""

    def test_env_store_normalizes_ids(self):
        store = EnvCredentialStore(environ={"STAGERUN_CRED_DOCKER_HUB_SECRET": "abc"})
        assert store.resolve("docker-hub").secret == "abc"
        assert store.lookup("other") is None

    def test_file_store(self, tmp_path):
        path = tmp_path / "creds.json"
        path.write_text('{"hn": {"username": "u", "password": "p"}}')

        cred = FileCredentialStore(path).resolve("hn")

        assert (cred.username, cred.password) == ("u", "p")

    def test_file_store_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError, match="not found"):
            FileCredentialStore(tmp_path / "nope.yaml")

    def test_chain_prefers_first_store(self, tmp_path):
        path = tmp_path / "creds.yaml"
        path.write_text("tok:\n  secret: from-file\nonly-file:\n  secret: f\n")
        chain = ChainCredentialStore(EnvCredentialStore(environ={"STAGERUN_CRED_TOK_SECRET": "from-env"}), FileCredentialStore(path))

        assert chain.resolve("tok").secret == "from-env"
        assert chain.resolve("only-file").secret == "f"
        with pytest.raises(ConfigurationError):
            chain.resolve("nowhere")
