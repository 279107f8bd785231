"""
Tests for loading pipeline files
"""

from pathlib import Path

import pytest

from stagerun.errors import DescriptorError
from stagerun.loader import load_pipeline

ROOT = Path(__file__).resolve().parent.parent

PY_CONSTANT = '''
from stagerun.dsl import pipeline, stage, sh

PIPELINE = pipeline("from-constant", stage("one", sh("true")))
'''

PY_FUNCTION = '''
from stagerun.dsl import pipeline, stage, sh

def build_pipeline():
    return pipeline("from-function", stage("one", sh("true")), stage("two", sh("true")))
'''


class TestLoadPipeline:
    """Python, YAML and JSON pipeline files"""

    def test_python_constant(self, tmp_path):
        path = tmp_path / "ci_pipeline.py"
        path.write_text(PY_CONSTANT)
        assert load_pipeline(path).name == "from-constant"

    def test_python_function(self, tmp_path):
        path = tmp_path / "ci_pipeline.py"
        path.write_text(PY_FUNCTION)
        assert load_pipeline(path).stage_names == ["one", "two"]

    def test_python_without_pipeline(self, tmp_path):
        path = tmp_path / "empty_pipeline.py"
        path.write_text("X = 1\n")
        with pytest.raises(DescriptorError, match="build_pipeline"):
            load_pipeline(path)

    def test_yaml_file(self, tmp_path):
        path = tmp_path / "pipeline.yml"
        path.write_text("name: y\nstages:\n  - name: s\n    steps:\n      - echo: hi\n")
        assert load_pipeline(path).stage_names == ["s"]

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_pipeline(tmp_path / "nope.yaml")

    def test_unsupported_suffix(self, tmp_path):
        path = tmp_path / "pipeline.groovy"
        path.write_text("pipeline {}")
        with pytest.raises(DescriptorError, match="Unsupported"):
            load_pipeline(path)

    def test_reference_pipeline(self):
        d = load_pipeline(ROOT / "stagerun_pipeline.py")

        assert d.stage_names == [
            "Checkout Code",
            "Docker Access Test",
            "Gitleaks - Client",
            "SonarQube - Client",
            "Build Client",
            "Docker Build - Client",
            "Trivy Scan - Client Image",
            "Gitleaks - API",
            "SonarQube - API",
            "Build API",
            "Docker Build - API",
            "Trivy Scan - API Image",
            "Push Images to Docker Hub",
        ]
        assert d.options.disable_concurrent_builds
        assert d.options.timestamps
        assert d.agent == "agent-1"
