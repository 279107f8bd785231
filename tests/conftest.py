"""Shared fixtures for stagerun tests."""

import pytest

from stagerun.config import Settings
from stagerun.credentials import EnvCredentialStore, ServiceContext, ServiceRegistry
from stagerun.executor import run_pipeline
from stagerun.ui.console import Console


@pytest.fixture
def workspace(tmp_path):
    ws = tmp_path / "ws"
    ws.mkdir()
    return ws


@pytest.fixture
def settings(tmp_path):
    return Settings(lock_dir=tmp_path / "locks", lock_poll_interval=0.05)


@pytest.fixture
def credentials():
    return EnvCredentialStore(environ={
        "STAGERUN_CRED_HN_USERNAME": "hub-user-7781",
        "STAGERUN_CRED_HN_PASSWORD": "hub-pass-s3cr3t-9921",
        "STAGERUN_CRED_SONAR_TOKEN_SECRET": "squ_token_55aa",
    })


@pytest.fixture
def services():
    return ServiceRegistry([ServiceContext(name="sonarqube", url="http://sonar.local:9000", token="sq-svc-token-0042")])


@pytest.fixture
def console():
    c = Console()
    yield c
    c.close()


@pytest.fixture
def run(workspace, settings, credentials, services, console):
    """Run a descriptor in the test workspace with test credentials/services."""
    def _run(descriptor, **kwargs):
        kwargs.setdefault("workspace", workspace)
        kwargs.setdefault("settings", settings)
        kwargs.setdefault("credentials", credentials)
        kwargs.setdefault("services", services)
        kwargs.setdefault("console", console)
        return run_pipeline(descriptor, **kwargs)
    return _run
