# config.py
from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping, Optional

import yaml

from .errors import ConfigurationError

LOCK_POLICIES = ("wait", "reject")


@dataclass(frozen=True)
class Settings:
    """Runner settings. CLI options override what is read from the environment."""
    shell: str = "/bin/sh"
    lock_dir: Path = Path(".stagerun/locks")
    lock_policy: str = "wait"
    lock_poll_interval: float = 2.0
    redis_url: Optional[str] = None
    credentials_file: Optional[Path] = None
    services_file: Optional[Path] = None

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "Settings":
        env = os.environ if environ is None else environ

        policy = env.get("STAGERUN_LOCK_POLICY", "wait")
        if policy not in LOCK_POLICIES:
            raise ConfigurationError(
                f"STAGERUN_LOCK_POLICY must be one of {LOCK_POLICIES}, got {policy!r}"
            )
        try:
            poll = float(env.get("STAGERUN_LOCK_POLL_INTERVAL", "2.0"))
        except ValueError as e:
            raise ConfigurationError(f"STAGERUN_LOCK_POLL_INTERVAL is not a number: {e}") from e

        creds = env.get("STAGERUN_CREDENTIALS_FILE")
        services = env.get("STAGERUN_SERVICES_FILE")
        return cls(
            shell=env.get("STAGERUN_SHELL", "/bin/sh"),
            lock_dir=Path(env.get("STAGERUN_LOCK_DIR", ".stagerun/locks")),
            lock_policy=policy,
            lock_poll_interval=poll,
            redis_url=env.get("STAGERUN_REDIS_URL") or None,
            credentials_file=Path(creds) if creds else None,
            services_file=Path(services) if services else None,
        )


def load_mapping_file(path: str | Path, what: str) -> dict[str, Any]:
    """Read a YAML or JSON file whose top level is a mapping."""
    p = Path(path).expanduser()
    if not p.exists():
        raise ConfigurationError(f"{what} file not found: {p}")
    try:
        data = yaml.safe_load(p.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid {what} file {p}: {e}") from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"{what} file {p} must contain a mapping at the top level")
    return data
