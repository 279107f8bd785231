# credentials.py
from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, Mapping, Optional, Tuple

from .config import load_mapping_file
from .errors import ConfigurationError
from .model import CredentialBinding, SecretText, UsernamePassword


@dataclass(frozen=True)
class Credential:
    """A resolved credential. Values are never logged; repr hides them."""
    credentials_id: str
    username: Optional[str] = field(default=None, repr=False)
    password: Optional[str] = field(default=None, repr=False)
    secret: Optional[str] = field(default=None, repr=False)


class CredentialStore:
    """Resolves a credentials id to a Credential, or None if unknown."""

    def lookup(self, credentials_id: str) -> Optional[Credential]:
        raise NotImplementedError

    def resolve(self, credentials_id: str) -> Credential:
        cred = self.lookup(credentials_id)
        if cred is None:
            raise ConfigurationError(f"Credentials '{credentials_id}' could not be found")
        return cred


def _env_key(credentials_id: str) -> str:
    return re.sub(r"[^A-Za-z0-9]", "_", credentials_id).upper()


class EnvCredentialStore(CredentialStore):
    """
    Credentials from the runner's own environment:

        STAGERUN_CRED_<ID>_USERNAME / STAGERUN_CRED_<ID>_PASSWORD
        STAGERUN_CRED_<ID>_SECRET

    <ID> is the credentials id upper-cased, non-alphanumerics replaced by '_'.
    """

    def __init__(self, environ: Mapping[str, str] | None = None, prefix: str = "STAGERUN_CRED_"):
        self.environ = os.environ if environ is None else environ
        self.prefix = prefix

    def lookup(self, credentials_id: str) -> Optional[Credential]:
        base = f"{self.prefix}{_env_key(credentials_id)}_"
        username = self.environ.get(base + "USERNAME")
        password = self.environ.get(base + "PASSWORD")
        secret = self.environ.get(base + "SECRET")
        if username is None and password is None and secret is None:
            return None
        return Credential(credentials_id, username=username, password=password, secret=secret)


class FileCredentialStore(CredentialStore):
    """
    Credentials from a YAML/JSON file:

        hn:
          username: alice
          password: s3cret
        sonar-token:
          secret: abc123
    """

    def __init__(self, path: str | Path):
        self.path = Path(path)
        self._entries = load_mapping_file(self.path, "credentials")
        for cid, entry in self._entries.items():
            if not isinstance(entry, dict):
                raise ConfigurationError(f"Credentials '{cid}' in {self.path} must be a mapping")

    def lookup(self, credentials_id: str) -> Optional[Credential]:
        entry = self._entries.get(credentials_id)
        if entry is None:
            return None
        return Credential(
            credentials_id,
            username=_opt_str(entry.get("username")),
            password=_opt_str(entry.get("password")),
            secret=_opt_str(entry.get("secret")),
        )


class ChainCredentialStore(CredentialStore):
    """First store that knows the id wins."""

    def __init__(self, *stores: CredentialStore):
        self.stores = list(stores)

    def lookup(self, credentials_id: str) -> Optional[Credential]:
        for store in self.stores:
            cred = store.lookup(credentials_id)
            if cred is not None:
                return cred
        return None


def _opt_str(value) -> Optional[str]:
    return None if value is None else str(value)


def bind(binding: CredentialBinding, store: CredentialStore) -> Tuple[Dict[str, str], Tuple[str, ...]]:
    """
    Resolve one binding into (variables to inject, secret values to redact).
    """
    cred = store.resolve(binding.credentials_id)

    if isinstance(binding, UsernamePassword):
        if cred.username is None or cred.password is None:
            raise ConfigurationError(
                f"Credentials '{binding.credentials_id}' are not a username/password pair"
            )
        env = {binding.username_variable: cred.username, binding.password_variable: cred.password}
        return env, (cred.password,)

    if isinstance(binding, SecretText):
        if cred.secret is None:
            raise ConfigurationError(f"Credentials '{binding.credentials_id}' are not a secret text")
        return {binding.variable: cred.secret}, (cred.secret,)

    raise ConfigurationError(f"Unsupported credential binding: {type(binding).__name__}")


# ---------------------------------------------------------------------
# Named external-service contexts
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class ServiceContext:
    name: str
    url: str
    token: Optional[str] = field(default=None, repr=False)
    env: Dict[str, str] = field(default_factory=dict)

    def variables(self) -> Dict[str, str]:
        out = {"SONAR_HOST_URL": self.url, "SONAR_CONFIG_NAME": self.name}
        if self.token:
            out["SONAR_AUTH_TOKEN"] = self.token
        out.update(self.env)
        return out

    def secrets(self) -> Tuple[str, ...]:
        return (self.token,) if self.token else ()


class ServiceRegistry:
    """
    Named analysis-server contexts, e.g. from a YAML/JSON file:

        sonarqube:
          url: http://sonarqube:9000
          token: squ_abc
          env:
            SONAR_SCANNER_OPTS: -Xmx512m
    """

    def __init__(self, contexts: Iterable[ServiceContext] = ()):
        self._contexts: Dict[str, ServiceContext] = {c.name: c for c in contexts}

    @classmethod
    def from_file(cls, path: str | Path) -> "ServiceRegistry":
        data = load_mapping_file(path, "services")
        contexts = []
        for name, entry in data.items():
            if not isinstance(entry, dict) or "url" not in entry:
                raise ConfigurationError(f"Service '{name}' in {path} must be a mapping with a 'url'")
            extra = entry.get("env") or {}
            if not isinstance(extra, dict):
                raise ConfigurationError(f"Service '{name}' in {path}: 'env' must be a mapping")
            contexts.append(ServiceContext(
                name=str(name),
                url=str(entry["url"]),
                token=_opt_str(entry.get("token")),
                env={str(k): str(v) for k, v in extra.items()},
            ))
        return cls(contexts)

    def __contains__(self, name: str) -> bool:
        return name in self._contexts

    def resolve(self, name: str) -> ServiceContext:
        ctx = self._contexts.get(name)
        if ctx is None:
            known = sorted(self._contexts) or ["<none configured>"]
            raise ConfigurationError(f"Service context '{name}' is not configured. Known: {known}")
        return ctx
