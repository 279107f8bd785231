# src/stagerun/dsl.py
from __future__ import annotations

from typing import Dict, List, Optional

from .errors import DescriptorError
from .model import (
    Checkout,
    CredentialBinding,
    Dir,
    Echo,
    Options,
    PipelineDescriptor,
    Post,
    SecretText,
    Sh,
    Stage,
    Step,
    UsernamePassword,
    WithCredentials,
    WithEnv,
    WithServiceEnv,
    validate_descriptor,
)


# ---------------------------------------------------------------------
# Step helpers
# ---------------------------------------------------------------------

def sh(script: str, *, label: str | None = None) -> Sh:
    """Create a shell step."""
    return Sh(script=script, label=label)


def echo(message: str) -> Echo:
    return Echo(message=message)


def git(url: str, *, branch: str = "main") -> Checkout:
    return Checkout(url=url, branch=branch)


# ---------------------------------------------------------------------
# Scoped blocks
# ---------------------------------------------------------------------

def dir_(path: str, *steps: Step) -> Dir:
    """Run `steps` with `path` (relative to the enclosing directory) as cwd."""
    if not steps:
        raise DescriptorError(f"dir_({path!r}) must have at least one step")
    return Dir(path=path, steps=tuple(steps))


def username_password(credentials_id: str, *, username_variable: str, password_variable: str) -> UsernamePassword:
    return UsernamePassword(
        credentials_id=credentials_id,
        username_variable=username_variable,
        password_variable=password_variable,
    )


def secret_text(credentials_id: str, *, variable: str) -> SecretText:
    return SecretText(credentials_id=credentials_id, variable=variable)


def with_credentials(bindings: List[CredentialBinding], *steps: Step) -> WithCredentials:
    if not bindings:
        raise DescriptorError("with_credentials() needs at least one binding")
    if not steps:
        raise DescriptorError("with_credentials() must have at least one step")
    return WithCredentials(bindings=tuple(bindings), steps=tuple(steps))


def with_service_env(name: str, *steps: Step) -> WithServiceEnv:
    if not steps:
        raise DescriptorError(f"with_service_env({name!r}) must have at least one step")
    return WithServiceEnv(name=name, steps=tuple(steps))


def with_env(variables: Dict[str, str], *steps: Step) -> WithEnv:
    if not steps:
        raise DescriptorError("with_env() must have at least one step")
    # force values to str for env compatibility
    return WithEnv(variables={k: str(v) for k, v in variables.items()}, steps=tuple(steps))


# ---------------------------------------------------------------------
# Stage / pipeline
# ---------------------------------------------------------------------

def stage(
    name: str,
    *steps: Step,
    dir: str | None = None,
    environment: Optional[Dict[str, str]] = None,
    continue_on_error: bool = False,
) -> Stage:
    if not steps:
        raise DescriptorError(f"stage({name!r}) must have at least one step")
    return Stage(
        name=name,
        steps=tuple(steps),
        dir=dir,
        environment={k: str(v) for k, v in (environment or {}).items()},
        continue_on_error=continue_on_error,
    )


def pipeline(
    name: str,
    *stages: Stage,
    environment: Optional[Dict[str, str]] = None,
    agent: str | None = None,
    timestamps: bool = False,
    disable_concurrent_builds: bool = False,
    on_success: str | None = None,
    on_failure: str | None = None,
    always: str | None = None,
) -> PipelineDescriptor:
    """
    Pipeline definition helper.

    Users can write, in a `*_pipeline.py` file:

        from stagerun.dsl import pipeline, stage, sh

        PIPELINE = pipeline(
            "my-app",
            stage("Build", sh("npm ci && npm run build"), dir="client"),
        )

    or define `build_pipeline()` returning the same thing.
    """
    descriptor = PipelineDescriptor(
        name=name,
        stages=tuple(stages),
        environment={k: str(v) for k, v in (environment or {}).items()},
        options=Options(timestamps=timestamps, disable_concurrent_builds=disable_concurrent_builds),
        agent=agent,
        post=Post(success=on_success, failure=on_failure, always=always),
    )
    return validate_descriptor(descriptor)
