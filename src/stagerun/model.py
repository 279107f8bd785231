# model.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple, Union

from .errors import DescriptorError


# ---------------------------------------------------------------------
# Credential bindings
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class UsernamePassword:
    """Bind a username/password credential to two environment variables."""
    credentials_id: str
    username_variable: str
    password_variable: str


@dataclass(frozen=True)
class SecretText:
    """Bind a single secret string to one environment variable."""
    credentials_id: str
    variable: str


CredentialBinding = Union[UsernamePassword, SecretText]


# ---------------------------------------------------------------------
# Steps
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class Sh:
    """A shell script, run with the configured shell and `-e`."""
    script: str
    label: Optional[str] = None

    @property
    def display_name(self) -> str:
        if self.label:
            return self.label
        first = next((ln.strip() for ln in self.script.splitlines() if ln.strip()), "")
        return f"sh: {first}" if first else "sh"


@dataclass(frozen=True)
class Echo:
    message: str

    @property
    def display_name(self) -> str:
        return "echo"


@dataclass(frozen=True)
class Checkout:
    """Check out `branch` of `url` into the current directory."""
    url: str
    branch: str = "main"

    @property
    def display_name(self) -> str:
        return f"git: {self.url} ({self.branch})"


@dataclass(frozen=True)
class Dir:
    path: str
    steps: Tuple["Step", ...]

    @property
    def display_name(self) -> str:
        return f"dir: {self.path}"


@dataclass(frozen=True)
class WithCredentials:
    bindings: Tuple[CredentialBinding, ...]
    steps: Tuple["Step", ...]

    @property
    def display_name(self) -> str:
        ids = ", ".join(b.credentials_id for b in self.bindings)
        return f"with_credentials: {ids}"


@dataclass(frozen=True)
class WithServiceEnv:
    """Run nested steps inside a named external-service context."""
    name: str
    steps: Tuple["Step", ...]

    @property
    def display_name(self) -> str:
        return f"with_service_env: {self.name}"


@dataclass(frozen=True)
class WithEnv:
    variables: Dict[str, str]
    steps: Tuple["Step", ...]

    @property
    def display_name(self) -> str:
        return f"with_env: {', '.join(sorted(self.variables))}"


Step = Union[Sh, Echo, Checkout, Dir, WithCredentials, WithServiceEnv, WithEnv]
Block = Union[Dir, WithCredentials, WithServiceEnv, WithEnv]
BLOCK_TYPES = (Dir, WithCredentials, WithServiceEnv, WithEnv)


# ---------------------------------------------------------------------
# Stages / pipeline
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class Stage:
    """
    A named, ordered group of steps.

    `dir` is the stage's working-directory override (relative to the
    workspace). A failing stage halts the pipeline unless
    `continue_on_error` is set; the run is still reported as FAILURE.
    """
    name: str
    steps: Tuple[Step, ...]
    dir: Optional[str] = None
    environment: Dict[str, str] = field(default_factory=dict)
    continue_on_error: bool = False


@dataclass(frozen=True)
class Options:
    timestamps: bool = False
    disable_concurrent_builds: bool = False


@dataclass(frozen=True)
class Post:
    """Notification messages emitted with the terminal outcome."""
    success: Optional[str] = None
    failure: Optional[str] = None
    always: Optional[str] = None


@dataclass(frozen=True)
class PipelineDescriptor:
    name: str
    stages: Tuple[Stage, ...]
    environment: Dict[str, str] = field(default_factory=dict)
    options: Options = field(default_factory=Options)
    agent: Optional[str] = None
    post: Post = field(default_factory=Post)

    @property
    def stage_names(self) -> list[str]:
        return [s.name for s in self.stages]


def validate_descriptor(descriptor: PipelineDescriptor) -> PipelineDescriptor:
    """Check the structural rules a descriptor must satisfy before it can run."""
    if not descriptor.name:
        raise DescriptorError("Pipeline must have a name")
    if not descriptor.stages:
        raise DescriptorError(f"Pipeline '{descriptor.name}' has no stages")

    names = descriptor.stage_names
    if len(set(names)) != len(names):
        dupes = sorted({n for n in names if names.count(n) > 1})
        raise DescriptorError(f"Duplicate stage names found: {dupes}")

    for stage in descriptor.stages:
        if not stage.steps:
            raise DescriptorError(f"Stage '{stage.name}' has no steps")
        _validate_steps(stage.name, stage.steps)
    return descriptor


def _validate_steps(stage: str, steps: Tuple[Step, ...]) -> None:
    for step in steps:
        if isinstance(step, WithCredentials) and not step.bindings:
            raise DescriptorError(f"Stage '{stage}': with_credentials needs at least one binding")
        if isinstance(step, BLOCK_TYPES):
            if not step.steps:
                raise DescriptorError(f"Stage '{stage}': {step.display_name} has no nested steps")
            _validate_steps(stage, step.steps)
