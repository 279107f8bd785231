# errors.py
from __future__ import annotations

from dataclasses import dataclass, field


class PipelineError(Exception):
    """Base class for everything that can fail a pipeline run."""


class ConfigurationError(PipelineError):
    """A credential, service, variable or setting does not resolve."""


class DescriptorError(ConfigurationError):
    """The pipeline descriptor itself is malformed."""


class ConcurrentRunError(PipelineError):
    """Another run of the same pipeline holds the run lock."""


TOOL_HINTS = {
    "npm": "Install Node.js (includes npm) or fix PATH.",
    "node": "Install Node.js or fix PATH.",
    "docker": "Install Docker and ensure the daemon is running.",
    "git": "Install Git or fix PATH.",
    "trivy": "Install Trivy (https://trivy.dev) or fix PATH.",
    "gitleaks": "Install gitleaks (https://github.com/gitleaks/gitleaks) or fix PATH.",
    "sonar-scanner": "Install the SonarScanner CLI or fix PATH.",
}


@dataclass
class ExternalToolFailure(PipelineError):
    """
    A step's command exited non-zero.

    `output` holds the tail of the (already redacted) step output so the
    failure can be shown without re-running anything.
    """
    stage: str
    step: str
    cmd: str
    exit_code: int
    output: str = ""

    def __str__(self) -> str:
        return f"[{self.stage}] step '{self.step}' failed (exit={self.exit_code}): {self.cmd}"


@dataclass
class MissingToolError(PipelineError):
    """The shell could not find a command (exit 127) or the shell itself is missing."""
    stage: str
    step: str
    tool: str | None = None
    details: dict = field(default_factory=dict)

    @property
    def hint(self) -> str | None:
        if self.tool is None:
            return None
        return TOOL_HINTS.get(self.tool, f"Install {self.tool} or fix PATH.")

    def __str__(self) -> str:
        what = self.tool or "command"
        lines = [f"[{self.stage}] step '{self.step}': {what} not found"]
        if self.hint:
            lines.append(f"hint={self.hint}")
        for k, v in self.details.items():
            lines.append(f"{k}={v}")
        return "\n".join(lines)
