# reporter.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional

from .errors import ExternalToolFailure, MissingToolError
from .model import Post
from .ui.console import Console

SUCCESS = "SUCCESS"
FAILURE = "FAILURE"

# stage statuses
PASSED = "SUCCESS"
FAILED = "FAILED"
SKIPPED = "SKIPPED"


@dataclass
class StageResult:
    name: str
    status: str
    steps_run: int = 0
    error: Optional[BaseException] = None

    @property
    def exit_code(self) -> Optional[int]:
        if isinstance(self.error, ExternalToolFailure):
            return self.error.exit_code
        if isinstance(self.error, MissingToolError):
            return self.error.details.get("exit_code")
        return None


@dataclass
class PipelineResult:
    pipeline: str
    status: str
    stages: List[StageResult] = field(default_factory=list)
    message: str = ""
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.status == SUCCESS

    @property
    def failed_stage(self) -> Optional[StageResult]:
        return next((s for s in self.stages if s.status == FAILED), None)

    def stage_statuses(self) -> Dict[str, str]:
        return {s.name: s.status for s in self.stages}


class Reporter:
    """Emits exactly one terminal outcome per run. No retries, no fan-out."""

    def __init__(self, console: Console, post: Post | None = None):
        self.console = console
        self.post = post or Post()
        self._reported: Optional[PipelineResult] = None

    def message_for(self, result: PipelineResult) -> str:
        if result.ok:
            if self.post.success:
                return self.post.success
            return f"Pipeline '{result.pipeline}' succeeded ({len(result.stages)} stage(s))"

        if self.post.failure:
            return self.post.failure
        failed = result.failed_stage
        if failed is not None:
            return f"Pipeline '{result.pipeline}' failed at stage '{failed.name}': {_first_line(failed.error)}"
        if result.error is not None:
            return f"Pipeline '{result.pipeline}' failed: {_first_line(result.error)}"
        return f"Pipeline '{result.pipeline}' failed"

    def report(self, result: PipelineResult) -> PipelineResult:
        if self._reported is not None:
            raise RuntimeError(
                f"Outcome for pipeline '{result.pipeline}' was already reported ({self._reported.status})"
            )
        result.message = self.message_for(result)
        self._reported = result
        self.console.print_results(result.status, result.stage_statuses(), result.message)
        if self.post.always:
            self.console.print_info(self.post.always)
        return result


def _first_line(error: Optional[BaseException]) -> str:
    if error is None:
        return "unknown error"
    text = str(error) or type(error).__name__
    return text.split("\n")[0]
