"""Console output formatting utilities for stagerun."""

from __future__ import annotations

import sys
import traceback
from datetime import datetime
from pathlib import Path
from typing import IO, Optional

from .redact import Redactor


class Console:
    """
    Centralized console output formatting.

    Every line goes through the redactor before it reaches stdout, stderr or
    the optional log file, so bound secrets never land in a sink verbatim.
    """

    def __init__(
        self,
        debug: bool = False,
        timestamps: bool = False,
        log_file: str | Path | None = None,
        redactor: Optional[Redactor] = None,
    ):
        """
        Initialize console formatter.

        Args:
            debug: If True, show detailed output including stack traces
            timestamps: If True, prefix each line with the wall-clock time
            log_file: Optional path that receives a copy of every line
            redactor: Secret masker shared with the credential binder
        """
        self.debug = debug
        self.timestamps = timestamps
        self.redactor = redactor or Redactor()
        self._log: Optional[IO[str]] = None
        if log_file is not None:
            path = Path(log_file)
            path.parent.mkdir(parents=True, exist_ok=True)
            self._log = path.open("a", encoding="utf-8")

    def close(self) -> None:
        if self._log is not None:
            self._log.close()
            self._log = None

    def _emit(self, text: str, err: bool = False) -> None:
        stream = sys.stderr if err else sys.stdout
        for line in self.redactor.redact(text).split("\n"):
            if self.timestamps:
                line = f"[{datetime.now().strftime('%H:%M:%S')}] {line}"
            print(line, file=stream)
            if self._log is not None:
                self._log.write(line + "\n")
                self._log.flush()

    def print_header(self, title: str) -> None:
        """Print a section header."""
        self._emit(f"\n{title}\n" + "-" * len(title))

    def print_run_started(self, pipeline: str, source: str, stage_count: int, agent: str | None = None) -> None:
        """Print run start information."""
        self._emit("\nRUN STARTED")
        self._emit(f"Pipeline: {pipeline}")
        self._emit(f"Source: {source}")
        if agent:
            self._emit(f"Agent: {agent}")
        self._emit(f"Stages: {stage_count}\n")

    def print_stage_start(self, name: str) -> None:
        self._emit(f"\nSTAGE STARTED: {name}")

    def print_stage_skipped(self, name: str, reason: str) -> None:
        self._emit(f"\nSTAGE SKIPPED: {name} ({reason})")

    def print_step(self, name: str) -> None:
        """Print step start message."""
        self._emit(f"STEP: {name}")

    def print_output(self, line: str) -> None:
        """Print one line of step output."""
        self._emit(f"  {line.rstrip()}")

    def print_success(self, name: str) -> None:
        self._emit("STATUS: success")

    def print_failure(
        self,
        name: str,
        reason: str,
        exit_code: Optional[int] = None,
        hint: Optional[str] = None,
    ) -> None:
        """
        Print stage failure message.

        Args:
            name: Stage name
            reason: Failure reason/error message
            exit_code: Optional exit code
            hint: Optional hint for user
        """
        self._emit(f"STAGE FAILED: {name}")
        if exit_code is not None:
            self._emit(f"Exit code: {exit_code}")
        if hint:
            self._emit(f"Hint: {hint}")
        if self.debug:
            self._emit(f"Error details: {reason}")
        else:
            # first line only outside debug mode
            error_line = reason.split("\n")[0] if reason else "Unknown error"
            self._emit(f"Error: {error_line}")

    def print_results(self, status: str, stages: dict[str, str], message: str) -> None:
        """Print the terminal outcome and per-stage summary."""
        self._emit("\n" + "=" * 40)
        self._emit(f"RESULT: {status}")
        self._emit("=" * 40)
        for stage, stage_status in stages.items():
            self._emit(f"  {stage}: {stage_status}")
        self._emit(message)

    def print_error(
        self,
        title: str,
        message: str,
        details: Optional[list[str]] = None,
        suggestion: Optional[str] = None,
    ) -> None:
        """Print structured error message."""
        self._emit(f"\nERROR: {title}", err=True)
        self._emit(message, err=True)
        for detail in details or []:
            self._emit(f"  {detail}", err=True)
        if suggestion:
            self._emit(f"\n{suggestion}", err=True)

    def print_exception(self, exc: BaseException) -> None:
        """Print exception, with full traceback only in debug mode."""
        if self.debug:
            self._emit("".join(traceback.format_exception(type(exc), exc, exc.__traceback__)).rstrip(), err=True)
        else:
            self._emit(f"Error: {exc}", err=True)

    def print_info(self, message: str) -> None:
        self._emit(message)

    def print_debug(self, message: str) -> None:
        """Print debug message (only if debug mode enabled)."""
        if self.debug:
            self._emit(f"[DEBUG] {message}", err=True)


# Global console instance (initialized by the CLI)
_console: Optional[Console] = None


def get_console() -> Console:
    """Get the global console instance."""
    global _console
    if _console is None:
        _console = Console()
    return _console


def set_console(console: Console) -> None:
    """Set the global console instance."""
    global _console
    _console = console
