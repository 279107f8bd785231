# step_workflows/shell.py
from __future__ import annotations

import re
import subprocess
from collections import deque
from typing import TYPE_CHECKING, Optional

from ..errors import ExternalToolFailure, MissingToolError
from ..model import Sh

if TYPE_CHECKING:
    from ..executor import StepRunner

COMMAND_NOT_FOUND = 127
OUTPUT_TAIL_LINES = 50

# "sh: 1: trivy: not found" (dash) / "bash: line 1: trivy: command not found"
_NOT_FOUND_RE = re.compile(r"([\w.+-]+): (?:command )?not found")


def _missing_tool(output_lines) -> Optional[str]:
    for line in reversed(output_lines):
        m = _NOT_FOUND_RE.search(line)
        if m:
            return m.group(1)
    return None


def run_step(runner: "StepRunner", step: Sh) -> None:
    """
    Run a shell script with `<shell> -e -c`, streaming redacted output.

    Exit 127 means the shell could not find a command; anything else
    non-zero is a tool failure.
    """
    cwd = runner.scopes.current.cwd
    shell = runner.ctx.shell
    tail: deque[str] = deque(maxlen=OUTPUT_TAIL_LINES)

    try:
        proc = subprocess.Popen(
            [shell, "-e", "-c", step.script],
            cwd=str(cwd),
            env=runner.process_env(),
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            stdin=subprocess.DEVNULL,
            text=True,
            errors="replace",
        )
    except FileNotFoundError as e:
        raise MissingToolError(
            stage=runner.stage_name,
            step=step.display_name,
            tool=None,
            details={"shell": shell},
        ) from e

    assert proc.stdout is not None
    with proc.stdout:
        for line in proc.stdout:
            runner.console.print_output(line)
            tail.append(runner.console.redactor.redact(line.rstrip("\n")))
    exit_code = proc.wait()

    if exit_code == 0:
        return
    if exit_code == COMMAND_NOT_FOUND:
        raise MissingToolError(
            stage=runner.stage_name,
            step=step.display_name,
            tool=_missing_tool(list(tail)),
            details={"exit_code": exit_code},
        )
    raise ExternalToolFailure(
        stage=runner.stage_name,
        step=step.display_name,
        cmd=runner.console.redactor.redact(step.script.strip()),
        exit_code=exit_code,
        output="\n".join(tail),
    )
