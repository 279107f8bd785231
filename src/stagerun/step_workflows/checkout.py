# step_workflows/checkout.py
from __future__ import annotations

import subprocess
from typing import TYPE_CHECKING

from ..errors import ExternalToolFailure, MissingToolError
from ..git_facts import git as git_facts
from ..model import Checkout
from ..scope import expand

if TYPE_CHECKING:
    from ..executor import StepRunner


def run_step(runner: "StepRunner", step: Checkout) -> None:
    """Check out step.branch of step.url into the current scope directory."""
    variables = runner.process_env()
    url = expand(step.url, variables, where="git url")
    branch = expand(step.branch, variables, where="git branch")
    dest = runner.scopes.current.cwd
    env = runner.process_env()

    try:
        sha = git_facts.checkout_branch(url, branch, dest, env=env)
    except FileNotFoundError as e:
        raise MissingToolError(stage=runner.stage_name, step=step.display_name, tool="git") from e
    except subprocess.CalledProcessError as e:
        output = "\n".join(x for x in (e.stdout, e.stderr) if x)
        raise ExternalToolFailure(
            stage=runner.stage_name,
            step=step.display_name,
            cmd=" ".join(e.cmd) if isinstance(e.cmd, list) else str(e.cmd),
            exit_code=e.returncode,
            output=runner.console.redactor.redact(output[-4000:]),
        ) from e

    runner.console.print_output(f"Checked out {branch} @ {sha[:12]}")
