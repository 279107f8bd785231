# git.py
# Small, focused wrapper around the Git CLI.
# All Git interactions of the checkout step go through here so the rest of
# the codebase never calls subprocess("git ...") directly.

from __future__ import annotations

import subprocess
from pathlib import Path
from typing import Mapping, Optional


def _git(args: list[str], cwd: Optional[Path] = None, env: Optional[Mapping[str, str]] = None) -> str:
    """
    Execute a git command and return its stdout as a clean string.

    Raises:
        subprocess.CalledProcessError: git exited non-zero
        FileNotFoundError: git is not installed
    """
    out = subprocess.run(
        ["git", *args],
        cwd=str(cwd) if cwd is not None else None,
        env=dict(env) if env is not None else None,
        text=True,
        capture_output=True,
        check=True,
    )
    return out.stdout.strip()


def is_repo(path: Path) -> bool:
    """True if `path` is the top of a Git working tree."""
    return (path / ".git").exists()


def checkout_branch(url: str, branch: str, dest: Path, env: Optional[Mapping[str, str]] = None) -> str:
    """
    Make `dest` a working tree of `branch` from `url` and return the HEAD sha.

    Works for an empty directory, a directory with unrelated files, and an
    existing checkout (which is fetched and hard-reset to the remote branch).
    """
    dest.mkdir(parents=True, exist_ok=True)

    if not is_repo(dest):
        _git(["init", "--quiet"], cwd=dest, env=env)
    remotes = _git(["remote"], cwd=dest, env=env).splitlines()
    if "origin" in remotes:
        _git(["remote", "set-url", "origin", url], cwd=dest, env=env)
    else:
        _git(["remote", "add", "origin", url], cwd=dest, env=env)

    _git(["fetch", "--quiet", "origin", branch], cwd=dest, env=env)
    _git(["checkout", "--quiet", "-f", "-B", branch, "FETCH_HEAD"], cwd=dest, env=env)
    return head_sha(dest, env=env)


def head_sha(cwd: Path, env: Optional[Mapping[str, str]] = None) -> str:
    """Return the full SHA of HEAD in `cwd`."""
    return _git(["rev-parse", "HEAD"], cwd=cwd, env=env)
