"""
Tests for the checkout step (git itself is stubbed)
"""

import subprocess

from stagerun.dsl import dir_, git, pipeline, sh, stage
from stagerun.errors import ExternalToolFailure, MissingToolError
from stagerun.git_facts import git as git_facts
from stagerun.reporter import FAILURE, SKIPPED


class RecordingGit:
    def __init__(self, remotes=""):
        self.calls = []
        self.remotes = remotes

    def __call__(self, args, cwd=None, env=None):
        self.calls.append((tuple(args), cwd))
        if args[0] == "remote" and len(args) == 1:
            return self.remotes
        if args[:2] == ["rev-parse", "HEAD"]:
            return "0123456789abcdef0123"
        return ""


class TestCheckout:
    """git step drives the Git CLI into the current directory"""

    def test_fresh_checkout(self, run, workspace, monkeypatch):
        fake = RecordingGit()
        monkeypatch.setattr(git_facts, "_git", fake)
        p = pipeline("co", stage("Checkout Code", git("https://example.com/${REPO}.git", branch="${BRANCH}")),
                     environment={"REPO": "mono", "BRANCH": "release"})

        result = run(p)

        assert result.ok
        commands = [c[0] for c in fake.calls]
        assert commands == [
            ("init", "--quiet"),
            ("remote",),
            ("remote", "add", "origin", "https://example.com/mono.git"),
            ("fetch", "--quiet", "origin", "release"),
            ("checkout", "--quiet", "-f", "-B", "release", "FETCH_HEAD"),
            ("rev-parse", "HEAD"),
        ]
        assert all(cwd == workspace for _, cwd in fake.calls)

    def test_existing_checkout_updates_remote(self, run, workspace, monkeypatch):
        (workspace / "sub" / ".git").mkdir(parents=True)
        fake = RecordingGit(remotes="origin")
        monkeypatch.setattr(git_facts, "_git", fake)

        result = run(pipeline("co", stage("c", dir_("sub", git("https://example.com/r.git")))))

        assert result.ok
        commands = [c[0] for c in fake.calls]
        assert ("init", "--quiet") not in commands
        assert ("remote", "set-url", "origin", "https://example.com/r.git") in commands
        assert all(cwd == workspace / "sub" for _, cwd in fake.calls)

    def test_git_failure_halts_pipeline(self, run, workspace, monkeypatch):
        def failing(args, cwd=None, env=None):
            if args[0] == "fetch":
                raise subprocess.CalledProcessError(128, ["git", *args], output="", stderr="fatal: repository not found")
            return ""

        monkeypatch.setattr(git_facts, "_git", failing)
        p = pipeline("co", stage("Checkout Code", git("https://example.com/gone.git")), stage("Build", sh("touch built")))

        result = run(p)

        assert result.status == FAILURE
        assert isinstance(result.error, ExternalToolFailure)
        assert result.error.exit_code == 128
        assert "repository not found" in result.error.output
        assert result.stages[1].status == SKIPPED
        assert not (workspace / "built").exists()

    def test_git_not_installed(self, run, monkeypatch):
        def missing(args, cwd=None, env=None):
            raise FileNotFoundError("git")

        monkeypatch.setattr(git_facts, "_git", missing)

        result = run(pipeline("co", stage("Checkout Code", git("https://example.com/r.git"))))

        assert isinstance(result.error, MissingToolError)
        assert result.error.tool == "git"
