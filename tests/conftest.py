"""Shared fixtures: throwaway git remotes and scripted stand-ins for the agent and gh."""

from __future__ import annotations

import shutil
import subprocess
from pathlib import Path
from typing import Callable

import pytest

from vampire.models import Issue
from vampire.prompts import PR_BODY_END, PR_BODY_START
from vampire.providers.base import (
    AgentHandle,
    AgentProvider,
    ConnectionResult,
    ProviderInfo,
    StreamCallbacks,
)

requires_git = pytest.mark.skipif(shutil.which("git") is None, reason="git not installed")


def git(*args: str, cwd: Path) -> str:
    result = subprocess.run(["git", *args], cwd=cwd, check=True, capture_output=True, text=True)
    return result.stdout.strip()


def commit_file(repo: Path, name: str, content: str, message: str) -> None:
    path = repo / name
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content)
    git("add", name, cwd=repo)
    git("commit", "-m", message, cwd=repo)


def remote_branches(origin: Path) -> list[str]:
    out = git("for-each-ref", "--format=%(refname:short)", "refs/heads", cwd=origin)
    return out.splitlines()


@pytest.fixture(autouse=True)
def git_identity(monkeypatch):
    monkeypatch.setenv("GIT_AUTHOR_NAME", "Vampire Tests")
    monkeypatch.setenv("GIT_AUTHOR_EMAIL", "tests@example.com")
    monkeypatch.setenv("GIT_COMMITTER_NAME", "Vampire Tests")
    monkeypatch.setenv("GIT_COMMITTER_EMAIL", "tests@example.com")


@pytest.fixture
def origin_and_project(tmp_path) -> tuple[Path, Path]:
    """A bare 'GitHub' remote with one commit on main, and a local checkout of it."""
    origin = tmp_path / "origin.git"
    seed = tmp_path / "seed"
    project = tmp_path / "project"

    git("init", "--bare", "--initial-branch=main", str(origin), cwd=tmp_path)
    git("init", "--initial-branch=main", str(seed), cwd=tmp_path)
    commit_file(seed, "README.md", "# demo\n", "initial")
    git("remote", "add", "origin", str(origin), cwd=seed)
    git("push", "origin", "main", cwd=seed)
    git("clone", str(origin), str(project), cwd=tmp_path)
    return origin, project


# ---------------------------------------------------------------------------
# Scripted agent
# ---------------------------------------------------------------------------

AgentAction = Callable[[Path, StreamCallbacks], str]


def noop(cwd: Path, callbacks: StreamCallbacks) -> str:
    callbacks.on_text("I looked at the code and everything seems fine.")
    return "I looked at the code and everything seems fine."


def writes(name: str, body: str = "## Changes\nAdded a file") -> AgentAction:
    def action(cwd: Path, callbacks: StreamCallbacks) -> str:
        callbacks.on_tool_use("Write", {"file_path": name})
        (cwd / name).write_text("export const answer = 42;\n")
        return f"Done.\n{PR_BODY_START}\n{body}\n{PR_BODY_END}\n"
    return action


class ScriptedProvider(AgentProvider):
    """Runs one scripted action per attempt (the last one repeats)."""

    def __init__(self, *actions: AgentAction):
        self.info = ProviderInfo(
            name="scripted",
            display_name="Scripted Agent",
            co_author="Scripted Agent <agent@example.com>",
        )
        self.actions = list(actions)
        self.prompts: list[str] = []
        self.workdirs: list[Path] = []

    async def test_connection(self) -> ConnectionResult:
        return ConnectionResult(True, "ready")

    async def run_agent(self, prompt: str, cwd: Path, callbacks: StreamCallbacks) -> AgentHandle:
        self.prompts.append(prompt)
        self.workdirs.append(Path(cwd))
        action = self.actions[min(len(self.prompts), len(self.actions)) - 1]

        async def result() -> str:
            return action(Path(cwd), callbacks)

        return AgentHandle(None, result())


class FakeTracker:

    def __init__(self, title: str = "Fix the login button", body: str = "It does nothing.", fail_comment: bool = False):
        self.issue_title = title
        self.issue_body = body
        self.fail_comment = fail_comment
        self.comments: list[tuple[int, str]] = []

    async def read_issue(self, number: int) -> Issue:
        return Issue(number=number, title=self.issue_title, body=self.issue_body)

    async def comment(self, number: int, body: str, repo: str | None = None) -> None:
        self.comments.append((number, body))
        if self.fail_comment:
            raise RuntimeError("gh: not authenticated")
