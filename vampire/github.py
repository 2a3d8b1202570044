"""
GitHub issue tracker access via the `gh` CLI.
"""

from __future__ import annotations

import json
import re
from pathlib import Path

from vampire.models import Issue
from vampire.shell import CommandError, run_cmd


class IssueTrackerError(Exception):
    pass


class IssueTracker:
    """Thin async wrapper over `gh`, rooted at the project checkout."""

    def __init__(self, repo_path: Path | str, timeout: float = 30):
        self.repo_path = Path(repo_path)
        self.timeout = timeout

    async def read_issue(self, number: int) -> Issue:
        data = await self._gh_json("issue", "view", str(number), "--json", "number,title,body")
        return Issue(
            number=data.get("number", number),
            title=data.get("title", ""),
            body=data.get("body") or "",
        )

    async def create_issue(self, title: str, body: str = "") -> int:
        args = ["issue", "create", "--title", title.strip()]
        if body.strip():
            args += ["--body", body.strip()]
        output = await self._gh(*args)
        match = re.search(r"/issues/(\d+)", output)
        if not match:
            raise IssueTrackerError(f"Failed to parse issue number from: {output}")
        return int(match.group(1))

    async def comment(self, number: int, body: str, repo: str | None = None) -> None:
        args = ["issue", "comment", str(number), "--body", body]
        if repo:
            args += ["--repo", repo]
        await self._gh(*args)

    async def create_pull_request(self, title: str, body: str, base: str, head: str) -> str:
        repo = await run_cmd(["git", "remote", "get-url", "origin"], cwd=self.repo_path, timeout=self.timeout)
        return await self._gh(
            "pr", "create",
            "--title", title,
            "--body", body,
            "--base", base,
            "--head", head,
            "--repo", repo,
        )

    async def _gh(self, *args: str) -> str:
        try:
            return await run_cmd(["gh", *args], cwd=self.repo_path, timeout=self.timeout)
        except CommandError as e:
            raise IssueTrackerError(str(e)) from e

    async def _gh_json(self, *args: str) -> dict:
        output = await self._gh(*args)
        try:
            return json.loads(output)
        except json.JSONDecodeError as e:
            raise IssueTrackerError(f"Unexpected gh output: {output[:200]}") from e
