"""
Vampire Workspace Isolation

Disposable sandboxing. Every job gets its own throwaway clone of the
project in a fresh temp directory, so parallel jobs never see each
other's files. The clone's origin points at the real remote, not at the
local checkout it was cloned from.
"""

from __future__ import annotations

import asyncio
import shutil
import tempfile
from pathlib import Path

from loguru import logger

from vampire.shell import CommandError, run_cmd

PR_TEMPLATE_PATH = Path(".github") / "PULL_REQUEST_TEMPLATE.md"


class WorkspaceError(Exception):
    pass


class PushSafetyError(WorkspaceError):
    """Refusing to commit or push straight onto the base branch."""
    pass


class Workspace:
    """
    Manages an isolated clone for a single job.
    """

    def __init__(
        self,
        project_root: Path,
        branch_name: str,
        base_branch: str = "main",
        prefix: str = "vampire-",
        git_timeout: float = 120,
        metadata_timeout: float = 30,
    ):
        self.project_root = Path(project_root).resolve()
        self.branch_name = branch_name
        self.base_branch = base_branch
        self.prefix = prefix
        self.git_timeout = git_timeout
        self.metadata_timeout = metadata_timeout
        self.remote_branch_exists = False
        self.origin_url: str | None = None
        self._path: Path | None = None

    @property
    def path(self) -> Path:
        if self._path is None:
            raise WorkspaceError("Workspace has not been created yet")
        return self._path

    @property
    def created(self) -> bool:
        return self._path is not None

    # -- preparation --------------------------------------------------------

    async def fetch(self, follow_up: bool = False) -> None:
        """Refresh the project's view of origin before cloning from it."""
        await self._git("fetch", "origin", self.base_branch)
        if follow_up:
            try:
                await self._git("fetch", "origin", self.branch_name)
            except CommandError as e:
                logger.warning(f"[WORKSPACE] Could not fetch {self.branch_name}: {e}")

    async def remote_url(self) -> str:
        return await self._git("remote", "get-url", "origin", timeout=self.metadata_timeout)

    async def create(self, follow_up: bool = False) -> Path:
        """
        Clone the project into a fresh temp dir pinned to the base branch,
        then put the job's branch in place.
        """
        remote_url = await self.remote_url()
        self.origin_url = remote_url
        self._path = Path(tempfile.mkdtemp(prefix=self.prefix))

        clone_args = ["clone", "--branch", self.base_branch, "--no-tags", "--quiet"]
        if not follow_up:
            clone_args.append("--single-branch")
        await self._git(*clone_args, str(self.project_root), str(self._path))
        await self._ws_git("remote", "set-url", "origin", remote_url)

        if follow_up:
            await self._ws_git("fetch", "origin", self.branch_name)
            await self._ws_git("checkout", "-b", self.branch_name, f"origin/{self.branch_name}")
        else:
            self.remote_branch_exists = await self._remote_branch_exists()
            if self.remote_branch_exists:
                # the lease in push() is checked against this tracking ref
                ref = self.branch_name
                await self._ws_git("fetch", "origin", f"+refs/heads/{ref}:refs/remotes/origin/{ref}")
            await self._ws_git("checkout", "-b", self.branch_name)

        logger.info(f"[WORKSPACE] Sandbox created: {self._path} ({self.branch_name})")
        return self._path

    def pr_template(self) -> str | None:
        """The repository's own PR template, if it ships one."""
        template = self.path / PR_TEMPLATE_PATH
        if template.is_file():
            return template.read_text(encoding="utf-8")
        return None

    # -- inspection ---------------------------------------------------------

    async def has_changes(self) -> bool:
        """
        Unstaged, staged, or untracked changes present.
        If git itself fails here the workspace is assumed changed.
        """
        try:
            await self._ws_git("diff", "--quiet")
            await self._ws_git("diff", "--cached", "--quiet")
            untracked = await self._ws_git("ls-files", "--others", "--exclude-standard")
        except CommandError:
            return True
        return bool(untracked)

    async def current_branch(self) -> str:
        return await self._ws_git("branch", "--show-current", timeout=self.metadata_timeout)

    async def diff_last_commit(self) -> str:
        return await self._ws_git("diff", "HEAD~1")

    # -- publishing ---------------------------------------------------------

    async def ensure_not_base(self) -> None:
        current = await self.current_branch()
        if current == self.base_branch:
            raise PushSafetyError(f"FATAL: current branch is {self.base_branch}. Aborting push.")

    async def commit(self, message: str) -> None:
        """Stage everything and commit it on the job branch."""
        await self.ensure_not_base()
        await self._ws_git("add", "-A")
        await self._ws_git("commit", "--no-verify", "-m", message)

    async def push(self) -> None:
        """
        Push with --force-with-lease: re-pushing our own branch is fine,
        clobbering commits someone else pushed since the last fetch is not.
        """
        await self.ensure_not_base()
        ref = f"refs/heads/{self.branch_name}"
        await self._ws_git("push", "origin", f"{ref}:{ref}", "--force-with-lease")
        logger.info(f"[WORKSPACE] Pushed: {self.branch_name}")

    # -- teardown -----------------------------------------------------------

    async def cleanup(self) -> None:
        """Hard removal of the clone, off the event loop. Safe to call more than once."""
        if self._path is None:
            return
        await asyncio.to_thread(shutil.rmtree, self._path, ignore_errors=True)
        logger.info(f"[WORKSPACE] Removed: {self._path}")

    # -- helpers ------------------------------------------------------------

    async def _remote_branch_exists(self) -> bool:
        """Advisory check: any failure reads as 'not there'."""
        ref = f"refs/heads/{self.branch_name}"
        try:
            heads = await self._ws_git("ls-remote", "origin", ref, timeout=self.metadata_timeout)
        except CommandError as e:
            logger.warning(f"[WORKSPACE] Could not query origin for {self.branch_name}: {e}")
            return False
        # ls-remote patterns match on the ref tail, so hotfix/feat/7 also turns up for feat/7
        return any(line.split("\t")[-1] == ref for line in heads.splitlines())

    async def _git(self, *args: str, timeout: float | None = None) -> str:
        return await run_cmd(["git", *args], cwd=self.project_root, timeout=timeout or self.git_timeout)

    async def _ws_git(self, *args: str, timeout: float | None = None) -> str:
        return await run_cmd(["git", *args], cwd=self.path, timeout=timeout or self.git_timeout)
