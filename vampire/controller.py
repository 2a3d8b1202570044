"""
Vampire Controller — The Job Engine

It is NOT smart. It is deterministic.

Pipeline per job (fixed order, no overlap):
  1. Resolve context   (issue / direct description / follow-up feedback)
  2. Fetch             (refresh origin in the project checkout)
  3. Workspace         (throwaway clone on the job branch)
  4. Agent             (provider run, retried while nothing changes)
  5. Commit & push     (never from the base branch)

Whatever happens, the workspace is removed, the final status is written
once, and the job's log topic gets its done event.

It never writes code. It only coordinates.
"""

from __future__ import annotations

import asyncio
import signal as signals
from datetime import datetime, timezone
from typing import Callable

from loguru import logger

from vampire.cancellation import CancellationRegistry, CancelToken, JobCancelled
from vampire.config_loader import VampireConfig
from vampire.event_bus import LogBus, Subscription
from vampire.github import IssueTracker
from vampire.job_log import FlushScheduler, JobLog
from vampire.models import FollowUpContext, Job, JobResult, JobStatus, Project
from vampire.prompts import (
    build_prompt,
    build_retry_prompt,
    commit_message,
    default_change_description,
    extract_change_description,
    no_changes_comment,
    pr_title,
)
from vampire.providers import AgentProvider, ProviderRegistry, build_registry
from vampire.repository import JobRepository
from vampire.retry import RULE, RetryController
from vampire.workspace import Workspace

BANNER_RULE = "=" * 40

__all__ = ["JobCancelled", "JobEngine", "JobRun", "Worker"]


class Worker:
    """Handle returned by JobEngine.start()."""

    def __init__(self, job_id: int, token: CancelToken, task: asyncio.Task):
        self.job_id = job_id
        self.token = token
        self._task = task

    def kill(self, sig: int = signals.SIGTERM) -> None:
        self.token.kill(sig)

    @property
    def done(self) -> bool:
        return self._task.done()

    async def wait(self) -> JobStatus:
        return await asyncio.shield(self._task)


# ---------------------------------------------------------------------------
# One job's run
# ---------------------------------------------------------------------------

class JobRun:
    """
    State for a single execution of a job.

    Owned by exactly one asyncio task; nothing here is shared with
    other jobs.
    """

    def __init__(
        self,
        engine: JobEngine,
        job: Job,
        project: Project,
        follow_up: FollowUpContext | None,
        token: CancelToken,
        log: JobLog,
    ):
        self.engine = engine
        self.config = engine.config
        self.job = job
        self.project = project
        self.follow_up = follow_up
        self.token = token
        self.log = log
        self.tracker: IssueTracker = engine.tracker_factory(project)
        self.workspace: Workspace | None = None
        self.provider: AgentProvider | None = None
        self.title = ""
        self.body = ""
        self.branch = ""

    async def execute(self) -> JobResult:
        self._print_header()
        self.provider = self.engine.providers.get(self.project.provider or self.config.engine.default_provider)
        await self.checkpoint()

        # ── 1. Context ──
        await self.resolve_context()
        await self.checkpoint()

        # ── 2. Fetch ──
        self.log("[2/5] Fetching latest...")
        self.workspace = Workspace(
            self.project.path,
            self.branch,
            base_branch=self.project.base_branch,
            prefix=self._workspace_prefix(),
            git_timeout=self.config.timeouts.git,
            metadata_timeout=self.config.timeouts.metadata,
        )
        await self.workspace.fetch(follow_up=self.follow_up is not None)

        # ── 3. Workspace ──
        self.log("[3/5] Creating clean workspace...")
        ws_path = await self.workspace.create(follow_up=self.follow_up is not None)
        if self.workspace.remote_branch_exists:
            self.log(f"  Remote branch '{self.branch}' already exists. Will force push.")
        self.log(f"  Workspace: {ws_path}")
        self.log("")
        await self.checkpoint()

        # ── 4. Agent ──
        self.log("[4/5] Running agent...")
        self.log(RULE)
        output = await self.run_agent()
        await self.checkpoint()

        # ── 5. Commit & push ──
        return await self.publish(output)

    # -- stages -------------------------------------------------------------

    async def resolve_context(self) -> None:
        job = self.job
        if self.follow_up:
            self.branch = self.follow_up.branch
            self.title = job.issue_title or f"{job.type} #{job.id if job.is_direct else job.issue_no}"
            self.body = ""
            message = self.follow_up.message
            self.log("[1/5] Follow-up on existing branch...")
            self.log(f"  Branch: {self.branch}")
            self.log(f"  Feedback: {message[:100]}{'...' if len(message) > 100 else ''}")
            self.log("")
            return

        if job.is_direct:
            self.log("[1/5] Direct mode — using provided description...")
            self.title = job.issue_title or f"{job.type} #{job.id}"
            self.body = job.description or ""
            self.branch = f"{job.type}/{job.id}"
        else:
            self.log(f"[1/5] Reading issue #{job.issue_no}...")
            issue = await self.tracker.read_issue(job.issue_no)
            self.title = issue.title
            self.body = issue.body
            self.branch = f"{job.type}/{job.issue_no}"
            await self.engine.repository.update_issue_title(job.id, self.title)

        self.log(f"  Title:  {self.title}")
        self.log(f"  Type:   {job.type}")
        self.log(f"  Branch: {self.branch}")
        self.log("")

    async def run_agent(self) -> str:
        template = self.workspace.pr_template()
        prompt = build_prompt(
            self.job, self.title, self.body,
            follow_up=self.follow_up,
            extra_rules=self.project.prompt,
            pr_template=template,
        )
        retry_body = self.follow_up.message if self.follow_up else self.body

        controller = RetryController(
            provider=self.provider,
            workspace=self.workspace,
            log=self.log,
            token=self.token,
            checkpoint=self.checkpoint,
            retry_prompt=lambda previous: build_retry_prompt(
                self.job, self.title, retry_body, previous,
                extra_rules=self.project.prompt,
                pr_template=template,
            ),
            on_exhausted=self._comment_no_changes,
            max_retry=self.config.engine.max_retry,
            agent_timeout=self.config.timeouts.agent,
            kill_grace=self.config.engine.kill_grace,
        )
        return await controller.run(prompt)

    async def publish(self, output: str) -> JobResult:
        job = self.job
        self.log("[5/5] Committing & pushing...")
        await self.workspace.commit(commit_message(job, self.title, self.provider.info.co_author))
        await self.workspace.push()

        diff = await self.workspace.diff_last_commit()
        body = extract_change_description(output) or default_change_description(job)

        self.log("")
        self.log(BANNER_RULE)
        self.log("  DONE")
        self.log(f"  Task: {self.title}" if job.is_direct else f"  Issue:  #{job.issue_no}")
        self.log(f"  Branch: {self.branch}")
        self.log("  Create a PR from the web UI.")
        self.log(BANNER_RULE)

        return JobResult(
            status=JobStatus.COMPLETED,
            branch=self.branch,
            diff=diff,
            pr_title=pr_title(job, self.title),
            pr_body=body,
        )

    async def cleanup(self) -> None:
        if self.workspace is not None and self.workspace.created:
            await self.workspace.cleanup()
            self.log("")
            self.log("Cleaning up workspace...")

    # -- helpers ------------------------------------------------------------

    async def checkpoint(self) -> None:
        """Stage boundary: stop here if the job was cancelled by token or in the store."""
        if not self.token.cancelled and await self.engine.is_cancelled(self.job.id):
            self.token.cancel()
        self.token.raise_if_cancelled()

    async def _comment_no_changes(self) -> None:
        if self.job.is_direct:
            return
        try:
            await self.tracker.comment(
                self.job.issue_no,
                no_changes_comment(self.config.engine.max_retry),
                repo=self.workspace.origin_url,
            )
        except Exception as e:
            logger.warning(f"[ENGINE] Could not comment on issue #{self.job.issue_no}: {e}")

    def _workspace_prefix(self) -> str:
        prefix = self.config.engine.workspace_prefix
        if self.job.is_direct:
            return f"{prefix}direct-{self.job.id}-"
        return f"{prefix}{self.job.issue_no}-"

    def _print_header(self) -> None:
        suffix = " (Follow-up)" if self.follow_up else ""
        self.log(BANNER_RULE)
        self.log(f"  Vampire — {self.job.label}{suffix}")
        self.log(f"  {datetime.now(timezone.utc).strftime('%Y-%m-%d %H:%M:%S')}")
        self.log(BANNER_RULE)
        self.log("")


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------

class JobEngine:
    """
    Starts jobs as independent asyncio tasks and owns the cross-job state:
    the cancellation registry, the log bus and the debounced flush timers.
    """

    def __init__(
        self,
        repository: JobRepository,
        providers: ProviderRegistry | None = None,
        bus: LogBus | None = None,
        registry: CancellationRegistry | None = None,
        config: VampireConfig | None = None,
        tracker_factory: Callable[[Project], IssueTracker] | None = None,
    ):
        self.config = config or VampireConfig()
        self.repository = repository
        self.providers = providers or build_registry(self.config)
        self.bus = bus or LogBus(
            self.config.bus.max_subscribers,
            self.config.bus.history_lines,
            self.config.bus.retained_topics,
        )
        self.registry = registry or CancellationRegistry()
        self.flusher = FlushScheduler(self.config.engine.flush_interval)
        self.tracker_factory = tracker_factory or (
            lambda project: IssueTracker(project.path, timeout=self.config.timeouts.metadata)
        )
        self._tasks: dict[int, asyncio.Task] = {}

    def start(self, job: Job, project: Project, follow_up: FollowUpContext | None = None) -> Worker:
        """Kick off a job and return immediately. Must be called from a running loop."""
        token = CancelToken(job.id, kill_grace=self.config.engine.kill_grace)
        topic = self.bus.open(job.id)
        log = JobLog(job.id, topic, self.repository, self.flusher)
        run = JobRun(self, job, project, follow_up, token, log)

        self.registry.register(token)
        task = asyncio.get_running_loop().create_task(self._execute(run), name=f"vampire-job-{job.id}")
        self._tasks[job.id] = task
        task.add_done_callback(lambda _: self._tasks.pop(job.id, None))
        logger.info(f"[ENGINE] Started job {job.id} ({job.label}) on {project.path}")
        return Worker(job.id, token, task)

    def cancel(self, job_id: int) -> bool:
        return self.registry.cancel(job_id)

    def subscribe(self, job_id: int, replay: bool = False) -> Subscription:
        return self.bus.subscribe(job_id, replay=replay)

    @property
    def active_jobs(self) -> list[int]:
        return list(self._tasks)

    async def is_cancelled(self, job_id: int) -> bool:
        try:
            return await self.repository.get_status(job_id) is JobStatus.CANCELLED
        except Exception as e:
            logger.warning(f"[ENGINE] Could not read status of job {job_id}: {e}")
            return False

    async def _execute(self, run: JobRun) -> JobStatus:
        job = run.job
        result = JobResult(status=JobStatus.FAILED)
        interrupted: asyncio.CancelledError | None = None
        try:
            try:
                result = await run.execute()
            except JobCancelled:
                result = JobResult(status=JobStatus.CANCELLED)
            except asyncio.CancelledError as e:
                # the task itself was cancelled (loop shutdown, Ctrl-C): settle, then re-raise
                logger.warning(f"[ENGINE] Job {job.id} interrupted")
                interrupted = e
                run.token.cancel()
                result = JobResult(status=JobStatus.CANCELLED)
            except Exception as e:
                if run.token.cancelled:
                    result = JobResult(status=JobStatus.CANCELLED)
                else:
                    logger.error(f"[ENGINE] Job {job.id} failed: {e}")
                    run.log("")
                    run.log(f"Error: {e}")

            result = await asyncio.shield(self._settle(run, result))
        finally:
            self.registry.remove(job.id)
            run.log.close()
            self.bus.close(job.id, result.status.value)
        if interrupted is not None:
            raise interrupted
        return result.status

    async def _settle(self, run: JobRun, result: JobResult) -> JobResult:
        """Remove the workspace, then persist the terminal state once."""
        try:
            await run.cleanup()
        except Exception as e:
            logger.error(f"[ENGINE] Could not remove workspace of job {run.job.id}: {e}")

        if result.status is not JobStatus.CANCELLED and (
            run.token.cancelled or await self.is_cancelled(run.job.id)
        ):
            result = result.model_copy(update={"status": JobStatus.CANCELLED})
        await self._finalize(run, result)
        return result

    async def _finalize(self, run: JobRun, result: JobResult) -> None:
        run.log("")
        run.log(f"[worker exited: {result.status.value}]")
        run.log.close()
        try:
            await self.repository.finalize(run.job.id, result, run.log.text)
        except Exception as e:
            logger.error(f"[ENGINE] Failed to persist final state of job {run.job.id}: {e}")
        logger.info(f"[ENGINE] Job {run.job.id} finished: {result.status.value}")
