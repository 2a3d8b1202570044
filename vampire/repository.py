"""
Persistence contract for jobs.

The real store lives outside the engine (API layer + database). The engine
only needs the handful of reads and writes below; InMemoryJobRepository
backs the CLI and the tests.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod

from vampire.models import Job, JobResult, JobStatus


class JobNotFoundError(LookupError):
    pass


class JobRepository(ABC):

    @abstractmethod
    async def get_job(self, job_id: int) -> Job | None:
        ...

    async def get_status(self, job_id: int) -> JobStatus | None:
        job = await self.get_job(job_id)
        return job.status if job else None

    @abstractmethod
    async def update_issue_title(self, job_id: int, title: str) -> None:
        """Early write, so the title survives a crash later in the run."""
        ...

    @abstractmethod
    async def update_log(self, job_id: int, log: str) -> None:
        ...

    @abstractmethod
    async def set_status(self, job_id: int, status: JobStatus) -> None:
        ...

    @abstractmethod
    async def finalize(self, job_id: int, result: JobResult, log: str) -> None:
        """Late write of every terminal field at once."""
        ...


class InMemoryJobRepository(JobRepository):

    def __init__(self, jobs: list[Job] | None = None):
        self._jobs: dict[int, Job] = {job.id: job for job in jobs or []}
        self._lock = asyncio.Lock()

    async def create_job(self, job: Job) -> Job:
        async with self._lock:
            self._jobs[job.id] = job
        return job

    async def get_job(self, job_id: int) -> Job | None:
        job = self._jobs.get(job_id)
        return job.model_copy() if job else None

    async def update_issue_title(self, job_id: int, title: str) -> None:
        async with self._lock:
            self._require(job_id).issue_title = title

    async def update_log(self, job_id: int, log: str) -> None:
        async with self._lock:
            self._require(job_id).log = log

    async def set_status(self, job_id: int, status: JobStatus) -> None:
        async with self._lock:
            job = self._require(job_id)
            self._check_transition(job, status)
            job.status = status

    async def finalize(self, job_id: int, result: JobResult, log: str) -> None:
        async with self._lock:
            job = self._require(job_id)
            self._check_transition(job, result.status)
            job.status = result.status
            job.log = log
            job.branch = job.branch or result.branch
            job.diff = result.diff
            job.pr_title = result.pr_title
            job.pr_body = result.pr_body

    def _require(self, job_id: int) -> Job:
        job = self._jobs.get(job_id)
        if job is None:
            raise JobNotFoundError(f"Job {job_id} not found")
        return job

    @staticmethod
    def _check_transition(job: Job, status: JobStatus) -> None:
        # running -> terminal only; repeating the same terminal status is a no-op
        if job.status.terminal and job.status is not status:
            raise ValueError(f"Job {job.id} is already {job.status.value}, cannot become {status.value}")
