from __future__ import annotations

from enum import Enum

from pydantic import BaseModel


class JobStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def terminal(self) -> bool:
        return self is not JobStatus.RUNNING


class Project(BaseModel):
    """Read-only description of the repository a job works against."""
    id: int = 0
    path: str
    base_branch: str = "main"
    provider: str = "claude"
    prompt: str | None = None  # extra rules appended to every agent prompt


class Job(BaseModel):
    """One unit of work: an issue (or a direct description) mapped to a branch."""
    id: int
    project_id: int = 0
    issue_no: int | None = None
    type: str = "feat"
    issue_title: str = ""
    description: str = ""
    status: JobStatus = JobStatus.RUNNING
    branch: str | None = None
    diff: str | None = None
    pr_title: str | None = None
    pr_body: str | None = None
    log: str = ""

    @property
    def is_direct(self) -> bool:
        return self.issue_no is None

    @property
    def label(self) -> str:
        return f"Direct #{self.id}" if self.is_direct else f"Issue #{self.issue_no}"


class FollowUpContext(BaseModel):
    """Feedback on a branch a previous job already pushed."""
    branch: str
    message: str
    previous_diff: str | None = None


class JobResult(BaseModel):
    """Terminal fields the engine hands to the repository."""
    status: JobStatus
    branch: str | None = None
    diff: str | None = None
    pr_title: str | None = None
    pr_body: str | None = None


class Issue(BaseModel):
    number: int
    title: str
    body: str = ""
