"""Run entities."""
from enum import Enum

from pydantic import BaseModel, Field


class RunStatus(str, Enum):
    """Outcome of a day-run."""
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"
    SKIPPED = "skipped"


class SkippedFile(BaseModel):
    """File left out of the backup because it could not be read."""
    path: str
    reason: str


class RunSummary(BaseModel):
    """Counters reported at the end of a day-run."""
    batch_count: int = 0
    file_count: int = 0
    total_bytes: int = 0
    uploaded_batches: int = 0
    skipped_batches: int = 0
    skipped_files: list[SkippedFile] = Field(default_factory=list)
    cancelled: bool = False


class RunResult(BaseModel):
    """Structured result handed back to the scheduler."""
    job_id: str
    run_id: str
    day_key: str
    status: RunStatus
    summary: RunSummary = Field(default_factory=RunSummary)
    error: str | None = None


class CommitToken(BaseModel):
    """Proof that the remote store holds the expected bytes for a key."""
    key: str
    etag: str | None = None
    checksum: str
    size: int
    already_present: bool = False
