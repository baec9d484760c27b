"""Backup job configuration entity."""
from pydantic import BaseModel, Field


class RetryPolicy(BaseModel):
    """Exponential backoff policy for remote store calls."""
    max_attempts: int = Field(default=5, ge=1)
    base_delay_s: float = Field(default=0.5, ge=0)
    backoff_factor: float = Field(default=2.0, ge=1)
    max_delay_s: float = Field(default=30.0, ge=0)
    jitter: bool = True


class BackupJobConfig(BaseModel):
    """Backup job configuration."""
    job_id: str
    root_path: str
    batch_size: int = Field(default=25, gt=0)
    max_upload_concurrency: int = Field(default=1, gt=0)
    retry: RetryPolicy = Field(default_factory=RetryPolicy)
    follow_symlinks: bool = False
    key_prefix: str | None = None
    """Destination folder inside the bucket."""
    verify_read_back: bool = True
    max_archive_attempts: int = Field(default=2, ge=1)
    compress_level: int = Field(default=6, ge=0, le=9)
