"""Common infrastructure utilities."""
from backup_batcher.infra.common.config import load_app_config, load_job_config
from backup_batcher.infra.common.paths import BackupPathBuilder
from backup_batcher.infra.common.clock import Clock, SystemClock, get_clock, set_clock
from backup_batcher.infra.common.logger import get_logger, resolve_level, setup_logging
from backup_batcher.infra.common.errors import (
    BackupError,
    ConfigError,
    StorageError,
    PreconditionFailedError,
    BackupIOError,
    ArchiveError,
    UploadError,
    TransientUploadError,
    PermanentUploadError,
    UploadConflict,
    ManifestError,
    ManifestConflict,
    ManifestOrderError,
    ManifestUnavailableError,
)
from backup_batcher.infra.common.hash_utils import compute_bytes_hash, compute_file_hash
from backup_batcher.infra.common.retry import call_with_retry, classify_error

__all__ = [
    "load_app_config",
    "load_job_config",
    "BackupPathBuilder",
    "Clock",
    "SystemClock",
    "get_clock",
    "set_clock",
    "setup_logging",
    "resolve_level",
    "get_logger",
    "BackupError",
    "ConfigError",
    "StorageError",
    "PreconditionFailedError",
    "BackupIOError",
    "ArchiveError",
    "UploadError",
    "TransientUploadError",
    "PermanentUploadError",
    "UploadConflict",
    "ManifestError",
    "ManifestConflict",
    "ManifestOrderError",
    "ManifestUnavailableError",
    "compute_bytes_hash",
    "compute_file_hash",
    "call_with_retry",
    "classify_error",
]
