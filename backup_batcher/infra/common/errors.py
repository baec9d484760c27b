"""Centralized error types."""


class BackupError(Exception):
    """Base exception for backup errors."""
    pass


class ConfigError(BackupError):
    """Configuration error."""
    pass


class StorageError(BackupError):
    """Storage operation error."""
    pass


class PreconditionFailedError(StorageError):
    """Conditional write rejected because the object changed underneath us."""
    pass


class BackupIOError(BackupError):
    """Backup root (or a file) could not be read."""
    pass


class ArchiveError(BackupError):
    """A batch file vanished or changed between enumeration and packing."""
    pass


class UploadError(BackupError):
    """Upload to the remote store failed."""
    pass


class TransientUploadError(UploadError):
    """Retryable failure that persisted after all attempts."""
    pass


class PermanentUploadError(UploadError):
    """Non-retryable failure (auth, quota, rejected request)."""
    pass


class UploadConflict(UploadError):
    """Key already holds different content."""
    pass


class ManifestError(BackupError):
    """Manifest operation error."""
    pass


class ManifestConflict(ManifestError):
    """Existing batch index recorded with a different archive or file list."""
    pass


class ManifestOrderError(ManifestError):
    """Entry appended out of batch-index order."""
    pass


class ManifestUnavailableError(ManifestError):
    """Neither the remote nor the staged manifest could be read."""
    pass
