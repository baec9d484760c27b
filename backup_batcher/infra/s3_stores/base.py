"""Base S3 store with common operations."""
from backup_batcher.infra.s3_storage import S3Storage
from backup_batcher.infra.common.paths import BackupPathBuilder


class S3BaseStore:
    """Base class for S3 stores with common operations."""
    
    def __init__(
        self,
        s3_storage: S3Storage,
        paths: BackupPathBuilder | None = None,
    ):
        """
        Initialize base store.
        
        Args:
            s3_storage: S3 storage instance
            paths: Path builder instance (defaults to BackupPathBuilder without prefix)
        """
        self.s3 = s3_storage
        self.paths = paths or BackupPathBuilder()
