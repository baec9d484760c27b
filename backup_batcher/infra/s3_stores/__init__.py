"""S3 stores module."""
from backup_batcher.infra.s3_stores.base import S3BaseStore
from backup_batcher.infra.s3_stores.manifest_store import S3ManifestStore
from backup_batcher.infra.s3_stores.archive_store import S3ArchiveStore

__all__ = [
    "S3BaseStore",
    "S3ManifestStore",
    "S3ArchiveStore",
]
