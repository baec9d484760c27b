"""S3 archive store operations."""
from typing import Optional

from backup_batcher.infra.s3_stores.base import S3BaseStore

CHECKSUM_METADATA_KEY = "sha256"
ARCHIVE_CONTENT_TYPE = "application/zip"


class S3ArchiveStore(S3BaseStore):
    """S3 store for batch archives."""
    
    def archive_key(self, day_key: str, batch_index: int) -> str:
        """Get key of a batch archive."""
        return self.paths.archive_key(day_key, batch_index)
    
    def describe(self, key: str) -> Optional[dict]:
        """
        Describe a stored archive.
        
        Returns:
            Dict with etag, size and the sha256 recorded at upload time,
            or None if the key does not exist
        """
        meta = self.s3.head_object(key)
        if meta is None:
            return None
        return {
            "etag": meta["ETag"],
            "size": meta["ContentLength"],
            "checksum": meta.get("Metadata", {}).get(CHECKSUM_METADATA_KEY),
        }
    
    def put_archive(self, key: str, blob: bytes, checksum: str) -> str:
        """Write archive blob, recording its checksum as object metadata."""
        return self.s3.put_object(
            key,
            blob,
            content_type=ARCHIVE_CONTENT_TYPE,
            metadata={CHECKSUM_METADATA_KEY: checksum},
        )
    
    def read_archive(self, key: str) -> bytes:
        """Read archive blob."""
        return self.s3.get_object(key)
