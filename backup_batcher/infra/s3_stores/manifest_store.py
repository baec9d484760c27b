"""S3 manifest store operations."""
from typing import Optional
from botocore.exceptions import ClientError
from pydantic import ValidationError

from backup_batcher.domain.entities.manifest import DayManifest
from backup_batcher.infra.common.errors import ManifestError
from backup_batcher.infra.s3_stores.base import S3BaseStore


class S3ManifestStore(S3BaseStore):
    """S3 store for the committed copy of day manifests."""
    
    def manifest_key(self, day_key: str) -> str:
        """Get key of a day manifest."""
        return self.paths.manifest_key(day_key)
    
    def read_manifest(self, day_key: str) -> tuple[Optional[DayManifest], Optional[str]]:
        """
        Read the committed manifest of a day.
        
        Returns:
            Tuple of (manifest, etag), or (None, None) if nothing was committed yet
            
        Raises:
            ManifestError: If the stored document is not a valid manifest
        """
        key = self.manifest_key(day_key)
        try:
            body, etag = self.s3.get_object_with_etag(key)
        except ClientError as e:
            if self.s3.is_not_found_error(e):
                return None, None
            raise
        
        try:
            return DayManifest.from_json(body), etag
        except ValidationError as e:
            raise ManifestError(f"Corrupt manifest at {key}: {e}") from e
    
    def write_manifest(
        self, day_key: str, manifest: DayManifest, if_match_etag: Optional[str]
    ) -> str:
        """
        Write manifest with CAS.
        
        Without an ETag the write only succeeds if no manifest exists yet.
        
        Raises:
            PreconditionFailedError: If the manifest changed since it was read
        """
        key = self.manifest_key(day_key)
        return self.s3.put_object(
            key,
            manifest.to_json().encode(),
            content_type="application/json",
            if_match=if_match_etag,
            if_none_match=if_match_etag is None,
        )
