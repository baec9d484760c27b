"""File, batch and archive entities."""
from pydantic import BaseModel, ConfigDict

from backup_batcher.domain.entities.manifest import ManifestFile


class FileRecord(BaseModel):
    """A regular file found under the backup root."""
    model_config = ConfigDict(frozen=True)

    path: str
    relative_path: str
    size: int
    mtime: float
    content_hash: str


class Batch(BaseModel):
    """Contiguous group of files archived and uploaded as one unit."""
    model_config = ConfigDict(frozen=True)

    index: int
    files: tuple[FileRecord, ...]

    @property
    def total_bytes(self) -> int:
        return sum(record.size for record in self.files)


class Archive(BaseModel):
    """Packed batch ready for upload."""
    model_config = ConfigDict(frozen=True)

    batch_index: int
    blob: bytes
    checksum: str
    size: int
    files: tuple[ManifestFile, ...]
