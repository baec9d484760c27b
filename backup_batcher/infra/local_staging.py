"""Local manifest staging."""
import os
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from backup_batcher.domain.entities.manifest import DayManifest
from backup_batcher.infra.common.errors import ManifestError
from backup_batcher.infra.common.paths import BackupPathBuilder


class LocalManifestStaging:
    """
    Durable local copy of day manifests.

    Writes go to a temporary file that is flushed and fsynced before being
    renamed over the staged manifest, so a crash leaves either the old or the
    new document, never a torn one.
    """

    def __init__(self, staging_dir: str | Path):
        self.staging_dir = Path(staging_dir)

    def manifest_path(self, day_key: str) -> Path:
        return self.staging_dir / BackupPathBuilder.staging_manifest_path(day_key)

    def read(self, day_key: str) -> Optional[DayManifest]:
        """
        Read the staged manifest.

        Returns:
            Staged manifest, or None if nothing was staged

        Raises:
            ManifestError: If the staged document is corrupt
            OSError: If the staging directory cannot be read
        """
        path = self.manifest_path(day_key)
        try:
            body = path.read_bytes()
        except FileNotFoundError:
            return None
        try:
            return DayManifest.from_json(body)
        except ValidationError as e:
            raise ManifestError(f"Corrupt staged manifest at {path}: {e}") from e

    def write(self, day_key: str, manifest: DayManifest) -> Path:
        """
        Atomically and durably write the staged manifest.

        Raises:
            OSError: If the staging directory is not writable
        """
        path = self.manifest_path(day_key)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_suffix(".tmp")
        try:
            with open(tmp, "w", encoding="utf-8") as fh:
                fh.write(manifest.to_json())
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp, path)
        except OSError:
            tmp.unlink(missing_ok=True)
            raise
        _fsync_dir(path.parent)
        return path


def _fsync_dir(directory: Path) -> None:
    # directory fsync persists the rename; not supported on Windows
    if os.name == "nt":
        return
    fd = os.open(directory, os.O_RDONLY)
    try:
        os.fsync(fd)
    finally:
        os.close(fd)
