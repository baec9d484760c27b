"""Archive batch step."""
import io
import zipfile
import zlib
from pathlib import Path, PurePosixPath
from typing import Iterable

from backup_batcher.domain.entities.file_record import Archive, Batch, FileRecord
from backup_batcher.domain.entities.manifest import ManifestFile
from backup_batcher.infra.common import (
    ArchiveError,
    compute_bytes_hash,
    compute_file_hash,
    get_logger,
)

logger = get_logger(__name__)

# Fixed member timestamp and mode: the blob depends only on file contents.
ZIP_EPOCH = (1980, 1, 1, 0, 0, 0)
MEMBER_MODE = 0o100644


def member_name(position: int, relative_path: str) -> str:
    """Internal zip member name for the file at `position` within a batch."""
    return f"{position:04d}_{PurePosixPath(relative_path).name}"


class Archiver:
    """
    Packs a batch into a single deflated zip blob.

    Member timestamps, modes and the compress level are fixed, so on one host
    the same batch always gives the same blob. DEFLATE output is only stable
    for a given zlib build though: another host may produce different bytes
    for the same files. Uploads compare member contents with `same_members`
    when the blob checksum differs.
    """

    def __init__(self, compress_level: int = 6):
        self.compress_level = compress_level

    def _read_verified(self, record: FileRecord) -> bytes:
        try:
            content = Path(record.path).read_bytes()
        except FileNotFoundError as e:
            raise ArchiveError(f"{record.relative_path} vanished before packing") from e
        except OSError as e:
            raise ArchiveError(f"{record.relative_path} could not be read: {e}") from e

        if len(content) != record.size:
            raise ArchiveError(
                f"{record.relative_path} changed before packing "
                f"(size {record.size} -> {len(content)})"
            )
        if compute_bytes_hash(content) != record.content_hash:
            raise ArchiveError(f"{record.relative_path} changed before packing (hash mismatch)")
        return content

    def _zip_info(self, name: str, relative_path: str) -> zipfile.ZipInfo:
        info = zipfile.ZipInfo(name, date_time=ZIP_EPOCH)
        info.compress_type = zipfile.ZIP_DEFLATED
        info.external_attr = MEMBER_MODE << 16
        info.comment = relative_path.encode("utf-8")
        return info

    def build_archive(self, batch: Batch) -> Archive:
        """
        Pack a batch into an Archive.

        Each file is re-read and checked against its FileRecord so stale or
        partial data is never packed.

        Args:
            batch: Batch to pack

        Returns:
            Archive with checksum computed over the compressed blob

        Raises:
            ArchiveError: If a file vanished or changed since enumeration
        """
        buffer = io.BytesIO()
        files: list[ManifestFile] = []

        with zipfile.ZipFile(
            buffer, "w", compression=zipfile.ZIP_DEFLATED, compresslevel=self.compress_level
        ) as zf:
            for position, record in enumerate(batch.files):
                content = self._read_verified(record)
                name = member_name(position, record.relative_path)
                zf.writestr(
                    self._zip_info(name, record.relative_path),
                    content,
                    compresslevel=self.compress_level,
                )
                files.append(ManifestFile(
                    path=record.relative_path,
                    size=record.size,
                    hash=record.content_hash,
                    name=name,
                ))

        blob = buffer.getvalue()
        archive = Archive(
            batch_index=batch.index,
            blob=blob,
            checksum=compute_bytes_hash(blob),
            size=len(blob),
            files=tuple(files),
        )
        logger.info(
            "Packed batch %d: %d files, %d bytes -> %d bytes (sha256=%s)",
            batch.index, len(files), batch.total_bytes, archive.size, archive.checksum[:8],
        )
        return archive

    def refresh_batch(self, batch: Batch) -> Batch:
        """
        Re-enumerate the files of a batch after an ArchiveError.

        Membership is kept (same paths, same index) so the day's partition
        does not shift; only size, mtime and hash are re-read.

        Raises:
            ArchiveError: If a file of the batch no longer exists or is unreadable
        """
        refreshed = []
        for record in batch.files:
            path = Path(record.path)
            try:
                st = path.stat()
                content_hash = compute_file_hash(path)
            except OSError as e:
                raise ArchiveError(
                    f"{record.relative_path} is no longer readable, batch {batch.index} "
                    f"cannot be rebuilt: {e}"
                ) from e
            refreshed.append(FileRecord(
                path=record.path,
                relative_path=record.relative_path,
                size=st.st_size,
                mtime=st.st_mtime,
                content_hash=content_hash,
            ))
        return Batch(index=batch.index, files=tuple(refreshed))


def extract_members(blob: bytes, names: Iterable[str]) -> dict[str, bytes]:
    """
    Read selected members from an archive blob.

    Returns:
        Mapping of member name to content

    Raises:
        ArchiveError: If the blob is not a valid archive or a member is missing
    """
    wanted = list(names)
    try:
        with zipfile.ZipFile(io.BytesIO(blob)) as zf:
            available = set(zf.namelist())
            missing = [name for name in wanted if name not in available]
            if missing:
                raise ArchiveError(f"Archive is missing members: {', '.join(missing)}")
            return {name: zf.read(name) for name in wanted}
    except zipfile.BadZipFile as e:
        raise ArchiveError(f"Corrupt archive: {e}") from e


def same_members(stored: bytes, blob: bytes) -> bool:
    """
    Whether two archive blobs hold the same members.

    Members must match in order, name, path comment and uncompressed content.
    The compressed bytes may differ, as they do between zlib builds.
    A blob that is not a valid archive matches nothing.
    """
    try:
        with zipfile.ZipFile(io.BytesIO(stored)) as left, zipfile.ZipFile(io.BytesIO(blob)) as right:
            left_infos, right_infos = left.infolist(), right.infolist()
            if [(i.filename, i.comment) for i in left_infos] != [(i.filename, i.comment) for i in right_infos]:
                return False
            return all(left.read(info) == right.read(info.filename) for info in left_infos)
    except (zipfile.BadZipFile, zlib.error):
        return False
