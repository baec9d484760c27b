"""Enumerate files step."""
import os
import stat
from pathlib import Path
from typing import Iterator

from backup_batcher.domain.entities.file_record import FileRecord
from backup_batcher.domain.entities.run import SkippedFile
from backup_batcher.infra.common import BackupIOError, compute_file_hash, get_logger

logger = get_logger(__name__)


def sort_key(relative_path: str) -> str:
    """Ordering of files within a day-run: lexicographic posix relative path."""
    return relative_path


class FileEnumerator:
    """
    Walks a backup root and yields FileRecords in a stable order.

    Paths are collected and sorted up front; stat and hashing happen lazily
    as records are consumed. Symlinks are skipped unless `follow_symlinks`
    is set, in which case linked files and directories are followed. Directories
    are walked in sorted name order, so when one directory is reachable through
    several paths it is always walked under the first of them in that order
    and skipped under the rest, whatever order the filesystem lists entries in.
    Files that cannot be read are skipped and listed in `skipped`.
    """

    def __init__(self, root_path: str | Path, follow_symlinks: bool = False):
        self.root = Path(root_path)
        self.follow_symlinks = follow_symlinks
        self.skipped: list[SkippedFile] = []

    def _check_root(self) -> Path:
        root = self.root.resolve()
        if not root.exists():
            raise BackupIOError(f"Backup root does not exist: {self.root}")
        if not root.is_dir():
            raise BackupIOError(f"Backup root is not a directory: {self.root}")
        if not os.access(root, os.R_OK | os.X_OK):
            raise BackupIOError(f"Backup root is not readable: {self.root}")
        return root

    def _skip(self, path: str, reason: str) -> None:
        logger.warning("Skipping %s: %s", path, reason)
        self.skipped.append(SkippedFile(path=path, reason=reason))

    def _on_walk_error(self, error: OSError) -> None:
        self._skip(error.filename or str(error), f"unreadable directory: {error.strerror or error}")

    def _collect_paths(self, root: Path) -> list[tuple[str, Path]]:
        found: list[tuple[str, Path]] = []
        visited_dirs: set[str] = set()

        for dirpath, dirnames, filenames in os.walk(
            root, onerror=self._on_walk_error, followlinks=self.follow_symlinks
        ):
            current = Path(dirpath)
            dirnames.sort()
            if self.follow_symlinks:
                real = os.path.realpath(dirpath)
                if real in visited_dirs:
                    dirnames[:] = []
                    continue
                visited_dirs.add(real)
            else:
                dirnames[:] = [d for d in dirnames if not (current / d).is_symlink()]

            for name in filenames:
                path = current / name
                if path.is_symlink() and not self.follow_symlinks:
                    continue
                relative = path.relative_to(root).as_posix()
                found.append((relative, path))

        found.sort(key=lambda item: sort_key(item[0]))
        return found

    def _make_record(self, relative: str, path: Path) -> FileRecord | None:
        try:
            st = path.stat()
            if not stat.S_ISREG(st.st_mode):
                return None
            content_hash = compute_file_hash(path)
        except OSError as e:
            self._skip(relative, e.strerror or str(e))
            return None

        return FileRecord(
            path=str(path),
            relative_path=relative,
            size=st.st_size,
            mtime=st.st_mtime,
            content_hash=content_hash,
        )

    def enumerate(self) -> Iterator[FileRecord]:
        """
        Yield a FileRecord for every regular file under the root.

        Raises:
            BackupIOError: If the root is missing, not a directory or unreadable
        """
        root = self._check_root()
        self.skipped = []
        paths = self._collect_paths(root)
        logger.info("Found %d candidate files under %s", len(paths), root)
        return self._records(paths)

    def _records(self, paths: list[tuple[str, Path]]) -> Iterator[FileRecord]:
        for relative, path in paths:
            record = self._make_record(relative, path)
            if record is not None:
                yield record


def enumerate_files(root_path: str | Path, follow_symlinks: bool = False) -> list[FileRecord]:
    """Enumerate every file under a root into a list (convenience for callers and tests)."""
    return list(FileEnumerator(root_path, follow_symlinks).enumerate())
