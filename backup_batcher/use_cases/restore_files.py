"""Selective restore of backed-up files."""
import os
import time
from pathlib import Path
from typing import Callable, Iterable, Optional

from pydantic import BaseModel, Field

from backup_batcher.domain.entities.app_config import AppConfig
from backup_batcher.domain.entities.job_config import BackupJobConfig, RetryPolicy
from backup_batcher.domain.entities.manifest import DayManifest, ManifestEntry, ManifestFile
from backup_batcher.infra.common import (
    ArchiveError,
    BackupIOError,
    BackupPathBuilder,
    ManifestError,
    call_with_retry,
    compute_bytes_hash,
    get_logger,
)
from backup_batcher.infra.s3_storage import S3Storage
from backup_batcher.infra.s3_stores import S3ArchiveStore, S3ManifestStore
from backup_batcher.use_cases.steps.archive_batch import extract_members

logger = get_logger(__name__)


class RestoreReport(BaseModel):
    """Outcome of a restore."""
    day_key: str
    target_dir: str
    archives_read: list[int] = Field(default_factory=list)
    restored_files: list[str] = Field(default_factory=list)
    total_bytes: int = 0


def _select(
    manifest: DayManifest, paths: Optional[Iterable[str]]
) -> list[tuple[ManifestEntry, list[ManifestFile]]]:
    if paths is None:
        return [(entry, list(entry.files)) for entry in manifest.batches if entry.files]

    wanted = set(paths)
    selected = []
    for entry in manifest.batches:
        files = [f for f in entry.files if f.path in wanted]
        if files:
            selected.append((entry, files))
            wanted.difference_update(f.path for f in files)

    if wanted:
        raise ManifestError(
            f"Not in manifest {manifest.date}: {', '.join(sorted(wanted))}"
        )
    return selected


def _target_path(target_root: Path, relative_path: str) -> Path:
    destination = (target_root / relative_path).resolve()
    if destination != target_root and target_root not in destination.parents:
        raise ArchiveError(f"Refusing to restore {relative_path} outside {target_root}")
    return destination


def _write_file(destination: Path, content: bytes) -> None:
    try:
        destination.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = destination.with_name(f".{destination.name}.restore")
        tmp_path.write_bytes(content)
        os.replace(tmp_path, destination)
    except OSError as e:
        raise BackupIOError(f"Cannot write {destination}: {e}") from e


def restore_files(
    manifest_store: S3ManifestStore,
    archive_store: S3ArchiveStore,
    day_key: str,
    target_dir: str,
    paths: Optional[Iterable[str]] = None,
    retry_policy: RetryPolicy | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> RestoreReport:
    """
    Restore files of a committed day-run.

    Only the archives holding the requested files are downloaded. Each
    archive is checked against its manifest checksum and each extracted file
    against its manifest hash before it is written.

    Args:
        manifest_store: Remote manifest store
        archive_store: Remote archive store
        day_key: Day key to restore from
        target_dir: Directory the files are restored under
        paths: Relative paths to restore (None restores everything)
        retry_policy: Backoff policy for remote reads
        sleep: Sleep function used between retries

    Returns:
        RestoreReport

    Raises:
        ManifestError: If the day has no manifest or a path is not in it
        ArchiveError: If an archive or file fails verification
        BackupIOError: If a file cannot be written
    """
    retry_policy = retry_policy or RetryPolicy()
    manifest, _ = call_with_retry(
        lambda: manifest_store.read_manifest(day_key),
        retry_policy,
        f"read manifest {day_key}",
        sleep=sleep,
    )
    if manifest is None:
        raise ManifestError(f"No manifest committed for {day_key}")

    selected = _select(manifest, paths)
    target_root = Path(target_dir).resolve()
    report = RestoreReport(day_key=day_key, target_dir=str(target_root))

    for entry, files in selected:
        key = archive_store.archive_key(day_key, entry.index)
        blob = call_with_retry(
            lambda: archive_store.read_archive(key), retry_policy, f"read {key}", sleep=sleep
        )
        if compute_bytes_hash(blob) != entry.archive_checksum:
            raise ArchiveError(f"{key} does not match its manifest checksum")

        members = extract_members(blob, [f.name for f in files])
        for file in files:
            content = members[file.name]
            if len(content) != file.size or compute_bytes_hash(content) != file.hash:
                raise ArchiveError(f"{file.path} in {key} does not match its manifest hash")
            _write_file(_target_path(target_root, file.path), content)
            report.restored_files.append(file.path)
            report.total_bytes += file.size

        report.archives_read.append(entry.index)
        logger.info("Restored %d files from %s", len(files), key)

    logger.info(
        "Restore of %s complete: %d files (%d bytes) from %d archives into %s",
        day_key, len(report.restored_files), report.total_bytes,
        len(report.archives_read), target_root,
    )
    return report


def restore_day(
    job: BackupJobConfig,
    app_config: AppConfig,
    day_key: str,
    target_dir: str,
    paths: Optional[Iterable[str]] = None,
) -> RestoreReport:
    """Restore files of a job's day-run from the configured bucket."""
    s3_storage = S3Storage(bucket=app_config.s3_bucket, region=app_config.aws_region)
    path_builder = BackupPathBuilder(job.key_prefix)
    return restore_files(
        S3ManifestStore(s3_storage, path_builder),
        S3ArchiveStore(s3_storage, path_builder),
        day_key,
        target_dir,
        paths=paths,
        retry_policy=job.retry,
    )
