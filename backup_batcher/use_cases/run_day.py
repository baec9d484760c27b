"""Day-run orchestrator."""
import threading
import time
from enum import Enum
from functools import partial
from typing import Optional

from backup_batcher.domain.entities.app_config import AppConfig
from backup_batcher.domain.entities.file_record import Archive, Batch, FileRecord
from backup_batcher.domain.entities.job_config import BackupJobConfig
from backup_batcher.domain.entities.manifest import ManifestEntry
from backup_batcher.domain.entities.run import CommitToken, RunResult, RunStatus, RunSummary
from backup_batcher.domain.services.batching_service import batch_count, make_batches
from backup_batcher.domain.services.pipeline_service import (
    default_day_key,
    generate_run_id,
    lock_key,
)
from backup_batcher.infra.common import (
    ArchiveError,
    BackupError,
    BackupPathBuilder,
    ManifestConflict,
    ManifestError,
    ManifestUnavailableError,
    get_logger,
)
from backup_batcher.infra.local_staging import LocalManifestStaging
from backup_batcher.infra.locks import DynamoDBLock
from backup_batcher.infra.s3_storage import S3Storage
from backup_batcher.infra.s3_stores import S3ArchiveStore, S3ManifestStore
from backup_batcher.use_cases.steps.archive_batch import Archiver
from backup_batcher.use_cases.steps.enumerate_files import FileEnumerator
from backup_batcher.use_cases.steps.manifest import ManifestStore
from backup_batcher.use_cases.steps.upload_archive import OrderedUploadQueue, UploadCoordinator

logger = get_logger(__name__)


class RunState(str, Enum):
    """States of a day-run."""
    IDLE = "idle"
    ENUMERATING = "enumerating"
    BATCHING_NEXT = "batching_next"
    ARCHIVING = "archiving"
    UPLOADING = "uploading"
    MANIFEST_COMMITTING = "manifest_committing"
    DAY_COMPLETE = "day_complete"
    ABORTED = "aborted"


_TRANSITIONS: dict[RunState, set[RunState]] = {
    RunState.IDLE: {RunState.ENUMERATING},
    RunState.ENUMERATING: {RunState.BATCHING_NEXT},
    RunState.BATCHING_NEXT: {
        RunState.ARCHIVING,
        RunState.MANIFEST_COMMITTING,
        RunState.DAY_COMPLETE,
        RunState.IDLE,
    },
    RunState.ARCHIVING: {RunState.UPLOADING},
    # with more than one upload in flight, the next batch starts before the commit
    RunState.UPLOADING: {RunState.MANIFEST_COMMITTING, RunState.BATCHING_NEXT},
    RunState.MANIFEST_COMMITTING: {
        RunState.BATCHING_NEXT,
        RunState.DAY_COMPLETE,
        RunState.IDLE,
    },
    RunState.DAY_COMPLETE: {RunState.IDLE},
    RunState.ABORTED: {RunState.IDLE},
}


class BackupOrchestrator:
    """
    Drives Enumerate -> Batch -> Archive -> Upload -> Commit for one day.

    Batches already in the day manifest are verified against the tree and
    skipped, so an interrupted day-run resumes at its lowest uncommitted
    batch. Cancellation is honoured between batches only.
    """

    def __init__(
        self,
        job: BackupJobConfig,
        manifest_store: ManifestStore,
        uploader: UploadCoordinator,
        paths: BackupPathBuilder | None = None,
        archiver: Archiver | None = None,
        lock_manager: DynamoDBLock | None = None,
        cancel_event: threading.Event | None = None,
    ):
        """
        Initialize orchestrator.

        Args:
            job: Backup job configuration
            manifest_store: Day manifest store
            uploader: Archive upload coordinator
            paths: Key builder (defaults to the job's key prefix)
            archiver: Archiver (defaults to the job's compress level)
            lock_manager: Optional per-day run lock
            cancel_event: Set to stop the run at the next batch boundary
        """
        self.job = job
        self.manifest_store = manifest_store
        self.uploader = uploader
        self.paths = paths or BackupPathBuilder(job.key_prefix)
        self.archiver = archiver or Archiver(compress_level=job.compress_level)
        self.lock_manager = lock_manager
        self.cancel_event = cancel_event or threading.Event()
        self.state = RunState.IDLE
        self.state_history: list[RunState] = [RunState.IDLE]

    def cancel(self) -> None:
        """Request cancellation at the next batch boundary."""
        self.cancel_event.set()

    def _transition(self, new_state: RunState) -> None:
        if new_state == self.state:
            return
        if new_state != RunState.ABORTED and new_state not in _TRANSITIONS[self.state]:
            raise RuntimeError(f"Invalid transition {self.state.value} -> {new_state.value}")
        logger.debug("State %s -> %s", self.state.value, new_state.value)
        self.state = new_state
        self.state_history.append(new_state)

    def run_day(
        self,
        root_path: Optional[str] = None,
        day_key: Optional[str] = None,
        run_id: Optional[str] = None,
    ) -> RunResult:
        """
        Back up a directory tree for one day.

        Args:
            root_path: Directory to back up (defaults to the job's root)
            day_key: Day key (defaults to `<root name>-<YYYYMMDD>`)
            run_id: Optional run ID (generated if None)

        Returns:
            RunResult with status success, partial, failed or skipped

        Raises:
            ManifestConflict: If the tree no longer matches a committed batch
            ManifestUnavailableError: If the manifest can neither be read nor staged
        """
        root_path = root_path or self.job.root_path
        day_key = day_key or default_day_key(root_path)
        run_id = run_id or generate_run_id()

        if self.lock_manager is None:
            return self._run(root_path, day_key, run_id)

        with self.lock_manager.hold(lock_key(self.job.job_id, day_key), run_id) as acquired:
            if not acquired:
                logger.warning("Day-run %s already in progress, skipping execution", day_key)
                return RunResult(
                    job_id=self.job.job_id, run_id=run_id, day_key=day_key, status=RunStatus.SKIPPED
                )
            return self._run(root_path, day_key, run_id)

    def _run(self, root_path: str, day_key: str, run_id: str) -> RunResult:
        self.state = RunState.IDLE
        self.state_history = [RunState.IDLE]
        summary = RunSummary()
        result = partial(RunResult, job_id=self.job.job_id, run_id=run_id, day_key=day_key, summary=summary)

        logger.info("Starting day-run %s: root=%s run=%s", day_key, root_path, run_id)
        run_start = time.time()

        try:
            self._transition(RunState.ENUMERATING)
            records = self._enumerate(root_path, summary)
            manifest = self.manifest_store.load(day_key)
            if len(manifest.batches) > summary.batch_count:
                raise ManifestConflict(
                    f"Manifest for {day_key} has {len(manifest.batches)} committed batches "
                    f"but the tree now yields {summary.batch_count}"
                )

            self._transition(RunState.BATCHING_NEXT)
            self._process_batches(records, day_key, summary)

            if summary.cancelled:
                self._transition(RunState.IDLE)
                logger.warning("Day-run %s cancelled after %d uploads", day_key, summary.uploaded_batches)
                return result(status=RunStatus.PARTIAL)

            self._check_complete(day_key, summary)
            self._transition(RunState.DAY_COMPLETE)
        except (ManifestConflict, ManifestUnavailableError) as e:
            self._transition(RunState.ABORTED)
            logger.error("Day-run %s aborted: %s", day_key, e)
            raise
        except BackupError as e:
            self._transition(RunState.ABORTED)
            logger.error("Day-run %s aborted: %s", day_key, e)
            return result(status=RunStatus.FAILED, error=f"{type(e).__name__}: {e}")

        logger.info(
            "Day-run %s complete: %d batches, %d files, %d bytes "
            "(%d uploaded, %d already committed, %d files skipped) in %.2f seconds",
            day_key, summary.batch_count, summary.file_count, summary.total_bytes,
            summary.uploaded_batches, summary.skipped_batches, len(summary.skipped_files),
            time.time() - run_start,
        )
        self._transition(RunState.IDLE)
        status = RunStatus.PARTIAL if summary.skipped_files else RunStatus.SUCCESS
        return result(status=status)

    def _enumerate(self, root_path: str, summary: RunSummary) -> list[FileRecord]:
        enumerator = FileEnumerator(root_path, follow_symlinks=self.job.follow_symlinks)
        records = list(enumerator.enumerate())
        summary.skipped_files = list(enumerator.skipped)
        summary.file_count = len(records)
        summary.total_bytes = sum(record.size for record in records)
        summary.batch_count = batch_count(len(records), self.job.batch_size)
        logger.info(
            "Enumerated %d files (%d bytes) into %d batches, %d files skipped",
            summary.file_count, summary.total_bytes, summary.batch_count, len(summary.skipped_files),
        )
        return records

    def _process_batches(self, records: list[FileRecord], day_key: str, summary: RunSummary) -> None:
        on_uploaded = partial(self._commit, day_key, summary)
        with OrderedUploadQueue(self.uploader, self.job.max_upload_concurrency, on_uploaded) as queue:
            for batch in make_batches(records, self.job.batch_size):
                self._transition(RunState.BATCHING_NEXT)
                if self.cancel_event.is_set():
                    logger.warning("Cancellation requested before batch %d", batch.index)
                    summary.cancelled = True
                    break

                entry = self.manifest_store.get_entry(day_key, batch.index)
                if entry is not None:
                    self.manifest_store.verify_committed(entry, batch)
                    summary.skipped_batches += 1
                    logger.info("Batch %d already committed, skipping", batch.index)
                    continue

                self._transition(RunState.ARCHIVING)
                archive = self._build_archive(batch)
                self._transition(RunState.UPLOADING)
                queue.submit(self.paths.archive_key(day_key, batch.index), archive)

            queue.drain()

    def _build_archive(self, batch: Batch) -> Archive:
        attempts = 0
        while True:
            try:
                return self.archiver.build_archive(batch)
            except ArchiveError as e:
                attempts += 1
                if attempts >= self.job.max_archive_attempts:
                    raise
                logger.warning(
                    "Batch %d changed while packing (%s), re-enumerating (attempt %d/%d)",
                    batch.index, e, attempts, self.job.max_archive_attempts,
                )
                batch = self.archiver.refresh_batch(batch)

    def _commit(self, day_key: str, summary: RunSummary, archive: Archive, token: CommitToken) -> None:
        self._transition(RunState.MANIFEST_COMMITTING)
        entry = ManifestEntry(
            index=archive.batch_index,
            archive_checksum=token.checksum,
            files=archive.files,
        )
        self.manifest_store.append_entry(day_key, entry)
        if not token.already_present:
            summary.uploaded_batches += 1

    def _check_complete(self, day_key: str, summary: RunSummary) -> None:
        manifest = self.manifest_store.manifest(day_key)
        if len(manifest.batches) != summary.batch_count or manifest.file_count != summary.file_count:
            raise ManifestError(
                f"Manifest for {day_key} covers {len(manifest.batches)} batches / "
                f"{manifest.file_count} files, expected {summary.batch_count} / {summary.file_count}"
            )


def _initialize_infrastructure(
    app_config: AppConfig, job: BackupJobConfig
) -> tuple[S3ArchiveStore, ManifestStore, DynamoDBLock | None]:
    """Initialize infrastructure adapters."""
    s3_storage = S3Storage(bucket=app_config.s3_bucket, region=app_config.aws_region)
    paths = BackupPathBuilder(job.key_prefix)
    archive_store = S3ArchiveStore(s3_storage, paths)
    manifest_store = ManifestStore(
        remote=S3ManifestStore(s3_storage, paths),
        staging=LocalManifestStaging(app_config.staging_dir),
        retry_policy=job.retry,
    )
    lock_manager = None
    if app_config.dynamodb_lock_table:
        lock_manager = DynamoDBLock(
            table_name=app_config.dynamodb_lock_table,
            region=app_config.aws_region,
        )
    return archive_store, manifest_store, lock_manager


def run_day(
    job: BackupJobConfig,
    app_config: AppConfig,
    root_path: Optional[str] = None,
    day_key: Optional[str] = None,
    run_id: Optional[str] = None,
    cancel_event: threading.Event | None = None,
) -> RunResult:
    """
    Run one day of a backup job.

    Args:
        job: Backup job configuration
        app_config: Application configuration
        root_path: Directory to back up (defaults to the job's root)
        day_key: Day key (defaults to `<root name>-<YYYYMMDD>`)
        run_id: Optional run ID (generated if None)
        cancel_event: Set to stop the run at the next batch boundary

    Returns:
        RunResult
    """
    archive_store, manifest_store, lock_manager = _initialize_infrastructure(app_config, job)
    uploader = UploadCoordinator(
        archive_store,
        retry_policy=job.retry,
        verify_read_back=job.verify_read_back,
    )
    orchestrator = BackupOrchestrator(
        job,
        manifest_store,
        uploader,
        paths=archive_store.paths,
        lock_manager=lock_manager,
        cancel_event=cancel_event,
    )
    return orchestrator.run_day(root_path=root_path, day_key=day_key, run_id=run_id)
