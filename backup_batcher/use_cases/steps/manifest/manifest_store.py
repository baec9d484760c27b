"""Day manifest store: local staging plus the committed remote copy."""
import threading
import time
from itertools import zip_longest
from typing import Callable, Optional

from backup_batcher.domain.entities.file_record import Batch
from backup_batcher.domain.entities.job_config import RetryPolicy
from backup_batcher.domain.entities.manifest import DayManifest, ManifestEntry
from backup_batcher.infra.common import (
    ManifestConflict,
    ManifestError,
    ManifestOrderError,
    ManifestUnavailableError,
    PreconditionFailedError,
    UploadError,
    call_with_retry,
    get_logger,
)
from backup_batcher.infra.local_staging import LocalManifestStaging
from backup_batcher.infra.s3_stores.manifest_store import S3ManifestStore

logger = get_logger(__name__)

DEFAULT_MAX_CAS_ATTEMPTS = 3


class ManifestStore:
    """
    Append-only day manifests.
    
    Every append is staged durably on local disk, then committed to the
    remote store with an ETag-conditional write, so two runs of the same day
    can never both extend the manifest from the same state. The remote copy
    is authoritative; the staged copy is only read when the remote cannot be
    reached.
    """
    
    def __init__(
        self,
        remote: S3ManifestStore,
        staging: LocalManifestStaging,
        retry_policy: RetryPolicy | None = None,
        max_cas_attempts: int = DEFAULT_MAX_CAS_ATTEMPTS,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize manifest store.
        
        Args:
            remote: Remote manifest store
            staging: Local staging area
            retry_policy: Backoff policy for remote calls
            max_cas_attempts: Appends retried after a concurrent modification
            sleep: Sleep function used between retries
        """
        self.remote = remote
        self.staging = staging
        self.retry_policy = retry_policy or RetryPolicy()
        self.max_cas_attempts = max_cas_attempts
        self.sleep = sleep
        self._state: dict[str, tuple[DayManifest, Optional[str]]] = {}
        self._lock = threading.Lock()
    
    def _read_remote(self, day_key: str) -> tuple[DayManifest, Optional[str]]:
        manifest, etag = call_with_retry(
            lambda: self.remote.read_manifest(day_key),
            self.retry_policy,
            f"read manifest {day_key}",
            sleep=self.sleep,
        )
        return manifest or DayManifest(date=day_key), etag
    
    def _stage(self, day_key: str, manifest: DayManifest) -> None:
        try:
            self.staging.write(day_key, manifest)
        except OSError as e:
            raise ManifestUnavailableError(f"Cannot stage manifest for {day_key}: {e}") from e
    
    def _current(self, day_key: str) -> tuple[DayManifest, Optional[str]]:
        with self._lock:
            state = self._state.get(day_key)
        if state is None:
            self.load(day_key)
            with self._lock:
                state = self._state[day_key]
        return state
    
    def load(self, day_key: str) -> DayManifest:
        """
        Reconstruct the manifest of a day, e.g. after an interrupted run.
        
        Returns:
            The remote manifest (empty if none was committed), or the staged
            copy if the remote store is unreachable
            
        Raises:
            ManifestUnavailableError: If neither copy can be read or staged
            ManifestError: If the remote document is corrupt
        """
        try:
            manifest, etag = self._read_remote(day_key)
        except UploadError as e:
            logger.warning("Remote manifest for %s unreachable (%s), using local staging", day_key, e)
            try:
                staged = self.staging.read(day_key)
            except (OSError, ManifestError) as se:
                raise ManifestUnavailableError(
                    f"Manifest for {day_key} unavailable: remote unreachable and staging unreadable ({se})"
                ) from se
            manifest = staged or DayManifest(date=day_key)
            etag = None
        else:
            self._stage(day_key, manifest)
        
        with self._lock:
            self._state[day_key] = (manifest, etag)
        logger.info("Loaded manifest for %s: %d committed batches", day_key, len(manifest.batches))
        return manifest
    
    def manifest(self, day_key: str) -> DayManifest:
        """Current in-memory manifest of a day (loaded on first use)."""
        return self._current(day_key)[0]
    
    def get_entry(self, day_key: str, batch_index: int) -> Optional[ManifestEntry]:
        """Committed entry of a batch, or None."""
        return self.manifest(day_key).get_entry(batch_index)
    
    def entry_exists(self, day_key: str, batch_index: int) -> bool:
        """Whether a batch index is already committed for the day."""
        return self.get_entry(day_key, batch_index) is not None
    
    @staticmethod
    def verify_committed(entry: ManifestEntry, batch: Batch) -> None:
        """
        Check a re-derived batch against its committed entry.
        
        Raises:
            ManifestConflict: If paths, sizes or hashes differ, i.e. the tree
                changed under an already committed batch index
        """
        committed = [(f.path, f.size, f.hash) for f in entry.files]
        current = [(r.relative_path, r.size, r.content_hash) for r in batch.files]
        if committed == current:
            return
        changed = sorted({
            (old or new)[0] for old, new in zip_longest(committed, current) if old != new
        })
        raise ManifestConflict(
            f"Batch {batch.index} was committed with different contents; "
            f"changed files: {', '.join(changed[:10])}"
        )
    
    def _reconcile(self, manifest: DayManifest, entry: ManifestEntry) -> bool:
        """Return True if `entry` is already committed; raise on conflicts."""
        existing = manifest.get_entry(entry.index)
        if existing is None:
            if entry.index != manifest.next_index:
                raise ManifestOrderError(
                    f"Cannot append batch {entry.index} to {manifest.date}: "
                    f"next expected batch is {manifest.next_index}"
                )
            return False
        if existing.archive_checksum != entry.archive_checksum:
            raise ManifestConflict(
                f"Batch {entry.index} of {manifest.date} already committed with checksum "
                f"{existing.archive_checksum}, refusing {entry.archive_checksum}"
            )
        return True
    
    def append_entry(self, day_key: str, entry: ManifestEntry) -> DayManifest:
        """
        Append a committed batch to the day manifest.
        
        Idempotent for an identical entry. The in-memory manifest only changes
        once the remote write has succeeded.
        
        Returns:
            Manifest after the append
            
        Raises:
            ManifestConflict: If the index exists with a different checksum
            ManifestOrderError: If the index is not the next one expected
            ManifestUnavailableError: If the manifest cannot be staged locally
            UploadError: If the remote write failed
        """
        manifest, etag = self._current(day_key)
        
        for attempt in range(1, self.max_cas_attempts + 1):
            if self._reconcile(manifest, entry):
                logger.info("Batch %d already in manifest for %s", entry.index, day_key)
                return manifest
            
            updated = manifest.with_entry(entry)
            self._stage(day_key, updated)
            try:
                new_etag = call_with_retry(
                    lambda: self.remote.write_manifest(day_key, updated, etag),
                    self.retry_policy,
                    f"write manifest {day_key}",
                    sleep=self.sleep,
                )
            except PreconditionFailedError:
                logger.warning(
                    "Manifest for %s changed concurrently (attempt %d/%d), reloading",
                    day_key, attempt, self.max_cas_attempts,
                )
                manifest, etag = self._read_remote(day_key)
                with self._lock:
                    self._state[day_key] = (manifest, etag)
                continue
            
            with self._lock:
                self._state[day_key] = (updated, new_etag)
            logger.info(
                "Committed batch %d to manifest %s (%d files)", entry.index, day_key, len(entry.files)
            )
            return updated
        
        raise ManifestError(
            f"Could not append batch {entry.index} to {day_key}: "
            f"manifest kept changing after {self.max_cas_attempts} attempts"
        )
