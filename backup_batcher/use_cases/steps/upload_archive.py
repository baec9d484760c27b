"""Upload archive step."""
import time
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable, Optional

from backup_batcher.domain.entities.file_record import Archive
from backup_batcher.domain.entities.job_config import RetryPolicy
from backup_batcher.domain.entities.run import CommitToken
from backup_batcher.infra.common import (
    TransientUploadError,
    UploadConflict,
    call_with_retry,
    compute_bytes_hash,
    get_logger,
)
from backup_batcher.infra.s3_stores.archive_store import S3ArchiveStore
from backup_batcher.use_cases.steps.archive_batch import same_members

logger = get_logger(__name__)


class UploadCoordinator:
    """
    Idempotent, verified uploads of archive blobs.

    An upload is only reported as committed once the store has confirmed it
    holds the expected bytes (full read-back, or stored checksum and length
    when `verify_read_back` is off).
    """

    def __init__(
        self,
        archive_store: S3ArchiveStore,
        retry_policy: RetryPolicy | None = None,
        verify_read_back: bool = True,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize upload coordinator.

        Args:
            archive_store: Archive store
            retry_policy: Backoff policy for transient failures
            verify_read_back: Download and hash every uploaded blob
            sleep: Sleep function used between retries
        """
        self.archive_store = archive_store
        self.retry_policy = retry_policy or RetryPolicy()
        self.verify_read_back = verify_read_back
        self.sleep = sleep

    def _retry(self, fn, description: str):
        return call_with_retry(fn, self.retry_policy, description, sleep=self.sleep)

    def _reconcile_existing(self, key: str, existing: dict, blob: bytes, checksum: str) -> CommitToken:
        """
        Decide whether an existing object already holds this archive.

        The stored bytes are hashed (they may have been written without
        metadata), then compared member by member, since the same files
        packed by another zlib build give a different blob. The token carries
        the stored blob's checksum and size.

        Raises:
            UploadConflict: If the stored archive holds other files
        """
        stored = self._retry(lambda: self.archive_store.read_archive(key), f"read {key}")
        stored_checksum = compute_bytes_hash(stored)
        if stored_checksum != checksum:
            if not same_members(stored, blob):
                raise UploadConflict(
                    f"{key} already exists with different content "
                    f"(stored sha256={stored_checksum}, new sha256={checksum})"
                )
            logger.info("%s holds the same files packed differently, keeping the stored archive", key)
        else:
            logger.info("%s already holds the expected archive, skipping upload", key)
        return CommitToken(
            key=key, etag=existing["etag"], checksum=stored_checksum, size=len(stored), already_present=True
        )

    def _verify(self, key: str, checksum: str, size: int) -> None:
        if self.verify_read_back:
            body = self.archive_store.read_archive(key)
            if len(body) != size or compute_bytes_hash(body) != checksum:
                raise TransientUploadError(f"Read-back of {key} does not match the uploaded archive")
            return

        stored = self.archive_store.describe(key)
        if stored is None or stored["size"] != size or stored["checksum"] != checksum:
            raise TransientUploadError(f"Store does not confirm {key} ({stored})")

    def upload(self, key: str, blob: bytes, checksum: Optional[str] = None) -> CommitToken:
        """
        Upload a blob under a key.

        Uploading identical content to an existing key is a no-op success, as
        is an existing archive holding the same members packed differently.

        Args:
            key: Object key
            blob: Archive bytes
            checksum: sha256 of `blob` (computed if omitted)

        Returns:
            CommitToken confirming the stored bytes

        Raises:
            UploadConflict: If the key already holds different content
            TransientUploadError: If retries were exhausted
            PermanentUploadError: On a non-retryable store error
        """
        checksum = checksum or compute_bytes_hash(blob)
        size = len(blob)

        existing = self._retry(lambda: self.archive_store.describe(key), f"HEAD {key}")
        if existing is not None:
            if existing["size"] == size and existing["checksum"] == checksum:
                logger.info("%s already holds the expected archive, skipping upload", key)
                return CommitToken(
                    key=key, etag=existing["etag"], checksum=checksum, size=size, already_present=True
                )
            return self._reconcile_existing(key, existing, blob, checksum)

        def attempt() -> str:
            etag = self.archive_store.put_archive(key, blob, checksum)
            self._verify(key, checksum, size)
            return etag

        etag = self._retry(attempt, f"PUT {key}")
        logger.info("Uploaded %s (%d bytes, sha256=%s)", key, size, checksum[:8])
        return CommitToken(key=key, etag=etag, checksum=checksum, size=size)


class OrderedUploadQueue:
    """
    Bounded pool of in-flight uploads with an in-order commit barrier.

    At most `max_in_flight` archives are held at once. Completed uploads are
    handed to `on_uploaded` strictly in batch-index order: the lowest
    outstanding index is always awaited first, whatever finishes earlier.
    On error, uploads already in flight are left to finish on their own and
    are not committed.
    """

    def __init__(
        self,
        coordinator: UploadCoordinator,
        max_in_flight: int,
        on_uploaded: Callable[[Archive, CommitToken], None],
    ):
        if max_in_flight < 1:
            raise ValueError(f"max_in_flight must be >= 1, got {max_in_flight}")
        self.coordinator = coordinator
        self.max_in_flight = max_in_flight
        self.on_uploaded = on_uploaded
        self._executor = ThreadPoolExecutor(max_workers=max_in_flight, thread_name_prefix="upload")
        self._pending: dict[int, tuple[Archive, Future]] = {}
        self._last_index: int | None = None
        self._failed = False

    def __enter__(self) -> "OrderedUploadQueue":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    @property
    def in_flight(self) -> int:
        return len(self._pending)

    def submit(self, key: str, archive: Archive) -> None:
        """
        Start uploading an archive, blocking while the pool is full.

        Raises:
            ValueError: If archives are submitted out of index order
            UploadError, ManifestError: From an earlier upload or its commit
        """
        if self._failed:
            raise RuntimeError("Upload queue is closed after a failure")
        if self._last_index is not None and archive.batch_index <= self._last_index:
            raise ValueError(
                f"Archive {archive.batch_index} submitted after {self._last_index}"
            )
        self._last_index = archive.batch_index

        future = self._executor.submit(
            self.coordinator.upload, key, archive.blob, archive.checksum
        )
        self._pending[archive.batch_index] = (archive, future)

        while len(self._pending) >= self.max_in_flight:
            self._commit_next()

    def _commit_next(self) -> None:
        index = min(self._pending)
        archive, future = self._pending.pop(index)
        try:
            token = future.result()
            self.on_uploaded(archive, token)
        except Exception:
            self._failed = True
            raise

    def drain(self) -> None:
        """Wait for every outstanding upload and commit them in order."""
        while self._pending:
            self._commit_next()

    def close(self) -> None:
        """Let in-flight uploads finish and release the worker threads."""
        self._executor.shutdown(wait=True)
        self._pending.clear()
