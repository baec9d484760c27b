"""Tests for archive uploads and the ordered upload queue."""
import threading
import time
import pytest
from unittest.mock import Mock, patch
from moto import mock_aws
import boto3
from botocore.exceptions import ClientError

from backup_batcher.domain.entities.file_record import Archive
from backup_batcher.domain.entities.job_config import RetryPolicy
from backup_batcher.domain.entities.run import CommitToken
from backup_batcher.domain.services.batching_service import make_batches
from backup_batcher.infra.common import (
    PermanentUploadError,
    TransientUploadError,
    UploadConflict,
    compute_bytes_hash,
)
from backup_batcher.infra.s3_storage import S3Storage
from backup_batcher.infra.s3_stores import S3ArchiveStore
from backup_batcher.use_cases.steps.archive_batch import Archiver
from backup_batcher.use_cases.steps.enumerate_files import enumerate_files
from backup_batcher.use_cases.steps.upload_archive import OrderedUploadQueue, UploadCoordinator

KEY = "photos-20240131/0.zip"
FAST_RETRY = RetryPolicy(max_attempts=3, base_delay_s=0, jitter=False)


@pytest.fixture
def archive_store():
    """Create an S3 bucket and archive store for testing."""
    with mock_aws():
        s3_client = boto3.client("s3", region_name="us-east-1")
        s3_client.create_bucket(Bucket="test-bucket")
        yield S3ArchiveStore(S3Storage(bucket="test-bucket", region="us-east-1"))


@pytest.fixture
def coordinator(archive_store):
    return UploadCoordinator(archive_store, retry_policy=FAST_RETRY, sleep=lambda _: None)


def _client_error(code: str, status: int) -> ClientError:
    return ClientError(
        {"Error": {"Code": code, "Message": code}, "ResponseMetadata": {"HTTPStatusCode": status}},
        "PutObject",
    )


def test_upload_new_key(coordinator, archive_store):
    """Test a fresh upload is verified and reported."""
    blob = b"archive-bytes"

    token = coordinator.upload(KEY, blob)

    assert token.key == KEY
    assert token.checksum == compute_bytes_hash(blob)
    assert token.size == len(blob)
    assert token.already_present is False
    assert archive_store.read_archive(KEY) == blob
    assert archive_store.describe(KEY)["checksum"] == token.checksum


def test_upload_same_content_is_noop(coordinator, archive_store):
    """Test re-uploading identical content does not write again."""
    coordinator.upload(KEY, b"archive-bytes")

    with patch.object(archive_store, "put_archive", wraps=archive_store.put_archive) as put:
        token = coordinator.upload(KEY, b"archive-bytes")

    put.assert_not_called()
    assert token.already_present is True


def test_upload_existing_without_metadata(coordinator, archive_store):
    """Test identical content stored without a checksum is recognised by hashing it."""
    archive_store.s3.put_object(KEY, b"archive-bytes")

    token = coordinator.upload(KEY, b"archive-bytes")

    assert token.already_present is True


def test_upload_different_content_conflicts(coordinator, archive_store):
    """Test a key already holding other bytes is never overwritten."""
    coordinator.upload(KEY, b"archive-bytes")

    with pytest.raises(UploadConflict, match="already exists with different content"):
        coordinator.upload(KEY, b"other-bytes!!")

    assert archive_store.read_archive(KEY) == b"archive-bytes"


@pytest.fixture
def photo_batch(tmp_path):
    root = tmp_path / "photos"
    root.mkdir()
    (root / "a.jpg").write_bytes(b"jpeg " * 200)
    (root / "b.jpg").write_bytes(b"more jpeg " * 200)
    return next(make_batches(enumerate_files(root), batch_size=10))


def test_upload_same_files_packed_differently(coordinator, archive_store, photo_batch):
    """Test an archive of the same files from another zlib build is accepted as present."""
    stored = Archiver(compress_level=6).build_archive(photo_batch)
    rebuilt = Archiver(compress_level=0).build_archive(photo_batch)
    coordinator.upload(KEY, stored.blob, stored.checksum)

    with patch.object(archive_store, "put_archive", wraps=archive_store.put_archive) as put:
        token = coordinator.upload(KEY, rebuilt.blob, rebuilt.checksum)

    put.assert_not_called()
    assert token.already_present is True
    assert token.checksum == stored.checksum
    assert token.size == stored.size
    assert archive_store.read_archive(KEY) == stored.blob


def test_upload_other_files_conflicts(coordinator, archive_store, photo_batch, tmp_path):
    """Test an existing archive holding other files is still a conflict."""
    stored = Archiver().build_archive(photo_batch)
    coordinator.upload(KEY, stored.blob, stored.checksum)
    (tmp_path / "photos" / "b.jpg").write_bytes(b"edited")
    changed = Archiver().build_archive(next(make_batches(enumerate_files(tmp_path / "photos"), batch_size=10)))

    with pytest.raises(UploadConflict):
        coordinator.upload(KEY, changed.blob, changed.checksum)


def test_transient_failure_is_retried(coordinator, archive_store):
    """Test a 503 on PUT is retried and then succeeds."""
    original = archive_store.put_archive
    calls = []

    def flaky_put(key, blob, checksum):
        calls.append(key)
        if len(calls) == 1:
            raise _client_error("SlowDown", 503)
        return original(key, blob, checksum)

    with patch.object(archive_store, "put_archive", side_effect=flaky_put):
        token = coordinator.upload(KEY, b"archive-bytes")

    assert len(calls) == 2
    assert token.already_present is False


def test_permanent_failure_not_retried(coordinator, archive_store):
    """Test an auth failure surfaces without retry."""
    with patch.object(archive_store, "put_archive", side_effect=_client_error("AccessDenied", 403)) as put:
        with pytest.raises(PermanentUploadError):
            coordinator.upload(KEY, b"archive-bytes")

    assert put.call_count == 1


def test_failed_read_back_is_never_reported(coordinator, archive_store):
    """Test an upload whose read-back never matches is not confirmed."""
    with patch.object(archive_store, "read_archive", return_value=b"corrupted"):
        with pytest.raises(TransientUploadError, match="after 3 attempts"):
            coordinator.upload(KEY, b"archive-bytes")


def test_checksum_confirmation_without_read_back(archive_store):
    """Test verification from stored metadata when read-back is disabled."""
    coordinator = UploadCoordinator(
        archive_store, retry_policy=FAST_RETRY, verify_read_back=False, sleep=lambda _: None
    )

    with patch.object(archive_store, "read_archive", wraps=archive_store.read_archive) as read:
        token = coordinator.upload(KEY, b"archive-bytes")

    read.assert_not_called()
    assert token.already_present is False


def _archive(index: int) -> Archive:
    return Archive(batch_index=index, blob=f"blob-{index}".encode(), checksum=f"{index:064x}", size=6, files=())


def _slow_coordinator(delays: dict[int, float], fail_index: int | None = None) -> Mock:
    """Coordinator whose uploads finish in an order driven by `delays`."""
    active = {"now": 0, "max": 0}
    lock = threading.Lock()

    def upload(key, blob, checksum):
        index = int(key.rsplit("/", 1)[1].split(".")[0])
        with lock:
            active["now"] += 1
            active["max"] = max(active["max"], active["now"])
        time.sleep(delays.get(index, 0))
        with lock:
            active["now"] -= 1
        if index == fail_index:
            raise PermanentUploadError(f"upload {index} rejected")
        return CommitToken(key=key, checksum=checksum, size=len(blob))

    coordinator = Mock()
    coordinator.upload.side_effect = upload
    coordinator.active = active
    return coordinator


def test_queue_commits_in_index_order():
    """Test later batches finishing first are still committed in order."""
    coordinator = _slow_coordinator({0: 0.15, 1: 0.1, 2: 0.05, 3: 0.0, 4: 0.02})
    committed = []

    with OrderedUploadQueue(coordinator, 3, lambda archive, token: committed.append(archive.batch_index)) as queue:
        for i in range(5):
            queue.submit(f"day/{i}.zip", _archive(i))
            assert queue.in_flight < 3
        queue.drain()

    assert committed == [0, 1, 2, 3, 4]
    assert coordinator.active["max"] <= 3


def test_queue_with_single_slot_is_sequential():
    """Test one in-flight upload commits each batch before the next starts."""
    coordinator = _slow_coordinator({})
    committed = []

    with OrderedUploadQueue(coordinator, 1, lambda archive, token: committed.append(archive.batch_index)) as queue:
        queue.submit("day/0.zip", _archive(0))
        assert committed == [0]
        queue.submit("day/1.zip", _archive(1))
        assert committed == [0, 1]

    assert coordinator.active["max"] == 1


def test_queue_rejects_out_of_order_submit():
    """Test archives must be submitted in increasing index order."""
    with OrderedUploadQueue(_slow_coordinator({}), 2, Mock()) as queue:
        queue.submit("day/1.zip", _archive(1))
        with pytest.raises(ValueError):
            queue.submit("day/0.zip", _archive(0))


def test_queue_failure_stops_commits():
    """Test nothing after a failed upload is committed."""
    coordinator = _slow_coordinator({0: 0.05}, fail_index=1)
    committed = []

    with pytest.raises(PermanentUploadError, match="upload 1 rejected"):
        with OrderedUploadQueue(coordinator, 3, lambda archive, token: committed.append(archive.batch_index)) as queue:
            for i in range(3):
                queue.submit(f"day/{i}.zip", _archive(i))
            queue.drain()

    assert committed == [0]


def test_queue_invalid_size():
    """Test the pool needs at least one slot."""
    with pytest.raises(ValueError):
        OrderedUploadQueue(_slow_coordinator({}), 0, Mock())
