"""Tests for DynamoDB lock implementation."""
import pytest
from datetime import datetime, timezone, timedelta
from unittest.mock import patch
from moto import mock_aws
import boto3
from botocore.exceptions import ClientError

from backup_batcher.infra.common.clock import Clock, set_clock
from backup_batcher.infra.locks.dynamodb_lock import DynamoDBLock


class FakeClock(Clock):
    """Clock frozen at a settable instant."""

    def __init__(self, now: datetime):
        self.current = now

    def now(self) -> datetime:
        return self.current

    def now_iso(self) -> str:
        return self.current.isoformat()

    def generate_uuid(self) -> str:
        return "run-fixed"


@pytest.fixture
def clock():
    """Install a fake clock for the duration of a test."""
    fake = FakeClock(datetime(2024, 1, 31, 12, 0, tzinfo=timezone.utc))
    set_clock(fake)
    yield fake
    set_clock(None)


@pytest.fixture
def dynamodb_table():
    """Create a DynamoDB table for testing."""
    with mock_aws():
        dynamodb = boto3.resource("dynamodb", region_name="us-east-1")
        table = dynamodb.create_table(
            TableName="test-locks",
            KeySchema=[{"AttributeName": "lock_key", "KeyType": "HASH"}],
            AttributeDefinitions=[{"AttributeName": "lock_key", "AttributeType": "S"}],
            BillingMode="PAY_PER_REQUEST",
        )
        yield table


@pytest.fixture
def lock_manager(dynamodb_table, clock):
    """Create a DynamoDBLock instance for testing."""
    return DynamoDBLock(table_name="test-locks", region="us-east-1", ttl_seconds=3600)


LOCK_KEY = "backup:photos:photos-20240131"


def test_acquire_lock_success(lock_manager, clock):
    """Test successfully acquiring a lock."""
    result = lock_manager.acquire(LOCK_KEY, "run-123")

    assert result is True

    response = lock_manager.table.get_item(Key={"lock_key": LOCK_KEY})
    item = response["Item"]
    assert item["owner_id"] == "run-123"
    assert item["acquired_at"] == int(clock.current.timestamp())
    assert item["expires_at"] == int(clock.current.timestamp()) + 3600


def test_acquire_lock_already_locked(lock_manager):
    """Test acquiring a lock that is already held."""
    assert lock_manager.acquire(LOCK_KEY, "run-123") is True
    assert lock_manager.acquire(LOCK_KEY, "run-456") is False

    response = lock_manager.table.get_item(Key={"lock_key": LOCK_KEY})
    assert response["Item"]["owner_id"] == "run-123"


def test_acquire_lock_expired(lock_manager, clock):
    """Test acquiring a lock left behind by a crashed run."""
    assert lock_manager.acquire(LOCK_KEY, "run-123") is True

    clock.current += timedelta(seconds=3601)

    assert lock_manager.acquire(LOCK_KEY, "run-456") is True
    response = lock_manager.table.get_item(Key={"lock_key": LOCK_KEY})
    assert response["Item"]["owner_id"] == "run-456"


def test_release_lock_success(lock_manager):
    """Test successfully releasing a lock."""
    lock_manager.acquire(LOCK_KEY, "run-123")

    assert lock_manager.release(LOCK_KEY, "run-123") is True

    response = lock_manager.table.get_item(Key={"lock_key": LOCK_KEY})
    assert "Item" not in response


def test_release_lock_wrong_owner(lock_manager):
    """Test releasing a lock with wrong owner ID."""
    lock_manager.acquire(LOCK_KEY, "run-123")

    assert lock_manager.release(LOCK_KEY, "run-456") is False

    response = lock_manager.table.get_item(Key={"lock_key": LOCK_KEY})
    assert response["Item"]["owner_id"] == "run-123"


def test_release_lock_not_exists(lock_manager):
    """Test releasing a lock that doesn't exist."""
    assert lock_manager.release("backup:photos:nonexistent", "run-123") is False


def test_is_locked_lifecycle(lock_manager, clock):
    """Test is_locked across acquire, expiry and release."""
    assert lock_manager.is_locked(LOCK_KEY) is False

    lock_manager.acquire(LOCK_KEY, "run-123")
    assert lock_manager.is_locked(LOCK_KEY) is True

    clock.current += timedelta(hours=2)
    assert lock_manager.is_locked(LOCK_KEY) is False


def test_hold_releases_on_exit(lock_manager):
    """Test the hold context manager releases the lock it acquired."""
    with lock_manager.hold(LOCK_KEY, "run-123") as acquired:
        assert acquired is True
        assert lock_manager.is_locked(LOCK_KEY) is True

    assert lock_manager.is_locked(LOCK_KEY) is False


def test_hold_releases_on_error(lock_manager):
    """Test the lock is released when the block raises."""
    with pytest.raises(RuntimeError):
        with lock_manager.hold(LOCK_KEY, "run-123"):
            raise RuntimeError("boom")

    assert lock_manager.is_locked(LOCK_KEY) is False


def test_hold_when_already_locked(lock_manager):
    """Test hold yields False and leaves a foreign lock in place."""
    lock_manager.acquire(LOCK_KEY, "run-123")

    with lock_manager.hold(LOCK_KEY, "run-456") as acquired:
        assert acquired is False

    response = lock_manager.table.get_item(Key={"lock_key": LOCK_KEY})
    assert response["Item"]["owner_id"] == "run-123"


def test_multiple_locks_different_days(lock_manager):
    """Test day-runs of different days lock independently."""
    day_1 = "backup:photos:photos-20240130"
    day_2 = "backup:photos:photos-20240131"

    assert lock_manager.acquire(day_1, "run-123") is True
    assert lock_manager.acquire(day_2, "run-123") is True

    assert lock_manager.release(day_1, "run-123") is True
    assert lock_manager.is_locked(day_1) is False
    assert lock_manager.is_locked(day_2) is True


def test_acquire_with_dynamodb_error(lock_manager):
    """Test acquire when DynamoDB returns an unexpected error."""
    with patch.object(lock_manager.table, "put_item") as mock_put:
        mock_put.side_effect = ClientError(
            {"Error": {"Code": "ResourceNotFoundException"}},
            "PutItem"
        )

        with pytest.raises(ClientError):
            lock_manager.acquire(LOCK_KEY, "run-123")


def test_release_with_dynamodb_error(lock_manager):
    """Test release when DynamoDB returns an unexpected error."""
    lock_manager.acquire(LOCK_KEY, "run-123")

    with patch.object(lock_manager.table, "delete_item") as mock_delete:
        mock_delete.side_effect = ClientError(
            {"Error": {"Code": "ResourceNotFoundException"}},
            "DeleteItem"
        )

        with pytest.raises(ClientError):
            lock_manager.release(LOCK_KEY, "run-123")
