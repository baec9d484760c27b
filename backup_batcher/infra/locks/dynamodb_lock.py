"""DynamoDB run lock."""
from contextlib import contextmanager
from typing import Iterator, Optional

import boto3
from botocore.exceptions import ClientError
from backup_batcher.infra.common import get_logger, get_clock

logger = get_logger(__name__)


class DynamoDBLock:
    """
    Distributed lock using DynamoDB.

    Keeps two invocations of the same day-run (e.g. a scheduler retry racing a
    slow first attempt) from uploading side by side. Conditional writes make
    acquisition exclusive; the TTL frees locks left behind by crashed runs.
    """

    def __init__(self, table_name: str, region: Optional[str] = None, ttl_seconds: int = 6 * 3600):
        """
        Initialize DynamoDB lock.

        Args:
            table_name: DynamoDB table name
            region: AWS region (defaults to boto3 default)
            ttl_seconds: Lock TTL in seconds (default: 6 hours)
        """
        self.table_name = table_name
        self.ttl_seconds = ttl_seconds
        self.dynamodb = boto3.resource("dynamodb", region_name=region)
        self.table = self.dynamodb.Table(table_name)

    def _now(self) -> int:
        return int(get_clock().now().timestamp())

    def acquire(self, lock_key: str, owner_id: str) -> bool:
        """
        Acquire a lock.

        Args:
            lock_key: Lock key (e.g. backup:<job>:<day>)
            owner_id: Unique identifier for this lock owner (the run_id)

        Returns:
            True if lock acquired, False if already held by a live owner
        """
        now = self._now()
        try:
            self.table.put_item(
                Item={
                    "lock_key": lock_key,
                    "owner_id": owner_id,
                    "expires_at": now + self.ttl_seconds,
                    "acquired_at": now,
                },
                ConditionExpression="attribute_not_exists(lock_key) OR expires_at < :now",
                ExpressionAttributeValues={":now": now},
            )
        except ClientError as e:
            error_code = e.response.get("Error", {}).get("Code", "")
            if error_code == "ConditionalCheckFailedException":
                logger.warning("Lock already held for %s", lock_key)
                return False
            raise

        logger.info("Acquired lock for %s (owner: %s)", lock_key, owner_id)
        return True

    def release(self, lock_key: str, owner_id: str) -> bool:
        """
        Release a lock.

        Args:
            lock_key: Lock key
            owner_id: Owner ID (must match to release)

        Returns:
            True if released, False if lock doesn't exist or owner doesn't match
        """
        try:
            self.table.delete_item(
                Key={"lock_key": lock_key},
                ConditionExpression="owner_id = :owner",
                ExpressionAttributeValues={":owner": owner_id},
            )
        except ClientError as e:
            error_code = e.response.get("Error", {}).get("Code", "")
            if error_code == "ConditionalCheckFailedException":
                logger.warning("Lock not found or owner mismatch for %s", lock_key)
                return False
            raise

        logger.info("Released lock for %s (owner: %s)", lock_key, owner_id)
        return True

    def is_locked(self, lock_key: str) -> bool:
        """Check if a live lock is currently held."""
        try:
            response = self.table.get_item(Key={"lock_key": lock_key})
        except ClientError:
            return False

        item = response.get("Item")
        if item is None:
            return False
        return item.get("expires_at", 0) >= self._now()

    @contextmanager
    def hold(self, lock_key: str, owner_id: str) -> Iterator[bool]:
        """
        Hold a lock for the duration of a block.

        Yields:
            Whether the lock was acquired; it is released on exit only if so
        """
        acquired = self.acquire(lock_key, owner_id)
        try:
            yield acquired
        finally:
            if acquired:
                self.release(lock_key, owner_id)
