"""Run locks."""
from backup_batcher.infra.locks.dynamodb_lock import DynamoDBLock

__all__ = ["DynamoDBLock"]
