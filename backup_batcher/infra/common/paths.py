"""Centralized object key building."""
from typing import Optional


class BackupPathBuilder:
    """Builder for remote keys following the `{prefix}{day_key}/...` layout."""

    def __init__(self, key_prefix: Optional[str] = None):
        """
        Initialize path builder.

        Args:
            key_prefix: Optional destination folder inside the bucket
        """
        prefix = (key_prefix or "").strip("/")
        self.prefix = f"{prefix}/" if prefix else ""

    def day_prefix(self, day_key: str) -> str:
        """Get prefix holding every object of a day-run."""
        return f"{self.prefix}{day_key}/"

    def archive_key(self, day_key: str, batch_index: int) -> str:
        """Get archive key for a batch."""
        return f"{self.day_prefix(day_key)}{batch_index}.zip"

    def manifest_key(self, day_key: str) -> str:
        """Get day manifest key."""
        return f"{self.day_prefix(day_key)}manifest.json"

    @staticmethod
    def staging_manifest_path(day_key: str) -> str:
        """Get manifest path relative to the local staging directory."""
        return f"{day_key}/manifest.json"
