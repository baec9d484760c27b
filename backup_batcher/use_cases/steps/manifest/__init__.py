"""Day manifest module."""
from backup_batcher.use_cases.steps.manifest.manifest_store import ManifestStore

__all__ = [
    "ManifestStore",
]
