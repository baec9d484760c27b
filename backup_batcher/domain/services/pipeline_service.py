"""Pipeline service utilities."""
from pathlib import Path

from backup_batcher.infra.common.clock import get_clock


def generate_run_id() -> str:
    """Generate a unique run ID."""
    return get_clock().generate_uuid()


def default_day_key(root_path: str) -> str:
    """Build the day key for a root, e.g. `photos-20240131`."""
    source_name = Path(root_path).resolve().name or "backup"
    return f"{source_name}-{get_clock().today_stamp()}"


def lock_key(job_id: str, day_key: str) -> str:
    """Build the run lock key for a day-run."""
    return f"backup:{job_id}:{day_key}"
