"""Process-wide logging setup for backup runs."""
import logging
import os
import sys
from typing import Optional, Union

LOG_LEVEL_ENV = "LOG_LEVEL"
DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DEFAULT_DATEFMT = "%Y-%m-%d %H:%M:%S"

# boto3 logs every retry and credential lookup at INFO
_QUIET_LOGGERS = ("boto3", "botocore", "s3transfer", "urllib3")

_configured_level: Optional[int] = None


def resolve_level(level: Union[int, str]) -> int:
    """
    Turn a level name such as "debug" or a numeric level into a logging level.

    Raises:
        ValueError: If the name is not a known level
    """
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(level.strip().upper())
    if not isinstance(resolved, int):
        raise ValueError(f"Unknown log level: {level!r}")
    return resolved


def setup_logging(
    level: Union[int, str, None] = None,
    format_string: Optional[str] = None,
    datefmt: Optional[str] = None,
    force: bool = False,
) -> int:
    """
    Configure root logging to stdout once per process.

    Backup runs log one INFO line per batch state. The AWS SDK loggers are
    never set below WARNING so their per-request chatter stays out.

    Args:
        level: Level name or number. If None, read from LOG_LEVEL (default INFO);
            an unknown LOG_LEVEL falls back to INFO with a warning.
        format_string: Record format. If None, uses DEFAULT_FORMAT.
        datefmt: Date format. If None, uses DEFAULT_DATEFMT.
        force: Reconfigure even if logging was already set up.

    Returns:
        The level in effect
    """
    global _configured_level

    if _configured_level is not None and not force:
        return _configured_level

    unknown_env_level = None
    if level is None:
        env_level = os.environ.get(LOG_LEVEL_ENV, "INFO")
        try:
            resolved = resolve_level(env_level)
        except ValueError:
            resolved = logging.INFO
            unknown_env_level = env_level
    else:
        resolved = resolve_level(level)

    logging.basicConfig(
        level=resolved,
        format=format_string or DEFAULT_FORMAT,
        datefmt=datefmt or DEFAULT_DATEFMT,
        stream=sys.stdout,
        force=force,
    )
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(resolved, logging.WARNING))

    _configured_level = resolved
    if unknown_env_level is not None:
        logging.getLogger(__name__).warning(
            "Ignoring unknown %s=%r, logging at INFO", LOG_LEVEL_ENV, unknown_env_level
        )
    return resolved


def get_logger(name: str) -> logging.Logger:
    """Module logger; sets up logging with the defaults on first use."""
    if _configured_level is None:
        setup_logging()
    return logging.getLogger(name)
