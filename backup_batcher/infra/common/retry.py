"""Retry with exponential backoff for remote store calls."""
import random
import time
from typing import Callable, TypeVar

from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    ConnectionClosedError,
    ConnectTimeoutError,
    EndpointConnectionError,
    ReadTimeoutError,
)

from backup_batcher.domain.entities.job_config import RetryPolicy
from backup_batcher.infra.common.errors import (
    BackupError,
    PermanentUploadError,
    TransientUploadError,
)
from backup_batcher.infra.common.logger import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

TRANSIENT = "transient"
PERMANENT = "permanent"

TRANSIENT_ERROR_CODES = frozenset({
    "InternalError",
    "RequestTimeout",
    "RequestTimeoutException",
    "ServiceUnavailable",
    "SlowDown",
    "Throttling",
    "ThrottlingException",
    "500",
    "502",
    "503",
    "504",
})

_NETWORK_ERRORS = (
    ConnectionClosedError,
    ConnectTimeoutError,
    EndpointConnectionError,
    ReadTimeoutError,
    ConnectionError,
    TimeoutError,
)


def classify_error(error: Exception) -> str:
    """Classify an exception as transient (retry) or permanent (surface now)."""
    if isinstance(error, TransientUploadError):
        return TRANSIENT
    if isinstance(error, _NETWORK_ERRORS):
        return TRANSIENT
    if isinstance(error, ClientError):
        code = error.response.get("Error", {}).get("Code", "")
        status = error.response.get("ResponseMetadata", {}).get("HTTPStatusCode") or 0
        if code in TRANSIENT_ERROR_CODES or status >= 500:
            return TRANSIENT
    return PERMANENT


def compute_delay(policy: RetryPolicy, attempt: int) -> float:
    """Compute delay before the retry following `attempt` (0-based)."""
    delay = min(policy.base_delay_s * (policy.backoff_factor ** attempt), policy.max_delay_s)
    if policy.jitter:
        delay *= 0.5 + random.random()  # noqa: S311
    return delay


def call_with_retry(
    fn: Callable[[], T],
    policy: RetryPolicy,
    description: str,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    Call `fn`, retrying transient failures with exponential backoff.

    Only store errors (botocore and socket level) and TransientUploadError are
    retried or wrapped. Other domain errors and programming errors such as a
    KeyError are re-raised untouched.

    Args:
        fn: Zero-argument callable performing one attempt
        policy: Retry policy
        description: Operation name used in logs and error messages
        sleep: Sleep function (replaceable in tests)

    Returns:
        Result of `fn`

    Raises:
        TransientUploadError: If every attempt failed with a transient error
        PermanentUploadError: On the first non-transient store error
    """
    attempts = 0
    while True:
        try:
            return fn()
        except BackupError as e:
            if not isinstance(e, TransientUploadError):
                raise
            error = e
        except (ClientError, BotoCoreError, ConnectionError, TimeoutError) as e:
            error = e

        attempts += 1
        if classify_error(error) == PERMANENT:
            raise PermanentUploadError(f"{description} failed: {error}") from error
        if attempts >= policy.max_attempts:
            raise TransientUploadError(
                f"{description} failed after {attempts} attempts: {error}"
            ) from error

        delay = compute_delay(policy, attempts - 1)
        logger.warning(
            "%s failed (attempt %d/%d): %s, retrying in %.1fs",
            description, attempts, policy.max_attempts, error, delay,
        )
        sleep(delay)
