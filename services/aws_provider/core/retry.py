"""
Retry & Error Classifier

Decides, per failed remote call, whether to retry, how long to wait and
how the error is surfaced.
"""

import random
from dataclasses import dataclass
from typing import Any, Callable, Optional

from botocore.exceptions import ClientError, NoCredentialsError

from services.aws_provider.exceptions import ErrorKind, RemoteCallError

MISSING_CREDENTIALS_MARKERS = (
    "Missing credentials in config",
    "Unable to locate credentials",
)

# Rate-limit codes only. Quota errors such as LimitExceededException are permanent.
THROTTLING_CODES = frozenset(
    {
        "Throttling",
        "ThrottlingException",
        "TooManyRequestsException",
        "RequestLimitExceeded",
        "SlowDown",
    }
)

CREDENTIALS_DOCS_URL = "https://boto3.amazonaws.com/v1/documentation/api/latest/guide/credentials.html"


@dataclass(frozen=True)
class ErrorDetails:
    """Normalized view of a failed call."""

    status_code: Optional[int]
    code: Optional[str]
    message: Optional[str]
    retryable: Optional[bool] = None


def _status_from(value: Any) -> Optional[int]:
    try:
        return int(value) if value is not None else None
    except (TypeError, ValueError):
        return None


def describe_error(exc: BaseException) -> ErrorDetails:
    """
    Extract status code, error code and message from an SDK or generic error.
    """
    if isinstance(exc, ClientError):
        error = exc.response.get("Error", {}) or {}
        metadata = exc.response.get("ResponseMetadata", {}) or {}
        return ErrorDetails(
            status_code=_status_from(metadata.get("HTTPStatusCode")),
            code=error.get("Code"),
            message=error.get("Message") or None,
        )

    if isinstance(exc, NoCredentialsError):
        return ErrorDetails(status_code=None, code="NoCredentialsError", message=str(exc))

    status_code = getattr(exc, "status_code", None)
    if status_code is None:
        status_code = getattr(exc, "statusCode", None)

    message = getattr(exc, "message", None)
    if message is None and exc.args:
        message = exc.args[0] if isinstance(exc.args[0], str) else None

    code = getattr(exc, "code", None)
    return ErrorDetails(
        status_code=_status_from(status_code),
        code=str(code) if code is not None else None,
        message=message or None,
        retryable=getattr(exc, "retryable", None),
    )


def classify(details: ErrorDetails) -> ErrorKind:
    """
    Map a failure onto its error kind.

    The provider's own ``retryable`` flag is ignored: 429 is always retried.
    """
    if details.status_code == 429 or details.code in THROTTLING_CODES:
        return ErrorKind.THROTTLED
    if details.message and any(marker in details.message for marker in MISSING_CREDENTIALS_MARKERS):
        return ErrorKind.MISSING_CREDENTIALS
    return ErrorKind.REMOTE_CALL_FAILED


def to_remote_call_error(details: ErrorDetails, kind: ErrorKind) -> RemoteCallError:
    """Build the surfaced error, preferring ``message`` over ``code``."""
    message = details.message or details.code or "Unknown error"
    if kind == ErrorKind.MISSING_CREDENTIALS:
        message = (
            f"AWS provider credentials not found ({message}). Learn how to set up "
            f"AWS provider credentials in our docs here: <{CREDENTIALS_DOCS_URL}>."
        )
    return RemoteCallError(
        kind,
        message,
        status_code=details.status_code,
        provider_code=details.code,
    )


class RetryPolicy:
    """
    Bounded attempts with capped exponential backoff and full jitter.

    delay(n) is drawn uniformly from [0, min(cap, base * 2 ** (n - 1))].
    """

    def __init__(
        self,
        max_attempts: int = 4,
        base_delay: float = 5.0,
        cap: float = 30.0,
        jitter: Optional[Callable[[float, float], float]] = None,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.cap = cap
        self._jitter = jitter or random.uniform

    @classmethod
    def from_settings(cls, settings) -> "RetryPolicy":
        return cls(
            max_attempts=settings.REQUEST_MAX_ATTEMPTS,
            base_delay=settings.REQUEST_BACKOFF_BASE,
            cap=settings.REQUEST_BACKOFF_CAP,
        )

    def ceiling(self, attempt: int) -> float:
        """Upper bound of the wait after ``attempt`` (1-based) failed."""
        return min(self.cap, self.base_delay * (2 ** (attempt - 1)))

    def delay(self, attempt: int) -> float:
        return self._jitter(0, self.ceiling(attempt))

    def should_retry(self, kind: ErrorKind, attempt: int) -> bool:
        return kind == ErrorKind.THROTTLED and attempt < self.max_attempts
