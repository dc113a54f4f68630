from __future__ import annotations

import math
import re
from typing import Optional

# Marker the Gemini SDKs and REST proxies put in throttling errors.
RATE_LIMIT_MARKER = "429 Too Many Requests"
_RETRY_DELAY_RE = re.compile(r'retryDelay"?\s*:\s*"(\d+(?:\.\d+)?)s"')


class RateLimitedError(Exception):
    """Backend reported throttling. Retried by the RequestGovernor."""

    def __init__(self, message: str = RATE_LIMIT_MARKER, retry_after: Optional[float] = None):
        super().__init__(message)
        self.retry_after = retry_after


class RetriesExhaustedError(Exception):
    def __init__(self, attempts: int, retry_after: float = 0.0):
        super().__init__(f"rate limited after {attempts} attempts; retries exhausted")
        self.attempts = attempts
        self.retry_after = retry_after

    @property
    def retry_after_seconds(self) -> int:
        return max(1, math.ceil(self.retry_after))


class BackendFailure(Exception):
    """Any non-throttling backend error. Never retried."""

    def __init__(self, message: str, status_code: int = 0):
        super().__init__(message)
        self.status_code = status_code


class BackendNotConfigured(Exception):
    def __init__(self) -> None:
        super().__init__("gemini_not_configured")


class AdmissionDenied(Exception):
    """Quota pre-check refused the call before it reached the governor."""

    def __init__(self, time_to_reset_ms: int):
        super().__init__("quota_exceeded")
        self.time_to_reset_ms = time_to_reset_ms

    @property
    def retry_after_seconds(self) -> int:
        return math.ceil(self.time_to_reset_ms / 1000)


class GovernorClosedError(Exception):
    def __init__(self) -> None:
        super().__init__("request governor is closed")


class QuotaPersistenceError(Exception):
    """Quota state could not be read or written. Logged, never surfaced."""


def is_rate_limit_error(exc: BaseException) -> bool:
    if isinstance(exc, RateLimitedError):
        return True
    return RATE_LIMIT_MARKER in str(exc)


def suggested_retry_delay(exc: BaseException) -> Optional[float]:
    """Backend-suggested delay in seconds, if the error carries one."""
    retry_after = getattr(exc, "retry_after", None)
    if retry_after is not None:
        return float(retry_after)
    m = _RETRY_DELAY_RE.search(str(exc))
    if m:
        return float(m.group(1))
    return None
