import logging
import re
import time
from typing import Callable, Optional, TypeVar

import requests
from google.genai import errors

from .config import Config

T = TypeVar("T")

_RETRYABLE_MESSAGE = re.compile(
    r"rate.?limit|too many requests|quota|resource_exhausted|overloaded|"
    r"timed?.?out|timeout|deadline|connection|econnreset|temporarily unavailable",
    re.IGNORECASE,
)
_RETRY_AFTER = re.compile(
    r"retry(?:[ _-]?after|[ _-]?in|delay)\W{0,4}(\d+(?:\.\d+)?)\s*(?:s\b|sec|second)?",
    re.IGNORECASE,
)


class RateLimitError(RuntimeError):
    pass


def _status_code(exc: BaseException) -> Optional[int]:
    if isinstance(exc, errors.APIError):
        return exc.code
    if isinstance(exc, requests.HTTPError) and exc.response is not None:
        return exc.response.status_code
    code = getattr(exc, "status_code", None)
    return code if isinstance(code, int) else None


def is_retryable(exc: BaseException) -> bool:
    if isinstance(exc, (RateLimitError, requests.ConnectionError, requests.Timeout)):
        return True
    status = _status_code(exc)
    if status is not None and (status == 429 or status >= 500):
        return True
    return bool(_RETRYABLE_MESSAGE.search(str(exc)))


def suggested_delay(exc: BaseException) -> Optional[float]:
    """Server-suggested wait in seconds, when the error message carries one."""
    match = _RETRY_AFTER.search(str(exc))
    if match:
        return float(match.group(1))
    response = getattr(exc, "response", None)
    headers = getattr(response, "headers", None) or {}
    value = headers.get("Retry-After") if hasattr(headers, "get") else None
    try:
        return float(value) if value is not None else None
    except (TypeError, ValueError):
        return None


def with_retry(
    operation: Callable[[], T],
    tries: Optional[int] = None,
    base_delay: Optional[float] = None,
    label: str = "request",
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Run ``operation``, retrying transient failures with exponential backoff.

    Retries on HTTP 429, HTTP 5xx and rate-limit / timeout / connection
    messages. The delay doubles from ``base_delay`` and is raised to the
    server's "retry after" hint when the error carries one. The last error is
    re-raised once ``tries`` attempts are used up; non-retryable errors are
    re-raised immediately.
    """
    tries = max(1, tries if tries is not None else Config.RETRY_TRIES)
    base_delay = base_delay if base_delay is not None else Config.RETRY_BASE_DELAY

    attempt = 0
    while True:
        attempt += 1
        try:
            return operation()
        except Exception as exc:
            if attempt >= tries or not is_retryable(exc):
                raise
            delay = base_delay * (2 ** (attempt - 1))
            hint = suggested_delay(exc)
            if hint is not None and hint > delay:
                delay = hint
            logging.warning(f"{label} failed (attempt {attempt}/{tries}): {exc}; retrying in {delay:.1f}s")
            sleep(delay)
