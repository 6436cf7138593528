"""Error classification and backoff for storage requests.

Retry loops ask classify_status / classify_exception whether another attempt
is still possible instead of inspecting exception types themselves.
"""

from __future__ import annotations

from collections.abc import Callable
import random

import requests

from intunepush.exceptions import ErrorKind, IntunePushError

# 4xx statuses that are worth retrying
RETRYABLE_CLIENT_STATUSES = frozenset({408, 429})


def classify_status(status: int) -> ErrorKind:
    """Classify a non-success HTTP status.

    Client errors (4xx) are permanent except request-timeout (408) and
    throttling (429). Everything else (5xx, unexpected codes) is transient.
    """
    if 400 <= status < 500 and status not in RETRYABLE_CLIENT_STATUSES:
        return ErrorKind.PERMANENT
    return ErrorKind.TRANSIENT


def classify_exception(exc: BaseException) -> ErrorKind:
    """Classify an exception raised while sending a request."""
    if isinstance(exc, IntunePushError):
        return exc.kind
    if isinstance(exc, (requests.exceptions.InvalidURL, requests.exceptions.MissingSchema)):
        return ErrorKind.PERMANENT
    # Timeouts, connection resets, truncated bodies, SSL hiccups
    return ErrorKind.TRANSIENT


def jittered_backoff(
    attempt: int, base: float, rand: Callable[[], float] = random.random
) -> float:
    """Exponential backoff with up to 100% jitter: base**attempt * (1 + U[0, 1))."""
    delay = base**attempt
    return delay + delay * rand()


def fixed_backoff(attempt: int, factor: float) -> float:
    """Exponential backoff without jitter: 2**attempt * factor."""
    return (2**attempt) * factor
