"""Exponential-backoff retry for remote requests."""

import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

import requests

from .errors import RemoteFetchError

logger = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES = {408, 429, 500, 502, 503, 504}


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    backoff_base_s: float = 1.0
    backoff_factor: float = 2.0
    backoff_max_s: float = 60.0

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")

    def backoff_s(self, attempt: int) -> float:
        """Delay to wait before ``attempt`` (1-based); the first is immediate."""
        if attempt <= 1:
            return 0.0
        delay = self.backoff_base_s * (self.backoff_factor ** (attempt - 2))
        return min(self.backoff_max_s, delay)


@dataclass
class RetryState:
    """Progress of one remote request through its retry policy."""
    policy: RetryPolicy
    attempt: int = 0
    next_delay: float = 0.0
    terminal: bool = False
    last_error: Optional[str] = None

    def record_failure(self, exc: Exception, retryable: bool = True) -> None:
        self.last_error = str(exc)
        if not retryable or self.attempt >= self.policy.max_attempts:
            self.terminal = True
            self.next_delay = 0.0
        else:
            self.next_delay = self.policy.backoff_s(self.attempt + 1)


def check_response(response: requests.Response, describe: str) -> None:
    """Raise RemoteFetchError for a non-2xx response.

    Throttling and server errors are retryable; authentication failures and
    other client errors are not.
    """
    status = response.status_code
    if 200 <= status < 300:
        return
    body = (response.text or "")[:500]
    if status in (401, 403):
        raise RemoteFetchError(f"{describe}: authentication rejected ({status})",
                               retryable=False, status=status)
    raise RemoteFetchError(f"{describe}: HTTP {status}: {body}",
                           retryable=status in RETRYABLE_STATUS_CODES,
                           status=status)


def call_with_retry(fn: Callable, policy: RetryPolicy, *, describe: str = "request",
                    sleep: Callable[[float], None] = time.sleep):
    """Call ``fn`` until it succeeds or ``policy.max_attempts`` is reached.

    After exhaustion a ``RemoteFetchError`` with ``permanent=True`` is raised
    and no further attempt is made.
    """
    state = RetryState(policy)
    while True:
        state.attempt += 1
        try:
            return fn()
        except RemoteFetchError as e:
            error, retryable = e, e.retryable
        except requests.RequestException as e:
            error, retryable = e, True

        state.record_failure(error, retryable=retryable)
        if state.terminal:
            status = getattr(error, 'status', None)
            raise RemoteFetchError(
                f"{describe} failed after {state.attempt} attempt(s): {state.last_error}",
                retryable=False, permanent=True, status=status) from error

        logger.warning(f"{describe} attempt {state.attempt}/{policy.max_attempts} "
                       f"failed ({state.last_error}); retrying in {state.next_delay:.1f}s")
        if state.next_delay > 0:
            sleep(state.next_delay)
