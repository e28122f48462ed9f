"""
Retry & Timeout
===============
The single place where network-bound calls get bounded retries and
independent time-boxes. Used by the fetcher and by every OCR provider.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeout
from typing import Any, Callable, Optional, TypeVar

import requests
from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from .errors import AttemptTimeout, IngestError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# HTTP statuses worth another try; every other 4xx is permanent.
TRANSIENT_STATUS = {408, 425, 429, 500, 502, 503, 504}


def is_transient(exc: BaseException) -> bool:
    """Classify an exception as worth retrying."""
    if isinstance(exc, IngestError):
        return not exc.permanent
    if isinstance(exc, (requests.ConnectionError, requests.Timeout)):
        return True
    if isinstance(exc, requests.HTTPError) and exc.response is not None:
        return exc.response.status_code in TRANSIENT_STATUS
    return False


def _log_before_sleep(description: str) -> Callable[[RetryCallState], None]:
    def _hook(state: RetryCallState):
        exc = state.outcome.exception() if state.outcome else None
        wait = state.next_action.sleep if state.next_action else 0
        logger.warning(
            f"{description or 'call'} failed (attempt {state.attempt_number}): "
            f"{exc}; retrying in {wait:.1f}s"
        )
    return _hook


def call_with_retry(
    func: Callable[..., T],
    *args: Any,
    attempts: int = 3,
    backoff: float = 1.0,
    max_backoff: float = 30.0,
    description: str = "",
    **kwargs: Any,
) -> T:
    """
    Call ``func`` with bounded retries and exponential backoff.

    Only transient failures (see ``is_transient``) are retried; permanent
    ones propagate on the first occurrence. The last exception is re-raised
    unchanged once attempts are exhausted.
    """
    retryer = Retrying(
        stop=stop_after_attempt(max(1, attempts)),
        wait=wait_exponential(multiplier=backoff, max=max_backoff),
        retry=retry_if_exception(is_transient),
        before_sleep=_log_before_sleep(description),
        reraise=True,
    )
    return retryer(func, *args, **kwargs)


# Upper bound on live time-box threads, abandoned overruns included.
MAX_TIMEBOX_THREADS = 16

_timebox_pool: Optional[ThreadPoolExecutor] = None
_timebox_pool_lock = threading.Lock()


def _get_timebox_pool() -> ThreadPoolExecutor:
    global _timebox_pool
    with _timebox_pool_lock:
        if _timebox_pool is None:
            _timebox_pool = ThreadPoolExecutor(
                max_workers=MAX_TIMEBOX_THREADS, thread_name_prefix="pyq-timebox"
            )
        return _timebox_pool


def run_with_timeout(
    func: Callable[..., T],
    *args: Any,
    timeout: Optional[float] = None,
    description: str = "",
    **kwargs: Any,
) -> T:
    """
    Run ``func`` on the shared time-box pool and give up after ``timeout``
    seconds.

    A call that overruns is abandoned, not killed: it keeps its pool thread
    until it returns. The pool never grows past ``MAX_TIMEBOX_THREADS``, so
    a batch full of hung attempts queues (and then times out) instead of
    piling up threads. Time spent queued counts against ``timeout``.
    """
    if not timeout:
        return func(*args, **kwargs)

    future = _get_timebox_pool().submit(func, *args, **kwargs)
    try:
        return future.result(timeout=timeout)
    except FuturesTimeout as exc:
        if not future.cancel():
            logger.warning(
                f"{description or 'call'} abandoned after {timeout:g}s; "
                f"still running in the background"
            )
        raise AttemptTimeout(
            f"{description or 'call'} timed out after {timeout:g}s"
        ) from exc
