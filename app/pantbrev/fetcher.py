"""
Generic data-fetch utility.

A `Query` wraps a producer (a callable receiving a `CancelToken` and
returning the data) with loading/error state, optional response caching,
bounded retry with exponential backoff, periodic refetch and cancellation.

Lifecycle mirrors a mounted view component: `start()` mounts (first fetch plus
interval timer), `close()` unmounts (aborts the in-flight request, stops every
timer). Every trigger (mount, `refetch()`, timer tick, retry, enabling)
re-enters loading; there is no terminal state.

Invariants:
- One in-flight request per instance. Starting a new one cancels the previous.
- A result from a superseded or closed request is discarded: state is left
  untouched and no callback fires.
- 401 is never retried. Cancellation is its own outcome: never retried, never
  stored as an error.
"""
from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Generic, Protocol, TypeVar

from app.pantbrev.cache import ResponseCache, make_key
from app.pantbrev.errors import ApiError, RequestCancelled, as_api_error

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CancelToken:
    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise RequestCancelled("Request cancelled")


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


Scheduler = Callable[[float, Callable[[], None]], TimerHandle]


def thread_scheduler(delay: float, fn: Callable[[], None]) -> TimerHandle:
    timer = threading.Timer(delay, fn)
    timer.daemon = True
    timer.start()
    return timer


@dataclass(frozen=True)
class RetryPolicy:
    max_retries: int = 3
    base_delay: float = 2.0
    max_delay: float = 30.0

    def delay_for(self, attempt: int) -> float:
        """Delay before retry number `attempt` (1-based)."""
        return min(self.base_delay * (2 ** max(attempt - 1, 0)), self.max_delay)

    def should_retry(self, error: ApiError, attempt: int) -> bool:
        if error.status == 401:
            return False
        return attempt <= self.max_retries


class Query(Generic[T]):
    def __init__(
        self,
        producer: Callable[[CancelToken], T],
        *,
        on_success: Callable[[T], Any] | None = None,
        on_error: Callable[[ApiError], Any] | None = None,
        enabled: bool = True,
        cache_key: str | None = None,
        cache_scope: str = "",
        cache: ResponseCache | None = None,
        refetch_interval: float | None = None,
        retry_on_error: bool = True,
        retry_policy: RetryPolicy | None = None,
        scheduler: Scheduler = thread_scheduler,
    ):
        self._producer = producer
        self._on_success = on_success
        self._on_error = on_error
        self._enabled = enabled
        self._cache_key = cache_key
        self._cache_scope = cache_scope
        self._cache = cache
        self._refetch_interval = refetch_interval
        self._retry_on_error = retry_on_error
        self._retry_policy = retry_policy or RetryPolicy()
        self._schedule = scheduler

        self._lock = threading.RLock()
        self._generation = 0
        self._attempt = 0
        self._cancel: CancelToken | None = None
        self._retry_timer: TimerHandle | None = None
        self._interval_timer: TimerHandle | None = None
        self._mounted = False
        self._closed = False

        self.data: T | None = None
        self.error: ApiError | None = None
        self.is_loading = False

    # ---------- lifecycle ----------
    def start(self) -> "Query[T]":
        with self._lock:
            if self._mounted or self._closed:
                return self
            self._mounted = True
            enabled = self._enabled
        if enabled:
            self._execute(reset_attempts=True)
            self._start_interval()
        return self

    def close(self) -> None:
        with self._lock:
            self._closed = True
            if self._cancel is not None:
                self._cancel.cancel()
            self._cancel_retry()
            self._stop_interval()
            self.is_loading = False

    def __enter__(self) -> "Query[T]":
        return self.start()

    def __exit__(self, *exc: object) -> None:
        self.close()

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def enabled(self) -> bool:
        return self._enabled

    def set_enabled(self, enabled: bool) -> None:
        with self._lock:
            was_enabled = self._enabled
            self._enabled = enabled
            mounted = self._mounted and not self._closed
            if not enabled:
                self._cancel_retry()
                self._stop_interval()
        if enabled and not was_enabled and mounted:
            self._execute(reset_attempts=True)
            self._start_interval()

    # ---------- public actions ----------
    def refetch(self) -> None:
        self._execute(reset_attempts=True)

    def clear_error(self) -> None:
        with self._lock:
            self.error = None

    # ---------- internals ----------
    def _produce(self, token: CancelToken) -> T:
        if self._cache is not None and self._cache_key:
            key = make_key(self._cache_key, scope=self._cache_scope)
            return self._cache.get_or_fetch(key, lambda: self._producer(token))
        return self._producer(token)

    def _execute(self, *, reset_attempts: bool) -> None:
        with self._lock:
            if self._closed or not self._enabled:
                return
            if self._cancel is not None:
                self._cancel.cancel()
            token = CancelToken()
            self._cancel = token
            self._generation += 1
            generation = self._generation
            self._cancel_retry()
            if reset_attempts:
                self._attempt = 0
            self.is_loading = True
            self.error = None

        try:
            result = self._produce(token)
        except RequestCancelled:
            with self._lock:
                if generation == self._generation:
                    self.is_loading = False
            return
        except Exception as e:
            self._settle_error(generation, as_api_error(e))
            return
        self._settle_success(generation, result)

    def _is_current(self, generation: int) -> bool:
        return generation == self._generation and not self._closed

    def _settle_success(self, generation: int, result: T) -> None:
        with self._lock:
            if not self._is_current(generation):
                return
            self.data = result
            self.error = None
            self.is_loading = False
            self._attempt = 0
        if self._on_success is not None:
            self._on_success(result)

    def _settle_error(self, generation: int, error: ApiError) -> None:
        with self._lock:
            if not self._is_current(generation):
                return
            self.error = error
            self.is_loading = False
            self._attempt += 1
            attempt = self._attempt
            if self._retry_on_error and self._retry_policy.should_retry(error, attempt):
                delay = self._retry_policy.delay_for(attempt)
                logger.info("Fetch failed (status=%s); retry %s/%s in %.1fs", error.status, attempt, self._retry_policy.max_retries, delay)
                self._retry_timer = self._schedule(delay, self._retry)
            elif self._retry_on_error and error.status != 401:
                logger.warning("Fetch failed (status=%s); giving up after %s retries", error.status, attempt - 1)
        if self._on_error is not None:
            self._on_error(error)

    def _retry(self) -> None:
        with self._lock:
            self._retry_timer = None
        self._execute(reset_attempts=False)

    def _cancel_retry(self) -> None:
        if self._retry_timer is not None:
            self._retry_timer.cancel()
            self._retry_timer = None

    def _start_interval(self) -> None:
        with self._lock:
            if not self._refetch_interval or self._closed or not self._enabled:
                return
            self._stop_interval()
            self._interval_timer = self._schedule(self._refetch_interval, self._tick)

    def _stop_interval(self) -> None:
        if self._interval_timer is not None:
            self._interval_timer.cancel()
            self._interval_timer = None

    def _tick(self) -> None:
        with self._lock:
            if self._closed or not self._enabled or not self._refetch_interval:
                return
            self._interval_timer = self._schedule(self._refetch_interval, self._tick)
        self._execute(reset_attempts=False)


def fetch_once(producer: Callable[[CancelToken], T]) -> Query[T]:
    """
    Single fetch for a server-rendered view: no retry, no interval. The
    settled query carries either `data` or an inline `error`; a 401 is raised
    instead so the request ends at the login redirect.
    """
    query: Query[T] = Query(producer, retry_on_error=False)
    with query:
        pass
    if query.error is not None and query.error.is_unauthorized:
        raise query.error
    return query
