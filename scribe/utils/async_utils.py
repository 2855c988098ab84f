"""Asyncio helpers: sleeps, debouncing, retries, rate limiting, and a mutex."""

from __future__ import annotations

import asyncio
import time
from collections import deque
from typing import Any, Awaitable, Callable, TypeVar

from loguru import logger

T = TypeVar("T")


async def sleep_ms(ms: float) -> None:
    """Sleep for ``ms`` milliseconds."""
    await asyncio.sleep(max(0.0, float(ms)) / 1000.0)


class Debouncer:
    """Coalesce rapid calls into one run of ``func`` after ``wait_ms`` of quiet.

    Each call cancels the previously scheduled run. Must be called from a
    running event loop.
    """

    def __init__(self, func: Callable[..., Awaitable[Any]], wait_ms: float) -> None:
        self._func = func
        self._wait_ms = wait_ms
        self._task: asyncio.Task[Any] | None = None

    def __call__(self, *args: Any, **kwargs: Any) -> asyncio.Task[Any]:
        self.cancel()
        self._task = asyncio.create_task(self._run(*args, **kwargs))
        self._task.add_done_callback(_log_task_failure)
        return self._task

    async def _run(self, *args: Any, **kwargs: Any) -> Any:
        await sleep_ms(self._wait_ms)
        return await self._func(*args, **kwargs)

    def cancel(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None

    @property
    def pending(self) -> bool:
        return self._task is not None and not self._task.done()


def _log_task_failure(task: asyncio.Task[Any]) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.opt(exception=exc).error("debounced call failed: {}", exc)


def debounce(func: Callable[..., Awaitable[Any]], wait_ms: float) -> Debouncer:
    """Return a debounced wrapper around the coroutine function ``func``."""
    return Debouncer(func, wait_ms)


async def retry(
    fn: Callable[[], Awaitable[T]],
    *,
    max_attempts: int = 3,
    delay_ms: float = 1000,
    max_delay_ms: float = 10000,
    backoff_factor: float = 2.0,
    should_retry: Callable[[Exception], bool] | None = None,
    on_retry: Callable[[int, Exception], None] | None = None,
) -> T:
    """Await ``fn()`` with exponential backoff between failed attempts.

    The last exception is re-raised once attempts are exhausted or
    ``should_retry`` rejects the error.
    """
    attempts = max(1, int(max_attempts))
    current_delay = float(delay_ms)
    for attempt in range(1, attempts + 1):
        try:
            return await fn()
        except Exception as exc:
            if attempt == attempts or (should_retry is not None and not should_retry(exc)):
                raise
            if on_retry is not None:
                on_retry(attempt, exc)
            else:
                logger.debug("retry attempt {} failed: {}", attempt, exc)
            await sleep_ms(current_delay)
            current_delay = min(current_delay * backoff_factor, float(max_delay_ms))
    raise RuntimeError("retry loop exited without result")


class RateLimiter:
    """Allow at most ``calls_per_interval`` calls in any ``interval_ms`` window."""

    def __init__(self, calls_per_interval: int, interval_ms: float) -> None:
        self.calls_per_interval = max(1, int(calls_per_interval))
        self.interval_ms = float(interval_ms)
        self._calls: deque[float] = deque()

    def _prune(self, now: float) -> None:
        window = self.interval_ms / 1000.0
        while self._calls and now - self._calls[0] >= window:
            self._calls.popleft()

    async def execute(self, fn: Callable[[], Awaitable[T]]) -> T:
        now = time.monotonic()
        self._prune(now)
        if len(self._calls) >= self.calls_per_interval:
            wait_s = self.interval_ms / 1000.0 - (now - self._calls[0])
            if wait_s > 0:
                await asyncio.sleep(wait_s)
            self._prune(time.monotonic())
        self._calls.append(time.monotonic())
        return await fn()


async def wait_until(
    condition: Callable[[], bool],
    *,
    timeout_ms: float = 10000,
    interval_ms: float = 100,
) -> None:
    """Poll ``condition`` until true; raise ``TimeoutError`` after ``timeout_ms``."""
    deadline = time.monotonic() + timeout_ms / 1000.0
    while not condition():
        if time.monotonic() > deadline:
            raise TimeoutError("Wait condition timeout")
        await sleep_ms(interval_ms)


class AsyncMutex:
    """FIFO mutex with a non-blocking ``try_acquire``.

    ``asyncio.Lock`` has no synchronous try-acquire, which the single-flight
    guards need.
    """

    def __init__(self) -> None:
        self._locked = False
        self._waiters: deque[asyncio.Future[None]] = deque()

    @property
    def locked(self) -> bool:
        return self._locked

    async def acquire(self) -> None:
        if not self._locked:
            self._locked = True
            return
        waiter: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self._waiters.append(waiter)
        try:
            await waiter
        except asyncio.CancelledError:
            if waiter.done() and not waiter.cancelled():
                # Ownership was handed over just before cancellation.
                self.release()
            elif waiter in self._waiters:
                self._waiters.remove(waiter)
            raise

    def try_acquire(self) -> bool:
        if self._locked:
            return False
        self._locked = True
        return True

    def release(self) -> None:
        while self._waiters:
            waiter = self._waiters.popleft()
            if not waiter.done():
                waiter.set_result(None)
                return
        self._locked = False

    async def run_exclusive(self, fn: Callable[[], Awaitable[T]]) -> T:
        await self.acquire()
        try:
            return await fn()
        finally:
            self.release()
