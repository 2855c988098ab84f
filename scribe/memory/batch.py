"""Sequential batch execution with inter-batch delay, pause and stop."""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Generic, Sequence, TypeVar

from loguru import logger

from scribe.memory.models import BatchResult
from scribe.utils.async_utils import sleep_ms

T = TypeVar("T")

ProgressCallback = Callable[[BatchResult], None]


class BatchRunner(Generic[T]):
    """Process items one at a time in fixed-size batches.

    A failing item is counted and skipped. ``stop()`` and ``pause()`` take
    effect between items; nothing in flight is cancelled.
    """

    def __init__(
        self,
        *,
        batch_size: int = 5,
        delay_ms: float = 500,
        on_progress: ProgressCallback | None = None,
    ) -> None:
        self.batch_size = max(1, int(batch_size))
        self.delay_ms = delay_ms
        self.on_progress = on_progress
        self._stop = False
        self._resume = asyncio.Event()
        self._resume.set()
        self.running = False

    def stop(self) -> None:
        self._stop = True
        self._resume.set()

    def pause(self) -> None:
        self._resume.clear()

    def resume(self) -> None:
        self._resume.set()

    @property
    def paused(self) -> bool:
        return not self._resume.is_set()

    async def run(
        self,
        items: Sequence[T],
        process: Callable[[T], Awaitable[bool | None]],
        *,
        limit: int = 0,
    ) -> BatchResult:
        """Run ``process`` over ``items``; a ``False`` return counts as failure."""
        selected = list(items[:limit]) if limit > 0 else list(items)
        result = BatchResult(total=len(selected))
        self._stop = False
        self.running = True
        try:
            for start in range(0, len(selected), self.batch_size):
                await self._resume.wait()
                if self._stop:
                    break
                for item in selected[start : start + self.batch_size]:
                    await self._resume.wait()
                    if self._stop:
                        break
                    try:
                        ok = await process(item)
                    except Exception as exc:
                        logger.warning("batch item failed: {}", exc)
                        ok = False
                    if ok is False:
                        result.failed += 1
                    else:
                        result.success += 1
                    result.processed += 1
                    if self.on_progress is not None:
                        self.on_progress(result)
                if self._stop:
                    break
                if start + self.batch_size < len(selected):
                    await sleep_ms(self.delay_ms)
        finally:
            self.running = False
        result.stopped = self._stop
        return result
