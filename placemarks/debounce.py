"""Cancelable per-channel debounce timers and request sequencing."""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

REGION_CHANNEL = "region"
SEARCH_CHANNEL = "search"
CATALOG_CHANNEL = "catalog"


class Debouncer:
    """One pending timer per channel; scheduling again cancels the previous one.

    A timer that has already fired is no longer cancelable: its call runs to
    completion and stale results are left to the caller's sequence check.
    """

    def __init__(self) -> None:
        self._pending: Dict[str, asyncio.Task] = {}
        self._running: Dict[asyncio.Task, str] = {}

    def schedule(
        self,
        channel: str,
        delay_ms: float,
        fn: Callable[[], Awaitable[Any]],
    ) -> asyncio.Task:
        self.cancel(channel)
        task = asyncio.get_running_loop().create_task(self._fire(channel, delay_ms, fn))
        self._pending[channel] = task
        return task

    async def _fire(self, channel: str, delay_ms: float, fn: Callable[[], Awaitable[Any]]) -> None:
        await asyncio.sleep(max(0.0, delay_ms) / 1000.0)
        task = asyncio.current_task()
        if self._pending.get(channel) is task:
            del self._pending[channel]
        self._running[task] = channel
        try:
            await fn()
        except Exception:
            logger.exception("Debounced call on channel %s failed", channel)
        finally:
            self._running.pop(task, None)

    def cancel(self, channel: str) -> bool:
        task = self._pending.pop(channel, None)
        if task is None or task.done():
            return False
        task.cancel()
        return True

    def cancel_all(self) -> None:
        for channel in list(self._pending):
            self.cancel(channel)

    def is_pending(self, channel: str) -> bool:
        task = self._pending.get(channel)
        return task is not None and not task.done()

    def _outstanding(self, channel: Optional[str]) -> List[asyncio.Task]:
        tasks = [
            t for ch, t in self._pending.items() if (channel is None or ch == channel)
        ]
        tasks.extend(
            t for t, ch in self._running.items() if (channel is None or ch == channel)
        )
        return [t for t in tasks if not t.done()]

    async def wait(self, channel: Optional[str] = None) -> None:
        """Wait until timers for one channel (or all) have fired and finished."""
        while True:
            tasks = self._outstanding(channel)
            if not tasks:
                return
            await asyncio.gather(*tasks, return_exceptions=True)


class RequestSequencer:
    """Monotonic per-channel sequence numbers for discarding stale responses."""

    def __init__(self) -> None:
        self._latest: Dict[str, int] = {}

    def issue(self, channel: str) -> int:
        seq = self._latest.get(channel, 0) + 1
        self._latest[channel] = seq
        return seq

    def latest(self, channel: str) -> int:
        return self._latest.get(channel, 0)

    def is_latest(self, channel: str, seq: int) -> bool:
        return self._latest.get(channel, 0) == seq
