from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Set, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[Any]]


class RealtimePoller:
    """Start ``tick`` now, then every ``interval`` seconds (measured start to start) until stopped."""

    def __init__(
        self,
        tick: Callable[[], Awaitable[Any]],
        interval: float,
        sleep: Sleep = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.tick = tick
        self.interval = interval
        self.sleep = sleep
        self.clock = clock
        self._task: asyncio.Task | None = None
        self._stopped = False

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> asyncio.Task:
        if self.running:
            return self._task  # type: ignore[return-value]
        self._stopped = False
        self._task = asyncio.get_running_loop().create_task(self._run())
        return self._task

    def stop(self) -> None:
        self._stopped = True
        if self._task is not None:
            self._task.cancel()
            self._task = None

    async def _run(self) -> None:
        while not self._stopped:
            started = self.clock()
            try:
                await self.tick()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Realtime poll failed")
            if self._stopped:
                break
            await self.sleep(max(0.0, self.interval - (self.clock() - started)))


class SingleFlight:
    """At most one in-flight operation per field; duplicates are dropped."""

    def __init__(self) -> None:
        self._pending: Set[str] = set()

    def is_pending(self, field: str) -> bool:
        return field in self._pending

    @property
    def pending(self) -> Set[str]:
        return set(self._pending)

    async def run(self, field: str, operation: Callable[[], Awaitable[Any]]) -> bool:
        if field in self._pending:
            return False
        self._pending.add(field)
        try:
            await operation()
        finally:
            self._pending.discard(field)
        return True


async def settle(
    fetch: Callable[[], Awaitable[T]],
    is_settled: Callable[[T], bool],
    attempts: int,
    interval: float,
    sleep: Sleep = asyncio.sleep,
) -> T:
    """Re-fetch after a write until the backend reflects it or attempts run out."""
    attempts = max(1, attempts)
    result: T
    for attempt in range(attempts):
        await sleep(interval)
        result = await fetch()
        if is_settled(result):
            return result
        logger.debug("Write not visible yet (attempt %d/%d)", attempt + 1, attempts)
    logger.warning("Backend did not confirm the write after %d re-fetches", attempts)
    return result


async def in_thread(function: Callable[..., T], *args: Any) -> T:
    return await asyncio.to_thread(function, *args)
