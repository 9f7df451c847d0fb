"""Periodic polling subscription bound to an asyncio event loop.

A subscription calls a zero-argument coroutine function once on start and
then on a fixed wall-clock cadence. Ticks are never chained to fetch
completion: a slow fetch does not delay the next tick, so several fetches
for the same subscription may be in flight at once. Results are applied in
completion order (last completion wins).

Teardown bumps a generation counter; any fetch that completes after
cancel() is discarded on arrival.
"""

import asyncio
import time
from typing import Awaitable, Callable, Generic, Optional, TypeVar

T = TypeVar("T")


class PollingSubscription(Generic[T]):
    """Holds the latest successful result of a periodically polled fetch."""

    def __init__(self, fetch: Callable[[], Awaitable[T]], interval: float,
                 on_update: Optional[Callable[[T], None]] = None,
                 on_error: Optional[Callable[[BaseException], None]] = None,
                 name: str = ""):
        if interval <= 0:
            raise ValueError(f"interval must be positive, got {interval!r}")
        self._fetch = fetch
        self.interval = interval
        self.name = name or getattr(fetch, "__name__", "poll")
        self.on_update = on_update
        self.on_error = on_error
        self.latest_value: Optional[T] = None
        self.last_fetch_timestamp: Optional[float] = None
        self.cancelled = False
        self.started = False
        self._generation = 0
        self._ticker: Optional[asyncio.Task] = None
        self._in_flight: set[asyncio.Task] = set()

    # ---- Lifecycle ----

    def start(self):
        """Fire the first fetch now and schedule the rest. Needs a running loop."""
        if self.cancelled:
            raise RuntimeError(f"subscription '{self.name}' was cancelled")
        if self.started:
            return
        self.started = True
        self._ticker = asyncio.get_running_loop().create_task(
            self._tick_loop(self._generation), name=f"poll-{self.name}")

    def cancel(self):
        """Stop ticking and discard anything still in flight."""
        if self.cancelled:
            return
        self.cancelled = True
        self._generation += 1
        if self._ticker is not None:
            self._ticker.cancel()
            self._ticker = None
        for task in list(self._in_flight):
            task.cancel()
        self._in_flight.clear()

    def refresh(self) -> asyncio.Task:
        """Fire an out-of-band fetch now. The returned task may be ignored."""
        return self._spawn()

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    # ---- Internals ----

    async def _tick_loop(self, generation: int):
        loop = asyncio.get_running_loop()
        next_tick = loop.time()
        while generation == self._generation:
            self._spawn()
            next_tick += self.interval
            # Fell behind (suspended loop): skip missed ticks instead of bursting
            if next_tick < loop.time():
                next_tick = loop.time()
            await asyncio.sleep(next_tick - loop.time())

    def _spawn(self) -> asyncio.Task:
        loop = asyncio.get_running_loop()
        if self.cancelled:
            return loop.create_task(self._discarded())
        task = loop.create_task(self._run_fetch(self._generation))
        self._in_flight.add(task)
        task.add_done_callback(self._in_flight.discard)
        return task

    @staticmethod
    async def _discarded() -> None:
        return None

    async def _run_fetch(self, generation: int) -> Optional[T]:
        try:
            value = await self._fetch()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            if generation == self._generation and self.on_error:
                self.on_error(e)
            return None

        # Torn down while the request was out
        if generation != self._generation:
            return None

        self.latest_value = value
        self.last_fetch_timestamp = time.time()
        if self.on_update:
            self.on_update(value)
        return value
