"""Background loop shared by the scheduler and the cleanup service."""

from __future__ import annotations

import asyncio

from ferryman.logging import get_logger, log_debug, log_exception, log_info

logger = get_logger(__name__)


class PeriodicService:
    """Run :meth:`run_once` every ``interval_s`` seconds until stopped.

    A tick that starts while the previous one is still running is skipped
    rather than queued, so at most one pass is in flight per service. A pass
    that raises is logged and the loop keeps going.

    Subclasses implement :meth:`run_once`.
    """

    name = "periodic"

    def __init__(self, interval_s: float) -> None:
        """Initialise with the delay between passes."""
        if interval_s <= 0:
            msg = f"{type(self).__name__} interval must be positive"
            raise ValueError(msg)
        self.interval_s = interval_s
        self._pass_lock = asyncio.Lock()
        self._stop_event: asyncio.Event | None = None
        self._task: asyncio.Task[None] | None = None

    async def run_once(self) -> None:
        """Perform one pass."""
        raise NotImplementedError

    async def tick(self) -> bool:
        """Run one pass unless another is in flight; return whether it ran."""
        if self._pass_lock.locked():
            log_info(logger, "[%s] pass already running; tick skipped", self.name)
            return False
        async with self._pass_lock:
            try:
                await self.run_once()
            except Exception as exc:  # noqa: BLE001
                log_exception(logger, f"[{self.name}] pass failed", exc)
        return True

    def is_running(self) -> bool:
        """Return True while the background loop is active."""
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start the background loop. Calling it twice is a no-op."""
        if self.is_running():
            return
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._loop(self._stop_event))
        log_info(logger, "[%s] started interval_s=%s", self.name, self.interval_s)

    async def stop(self) -> None:
        """Ask the loop to exit and wait for the current pass to finish."""
        if self._task is None or self._stop_event is None:
            return
        self._stop_event.set()
        await self._task
        self._task = None
        log_info(logger, "[%s] stopped", self.name)

    async def _loop(self, stop_event: asyncio.Event) -> None:
        while not stop_event.is_set():
            await self.tick()
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self.interval_s)
            except TimeoutError:
                log_debug(logger, "[%s] interval elapsed", self.name)
