import asyncio
import logging
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


class SingleFlightPulse:
    """
    Periodic runner with a single execution slot.

    At most one callback runs at a time. Ticks that arrive while it is busy
    are coalesced into one pending flag; the deferred run happens on the
    next interval tick, never straight after the current run.
    """

    def __init__(self, callback: Callable[[], Awaitable[None]], interval: float, name: str = "pulse"):
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.callback = callback
        self.interval = interval
        self.name = name
        self.runs = 0
        self._pending = False
        self._inflight: Optional[asyncio.Task] = None
        self._loop_task: Optional[asyncio.Task] = None

    @property
    def busy(self) -> bool:
        return self._inflight is not None and not self._inflight.done()

    @property
    def pending(self) -> bool:
        return self._pending

    def trigger(self) -> bool:
        """Starts a run, or marks one pending if busy. Returns whether a run started."""
        if self.busy:
            if not self._pending:
                logger.debug(f"{self.name}: tick while busy, deferring")
            self._pending = True
            return False
        self._pending = False
        self._inflight = asyncio.create_task(self._run())
        return True

    async def _run(self) -> None:
        try:
            await self.callback()
        except Exception:
            logger.error(f"{self.name}: run failed", exc_info=True)
        self.runs += 1
        if self._pending:
            logger.debug(f"{self.name}: deferred tick waits for the next interval")

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            self.trigger()

    def start(self) -> None:
        if self._loop_task is None:
            logger.info(f"{self.name}: every {self.interval}s")
            self._loop_task = asyncio.create_task(self._loop())

    async def stop(self) -> None:
        if self._loop_task is not None:
            self._loop_task.cancel()
            try:
                await self._loop_task
            except asyncio.CancelledError:
                pass
            self._loop_task = None
        if self._inflight is not None:
            # let the current run finish, drop the deferred tick
            self._pending = False
            await self._inflight
            self._inflight = None
