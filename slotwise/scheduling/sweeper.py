import asyncio

from loguru import logger

from slotwise.domain.exceptions import SchedulingError
from slotwise.domain.models import WaitlistEntry
from slotwise.scheduling.waitlist import WaitlistEngine


class ExpirySweeper:
    """Periodically expires notified waitlist entries past their response window.

    Nothing else guarantees the ``notified -> expired`` transition fires, so
    this runs as a background task for the lifetime of the service.
    """

    def __init__(self, engine: WaitlistEngine, interval_seconds: float = 300.0) -> None:
        self._engine = engine
        self._interval = interval_seconds
        self._task: asyncio.Task[None] | None = None
        self._stopped = asyncio.Event()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self) -> list[WaitlistEntry]:
        return await self._engine.expire_overdue()

    async def run_forever(self) -> None:
        logger.info("Waitlist expiry sweep started (every {}s)", self._interval)
        while not self._stopped.is_set():
            try:
                await self.run_once()
            except SchedulingError as exc:
                logger.warning("Waitlist expiry sweep failed; retrying next cycle: {}", exc)
            try:
                await asyncio.wait_for(self._stopped.wait(), timeout=self._interval)
            except asyncio.TimeoutError:
                pass
        logger.info("Waitlist expiry sweep stopped")

    def start(self) -> None:
        if self.running:
            return
        self._stopped.clear()
        self._task = asyncio.create_task(self.run_forever())

    async def stop(self) -> None:
        self._stopped.set()
        if self._task is not None:
            await self._task
            self._task = None
