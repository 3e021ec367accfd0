# zerowaste/services/expiry.py
import asyncio
import logging
from typing import NamedTuple

from zerowaste.core.clock import Clock, utcnow
from zerowaste.core.errors import InvalidTransitionError
from zerowaste.core.states import TERMINAL_STATES

logger = logging.getLogger(__name__)


class SweepReport(NamedTuple):
    scanned: int
    expired: int
    failed: int


class ExpirySweeper:
    """Moves open donations whose expiry date has passed to EXPIRED.

    Runs on a fixed interval and on demand. A sweep that is still running when
    the next one is due makes the next one a no-op.
    """

    def __init__(self, repo, donations, clock: Clock = utcnow, interval_seconds: float = 900):
        self.repo = repo
        self.donations = donations
        self.clock = clock
        self.interval_seconds = interval_seconds
        self._running = asyncio.Lock()
        self._tasks = set()

    async def sweep_once(self) -> SweepReport:
        async with self._running:
            return await self._sweep()

    async def _sweep(self) -> SweepReport:
        now = self.clock()
        candidates = await self.repo.find_expired_donations(now, TERMINAL_STATES)
        expired = failed = 0
        for donation in candidates:
            try:
                await self.donations.expire(donation.id)
                expired += 1
            except InvalidTransitionError:
                # finished or cancelled between the scan and the update
                logger.debug("donation %s left open state before expiry", donation.id)
            except Exception:
                failed += 1
                logger.exception("failed to expire donation %s", donation.id)
        report = SweepReport(scanned=len(candidates), expired=expired, failed=failed)
        if candidates:
            logger.info("expiry sweep: %s", report._asdict())
        return report

    async def tick(self):
        if self._running.locked():
            logger.info("expiry sweep still running, skipping this tick")
            return None
        return await self.sweep_once()

    async def run_forever(self) -> None:
        logger.info("expiry sweeper started (every %ss)", self.interval_seconds)
        try:
            while True:
                task = asyncio.create_task(self._guarded_tick())
                self._tasks.add(task)
                task.add_done_callback(self._tasks.discard)
                await asyncio.sleep(self.interval_seconds)
        finally:
            pending = list(self._tasks)
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)
            logger.info("expiry sweeper stopped")

    async def _guarded_tick(self) -> None:
        try:
            await self.tick()
        except Exception:
            logger.exception("expiry sweep failed")
