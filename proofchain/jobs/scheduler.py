from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

import schedule

from proofchain.consensus.finalization import FinalizationEngine

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]


class FinalizationScheduler:
    """Runs the finalization sweep (and optional price refresh) on a fixed cadence.

    Jobs live on a private ``schedule.Scheduler`` so several instances (or
    tests) never share the module-level default scheduler.
    """

    def __init__(
        self,
        engine: FinalizationEngine,
        interval_minutes: int = 5,
        initial_delay_seconds: int = 5,
        price_refresh: Callable[[], object] | None = None,
        price_refresh_minutes: int = 60,
        poll_seconds: float = 1.0,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._engine = engine
        self._scheduler = schedule.Scheduler()
        self._poll_seconds = poll_seconds
        self._sleep = sleep
        self._stopped = False

        self._scheduler.every(interval_minutes).minutes.do(self.sweep).tag("finalization")
        if initial_delay_seconds > 0:
            self._scheduler.every(initial_delay_seconds).seconds.do(
                self._initial_sweep
            ).tag("finalization", "initial")
        if price_refresh is not None:
            self._scheduler.every(price_refresh_minutes).minutes.do(
                self._run_price_refresh, price_refresh
            ).tag("prices")

        logger.info(
            "Scheduler configured: finalization every %d min, first run after %ds",
            interval_minutes,
            initial_delay_seconds,
        )

    @property
    def jobs(self) -> list[schedule.Job]:
        return list(self._scheduler.jobs)

    def sweep(self) -> int:
        try:
            finalized = self._engine.finalize_expired()
        except Exception as exc:
            logger.error("Error in automatic finalization: %s", exc)
            return 0
        if finalized > 0:
            logger.info("Automatically finalized %d content items", finalized)
        return finalized

    def _initial_sweep(self):
        self.sweep()
        return schedule.CancelJob

    @staticmethod
    def _run_price_refresh(refresh: Callable[[], object]) -> None:
        try:
            refresh()
        except Exception as exc:
            logger.error("Price refresh failed: %s", exc)

    def run_pending(self) -> None:
        self._scheduler.run_pending()

    def run_all(self) -> None:
        """Run every job now, regardless of schedule."""
        self._scheduler.run_all()

    def stop(self) -> None:
        self._stopped = True

    @property
    def stopped(self) -> bool:
        return self._stopped

    async def run(self) -> None:
        logger.info("Finalization scheduler started")
        while not self._stopped:
            try:
                self._scheduler.run_pending()
                await self._sleep(self._poll_seconds)
            except asyncio.CancelledError:
                break
            except Exception as exc:
                logger.error("Scheduler error: %s", exc)
                await self._sleep(self._poll_seconds)
        self._scheduler.clear()
        logger.info("Finalization scheduler stopped")
