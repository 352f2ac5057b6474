"""Periodic trigger for the insight processor."""

import asyncio
import logging
from typing import Any

from .processor import AsyncInsightProcessor

logger = logging.getLogger(__name__)


class InsightJobScheduler:
    """Runs the processor on a fixed interval in a background task.

    Each tick runs one processing pass and then a retry pass. Failures are
    logged and the loop keeps going.
    """

    def __init__(
        self,
        processor: AsyncInsightProcessor,
        interval_seconds: float = 300.0,
        retry_failed: bool = True,
    ):
        self.processor = processor
        self.interval_seconds = interval_seconds
        self.retry_failed = retry_failed
        self._running = False
        self._task: asyncio.Task | None = None
        self._in_tick = False
        self._stats: dict[str, int] = {"runs": 0, "skipped": 0, "failures": 0}

    @property
    def running(self) -> bool:
        return self._running

    @property
    def stats(self) -> dict[str, int]:
        return dict(self._stats)

    async def start(self) -> None:
        """Start the background loop."""
        if self._running:
            logger.warning("Insight job scheduler already running")
            return

        self._running = True
        self._task = asyncio.create_task(self._loop())
        logger.info(f"Insight job scheduler started (interval={self.interval_seconds}s)")

    async def stop(self) -> None:
        """Stop the loop; a tick in progress finishes first, a pending sleep is cancelled."""
        self._running = False
        if self._task:
            if not self._in_tick:
                self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Insight job scheduler stopped")

    async def run_once(self) -> dict[str, Any] | None:
        """Run one processing pass (and retry pass); None when skipped or failed."""
        if self.processor.is_running:
            self._stats["skipped"] += 1
            logger.info("Insight processor busy, skipping scheduled run")
            return None

        try:
            result = await self.processor.process_unprocessed_memories()
            if result.get("skipped"):
                self._stats["skipped"] += 1
                return None

            self._stats["runs"] += 1
            if self.retry_failed:
                result = {**result, "retries": await self.processor.retry_failed_memories()}
            return result
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._stats["failures"] += 1
            logger.error(f"Scheduled insight run failed: {e}", exc_info=True)
            return None

    async def _loop(self) -> None:
        while self._running:
            self._in_tick = True
            try:
                await self.run_once()
            finally:
                self._in_tick = False
            if self._running:
                await asyncio.sleep(self.interval_seconds)
