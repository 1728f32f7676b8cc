from __future__ import annotations

import asyncio
from typing import Optional

from pulse.logging_config import get_logger
from pulse.models import Snapshot
from pulse.service import PulseService

logger = get_logger(__name__)


class PulseScheduler:
    """Runs the generation cycle every ``interval`` seconds, never overlapping."""

    def __init__(self, service: PulseService, interval_seconds: Optional[float] = None) -> None:
        self.service = service
        self.interval = (
            interval_seconds if interval_seconds is not None else service.settings.interval_minutes * 60
        )
        self._stop = asyncio.Event()
        self.cycles = 0
        self.failures = 0

    async def run_cycle(self) -> Optional[Snapshot]:
        try:
            snapshot = await self.service.generate_hour()
        except asyncio.CancelledError:
            raise
        except Exception:
            self.failures += 1
            logger.error("generation_cycle_failed", exc_info=True)
            return None
        finally:
            self.cycles += 1
        return snapshot

    async def run(self, max_cycles: Optional[int] = None) -> None:
        logger.info("scheduler_started", interval_seconds=self.interval)
        while not self._stop.is_set():
            await self.run_cycle()
            if max_cycles is not None and self.cycles >= max_cycles:
                break
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass
        logger.info("scheduler_stopped", cycles=self.cycles, failures=self.failures)

    def stop(self) -> None:
        self._stop.set()
