"""
Periodic Triggers
=================

Non-reentrant periodic execution of a blocking callback.

The callback runs in a worker thread and is awaited before the next tick is
scheduled. Ticks that elapse while a run is still in progress are SKIPPED,
not queued, so total work stays bounded under load.

Error Policy:
    - IndexInvariantError: logged as critical, the trigger stops and the
      error propagates to whoever awaits run()
    - Any other exception: logged, counted, the next tick runs normally
"""

import asyncio
import logging
from typing import Any, Callable, Optional

from lane_blocker.exceptions import IndexInvariantError


logger = logging.getLogger(__name__)


class PeriodicTrigger:
    """
    Runs `callback` every `period` seconds.

    Attributes:
        name: Name used in logs
        period: Seconds between ticks
        runs: Completed runs
        skipped_runs: Ticks skipped because a run was still in progress
        errors: Runs that raised

    Example:
        trigger = PeriodicTrigger("cull", 1.0, blocker.cull)
        task = asyncio.create_task(trigger.run())
        ...
        await trigger.stop()
        await task
    """

    def __init__(
        self,
        name: str,
        period: float,
        callback: Callable[[], Any],
    ) -> None:
        if period <= 0:
            raise ValueError("period must be positive")

        self.name = name
        self.period = period
        self.callback = callback

        self.runs: int = 0
        self.skipped_runs: int = 0
        self.errors: int = 0
        self._busy: bool = False
        self._running: bool = False
        self._stop_event: Optional[asyncio.Event] = None

    @property
    def busy(self) -> bool:
        """Whether a run is in progress."""
        return self._busy

    async def run(self) -> None:
        """Tick until stop() is called."""
        loop = asyncio.get_running_loop()
        self._stop_event = asyncio.Event()
        self._running = True
        next_tick = loop.time() + self.period

        logger.info(f"Trigger '{self.name}' started (period={self.period:.3f}s)")

        while self._running:
            delay = next_tick - loop.time()
            if delay > 0:
                try:
                    await asyncio.wait_for(self._stop_event.wait(), timeout=delay)
                    break
                except asyncio.TimeoutError:
                    pass

            self._busy = True
            try:
                await asyncio.to_thread(self.callback)
            except IndexInvariantError as e:
                logger.critical(f"Trigger '{self.name}' hit an invariant violation: {e}")
                self._running = False
                raise
            except Exception as e:
                self.errors += 1
                logger.error(f"Trigger '{self.name}' run failed: {e}")
            finally:
                self._busy = False
            self.runs += 1

            next_tick += self.period
            now = loop.time()
            if now > next_tick:
                missed = int((now - next_tick) // self.period) + 1
                self.skipped_runs += missed
                next_tick += missed * self.period
                logger.debug(f"Trigger '{self.name}' skipped {missed} overlapping ticks")

        logger.info(f"Trigger '{self.name}' stopped after {self.runs} runs")

    async def stop(self) -> None:
        """Stop after the current run, if any."""
        self._running = False
        if self._stop_event is not None:
            self._stop_event.set()

    def metrics(self) -> dict:
        return {
            "runs": self.runs,
            "skipped_runs": self.skipped_runs,
            "errors": self.errors,
            "busy": self._busy,
        }
