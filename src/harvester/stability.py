"""Readiness detection for an operator-driven results page.

A tick is stable when all of the following hold:

1. No DOM mutations in the result container since the previous tick.
2. No in-flight result-relevant requests, and none started or finished for
   at least ``network_idle_ms``.
3. One animation frame has elapsed after (1) and (2) were observed.

The wait succeeds after ``required_stable_ticks`` consecutive stable ticks
and raises ``StabilityTimeout`` (carrying the partial report) on the hard
ceiling or when cancelled. It never scrolls, clicks or navigates.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Callable, Optional

from .binding import PageBinding
from .models import StabilityReport, StabilitySignal
from .reliability.errors import ErrorContext, StabilityTimeout

logger = logging.getLogger(__name__)

Clock = Callable[[], float]
Sleep = Callable[[float], Awaitable[None]]


class StabilityDetector:
    def __init__(
        self,
        binding: PageBinding,
        *,
        clock: Clock = time.monotonic,
        sleep: Sleep = asyncio.sleep,
        cancel_event: Optional[asyncio.Event] = None,
    ):
        self.binding = binding
        self._clock = clock
        self._sleep = sleep
        self._cancel_event = cancel_event

    def _cancelled(self) -> bool:
        return self._cancel_event is not None and self._cancel_event.is_set()

    async def until_stable(
        self,
        poll_interval_ms: int = 1000,
        required_stable_ticks: int = 3,
        network_idle_ms: int = 1000,
        hard_ceiling_ms: int = 15000,
        container_selector: str = "body",
    ) -> StabilityReport:
        started = self._clock()
        ticks = 0
        stable_ticks = 0
        last_mutation_at: Optional[float] = None
        signal: Optional[StabilitySignal] = None

        def report(**flags) -> StabilityReport:
            elapsed_ms = int(round((self._clock() - started) * 1000))
            return StabilityReport(ticks=ticks, elapsed_ms=elapsed_ms, last_signal=signal, **flags)

        # First call installs the observer and sets the baseline.
        await self.binding.observe_mutations(container_selector)

        while True:
            if self._cancelled():
                partial = report(stable=False, cancelled=True)
                raise StabilityTimeout("Stability wait cancelled", report=partial,
                                       context=ErrorContext(selector=container_selector))

            elapsed_ms = (self._clock() - started) * 1000
            remaining_ms = hard_ceiling_ms - elapsed_ms
            await self._sleep(max(0.0, min(poll_interval_ms, remaining_ms)) / 1000)

            if self._cancelled():
                continue

            ticks += 1
            mutations = await self.binding.observe_mutations(container_selector)
            activity = await self.binding.network_activity()
            now = self._clock()
            if mutations:
                last_mutation_at = now

            signal = StabilitySignal(
                mutation_count=mutations,
                last_mutation_at=last_mutation_at,
                pending_network_requests=activity.pending,
                last_network_activity_at=activity.last_activity_at,
            )

            network_quiet = activity.pending == 0 and (
                activity.last_activity_at is None
                or (now - activity.last_activity_at) * 1000 >= network_idle_ms
            )

            if mutations == 0 and network_quiet:
                await self.binding.next_animation_frame()
                stable_ticks += 1
                logger.debug(f"Stable tick {stable_ticks}/{required_stable_ticks}")
                if stable_ticks >= required_stable_ticks:
                    return report(stable=True)
            else:
                if stable_ticks:
                    logger.debug(f"Stability reset: mutations={mutations} pending={activity.pending}")
                stable_ticks = 0

            if (self._clock() - started) * 1000 >= hard_ceiling_ms:
                partial = report(stable=False, timed_out=True)
                raise StabilityTimeout(
                    f"Page not stable after {partial.elapsed_ms} ms ({stable_ticks}/{required_stable_ticks} ticks)",
                    report=partial,
                    context=ErrorContext(selector=container_selector),
                )
