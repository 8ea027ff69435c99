"""
Scheduler: drives one TradingStrategy in a self-pacing loop.

Every slot:
- disabled strategy: sleep DISABLED_RECHECK_MS and ask again
- iteration still running (manual run or a triggered one): skip the slot
  and log the postponement
- otherwise run exactly one iteration

A failing iteration never escapes the loop; the next slot is always
scheduled.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from mmbot.core.errors import ConfigurationError
from mmbot.monitoring.metrics_rich import RichMetrics
from mmbot.strategy.base import TradingStrategy

log = logging.getLogger("mmbot")

DISABLED_RECHECK_MS = 3000


@dataclass
class SlotResult:
    """Outcome of one scheduler slot."""
    ran: bool
    postponed: bool = False
    enabled: bool = True
    error: Optional[str] = None
    next_delay_ms: int = DISABLED_RECHECK_MS
    duration_ms: float = 0.0


class Scheduler:
    """
    Usage:
        scheduler = Scheduler(planner, metrics=metrics)
        task = asyncio.create_task(scheduler.run())
        ...
        scheduler.stop()
    """

    def __init__(
        self,
        strategy: TradingStrategy,
        metrics: Optional[RichMetrics] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        log_event: Optional[Callable[..., None]] = None,
    ) -> None:
        self.strategy = strategy
        self.metrics = metrics
        self._sleep = sleep
        self._running = False
        self._slots = 0
        self._log_event = log_event or self._default_log

    def _default_log(self, event: str, **kwargs: Any) -> None:
        level = kwargs.pop("level", logging.INFO)
        log.log(level, json.dumps({"event": event, "strategy": self.strategy.name, **kwargs}, default=str))

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def slots(self) -> int:
        return self._slots

    def stop(self) -> None:
        self._running = False
        self._log_event("scheduler_stop")

    async def run(self) -> None:
        self._running = True
        self._log_event("scheduler_start")
        while self._running:
            result = await self.tick()
            if not self._running:
                break
            await self._sleep(result.next_delay_ms / 1000)

    async def tick(self) -> SlotResult:
        """Run one slot and report how long to wait before the next one."""
        self._slots += 1
        try:
            enabled = self.strategy.is_enabled()
        except Exception as exc:
            self._log_event("scheduler_enabled_check_error", error=str(exc), level=logging.ERROR)
            return SlotResult(ran=False, enabled=False, error=str(exc))
        if not enabled:
            return SlotResult(ran=False, enabled=False)

        next_delay = self._next_delay()
        result = await self.run_once()
        result.next_delay_ms = next_delay
        return result

    async def run_once(self) -> SlotResult:
        """Run one iteration now unless one is in progress. Also the manual diagnostics hook."""
        name = self.strategy.name
        if self.strategy.in_progress:
            if self.metrics is not None:
                self.metrics.iterations_postponed.labels(strategy=name).inc()
            self._log_event("iteration_postponed", reason="previous iteration is in progress")
            return SlotResult(ran=False, postponed=True)

        start = time.perf_counter()
        error = None
        ran = False
        try:
            ran = await self.strategy.run_exclusive()
        except ConfigurationError as exc:
            error = str(exc)
            self._log_event("iteration_config_error", error=error, level=logging.WARNING)
        except Exception as exc:
            error = str(exc)
            log.exception(json.dumps({"event": "iteration_error", "strategy": name, "error": error}))
        duration_ms = (time.perf_counter() - start) * 1000

        if self.metrics is not None:
            if error is not None:
                self.metrics.iteration_errors.labels(strategy=name).inc()
            if ran or error is not None:
                self.metrics.iterations_total.labels(strategy=name).inc()
                self.metrics.iteration_duration_ms.labels(strategy=name).observe(duration_ms)

        if not ran and error is None:
            # Another caller started an iteration between the check and the call
            self._log_event("iteration_postponed", reason="previous iteration is in progress")
            return SlotResult(ran=False, postponed=True)
        return SlotResult(ran=error is None, error=error, duration_ms=duration_ms)

    def _next_delay(self) -> int:
        try:
            return max(0, int(self.strategy.next_interval_ms()))
        except Exception as exc:
            self._log_event("scheduler_interval_error", error=str(exc), level=logging.ERROR)
            return DISABLED_RECHECK_MS
