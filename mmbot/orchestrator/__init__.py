"""
Orchestrator package: per-strategy scheduling loops.
"""

from mmbot.orchestrator.scheduler import DISABLED_RECHECK_MS, Scheduler, SlotResult

__all__ = [
    "DISABLED_RECHECK_MS",
    "Scheduler",
    "SlotResult",
]
