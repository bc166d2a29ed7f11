from __future__ import annotations

import logging
import time
from collections.abc import Callable
from datetime import UTC, datetime

from ..models.batch_result import BatchResult
from .scheduler import SchedulerBridge

"""Trigger worker: fires pending continuations when they become due.

The worker stands in for the host that executes time-based triggers. It
takes the earliest pending trigger for the export handler, waits until it is
due, consumes it and invokes the continuation. The continuation either
registers its own successor (more rows) or clears everything (finished), so
the loop ends by itself once no trigger is pending.
"""

__all__ = [
    "run_worker",
]

logger = logging.getLogger(__name__)


def run_worker(
    scheduler: SchedulerBridge,
    continuation: Callable[[], BatchResult],
    *,
    once: bool = False,
    poll_seconds: float = 5.0,
    max_runs: int | None = None,
    sleep: Callable[[float], None] = time.sleep,
    now: Callable[[], datetime] = lambda: datetime.now(UTC),
    on_result: Callable[[BatchResult], None] | None = None,
) -> int:
    """Run continuations until no trigger is pending.

    Args:
        scheduler: Bridge whose handler triggers are consumed
        continuation: One batch invocation (BatchRunner.run_batch)
        once: Fire at most one due trigger and return without waiting
        poll_seconds: Upper bound of a single wait while a trigger is not due
        max_runs: Stop after this many invocations (None = unlimited)
        on_result: Called with every BatchResult (the CLI logs its SUMMARY)

    Returns:
        Number of continuations invoked.
    """
    runs = 0
    while max_runs is None or runs < max_runs:
        pending = scheduler.pending()
        if not pending:
            logger.info("no pending continuation; worker exits")
            break
        trigger = pending[0]
        wait = (trigger.run_at - now()).total_seconds()
        if wait > 0:
            if once:
                logger.info(f"next continuation is not due yet ({trigger.run_at.isoformat()})")
                break
            sleep(min(wait, poll_seconds))
            continue

        # 実行前にトリガを消費 (continuation 側で次を登録する)
        scheduler.cancel_all()
        logger.info(f"firing continuation scheduled at {trigger.run_at.isoformat()}")
        result = continuation()
        runs += 1
        if on_result is not None:
            on_result(result)
        if once:
            break
    return runs
