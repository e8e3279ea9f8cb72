"""
Instrumentation module for EDEN.

Millisecond-precision event lines for ordering verification across the
orchestrator's stages (retrieve, ground, generate, validate), and a timing
block that warns when a stage exceeds its latency budget.
"""

import logging
import time
from contextlib import contextmanager
from typing import Iterator, Optional

logger = logging.getLogger(__name__)


def log_event(event: str, stage: str = "", conversation_id: str = "") -> None:
    """
    Log event with monotonic timeline metadata.

    Format: [EVT] t=<ms> conv=<conversation_id> stage=<stage> event=<event>
    """
    ts = int(time.monotonic() * 1000)
    logger.info(f"[EVT] t={ts} conv={conversation_id} stage={stage} event={event}")


class StageTimer:
    """Elapsed time for one timed block."""

    def __init__(self, stage: str, threshold_seconds: Optional[float]):
        self.stage = stage
        self.threshold_seconds = threshold_seconds
        self.elapsed_seconds = 0.0
        self.triggered = False

    @property
    def elapsed_ms(self) -> float:
        return self.elapsed_seconds * 1000


@contextmanager
def timed(stage: str, threshold_seconds: Optional[float] = None) -> Iterator[StageTimer]:
    """
    Measure a block (sync or awaited code inside a coroutine).

    Logs [LATENCY] on exit; logs a [WATCHDOG] warning when the block ran
    longer than threshold_seconds. Never suppresses exceptions.
    """
    timer = StageTimer(stage, threshold_seconds)
    start = time.monotonic()
    try:
        yield timer
    finally:
        timer.elapsed_seconds = time.monotonic() - start
        logger.debug(f"[LATENCY] {stage}: {timer.elapsed_ms:.2f}ms")
        if threshold_seconds is not None and timer.elapsed_seconds > threshold_seconds:
            timer.triggered = True
            logger.warning(
                "[WATCHDOG] %s exceeded threshold: %.2fs > %.2fs",
                stage,
                timer.elapsed_seconds,
                threshold_seconds,
            )
