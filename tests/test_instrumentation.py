import logging
import time

import pytest

from eden.instrumentation import log_event, timed


def test_log_event_format(caplog):
    with caplog.at_level(logging.INFO, logger="eden.instrumentation"):
        log_event("QUERY_START", stage="orchestrator", conversation_id="c1")
    message = caplog.records[0].getMessage()
    assert message.startswith("[EVT] t=")
    assert message.endswith("conv=c1 stage=orchestrator event=QUERY_START")


def test_timed_block_under_threshold(caplog):
    with caplog.at_level(logging.WARNING, logger="eden.instrumentation"):
        with timed("retrieve", threshold_seconds=5) as timer:
            pass
    assert not timer.triggered
    assert timer.elapsed_ms >= 0
    assert caplog.records == []


def test_timed_block_over_threshold_warns(caplog):
    with caplog.at_level(logging.WARNING, logger="eden.instrumentation"):
        with timed("generate", threshold_seconds=0.001) as timer:
            time.sleep(0.01)
    assert timer.triggered
    assert "[WATCHDOG] generate exceeded threshold" in caplog.records[0].getMessage()


def test_timed_does_not_swallow_errors():
    with pytest.raises(RuntimeError):
        with timed("validate"):
            raise RuntimeError("boom")
