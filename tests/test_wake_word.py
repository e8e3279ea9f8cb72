import asyncio

import pytest

from eden.models import Sensitivity
from eden.wake_word import (
    Transcript,
    WakeWordDetector,
    edit_distance,
    match_wake_word,
    similarity_ratio,
)
from tests.conftest import FakeTranscriptSource


class TestMatching:
    def test_edit_distance_counts_transposition_once(self):
        assert edit_distance("edne", "eden") == 1
        assert edit_distance("eden", "eden") == 0
        assert edit_distance("", "eden") == 4
        assert edit_distance("kitten", "sitting") == 3

    def test_similarity_ratio(self):
        assert similarity_ratio("edne", "eden") == pytest.approx(0.75)
        assert similarity_ratio("", "eden") == 0.0
        assert similarity_ratio("eden", "eden") == 1.0

    def test_exact_match(self):
        assert match_wake_word("Eden", ["eden"], 0.75) == "eden"

    def test_substring_match(self):
        assert match_wake_word("okay hey eden what time is it", ["hey eden"], 0.85) == "hey eden"

    def test_fuzzy_match_respects_threshold(self):
        assert match_wake_word("edne", ["eden"], 0.75) == "eden"
        assert match_wake_word("edne", ["eden"], 0.85) is None

    def test_first_declared_phrase_wins(self):
        assert match_wake_word("hey eden", ["eden", "hey eden"], 0.75) == "eden"
        assert match_wake_word("hey eden", ["hey eden", "eden"], 0.75) == "hey eden"

    def test_unrelated_and_empty_text(self):
        assert match_wake_word("what's the weather", ["eden"], 0.6) is None
        assert match_wake_word("   ", ["eden"], 0.6) is None


class TestDetector:
    def _detector(self, source=None, **kwargs):
        detector = WakeWordDetector(source or FakeTranscriptSource(), **kwargs)
        events = []
        detector.subscribe(events.append)
        return detector, events

    def test_process_transcript_emits_event(self):
        detector, events = self._detector(wake_words=["eden"])
        event = detector.process_transcript(Transcript("edne", 0.8))
        assert event.wake_word == "eden"
        assert event.confidence == 0.8
        assert events == [event]

    def test_sensitivity_controls_fuzzy_threshold(self):
        detector, events = self._detector(wake_words=["eden"], sensitivity=Sensitivity.HIGH)
        assert detector.process_transcript(Transcript("edne")) is None
        detector.update_config(sensitivity=Sensitivity.MEDIUM)
        assert detector.process_transcript(Transcript("edne")) is not None

    def test_add_and_remove_wake_words(self):
        detector, _ = self._detector(wake_words=["eden"])
        assert detector.add_wake_word("  Computer ") is True
        assert detector.add_wake_word("computer") is False
        assert detector.wake_words == ["eden", "computer"]
        assert detector.remove_wake_word("eden") is True
        assert detector.remove_wake_word("eden") is False
        assert detector.wake_words == ["computer"]

    def test_update_config_normalizes_phrases(self):
        detector, _ = self._detector()
        detector.update_config(wake_words=["  Hello Eden  "])
        assert detector.wake_words == ["hello eden"]

    @pytest.mark.asyncio
    async def test_degraded_when_source_is_not_continuous(self):
        detector, events = self._detector(FakeTranscriptSource([["eden"]], continuous=False))
        detector.start()
        await asyncio.sleep(0.05)
        assert detector.degraded is True
        assert events == []
        detector.stop()
        assert detector.degraded is False

    @pytest.mark.asyncio
    async def test_listen_loop_detects_and_restarts(self):
        source = FakeTranscriptSource([["hello there"], ["hey eden"]])
        detector, events = self._detector(source, wake_words=["hey eden"], restart_delay=0.01)
        detector.start()
        try:
            await asyncio.sleep(0.1)
        finally:
            detector.stop()
        assert [e.wake_word for e in events] == ["hey eden"]
        assert source.opened >= 2
        assert detector.restarts >= 1

    @pytest.mark.asyncio
    async def test_recognition_error_restarts_stream(self):
        source = FakeTranscriptSource([["eden"]], error_on_first=True)
        detector, events = self._detector(source, wake_words=["eden"], restart_delay=0.01)
        detector.start()
        try:
            await asyncio.sleep(0.1)
        finally:
            detector.stop()
        assert [e.wake_word for e in events] == ["eden"]
        assert not detector.is_listening()

    @pytest.mark.asyncio
    async def test_start_twice_is_harmless(self):
        source = FakeTranscriptSource()
        detector, _ = self._detector(source, restart_delay=0.01)
        detector.start()
        detector.start()
        assert detector.is_listening()
        detector.close()
        assert not detector.is_listening()
