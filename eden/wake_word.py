"""
Wake-Word Detection for EDEN.

Listens to a continuous transcript stream (external speech-to-text) and
spots configured wake phrases.

Design Rules:
- Phrases are tested in declaration order; first match wins
- Per phrase: exact match, then substring, then fuzzy (edit distance)
- A stream that ends or fails is restarted while the detector is enabled
- Sources without continuous recognition put the detector in a degraded
  no-op state: it logs a warning, emits nothing, and never raises
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import AsyncIterator, Callable, Iterable, List, Optional

from eden import policy
from eden.events import EventBus, Subscription
from eden.models import Sensitivity, WakeWordEvent

logger = logging.getLogger(__name__)

FUZZY_THRESHOLDS = {
    Sensitivity.LOW: 0.60,
    Sensitivity.MEDIUM: 0.75,
    Sensitivity.HIGH: 0.85,
}


@dataclass
class Transcript:
    text: str
    confidence: float = 1.0


class TranscriptSource:
    """Speech-to-text collaborator. Subclasses yield Transcripts until the stream ends."""

    supports_continuous = True

    def transcripts(self) -> AsyncIterator[Transcript]:
        raise NotImplementedError


# ============================================================================
# MATCHING
# ============================================================================

def edit_distance(a: str, b: str) -> int:
    """Optimal string alignment distance (adjacent transposition = one edit)."""
    if a == b:
        return 0
    if not a:
        return len(b)
    if not b:
        return len(a)
    rows = len(a) + 1
    cols = len(b) + 1
    d = [[0] * cols for _ in range(rows)]
    for i in range(rows):
        d[i][0] = i
    for j in range(cols):
        d[0][j] = j
    for i in range(1, rows):
        for j in range(1, cols):
            cost = 0 if a[i - 1] == b[j - 1] else 1
            d[i][j] = min(
                d[i - 1][j] + 1,
                d[i][j - 1] + 1,
                d[i - 1][j - 1] + cost,
            )
            if i > 1 and j > 1 and a[i - 1] == b[j - 2] and a[i - 2] == b[j - 1]:
                d[i][j] = min(d[i][j], d[i - 2][j - 2] + 1)
    return d[-1][-1]


def similarity_ratio(a: str, b: str) -> float:
    """1 - distance / longer length. Empty input -> 0.0."""
    if not a or not b:
        return 0.0
    if a == b:
        return 1.0
    return 1.0 - edit_distance(a, b) / max(len(a), len(b))


def match_wake_word(transcript: str, wake_words: Iterable[str], threshold: float) -> Optional[str]:
    """Return the first wake phrase matched by the transcript, or None."""
    text = transcript.lower().strip()
    if not text:
        return None
    for phrase in wake_words:
        if text == phrase:
            return phrase
        if phrase in text:
            return phrase
        if similarity_ratio(text, phrase) >= threshold:
            return phrase
    return None


# ============================================================================
# DETECTOR
# ============================================================================

class WakeWordDetector:
    def __init__(
        self,
        source: TranscriptSource,
        wake_words: Optional[List[str]] = None,
        sensitivity: Sensitivity = Sensitivity.MEDIUM,
        restart_delay: float = policy.WAKE_WORD_RESTART_DELAY_SECONDS,
    ):
        self.source = source
        self.wake_words: List[str] = [w.lower().strip() for w in (wake_words or ["eden", "hey eden"])]
        self.sensitivity = Sensitivity(sensitivity)
        self.restart_delay = restart_delay
        self.degraded = False
        self.restarts = 0
        self._events = EventBus("wake-word")
        self._listening = False
        self._task: Optional[asyncio.Task] = None

    def subscribe(self, handler: Callable[[WakeWordEvent], None]) -> Subscription:
        return self._events.subscribe("wake-word-detected", handler)

    @property
    def threshold(self) -> float:
        return FUZZY_THRESHOLDS[self.sensitivity]

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        if self._listening:
            logger.warning("[WakeWord] Already listening")
            return
        logger.info("[WakeWord] Starting detection...")
        self._listening = True
        if not self.source.supports_continuous:
            self.degraded = True
            logger.warning(
                "[WakeWord] Transcript source has no continuous recognition; "
                "wake word detection is inactive"
            )
            return
        self.degraded = False
        self._task = asyncio.get_running_loop().create_task(self._listen_loop(), name="wake-word")
        logger.info(f"[WakeWord] Listening for {self.wake_words}")

    def stop(self) -> None:
        if not self._listening:
            return
        self._listening = False
        self.degraded = False
        if self._task is not None:
            self._task.cancel()
            self._task = None
        logger.info("[WakeWord] Stopped")

    def close(self) -> None:
        self.stop()
        self._events.close()

    def is_listening(self) -> bool:
        return self._listening

    async def _listen_loop(self) -> None:
        while self._listening:
            try:
                async for transcript in self.source.transcripts():
                    if not self._listening:
                        return
                    self.process_transcript(transcript)
                logger.debug("[WakeWord] Transcript stream ended")
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"[WakeWord] Recognition error: {e}", exc_info=True)

            if not self._listening:
                return
            self.restarts += 1
            logger.debug(f"[WakeWord] Restarting recognition in {self.restart_delay}s")
            await asyncio.sleep(self.restart_delay)

    # ------------------------------------------------------------------
    # Detection
    # ------------------------------------------------------------------

    def process_transcript(self, transcript: Transcript) -> Optional[WakeWordEvent]:
        logger.debug(f'[WakeWord] Heard: "{transcript.text}"')
        phrase = match_wake_word(transcript.text, self.wake_words, self.threshold)
        if phrase is None:
            return None
        event = WakeWordEvent(wake_word=phrase, confidence=transcript.confidence)
        logger.info(f'[WakeWord] Detected "{phrase}" (confidence: {transcript.confidence:.2f})')
        self._events.emit("wake-word-detected", event)
        return event

    # ------------------------------------------------------------------
    # Config
    # ------------------------------------------------------------------

    def add_wake_word(self, word: str) -> bool:
        word = word.lower().strip()
        if not word or word in self.wake_words:
            return False
        self.wake_words.append(word)
        logger.info(f'[WakeWord] Added "{word}"')
        return True

    def remove_wake_word(self, word: str) -> bool:
        word = word.lower().strip()
        if word not in self.wake_words:
            return False
        self.wake_words.remove(word)
        logger.info(f'[WakeWord] Removed "{word}"')
        return True

    def update_config(
        self,
        wake_words: Optional[List[str]] = None,
        sensitivity: Optional[Sensitivity] = None,
    ) -> None:
        if wake_words is not None:
            self.wake_words = [w.lower().strip() for w in wake_words]
        if sensitivity is not None:
            self.sensitivity = Sensitivity(sensitivity)
        logger.info(f"[WakeWord] Config updated: {self.wake_words} sensitivity={self.sensitivity.value}")
