"""
Voice Activity Monitor for EDEN.

Responsibility:
- Sample microphone energy on a fixed 100 ms tick
- Idle -> Speaking when energy crosses the sensitivity threshold
- Speaking -> Idle after silence_duration_ms of sub-threshold energy
- Emit speech_start / speech_end VoiceEvents to subscribers

Does NOT:
- Record or transcribe audio
- Queue samples (each tick reads the instantaneous level only)

Short utterances (below min_speech_duration_ms) end silently: the start
event was already emitted, but no speech_end follows.
"""

import logging
import threading
import time
from contextlib import ExitStack
from typing import Callable, Optional

import numpy as np

from eden import policy
from eden.events import EventBus, Subscription
from eden.models import Sensitivity, VoiceEvent, VoiceEventType
from eden.scheduler import PeriodicTask

logger = logging.getLogger(__name__)

ENERGY_THRESHOLDS = {
    Sensitivity.LOW: 0.02,
    Sensitivity.MEDIUM: 0.01,
    Sensitivity.HIGH: 0.005,
}

END_CONFIDENCE = 0.9

SAMPLE_RATE = 16000
BLOCK_SIZE = 1600  # 100 ms at 16 kHz


class MicrophoneEnergySource:
    """
    Live RMS level of the default (or chosen) input device.

    Context manager: entering opens the sounddevice stream and allocates the
    analysis buffer, exiting stops and closes both.
    """

    def __init__(self, device_index: Optional[int] = None, sample_rate: int = SAMPLE_RATE, block_size: int = BLOCK_SIZE):
        self.device_index = device_index
        self.sample_rate = sample_rate
        self.block_size = block_size
        self._stream = None
        self._buffer: Optional[np.ndarray] = None
        self._level = 0.0
        self._lock = threading.Lock()

    def __enter__(self):
        import sounddevice as sd

        self._buffer = np.zeros(self.block_size, dtype=np.float32)
        self._stream = sd.InputStream(
            device=self.device_index,
            channels=1,
            samplerate=self.sample_rate,
            blocksize=self.block_size,
            dtype="float32",
            callback=self._audio_callback,
        )
        try:
            self._stream.start()
        except Exception:
            self._stream.close()
            self._stream = None
            self._buffer = None
            raise
        logger.info(f"[VAD] Input stream open (device={self.device_index})")
        return self

    def __exit__(self, exc_type, exc, tb):
        if self._stream is not None:
            try:
                self._stream.stop()
            finally:
                self._stream.close()
                self._stream = None
        self._buffer = None
        self._level = 0.0
        logger.info("[VAD] Input stream closed")
        return False

    def _audio_callback(self, indata, frames, time_info, status):
        """Runs on the audio thread."""
        if status:
            logger.debug(f"[VAD] Stream status: {status}")
        if self._buffer is None:
            return
        samples = indata[:, 0]
        n = min(len(samples), len(self._buffer))
        self._buffer[:n] = samples[:n]
        rms = float(np.sqrt(np.mean(self._buffer[:n] ** 2))) if n else 0.0
        with self._lock:
            self._level = rms

    def level(self) -> float:
        with self._lock:
            return self._level


class VoiceActivityMonitor:
    def __init__(
        self,
        energy_source=None,
        sensitivity: Sensitivity = Sensitivity.MEDIUM,
        min_speech_duration_ms: float = 300,
        silence_duration_ms: float = 1500,
        enabled: bool = True,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.energy_source = energy_source if energy_source is not None else MicrophoneEnergySource()
        self.sensitivity = Sensitivity(sensitivity)
        self.min_speech_duration_ms = min_speech_duration_ms
        self.silence_duration_ms = silence_duration_ms
        self.enabled = enabled
        self._clock = clock
        self._events = EventBus("vad")
        self._stack: Optional[ExitStack] = None
        self._task: Optional[PeriodicTask] = None
        self._speaking = False
        self._speech_start_ms: Optional[float] = None
        self._last_speech_ms: Optional[float] = None

    # ------------------------------------------------------------------
    # Subscription
    # ------------------------------------------------------------------

    def subscribe(self, handler: Callable[[VoiceEvent], None]) -> Subscription:
        return self._events.subscribe("vad-event", handler)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Acquire capture resources and begin the 100 ms sampling tick."""
        if self._stack is not None:
            logger.warning("[VAD] Already monitoring")
            return
        logger.info("[VAD] Starting...")
        with ExitStack() as stack:
            stack.enter_context(self.energy_source)
            stack.callback(self._reset)
            task = PeriodicTask("vad-sample", policy.VAD_TICK_SECONDS, self._tick).start()
            stack.callback(task.cancel)
            self._task = task
            self._stack = stack.pop_all()
        logger.info("[VAD] Started")

    def stop(self) -> None:
        if self._stack is None:
            return
        logger.info("[VAD] Stopping...")
        stack, self._stack = self._stack, None
        self._task = None
        stack.close()
        logger.info("[VAD] Stopped")

    async def __aenter__(self):
        self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        self.stop()
        return False

    def close(self) -> None:
        self.stop()
        self._events.close()

    def _reset(self) -> None:
        self._speaking = False
        self._speech_start_ms = None
        self._last_speech_ms = None

    # ------------------------------------------------------------------
    # Detection
    # ------------------------------------------------------------------

    @property
    def threshold(self) -> float:
        return ENERGY_THRESHOLDS[self.sensitivity]

    def _tick(self) -> None:
        if not self.enabled:
            return
        self.process_energy(self.energy_source.level(), self._clock() * 1000)

    def process_energy(self, energy: float, now_ms: float) -> Optional[VoiceEvent]:
        """One state-machine step. Emits and returns the event produced, if any."""
        threshold = self.threshold

        if energy > threshold:
            self._last_speech_ms = now_ms
            if not self._speaking:
                self._speaking = True
                self._speech_start_ms = now_ms
                event = VoiceEvent(
                    type=VoiceEventType.SPEECH_START,
                    confidence=min(energy / threshold, 1.0),
                )
                logger.debug("[VAD] Speech started")
                self._events.emit("vad-event", event)
                return event
            return None

        if self._speaking and self._last_speech_ms is not None:
            if now_ms - self._last_speech_ms >= self.silence_duration_ms:
                duration = self._last_speech_ms - self._speech_start_ms
                self._speaking = False
                self._speech_start_ms = None
                if duration >= self.min_speech_duration_ms:
                    event = VoiceEvent(
                        type=VoiceEventType.SPEECH_END,
                        confidence=END_CONFIDENCE,
                        duration_ms=duration,
                    )
                    logger.debug(f"[VAD] Speech ended (duration: {duration:.0f}ms)")
                    self._events.emit("vad-event", event)
                    return event
                logger.debug(f"[VAD] Discarded short utterance ({duration:.0f}ms)")
        return None

    # ------------------------------------------------------------------
    # Config / status
    # ------------------------------------------------------------------

    def update_config(
        self,
        enabled: Optional[bool] = None,
        sensitivity: Optional[Sensitivity] = None,
        min_speech_duration_ms: Optional[float] = None,
        silence_duration_ms: Optional[float] = None,
    ) -> None:
        if enabled is not None:
            self.enabled = enabled
        if sensitivity is not None:
            self.sensitivity = Sensitivity(sensitivity)
        if min_speech_duration_ms is not None:
            self.min_speech_duration_ms = min_speech_duration_ms
        if silence_duration_ms is not None:
            self.silence_duration_ms = silence_duration_ms
        logger.info(
            f"[VAD] Config updated: enabled={self.enabled} sensitivity={self.sensitivity.value} "
            f"min_speech={self.min_speech_duration_ms}ms silence={self.silence_duration_ms}ms"
        )

    def is_speech_active(self) -> bool:
        return self._speaking

    def is_active(self) -> bool:
        return self._stack is not None
