"""
Application context for EDEN.

Builds every service once from a Config and hands them to each other by
reference. Nothing in the package reaches for a module-level instance;
tests build their own context (or their own services) instead.
"""

import logging
from typing import Optional

from eden.config import Config, ConversationConfig
from eden.embedding import EmbeddingProvider, create_embedder
from eden.episode_db import EpisodeDatabase
from eden.generation import GenerationEngine, OllamaGenerationEngine
from eden.memory_store import EpisodicMemoryStore
from eden.orchestrator import ConversationOrchestrator
from eden.proactive import ProactiveScheduler
from eden.scheduler import Scheduler
from eden.vad import MicrophoneEnergySource, VoiceActivityMonitor
from eden.wake_word import TranscriptSource, WakeWordDetector

logger = logging.getLogger(__name__)


class ApplicationContext:
    def __init__(
        self,
        config: Config,
        embedder: Optional[EmbeddingProvider] = None,
        generator: Optional[GenerationEngine] = None,
        transcript_source: Optional[TranscriptSource] = None,
        energy_source=None,
    ):
        self.config = config
        self.conversation_config = ConversationConfig.from_config(config)

        self.database = EpisodeDatabase(config.get("memory.db_path", "data/episodes.db"))
        self.memory = EpisodicMemoryStore(
            self.database,
            embedder or create_embedder(config),
            capacity=config.get("memory.cache_capacity", 1000),
        )
        self.generator = generator or OllamaGenerationEngine.from_config(config)
        self.scheduler = Scheduler()
        self.proactive = ProactiveScheduler.from_config(config)
        self.vad = VoiceActivityMonitor(
            energy_source=energy_source or MicrophoneEnergySource(config.get("voice.input_device_index")),
            sensitivity=self.conversation_config.vad_sensitivity,
            min_speech_duration_ms=config.get("voice.min_speech_duration_ms", 300),
            silence_duration_ms=config.get("voice.silence_duration_ms", 1500),
        )
        # Wake-word detection needs an external speech-to-text stream.
        self.wake_word = None
        if transcript_source is not None:
            self.wake_word = WakeWordDetector(
                transcript_source,
                wake_words=self.conversation_config.wake_words,
                sensitivity=config.get("voice.wake_word_sensitivity", "medium"),
            )
        self.orchestrator = ConversationOrchestrator(
            self.conversation_config,
            self.memory,
            self.generator,
            proactive=self.proactive,
            vad=self.vad,
            wake_word=self.wake_word,
            scheduler=self.scheduler,
        )

    async def start(self) -> None:
        logger.info(f"[App] Starting (config {self.config.hash[:8]})")
        await self.memory.initialize()
        await self.orchestrator.initialize()

    async def close(self) -> None:
        await self.orchestrator.shutdown()
        self.proactive.close()
        self.vad.close()
        if self.wake_word:
            self.wake_word.close()
        self.memory.close()
        close_generator = getattr(self.generator, "close", None)
        if close_generator:
            close_generator()
        logger.info("[App] Closed")

    async def __aenter__(self):
        try:
            await self.start()
        except BaseException:
            await self.close()
            raise
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()
        return False
