"""Shared fakes and fixtures. No audio hardware or network is touched."""

from datetime import datetime, timedelta, timezone
from typing import List, Optional

import pytest

from eden.config import ConversationConfig
from eden.embedding import EmbeddingProvider, HashingEmbedder
from eden.episode_db import EpisodeDatabase
from eden.generation import GenerationEngine
from eden.grounding import GroundedContext, GroundingCheck, GroundingValidator
from eden.memory_store import EpisodicMemoryStore
from eden.models import (
    ConversationMode,
    Episode,
    Failure,
    Ok,
    RetrievedEpisode,
    RiskLevel,
)
from eden.wake_word import Transcript, TranscriptSource


# ============================================================================
# Embedding
# ============================================================================

class FailingEmbedder(EmbeddingProvider):
    name = "failing"

    def __init__(self, dimension: int = 64, fail_load: bool = False):
        super().__init__(dimension)
        self.fail_load = fail_load

    async def load(self):
        if self.fail_load:
            raise RuntimeError("model files missing")
        self._loaded = True

    async def _encode(self, text):
        raise RuntimeError("encoder crashed")


# ============================================================================
# Generation
# ============================================================================

class FakeGenerationEngine(GenerationEngine):
    def __init__(self, responses: Optional[List[str]] = None, error: Optional[Exception] = None):
        super().__init__()
        self.responses = list(responses or [])
        self.error = error
        self.calls = []
        self.on_call = None

    async def _generate(self, prompt, temperature, max_tokens):
        self.calls.append({"prompt": prompt, "temperature": temperature, "max_tokens": max_tokens})
        if self.on_call:
            self.on_call()
        if self.error:
            raise self.error
        if self.responses:
            return self.responses.pop(0)
        return "generated response"


# ============================================================================
# Grounding
# ============================================================================

class FakeValidator(GroundingValidator):
    """Returns scripted risk levels, one per validate call."""

    def __init__(self, risks: List[RiskLevel], fail: bool = False):
        self.risks = list(risks)
        self.fail = fail
        self.bundles = 0
        self.prompts = []

    async def generate_grounded_response(self, query, episodes):
        self.bundles += 1
        return GroundedContext(
            query=query,
            documents=list(episodes),
            context_text="",
            reasoning="",
            sources=[e.id for e in episodes],
            confidence=0.5,
        )

    def create_prompt(self, query, bundle, mode):
        prompt = f"[{ConversationMode(mode).value}] {query}"
        self.prompts.append(prompt)
        return prompt

    def validate_response(self, text, bundle):
        if self.fail:
            return Failure("validator offline")
        return Ok(GroundingCheck(is_grounded=True, confidence=0.9))

    def assess_hallucination_risk(self, text, bundle, check):
        return self.risks.pop(0) if len(self.risks) > 1 else self.risks[0]


# ============================================================================
# Voice
# ============================================================================

class FakeEnergySource:
    def __init__(self, level: float = 0.0, fail_on_enter: bool = False):
        self._level = level
        self.fail_on_enter = fail_on_enter
        self.entered = 0
        self.exited = 0

    def __enter__(self):
        if self.fail_on_enter:
            raise OSError("no input device")
        self.entered += 1
        return self

    def __exit__(self, exc_type, exc, tb):
        self.exited += 1
        return False

    def set_level(self, level: float):
        self._level = level

    def level(self) -> float:
        return self._level


class FakeTranscriptSource(TranscriptSource):
    """Each call to transcripts() plays the next batch, then the stream ends."""

    def __init__(self, batches=None, continuous: bool = True, error_on_first: bool = False):
        self.batches = list(batches or [])
        self.supports_continuous = continuous
        self.error_on_first = error_on_first
        self.opened = 0

    async def transcripts(self):
        self.opened += 1
        if self.error_on_first and self.opened == 1:
            raise RuntimeError("recognizer crashed")
        batch = self.batches.pop(0) if self.batches else []
        for item in batch:
            if isinstance(item, Transcript):
                yield item
            else:
                yield Transcript(item, 0.9)


# ============================================================================
# Clock
# ============================================================================

class FakeClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, minutes: float = 0, seconds: float = 0):
        self.now = self.now + timedelta(minutes=minutes, seconds=seconds)


# ============================================================================
# Helpers / fixtures
# ============================================================================

def make_episode(user, assistant, conversation_id="conv-1", timestamp=None, **kwargs) -> Episode:
    if timestamp is not None:
        kwargs["timestamp"] = timestamp
    return Episode(conversation_id=conversation_id, user_message=user, assistant_response=assistant, **kwargs)


def make_retrieved(user, assistant, similarity, rank=1) -> RetrievedEpisode:
    return RetrievedEpisode(episode=make_episode(user, assistant), similarity=similarity, rank=rank)


BASE_TIME = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def database(tmp_path):
    db = EpisodeDatabase(tmp_path / "episodes.db")
    yield db
    db.close()


@pytest.fixture
def store(database):
    return EpisodicMemoryStore(database, HashingEmbedder(dimension=256), capacity=1000)


@pytest.fixture
def quiet_config():
    """Orchestrator config with ambient services off."""
    return ConversationConfig(
        proactive_enabled=False,
        vad_enabled=False,
        wake_word_enabled=False,
    )
