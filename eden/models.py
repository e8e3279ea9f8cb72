"""
Data model for the EDEN conversation core.

Episode:
- One recorded user/assistant exchange
- Embedding computed once at creation
- Immutable except satisfaction (explicit feedback)

Everything else here is ephemeral: produced per query or per event,
never persisted.
"""

import random
import string
import time
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Generic, List, Optional, TypeVar, Union

import numpy as np


# ============================================================================
# ENUMERATIONS
# ============================================================================

class ConversationMode(str, Enum):
    FAST = "fast"
    DETAILED = "detailed"
    PROACTIVE = "proactive"


class VoiceState(str, Enum):
    IDLE = "idle"
    LISTENING = "listening"
    SPEAKING = "speaking"


class RiskLevel(str, Enum):
    """Hallucination risk. Ordered: LOW < MEDIUM < HIGH."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def ordinal(self) -> int:
        return _RISK_ORDER[self]

    def exceeds(self, tolerance: "RiskLevel") -> bool:
        return self.ordinal > RiskLevel(tolerance).ordinal


_RISK_ORDER = {RiskLevel.LOW: 1, RiskLevel.MEDIUM: 2, RiskLevel.HIGH: 3}


class Sensitivity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class Satisfaction(str, Enum):
    POSITIVE = "positive"
    NEGATIVE = "negative"


class VoiceEventType(str, Enum):
    SPEECH_START = "speech_start"
    SPEECH_END = "speech_end"


# ============================================================================
# TAGGED RESULTS (embedding provider / grounding validator)
# ============================================================================

T = TypeVar("T")


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T

    @property
    def is_ok(self) -> bool:
        return True


@dataclass(frozen=True)
class Failure:
    reason: str
    error: Optional[BaseException] = None

    @property
    def is_ok(self) -> bool:
        return False


Result = Union[Ok[T], Failure]


# ============================================================================
# EPISODES
# ============================================================================

def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(ts: datetime) -> datetime:
    """Aware UTC datetime. Naive values are read as local time, like datetime.now()."""
    return ts.astimezone(timezone.utc)


def generate_episode_id() -> str:
    suffix = "".join(random.choice(string.ascii_lowercase + string.digits) for _ in range(7))
    return f"episode-{int(time.time() * 1000)}-{suffix}"


@dataclass
class EpisodeContext:
    """Workspace/screen metadata captured alongside an exchange."""
    files_accessed: List[str] = field(default_factory=list)
    screen_description: Optional[str] = None
    workspace_root: Optional[str] = None
    workspace_type: Optional[str] = None
    git_branch: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "files_accessed": list(self.files_accessed),
            "screen_description": self.screen_description,
            "workspace_root": self.workspace_root,
            "workspace_type": self.workspace_type,
            "git_branch": self.git_branch,
            "extra": dict(self.extra),
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "EpisodeContext":
        data = data or {}
        return cls(
            files_accessed=list(data.get("files_accessed") or []),
            screen_description=data.get("screen_description"),
            workspace_root=data.get("workspace_root"),
            workspace_type=data.get("workspace_type"),
            git_branch=data.get("git_branch"),
            extra=dict(data.get("extra") or {}),
        )


@dataclass
class Episode:
    conversation_id: str
    user_message: str
    assistant_response: str
    context: EpisodeContext = field(default_factory=EpisodeContext)
    id: str = field(default_factory=generate_episode_id)
    timestamp: datetime = field(default_factory=utc_now)
    embedding: Optional[np.ndarray] = None
    satisfaction: Optional[Satisfaction] = None

    def __post_init__(self):
        self.timestamp = as_utc(self.timestamp)

    def searchable_text(self) -> str:
        """User + assistant text plus the context fields worth matching on."""
        parts = [f"User: {self.user_message}", f"Assistant: {self.assistant_response}"]
        if self.context.files_accessed:
            parts.append("Files: " + ", ".join(self.context.files_accessed))
        if self.context.workspace_root:
            parts.append(f"Workspace: {self.context.workspace_root}")
        if self.context.git_branch:
            parts.append(f"Branch: {self.context.git_branch}")
        if self.context.screen_description:
            parts.append(f"Screen: {self.context.screen_description}")
        return "\n".join(parts)


@dataclass
class RetrievedEpisode:
    episode: Episode
    similarity: float
    rank: int

    @property
    def id(self) -> str:
        return self.episode.id

    @property
    def user_message(self) -> str:
        return self.episode.user_message

    @property
    def assistant_response(self) -> str:
        return self.episode.assistant_response

    @property
    def relevance_score(self) -> float:
        return self.similarity * 100


@dataclass
class TimeRange:
    start: datetime
    end: datetime

    def __post_init__(self):
        self.start = as_utc(self.start)
        self.end = as_utc(self.end)
        if self.start > self.end:
            raise ValueError("time range start is after its end")

    def contains(self, ts: datetime) -> bool:
        return self.start <= as_utc(ts) <= self.end


@dataclass
class SearchResult:
    episodes: List[RetrievedEpisode]
    total_found: int
    search_time_ms: float


@dataclass
class MemoryStats:
    total_episodes: int
    cached_episodes: int
    conversation_count: int
    oldest_episode: Optional[datetime]
    newest_episode: Optional[datetime]
    average_satisfaction: float


# ============================================================================
# CONVERSATION STATE
# ============================================================================

@dataclass
class ValidationSummary:
    is_grounded: bool
    hallucination_risk: RiskLevel
    confidence: float
    regenerated: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "is_grounded": self.is_grounded,
            "hallucination_risk": self.hallucination_risk.value,
            "confidence": self.confidence,
            "regenerated": self.regenerated,
        }


@dataclass
class ProactiveEvent:
    type: str
    message: str
    priority: str
    context: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "message": self.message,
            "priority": self.priority,
            "context": dict(self.context),
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class ConversationContext:
    """Mutable per-session state. Owned by the orchestrator."""
    mode: ConversationMode = ConversationMode.FAST
    voice_state: VoiceState = VoiceState.IDLE
    last_validation: Optional[ValidationSummary] = None
    last_interaction: datetime = field(default_factory=utc_now)
    idle_minutes: int = 0
    proactive_event: Optional[ProactiveEvent] = None

    def snapshot(self) -> "ConversationContext":
        return replace(self)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "mode": self.mode.value,
            "voice_state": self.voice_state.value,
            "last_validation": self.last_validation.to_dict() if self.last_validation else None,
            "last_interaction": self.last_interaction.isoformat(),
            "idle_minutes": self.idle_minutes,
            "proactive_event": self.proactive_event.to_dict() if self.proactive_event else None,
        }


@dataclass
class QueryResult:
    response: str
    context: ConversationContext
    validation: Optional[ValidationSummary] = None
    # True when generation failed and the canned fallback text was returned
    fallback: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "response": self.response,
            "context": self.context.to_dict(),
            "validation": self.validation.to_dict() if self.validation else None,
            "fallback": self.fallback,
        }


# ============================================================================
# AMBIENT EVENTS
# ============================================================================

@dataclass
class VoiceEvent:
    type: VoiceEventType
    confidence: float
    timestamp: datetime = field(default_factory=utc_now)
    duration_ms: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "confidence": self.confidence,
            "timestamp": self.timestamp.isoformat(),
            "duration_ms": self.duration_ms,
        }


@dataclass
class WakeWordEvent:
    wake_word: str
    confidence: float
    timestamp: datetime = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "wake_word": self.wake_word,
            "confidence": self.confidence,
            "timestamp": self.timestamp.isoformat(),
        }
