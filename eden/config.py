"""
Configuration Loader for EDEN

Reads from config.json and provides a simple interface for accessing settings.
Defaults to sensible values if config.json is missing.

Usage:
    from eden.config import load_config, ConversationConfig
    config = load_config()
    db_path = config.get("memory.db_path")
    conversation = ConversationConfig.from_config(config)
"""

# ============================================================================
# 1) IMPORTS
# ============================================================================
import copy
import hashlib
import json
import logging
import os
from dataclasses import asdict, dataclass, field, fields, replace
from typing import Any, Dict, List

from eden import policy
from eden.errors import ConfigurationError
from eden.models import RiskLevel, Sensitivity

# ============================================================================
# 2) MODULE LOGGER
# ============================================================================
logger = logging.getLogger(__name__)

# ============================================================================
# 3) ENUM-LIKE OPTION SETS
# ============================================================================
PROACTIVE_FREQUENCIES = ("low", "medium", "high")
PROACTIVE_PERSONALITIES = ("reserved", "friendly", "enthusiastic")
EMBEDDING_BACKENDS = ("sentence-transformers", "hashing")


# ============================================================================
# 4) CONFIG WRAPPER (DOT-NOTATION ACCESS)
# ============================================================================
class Config:
    """Simple config wrapper with dot-notation access."""

    def __init__(self, data: dict):
        self._data = data
        self._hash = config_hash(self._data)

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get config value using dot notation.

        Examples:
            config.get("memory.db_path")
            config.get("voice.wake_words")
            config.get("nonexistent.key", "default_value")
        """
        value = self._data
        for k in key.split("."):
            if isinstance(value, dict) and k in value:
                value = value[k]
            else:
                return default
        return value

    def __getitem__(self, key: str) -> Any:
        return self.get(key)

    def as_dict(self) -> dict:
        return copy.deepcopy(self._data)

    @property
    def hash(self) -> str:
        return self._hash


# ============================================================================
# 5) DEFAULT CONFIGURATION (FALLBACK)
# ============================================================================
_DEFAULT_CONFIG = {
    "system": {
        "log_level": os.getenv("EDEN_LOG_LEVEL", "INFO"),
    },
    "memory": {
        "db_path": os.getenv("EDEN_DB_PATH", "data/episodes.db"),
        "cache_capacity": policy.EPISODE_CACHE_CAPACITY,
        "embedding_backend": os.getenv("EDEN_EMBEDDING_BACKEND", "sentence-transformers"),
        "embedding_model": "all-MiniLM-L6-v2",
        "embedding_dimension": 384,
    },
    "conversation": {
        "grounding_enabled": True,
        "grounding_threshold": 0.7,
        "hallucination_risk_tolerance": "medium",
        "fast_mode_threshold": 0.8,
        "max_context_length": 2000,
        "short_query_length": policy.SHORT_QUERY_LENGTH,
        "retrieval_top_k": policy.RETRIEVAL_TOP_K,
        "fallback_fast": policy.FALLBACK_RESPONSE_FAST,
        "fallback_detailed": policy.FALLBACK_RESPONSE_DETAILED,
    },
    "proactive": {
        "enabled": True,
        "frequency": "medium",
        "personality": "friendly",
        "quiet_hours_start": 23,
        "quiet_hours_end": 7,
        "min_idle_minutes": 5,
    },
    "voice": {
        "vad_enabled": True,
        "vad_sensitivity": "medium",
        "min_speech_duration_ms": 300,
        "silence_duration_ms": 1500,
        "input_device_index": None,
        "wake_word_enabled": True,
        "wake_words": ["eden", "hey eden"],
        "wake_word_sensitivity": "medium",
    },
    "llm": {
        "model": os.getenv("EDEN_LLM_MODEL", "qwen2.5:32b"),
        "base_url": os.getenv("EDEN_OLLAMA_URL", "http://localhost:11434"),
        "timeout_seconds": policy.LLM_TIMEOUT_SECONDS,
    },
    "ui": {
        "host": "localhost",
        "port": 8001,
    },
}

# ============================================================================
# 6) LOAD CONFIG
# ============================================================================
def load_config(config_path: str = "config.json") -> Config:
    """
    Load configuration from JSON file.

    Falls back to defaults if the file is missing or unreadable.
    """
    config_data = copy.deepcopy(_DEFAULT_CONFIG)

    if os.path.exists(config_path):
        try:
            with open(config_path, "r", encoding="utf-8") as f:
                user_config = json.load(f)
            _merge_dicts(config_data, user_config)
            logger.info(f"[Config] Loaded from {config_path}")
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"[Config] Failed to load {config_path}: {e}, using defaults")
    else:
        logger.debug(f"[Config] No config file at {config_path}, using defaults")

    return Config(config_data)


def default_config() -> Config:
    return Config(copy.deepcopy(_DEFAULT_CONFIG))


# ============================================================================
# 7) TYPED CONVERSATION CONFIG
# ============================================================================
# camelCase names used by the UI channel -> field names
OPTION_ALIASES = {
    "groundingEnabled": "grounding_enabled",
    "groundingThreshold": "grounding_threshold",
    "hallucinationRiskTolerance": "hallucination_risk_tolerance",
    "proactiveEnabled": "proactive_enabled",
    "proactiveFrequency": "proactive_frequency",
    "proactivePersonality": "proactive_personality",
    "vadEnabled": "vad_enabled",
    "vadSensitivity": "vad_sensitivity",
    "wakeWordEnabled": "wake_word_enabled",
    "wakeWords": "wake_words",
    "fastModeThreshold": "fast_mode_threshold",
    "maxContextLength": "max_context_length",
}


@dataclass(frozen=True)
class ConversationConfig:
    """Orchestrator settings. Immutable; use updated() to derive a new one."""
    grounding_enabled: bool = True
    grounding_threshold: float = 0.7
    hallucination_risk_tolerance: RiskLevel = RiskLevel.MEDIUM

    proactive_enabled: bool = True
    proactive_frequency: str = "medium"
    proactive_personality: str = "friendly"

    vad_enabled: bool = True
    vad_sensitivity: Sensitivity = Sensitivity.MEDIUM
    wake_word_enabled: bool = True
    wake_words: List[str] = field(default_factory=lambda: ["eden", "hey eden"])

    fast_mode_threshold: float = 0.8
    max_context_length: int = 2000
    short_query_length: int = policy.SHORT_QUERY_LENGTH
    retrieval_top_k: int = policy.RETRIEVAL_TOP_K
    fallback_fast: str = policy.FALLBACK_RESPONSE_FAST
    fallback_detailed: str = policy.FALLBACK_RESPONSE_DETAILED

    def __post_init__(self):
        for name, value in _coerce({
            "hallucination_risk_tolerance": self.hallucination_risk_tolerance,
            "vad_sensitivity": self.vad_sensitivity,
            "wake_words": self.wake_words,
        }).items():
            object.__setattr__(self, name, value)
        _validate(self)

    @classmethod
    def from_config(cls, config: Config) -> "ConversationConfig":
        return cls.from_dict({
            "grounding_enabled": config.get("conversation.grounding_enabled"),
            "grounding_threshold": config.get("conversation.grounding_threshold"),
            "hallucination_risk_tolerance": config.get("conversation.hallucination_risk_tolerance"),
            "fast_mode_threshold": config.get("conversation.fast_mode_threshold"),
            "max_context_length": config.get("conversation.max_context_length"),
            "short_query_length": config.get("conversation.short_query_length"),
            "retrieval_top_k": config.get("conversation.retrieval_top_k"),
            "fallback_fast": config.get("conversation.fallback_fast"),
            "fallback_detailed": config.get("conversation.fallback_detailed"),
            "proactive_enabled": config.get("proactive.enabled"),
            "proactive_frequency": config.get("proactive.frequency"),
            "proactive_personality": config.get("proactive.personality"),
            "vad_enabled": config.get("voice.vad_enabled"),
            "vad_sensitivity": config.get("voice.vad_sensitivity"),
            "wake_word_enabled": config.get("voice.wake_word_enabled"),
            "wake_words": config.get("voice.wake_words"),
        })

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ConversationConfig":
        values = normalize_option_names(data)
        return cls(**{k: v for k, v in values.items() if v is not None})

    def updated(self, changes: Dict[str, Any]) -> "ConversationConfig":
        """Return a copy with the given options applied (camelCase accepted)."""
        return replace(self, **normalize_option_names(changes))

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["hallucination_risk_tolerance"] = self.hallucination_risk_tolerance.value
        data["vad_sensitivity"] = self.vad_sensitivity.value
        return data


def normalize_option_names(options: Dict[str, Any]) -> Dict[str, Any]:
    """Map UI option names onto ConversationConfig fields; reject unknowns."""
    known = {f.name for f in fields(ConversationConfig)}
    normalized = {}
    for key, value in options.items():
        name = OPTION_ALIASES.get(key, key)
        if name not in known:
            raise ConfigurationError(f"Unknown configuration option: {key}")
        normalized[name] = value
    return normalized


def _coerce(values: Dict[str, Any]) -> Dict[str, Any]:
    out = dict(values)
    try:
        if out.get("hallucination_risk_tolerance") is not None:
            out["hallucination_risk_tolerance"] = RiskLevel(out["hallucination_risk_tolerance"])
        if out.get("vad_sensitivity") is not None:
            out["vad_sensitivity"] = Sensitivity(out["vad_sensitivity"])
    except ValueError as e:
        raise ConfigurationError(str(e)) from e
    if out.get("wake_words") is not None:
        out["wake_words"] = [str(w).lower().strip() for w in out["wake_words"]]
    return out


def _validate(cfg: ConversationConfig) -> None:
    if not 0.0 <= cfg.fast_mode_threshold <= 1.0:
        raise ConfigurationError(f"fast_mode_threshold must be within 0..1, got {cfg.fast_mode_threshold}")
    if not 0.0 <= cfg.grounding_threshold <= 1.0:
        raise ConfigurationError(f"grounding_threshold must be within 0..1, got {cfg.grounding_threshold}")
    if cfg.proactive_frequency not in PROACTIVE_FREQUENCIES:
        raise ConfigurationError(f"proactive_frequency must be one of {PROACTIVE_FREQUENCIES}")
    if cfg.proactive_personality not in PROACTIVE_PERSONALITIES:
        raise ConfigurationError(f"proactive_personality must be one of {PROACTIVE_PERSONALITIES}")
    if cfg.max_context_length <= 0:
        raise ConfigurationError("max_context_length must be positive")
    if cfg.retrieval_top_k < 1:
        raise ConfigurationError("retrieval_top_k must be >= 1")
    if cfg.wake_word_enabled and not cfg.wake_words:
        raise ConfigurationError("wake_words must not be empty when wake word detection is enabled")


# ============================================================================
# 8) HELPERS
# ============================================================================
def config_hash(cfg: dict) -> str:
    return hashlib.sha256(json.dumps(cfg, sort_keys=True, default=str).encode()).hexdigest()


def _merge_dicts(base: dict, override: dict) -> None:
    """Deep merge override dict into base dict (modifies base in place)."""
    for key, value in override.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _merge_dicts(base[key], value)
        else:
            base[key] = value
