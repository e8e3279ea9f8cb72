import json

import pytest

from eden.config import ConversationConfig, default_config, load_config, normalize_option_names
from eden.errors import ConfigurationError
from eden.models import RiskLevel, Sensitivity


def test_missing_file_uses_defaults(tmp_path):
    config = load_config(str(tmp_path / "missing.json"))
    assert config.get("conversation.grounding_threshold") == 0.7
    assert config.get("proactive.frequency") == "medium"
    assert config.get("ui.port") == 8001


def test_user_file_is_deep_merged(tmp_path):
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"proactive": {"personality": "reserved"}, "ui": {"port": 9000}}))
    config = load_config(str(path))
    assert config.get("proactive.personality") == "reserved"
    assert config.get("proactive.frequency") == "medium"
    assert config.get("ui.port") == 9000
    assert config.get("ui.host") == "localhost"


def test_malformed_file_falls_back_to_defaults(tmp_path):
    path = tmp_path / "config.json"
    path.write_text("{not json")
    config = load_config(str(path))
    assert config.get("conversation.fast_mode_threshold") == 0.8


def test_dot_notation_default_for_unknown_key():
    config = default_config()
    assert config.get("nonexistent.key", "fallback") == "fallback"
    assert config["memory.cache_capacity"] == 1000


def test_config_hash_is_stable():
    assert default_config().hash == default_config().hash


class TestConversationConfig:
    def test_from_config_defaults(self):
        cfg = ConversationConfig.from_config(default_config())
        assert cfg.grounding_enabled is True
        assert cfg.hallucination_risk_tolerance == RiskLevel.MEDIUM
        assert cfg.vad_sensitivity == Sensitivity.MEDIUM
        assert cfg.fast_mode_threshold == 0.8
        assert cfg.max_context_length == 2000
        assert cfg.wake_words == ["eden", "hey eden"]

    def test_camel_case_options(self):
        cfg = ConversationConfig.from_dict({
            "hallucinationRiskTolerance": "low",
            "vadSensitivity": "high",
            "wakeWords": ["  Eden ", "HEY EDEN"],
        })
        assert cfg.hallucination_risk_tolerance == RiskLevel.LOW
        assert cfg.vad_sensitivity == Sensitivity.HIGH
        assert cfg.wake_words == ["eden", "hey eden"]

    def test_direct_construction_coerces_strings(self):
        cfg = ConversationConfig(hallucination_risk_tolerance="high", vad_sensitivity="low")
        assert cfg.hallucination_risk_tolerance is RiskLevel.HIGH
        assert cfg.vad_sensitivity is Sensitivity.LOW

    @pytest.mark.parametrize("options", [
        {"fastModeThreshold": 1.5},
        {"groundingThreshold": -0.1},
        {"hallucinationRiskTolerance": "extreme"},
        {"vadSensitivity": "max"},
        {"proactiveFrequency": "hourly"},
        {"maxContextLength": 0},
        {"wakeWords": []},
    ])
    def test_invalid_values_rejected(self, options):
        with pytest.raises(ConfigurationError):
            ConversationConfig.from_dict(options)

    def test_empty_wake_words_allowed_when_disabled(self):
        cfg = ConversationConfig(wake_word_enabled=False, wake_words=[])
        assert cfg.wake_words == []

    def test_unknown_option_rejected(self):
        with pytest.raises(ConfigurationError):
            normalize_option_names({"turboMode": True})

    def test_updated_returns_new_instance(self):
        cfg = ConversationConfig()
        changed = cfg.updated({"fastModeThreshold": 0.5})
        assert changed.fast_mode_threshold == 0.5
        assert cfg.fast_mode_threshold == 0.8

    def test_to_dict_serializes_enums(self):
        data = ConversationConfig().to_dict()
        assert data["hallucination_risk_tolerance"] == "medium"
        assert data["vad_sensitivity"] == "medium"
        json.dumps(data)
