from unittest.mock import MagicMock

import pytest

from eden.app import ApplicationContext
from eden.config import Config, default_config
from eden.embedding import HashingEmbedder
from eden.errors import ConfigurationError
from eden.models import RiskLevel
from tests.conftest import FakeEnergySource, FakeGenerationEngine, FakeTranscriptSource


def _config(tmp_path, **voice):
    data = default_config().as_dict()
    data["memory"]["db_path"] = str(tmp_path / "episodes.db")
    data["voice"].update(voice)
    return Config(data)


@pytest.mark.asyncio
async def test_context_wires_and_starts_services(tmp_path):
    energy = FakeEnergySource()
    app = ApplicationContext(
        _config(tmp_path),
        embedder=HashingEmbedder(64),
        generator=FakeGenerationEngine(["Noted."]),
        transcript_source=FakeTranscriptSource(),
        energy_source=energy,
    )
    async with app:
        assert app.orchestrator.is_ready()
        assert app.memory.is_initialized
        assert app.vad.is_active()
        assert app.wake_word.is_listening()
        assert app.proactive.is_running()
        assert app.conversation_config.hallucination_risk_tolerance == RiskLevel.MEDIUM

        result = await app.orchestrator.process_query("remember to water the plants")
        episode_id = await app.orchestrator.record_exchange("remember to water the plants", result.response)
        assert app.memory.get_episode(episode_id) is not None

    assert not app.vad.is_active()
    assert energy.exited == 1
    assert (tmp_path / "episodes.db").exists()


@pytest.mark.asyncio
async def test_wake_word_needs_transcript_source(tmp_path):
    app = ApplicationContext(
        _config(tmp_path, vad_enabled=False),
        embedder=HashingEmbedder(64),
        generator=FakeGenerationEngine(),
        energy_source=FakeEnergySource(),
    )
    assert app.wake_word is None
    async with app:
        assert app.orchestrator.is_ready()
        assert not app.vad.is_active()


@pytest.mark.asyncio
async def test_episodes_survive_restart(tmp_path):
    config = _config(tmp_path, vad_enabled=False)
    async with ApplicationContext(config, embedder=HashingEmbedder(64), generator=FakeGenerationEngine(),
                                  energy_source=FakeEnergySource()) as app:
        episode_id = await app.orchestrator.record_exchange("my cat is named Miso", "Cute name!")

    async with ApplicationContext(config, embedder=HashingEmbedder(64), generator=FakeGenerationEngine(),
                                  energy_source=FakeEnergySource()) as app:
        result = await app.memory.search_episodes("cat named Miso")
        assert result.episodes[0].id == episode_id


@pytest.mark.asyncio
async def test_failed_start_releases_everything(tmp_path):
    generator = FakeGenerationEngine()
    generator.close = MagicMock()
    app = ApplicationContext(
        _config(tmp_path, wake_word_enabled=False),
        embedder=HashingEmbedder(64),
        generator=generator,
        energy_source=FakeEnergySource(fail_on_enter=True),
    )

    with pytest.raises(ConfigurationError):
        async with app:
            pass

    generator.close.assert_called_once()
    assert app.database._conn is None
    assert not app.memory.is_initialized
    assert not app.orchestrator.is_ready()
    assert not app.proactive.is_running()
