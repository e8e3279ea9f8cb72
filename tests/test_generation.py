import asyncio
from unittest.mock import MagicMock

import pytest
import requests

from eden.config import Config, default_config
from eden.errors import GenerationError
from eden.generation import OllamaGenerationEngine
from tests.conftest import FakeGenerationEngine


def _session(status=200, body=None, error=None, text=""):
    session = MagicMock(spec=requests.Session)
    if error is not None:
        session.post.side_effect = error
        return session
    response = MagicMock()
    response.status_code = status
    response.text = text
    if isinstance(body, Exception):
        response.json.side_effect = body
    else:
        response.json.return_value = body
    session.post.return_value = response
    return session


class TestOllamaEngine:
    @pytest.mark.asyncio
    async def test_posts_generate_request(self):
        session = _session(body={"response": "  Hello there.  "})
        engine = OllamaGenerationEngine(model="llama3", base_url="http://ollama:11434/", session=session)

        text = await engine.generate_response("Say hi", 0.8, 150)

        assert text == "Hello there."
        args, kwargs = session.post.call_args
        assert args[0] == "http://ollama:11434/api/generate"
        assert kwargs["json"] == {
            "model": "llama3",
            "prompt": "Say hi",
            "stream": False,
            "options": {"temperature": 0.8, "num_predict": 150},
        }
        assert kwargs["timeout"] == engine.timeout_seconds

    @pytest.mark.asyncio
    @pytest.mark.parametrize("session", [
        _session(error=requests.ConnectionError("refused")),
        _session(status=500, text="model not loaded"),
        _session(body=ValueError("not json")),
        _session(body={"response": "   "}),
        _session(body={}),
    ])
    async def test_failures_raise_generation_error(self, session):
        engine = OllamaGenerationEngine(session=session)
        with pytest.raises(GenerationError):
            await engine.generate_response("prompt", 0.7, 500)

    def test_from_config(self):
        data = default_config().as_dict()
        data["llm"]["model"] = "mistral"
        data["llm"]["timeout_seconds"] = 12
        engine = OllamaGenerationEngine.from_config(Config(data))
        assert engine.model == "mistral"
        assert engine.timeout_seconds == 12
        engine.close()


@pytest.mark.asyncio
async def test_generations_run_one_at_a_time():
    engine = FakeGenerationEngine()
    active = []

    async def slow(prompt, temperature, max_tokens):
        active.append(prompt)
        assert len(active) == 1
        await asyncio.sleep(0.01)
        active.remove(prompt)
        return prompt.upper()

    engine._generate = slow
    results = await asyncio.gather(
        engine.generate_response("a", 0.8, 150),
        engine.generate_response("b", 0.8, 150),
    )
    assert results == ["A", "B"]
