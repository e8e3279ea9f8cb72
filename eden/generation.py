"""
Text generation for EDEN.

GenerationEngine is the seam the orchestrator calls. One generation runs at
a time per engine (asyncio.Lock); a second caller waits its turn.

OllamaGenerationEngine posts to a local Ollama server. The HTTP call is
blocking, so it runs in a worker thread; the event loop keeps ticking.
Any failure surfaces as GenerationError.
"""

import asyncio
import logging
from typing import Optional

import requests

from eden import policy
from eden.config import Config
from eden.errors import GenerationError
from eden.instrumentation import log_event, timed

logger = logging.getLogger(__name__)


class GenerationEngine:
    def __init__(self):
        self._lock = asyncio.Lock()

    async def generate_response(self, prompt: str, temperature: float, max_tokens: int) -> str:
        async with self._lock:
            return await self._generate(prompt, temperature, max_tokens)

    async def _generate(self, prompt: str, temperature: float, max_tokens: int) -> str:
        raise NotImplementedError


class OllamaGenerationEngine(GenerationEngine):
    def __init__(
        self,
        model: str = "qwen2.5:32b",
        base_url: str = "http://localhost:11434",
        timeout_seconds: float = policy.LLM_TIMEOUT_SECONDS,
        session: Optional[requests.Session] = None,
    ):
        super().__init__()
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self.session = session or requests.Session()

    @classmethod
    def from_config(cls, config: Config) -> "OllamaGenerationEngine":
        return cls(
            model=config.get("llm.model", "qwen2.5:32b"),
            base_url=config.get("llm.base_url", "http://localhost:11434"),
            timeout_seconds=config.get("llm.timeout_seconds", policy.LLM_TIMEOUT_SECONDS),
        )

    async def _generate(self, prompt: str, temperature: float, max_tokens: int) -> str:
        log_event("LLM_REQUEST_START", stage="llm")
        with timed("llm", policy.GENERATION_WATCHDOG_SECONDS) as timer:
            text = await asyncio.to_thread(self._call_llm, prompt, temperature, max_tokens)
        log_event(f"LLM_DONE {timer.elapsed_ms:.0f}ms", stage="llm")
        return text

    def _call_llm(self, prompt: str, temperature: float, max_tokens: int) -> str:
        url = f"{self.base_url}/api/generate"
        payload = {
            "model": self.model,
            "prompt": prompt,
            "stream": False,
            "options": {
                "temperature": temperature,
                "num_predict": max_tokens,
            },
        }
        logger.debug(f"[LLM] Calling {url} (temperature={temperature}, max_tokens={max_tokens})")
        try:
            response = self.session.post(url, json=payload, timeout=self.timeout_seconds)
        except requests.RequestException as e:
            raise GenerationError(f"LLM request failed: {e}") from e

        if response.status_code != 200:
            raise GenerationError(f"LLM returned status {response.status_code}: {response.text}")

        try:
            text = response.json().get("response", "").strip()
        except ValueError as e:
            raise GenerationError(f"LLM returned invalid JSON: {e}") from e

        if not text:
            raise GenerationError("LLM returned empty response")
        return text

    def close(self) -> None:
        self.session.close()
