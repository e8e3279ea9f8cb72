import asyncio
import json

import pytest
import pytest_asyncio
import websockets

from eden.config import ConversationConfig
from eden.errors import GenerationError
from eden.events import ConversationEvent
from eden.models import ConversationMode, RiskLevel
from eden.orchestrator import ConversationOrchestrator
from eden.proactive import ProactiveScheduler
from eden.ui_bridge import UIBridge, encode
from tests.conftest import FakeGenerationEngine, FakeValidator


class FakeWebSocket:
    def __init__(self, incoming=None, closed=False):
        self.incoming = list(incoming or [])
        self.sent = []
        self.closed = closed

    async def send(self, message):
        if self.closed:
            raise websockets.ConnectionClosed(None, None)
        self.sent.append(json.loads(message))

    def __aiter__(self):
        return self._messages()

    async def _messages(self):
        for message in self.incoming:
            yield message


@pytest_asyncio.fixture
async def bridge(store, quiet_config):
    generator = FakeGenerationEngine(["Sure, here you go."])
    orchestrator = ConversationOrchestrator(quiet_config, store, generator, FakeValidator([RiskLevel.LOW]))
    await orchestrator.initialize()
    yield UIBridge(orchestrator, store)
    await orchestrator.shutdown()


def _reply(raw):
    return json.loads(raw)


def test_encode_uses_to_dict():
    msg = json.loads(encode("config", ConversationConfig()))
    assert msg["type"] == "config"
    assert msg["payload"]["vad_sensitivity"] == "medium"
    assert json.loads(encode("start-listening")) == {"type": "start-listening", "payload": None}


class TestHandleMessage:
    @pytest.mark.asyncio
    async def test_malformed_json(self, bridge):
        reply = _reply(await bridge.handle_message("{nope"))
        assert reply["type"] == "error"
        assert reply["payload"]["message"].startswith("Malformed JSON")

    @pytest.mark.asyncio
    async def test_non_object_message(self, bridge):
        reply = _reply(await bridge.handle_message("[1, 2]"))
        assert reply["type"] == "error"

    @pytest.mark.asyncio
    async def test_unknown_type(self, bridge):
        reply = _reply(await bridge.handle_message(json.dumps({"type": "self_destruct"})))
        assert reply["payload"]["message"] == "Unknown message type: self_destruct"

    @pytest.mark.asyncio
    async def test_process_query_records_episode(self, bridge, store):
        raw = json.dumps({"type": "process_query", "payload": {"query": "hello there", "force_mode": "fast"}})
        reply = _reply(await bridge.handle_message(raw))

        assert reply["type"] == "query_result"
        payload = reply["payload"]
        assert payload["response"] == "Sure, here you go."
        assert payload["context"]["mode"] == ConversationMode.FAST.value
        assert payload["validation"]["hallucination_risk"] == "low"
        assert store.get_episode(payload["episode_id"]).user_message == "hello there"
        assert payload["fallback"] is False

    @pytest.mark.asyncio
    async def test_fallback_reply_is_not_recorded(self, bridge, store):
        bridge.orchestrator.generator.error = GenerationError("model offline")
        raw = json.dumps({"type": "process_query", "payload": {"query": "hello there", "force_mode": "fast"}})
        payload = _reply(await bridge.handle_message(raw))["payload"]

        assert payload["response"] == bridge.orchestrator.config.fallback_fast
        assert payload["fallback"] is True
        assert payload["episode_id"] is None
        assert store.get_stats().total_episodes == 0

    @pytest.mark.asyncio
    async def test_process_query_without_query_is_error(self, bridge):
        reply = _reply(await bridge.handle_message(json.dumps({"type": "process_query", "payload": {}})))
        assert reply["type"] == "error"
        assert reply["payload"]["request"] == "process_query"

    @pytest.mark.asyncio
    async def test_update_config(self, bridge):
        raw = json.dumps({"type": "update_config", "payload": {"fastModeThreshold": 0.6}})
        reply = _reply(await bridge.handle_message(raw))
        assert reply["type"] == "config"
        assert reply["payload"]["fast_mode_threshold"] == 0.6

    @pytest.mark.asyncio
    async def test_invalid_config_is_error(self, bridge):
        raw = json.dumps({"type": "update_config", "payload": {"fastModeThreshold": 3}})
        reply = _reply(await bridge.handle_message(raw))
        assert reply["type"] == "error"
        assert bridge.orchestrator.get_config().fast_mode_threshold == 0.8

    @pytest.mark.asyncio
    async def test_listening_replies_with_context(self, bridge):
        reply = _reply(await bridge.handle_message(json.dumps({"type": "start_listening"})))
        assert reply["type"] == "context"
        reply = _reply(await bridge.handle_message(json.dumps({"type": "stop_listening"})))
        assert reply["payload"]["voice_state"] == "idle"

    @pytest.mark.asyncio
    async def test_trigger_proactive_when_disabled(self, bridge):
        reply = _reply(await bridge.handle_message(json.dumps({"type": "trigger_proactive_message"})))
        assert reply["type"] == "proactive_skipped"

    @pytest.mark.asyncio
    async def test_update_satisfaction(self, bridge, store):
        episode_id = await bridge.orchestrator.record_exchange("q", "a")
        raw = json.dumps({
            "type": "update_satisfaction",
            "payload": {"episode_id": episode_id, "satisfaction": "positive"},
        })
        reply = _reply(await bridge.handle_message(raw))
        assert reply == {"type": "satisfaction_updated", "payload": {"episode_id": episode_id, "updated": True}}

    @pytest.mark.asyncio
    async def test_bad_satisfaction_value_is_error(self, bridge):
        episode_id = await bridge.orchestrator.record_exchange("q", "a")
        raw = json.dumps({
            "type": "update_satisfaction",
            "payload": {"episode_id": episode_id, "satisfaction": "meh"},
        })
        reply = _reply(await bridge.handle_message(raw))
        assert reply["type"] == "error"


class TestConnections:
    @pytest.mark.asyncio
    async def test_handler_sends_state_then_replies(self, bridge):
        ws = FakeWebSocket([json.dumps({"type": "stop_listening"}), "garbage"])
        await bridge.handler(ws)

        assert [m["type"] for m in ws.sent] == ["context", "config", "context", "error"]
        assert ws not in bridge.clients

    @pytest.mark.asyncio
    async def test_events_are_broadcast(self, bridge):
        ws = FakeWebSocket()
        bridge.clients.add(ws)
        bridge.attach()

        bridge.orchestrator.events.emit(ConversationEvent.IDLE_UPDATE, {"idle_minutes": 15})
        await asyncio.sleep(0.01)

        assert ws.sent == [{"type": "idle-update", "payload": {"idle_minutes": 15}}]
        bridge.detach()

    @pytest.mark.asyncio
    async def test_closed_clients_are_dropped(self, bridge):
        dead = FakeWebSocket(closed=True)
        alive = FakeWebSocket()
        bridge.clients.update({dead, alive})

        await bridge.broadcast("speech-start", None)

        assert bridge.clients == {alive}
        assert alive.sent == [{"type": "speech-start", "payload": None}]

    @pytest.mark.asyncio
    async def test_proactive_message_forwarded(self, store, quiet_config):
        proactive = ProactiveScheduler()
        orchestrator = ConversationOrchestrator(quiet_config, store, FakeGenerationEngine(), proactive=proactive)
        bridge = UIBridge(orchestrator, store)
        ws = FakeWebSocket()
        bridge.clients.add(ws)
        bridge.attach()

        proactive.trigger_manual("curiosity")
        await asyncio.sleep(0.01)

        assert ws.sent[0]["type"] == "proactive-message"
        assert ws.sent[0]["payload"]["type"] == "curiosity"
        bridge.detach()
