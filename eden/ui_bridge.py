"""
WebSocket bridge between the EDEN core and the chat UI.

Outbound: every orchestrator event as {"type": <event>, "payload": ...}.
On connect the client gets the current context and config.

Inbound (same envelope):
- process_query        {"query", "force_mode"?, "skip_grounding"?}
- start_listening / stop_listening
- update_config        option dict (camelCase accepted)
- trigger_proactive_message
- update_satisfaction  {"episode_id", "satisfaction"}

Bad JSON, unknown types and failed commands are answered with an
{"type": "error"} message on the same socket.
"""

import asyncio
import json
import logging
from typing import Any, Dict, List, Optional, Set

import websockets

from eden.errors import EdenError
from eden.events import ConversationEvent, Subscription
from eden.instrumentation import log_event
from eden.memory_store import EpisodicMemoryStore
from eden.orchestrator import ConversationOrchestrator

logger = logging.getLogger(__name__)


def _to_payload(data: Any) -> Any:
    if data is None:
        return None
    to_dict = getattr(data, "to_dict", None)
    return to_dict() if callable(to_dict) else data


def encode(msg_type: str, payload: Any = None) -> str:
    return json.dumps({"type": msg_type, "payload": _to_payload(payload)}, default=str)


class UIBridge:
    def __init__(self, orchestrator: ConversationOrchestrator, memory: EpisodicMemoryStore):
        self.orchestrator = orchestrator
        self.memory = memory
        self.clients: Set[Any] = set()
        self._subscriptions: List[Subscription] = []
        self._pending: Set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # Outbound
    # ------------------------------------------------------------------

    def attach(self) -> None:
        """Forward every conversation event to connected clients."""
        for event in ConversationEvent:
            self._subscriptions.append(
                self.orchestrator.subscribe(event, self._forwarder(event.value))
            )

    def detach(self) -> None:
        for sub in self._subscriptions:
            sub.unsubscribe()
        self._subscriptions.clear()

    def _forwarder(self, msg_type: str):
        def forward(payload):
            task = asyncio.get_running_loop().create_task(self.broadcast(msg_type, payload))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)
        return forward

    async def broadcast(self, msg_type: str, payload: Any = None) -> None:
        if not self.clients:
            return
        msg = encode(msg_type, payload)
        for ws in list(self.clients):
            try:
                await ws.send(msg)
            except websockets.ConnectionClosed:
                self.clients.discard(ws)

    # ------------------------------------------------------------------
    # Inbound
    # ------------------------------------------------------------------

    async def handler(self, websocket) -> None:
        self.clients.add(websocket)
        try:
            await websocket.send(encode("context", self.orchestrator.get_context()))
            await websocket.send(encode("config", self.orchestrator.get_config()))
            async for message in websocket:
                reply = await self.handle_message(message)
                if reply is not None:
                    await websocket.send(reply)
        except websockets.ConnectionClosed:
            logger.debug("[UI] Client disconnected")
        finally:
            self.clients.discard(websocket)

    async def handle_message(self, message: str) -> Optional[str]:
        try:
            data = json.loads(message)
        except json.JSONDecodeError as e:
            return encode("error", {"message": f"Malformed JSON: {e}"})
        if not isinstance(data, dict):
            return encode("error", {"message": "Expected a JSON object"})

        msg_type = data.get("type")
        payload = data.get("payload") or {}
        log_event(f"UI_MSG {msg_type}", stage="ui", conversation_id=self.orchestrator.conversation_id)

        handler = self._handlers().get(msg_type)
        if handler is None:
            return encode("error", {"message": f"Unknown message type: {msg_type}"})
        try:
            return await handler(payload)
        except (EdenError, ValueError, KeyError, TypeError) as e:
            logger.warning(f"[UI] {msg_type} failed: {e}")
            return encode("error", {"message": str(e), "request": msg_type})

    def _handlers(self):
        return {
            "process_query": self._process_query,
            "start_listening": self._start_listening,
            "stop_listening": self._stop_listening,
            "update_config": self._update_config,
            "trigger_proactive_message": self._trigger_proactive,
            "update_satisfaction": self._update_satisfaction,
        }

    async def _process_query(self, payload: Dict[str, Any]) -> str:
        query = payload["query"]
        result = await self.orchestrator.process_query(
            query,
            force_mode=payload.get("force_mode"),
            skip_grounding=bool(payload.get("skip_grounding", False)),
        )
        episode_id = None
        if result.fallback:
            logger.warning("[UI] Generation fell back to canned text; exchange not recorded")
        else:
            episode_id = await self.orchestrator.record_exchange(query, result.response)
        reply = result.to_dict()
        reply["episode_id"] = episode_id
        return encode("query_result", reply)

    async def _start_listening(self, payload) -> str:
        self.orchestrator.start_listening()
        return encode("context", self.orchestrator.get_context())

    async def _stop_listening(self, payload) -> str:
        self.orchestrator.stop_listening()
        return encode("context", self.orchestrator.get_context())

    async def _update_config(self, payload: Dict[str, Any]) -> str:
        return encode("config", self.orchestrator.update_config(payload).to_dict())

    async def _trigger_proactive(self, payload) -> Optional[str]:
        event = self.orchestrator.trigger_proactive_message()
        if event is None:
            return encode("proactive_skipped", {"reason": "no message available"})
        return None

    async def _update_satisfaction(self, payload: Dict[str, Any]) -> str:
        updated = self.memory.update_satisfaction(payload["episode_id"], payload.get("satisfaction"))
        return encode("satisfaction_updated", {"episode_id": payload["episode_id"], "updated": updated})

    # ------------------------------------------------------------------
    # Server
    # ------------------------------------------------------------------

    async def serve(self, host: str = "localhost", port: int = 8001) -> None:
        self.attach()
        logger.info(f"[UI] WebSocket bridge running on ws://{host}:{port}")
        try:
            async with websockets.serve(self.handler, host, port):
                await asyncio.Future()
        finally:
            self.detach()
