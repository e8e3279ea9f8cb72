"""
Event fan-out for the conversation core.

Explicit observer registration: every subscribe() returns a Subscription
handle, and EventBus.close() drops all of them on teardown. Events are
not persisted and not queued; handlers run synchronously on emit.

Handler failures are logged and never reach the emitter, so one broken
listener cannot break the conversation loop.
"""

import logging
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)


class ConversationEvent(str, Enum):
    PROACTIVE_MESSAGE = "proactive-message"
    SPEECH_START = "speech-start"
    SPEECH_END = "speech-end"
    TRIGGER_RECORDING = "trigger-recording"
    WAKE_WORD_DETECTED = "wake-word-detected"
    START_LISTENING = "start-listening"
    IDLE_UPDATE = "idle-update"


Handler = Callable[[Any], None]


class Subscription:
    """Handle returned by EventBus.subscribe(). Usable as a context manager."""

    def __init__(self, bus: "EventBus", topic: str, handler: Handler):
        self._bus = bus
        self.topic = topic
        self.handler = handler
        self.active = True

    def unsubscribe(self) -> None:
        if self.active:
            self._bus._remove(self)
            self.active = False

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.unsubscribe()
        return False


class EventBus:
    def __init__(self, name: str = "events"):
        self.name = name
        self._subscriptions: Dict[str, List[Subscription]] = {}
        self._closed = False

    def subscribe(self, topic, handler: Handler) -> Subscription:
        if self._closed:
            raise RuntimeError(f"EventBus '{self.name}' is closed")
        key = _topic_key(topic)
        sub = Subscription(self, key, handler)
        self._subscriptions.setdefault(key, []).append(sub)
        return sub

    def emit(self, topic, payload: Optional[Any] = None) -> int:
        """Deliver payload to every handler of topic. Returns handler count."""
        key = _topic_key(topic)
        delivered = 0
        for sub in list(self._subscriptions.get(key, [])):
            try:
                sub.handler(payload)
                delivered += 1
            except Exception as e:
                logger.error(f"[Events] Handler for '{key}' failed: {e}", exc_info=True)
        return delivered

    def subscriber_count(self, topic=None) -> int:
        if topic is None:
            return sum(len(subs) for subs in self._subscriptions.values())
        return len(self._subscriptions.get(_topic_key(topic), []))

    def close(self) -> None:
        for subs in list(self._subscriptions.values()):
            for sub in list(subs):
                sub.active = False
        self._subscriptions.clear()
        self._closed = True

    def _remove(self, sub: Subscription) -> None:
        subs = self._subscriptions.get(sub.topic, [])
        if sub in subs:
            subs.remove(sub)
        if not subs:
            self._subscriptions.pop(sub.topic, None)


def _topic_key(topic) -> str:
    return topic.value if isinstance(topic, Enum) else str(topic)
