"""
Proactive engagement for EDEN.

Once a minute, decide whether the assistant should start a conversation.

Gates (all must pass):
- enabled
- outside quiet hours (start > end wraps midnight, e.g. 23 -> 7)
- user not busy, not mid-conversation
- idle for at least min_idle_minutes
- at least the frequency interval since the last proactive message

Message choice, first match wins:
- 07-10h greeting (once per day)
- idle > 30 min check-in
- 10-18h suggestion
- 18-21h encouragement
- 20% chance curiosity question
"""

import logging
import random
from datetime import datetime
from typing import Callable, Dict, List, Optional

from eden import policy
from eden.config import PROACTIVE_FREQUENCIES, PROACTIVE_PERSONALITIES, Config
from eden.errors import ConfigurationError
from eden.events import EventBus, Subscription
from eden.models import ProactiveEvent
from eden.scheduler import PeriodicTask

logger = logging.getLogger(__name__)

MIN_INTERVAL_MINUTES = {"low": 60, "medium": 30, "high": 15}
CHECK_IN_IDLE_MINUTES = 30
CURIOSITY_CHANCE = 0.2

GREETINGS: Dict[str, List[str]] = {
    "reserved": [
        "Good morning. Ready for today?",
        "Morning. What are you working on?",
        "Hello. Let me know if you need anything.",
    ],
    "friendly": [
        "Good morning! How are you feeling today?",
        "Hey! What's on the agenda today?",
        "Morning! Coffee ready? Let me know how I can help!",
    ],
    "enthusiastic": [
        "Good morning!! Let's make today awesome!",
        "Hey hey! New day, new possibilities! What should we tackle first?",
        "Morning!! I'm so excited to help you today! What are we building?",
    ],
}

CHECK_INS: Dict[str, List[str]] = {
    "reserved": [
        "Everything going okay?",
        "Need any assistance?",
        "How is your work progressing?",
    ],
    "friendly": [
        "Hey, haven't heard from you in a while! Everything okay?",
        "Just checking in. Need any help?",
        "How are things going? Want to chat about your progress?",
    ],
    "enthusiastic": [
        "Hey!! You've been quiet! What are you up to? Need a brainstorming buddy?",
        "Missing our chat! What cool thing are you building?",
        "Hellooo! Tell me what you're working on!",
    ],
}

SUGGESTIONS: Dict[str, List[str]] = {
    "reserved": [
        "Would you like me to review your recent code?",
        "I could help organize your tasks.",
        "Consider taking a short break.",
    ],
    "friendly": [
        "Want me to look at what you worked on yesterday?",
        "Need help organizing your to-do list?",
        "How about a quick stretch break?",
    ],
    "enthusiastic": [
        "I have some cool ideas for your project! Want to hear them?",
        "Let's tackle that tricky bug together!",
        "Break time!! Hydration check!",
    ],
}

ENCOURAGEMENTS: Dict[str, List[str]] = {
    "reserved": [
        "Good work today.",
        "Progress made.",
        "Steady improvement.",
    ],
    "friendly": [
        "You did great today!",
        "Nice progress! Want to recap what we accomplished?",
        "Solid work today! Time to relax?",
    ],
    "enthusiastic": [
        "Wow!! You crushed it today!!",
        "Amazing work!! I'm so proud of what we built together!",
        "You are AWESOME!! Look at all this progress!!",
    ],
}

CURIOSITY_QUESTIONS = [
    "What's the most interesting thing you learned recently?",
    "If you could automate one task today, what would it be?",
    "What would make your work more enjoyable?",
    "Tell me about your dream project!",
    "What tech are you most excited about right now?",
]


class ProactiveScheduler:
    def __init__(
        self,
        enabled: bool = True,
        frequency: str = "medium",
        personality: str = "friendly",
        quiet_hours_start: int = 23,
        quiet_hours_end: int = 7,
        min_idle_minutes: float = 5,
        clock: Callable[[], datetime] = datetime.now,
        rng: Optional[random.Random] = None,
    ):
        self.enabled = enabled
        self.frequency = frequency
        self.personality = personality
        self.quiet_hours_start = quiet_hours_start
        self.quiet_hours_end = quiet_hours_end
        self.min_idle_minutes = min_idle_minutes
        self._clock = clock
        self._rng = rng or random.Random()
        self._check_options()

        self.activity_level = "idle"
        self.in_conversation = False
        self.last_interaction = clock()
        self.last_message_at: Optional[datetime] = None
        self._last_greeting_date = None

        self._events = EventBus("proactive")
        self._task: Optional[PeriodicTask] = None

    @classmethod
    def from_config(cls, config: Config, **kwargs) -> "ProactiveScheduler":
        return cls(
            enabled=config.get("proactive.enabled", True),
            frequency=config.get("proactive.frequency", "medium"),
            personality=config.get("proactive.personality", "friendly"),
            quiet_hours_start=config.get("proactive.quiet_hours_start", 23),
            quiet_hours_end=config.get("proactive.quiet_hours_end", 7),
            min_idle_minutes=config.get("proactive.min_idle_minutes", 5),
            **kwargs,
        )

    def subscribe(self, handler: Callable[[ProactiveEvent], None]) -> Subscription:
        return self._events.subscribe("proactive-message", handler)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        if self._task is not None:
            logger.warning("[Proactive] Already running")
            return
        self._task = PeriodicTask("proactive-check", policy.PROACTIVE_TICK_SECONDS, self.check).start()
        logger.info("[Proactive] Started")

    def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        self._task = None
        logger.info("[Proactive] Stopped")

    def close(self) -> None:
        self.stop()
        self._events.close()

    def is_running(self) -> bool:
        return self._task is not None

    # ------------------------------------------------------------------
    # Activity
    # ------------------------------------------------------------------

    def update_activity(self, activity_level: Optional[str] = None, in_conversation: Optional[bool] = None) -> None:
        if activity_level is not None:
            self.activity_level = activity_level
        if in_conversation is not None:
            self.in_conversation = in_conversation
        self.last_interaction = self._clock()

    def pause_for_conversation(self) -> None:
        self.in_conversation = True
        logger.debug("[Proactive] Paused for conversation")

    def resume(self) -> None:
        self.in_conversation = False
        self.last_interaction = self._clock()
        logger.debug("[Proactive] Resumed")

    def idle_minutes(self) -> float:
        return (self._clock() - self.last_interaction).total_seconds() / 60

    # ------------------------------------------------------------------
    # Decision
    # ------------------------------------------------------------------

    def is_quiet_hours(self) -> bool:
        hour = self._clock().hour
        start, end = self.quiet_hours_start, self.quiet_hours_end
        if start > end:
            return hour >= start or hour < end
        return start <= hour < end

    def check(self) -> Optional[ProactiveEvent]:
        """Scheduled tick: emit a proactive message when every gate passes."""
        if not self.enabled or self.is_quiet_hours():
            return None
        if self.activity_level == "busy" or self.in_conversation:
            return None
        if self.idle_minutes() < self.min_idle_minutes:
            return None
        if self.last_message_at is not None:
            since_last = (self._clock() - self.last_message_at).total_seconds() / 60
            if since_last < MIN_INTERVAL_MINUTES[self.frequency]:
                return None

        event = self.generate_event()
        if event is not None:
            self._deliver(event)
        return event

    def generate_event(self) -> Optional[ProactiveEvent]:
        now = self._clock()
        hour = now.hour

        if 7 <= hour < 10 and self._last_greeting_date != now.date():
            return self._create("greeting")
        if self.idle_minutes() > CHECK_IN_IDLE_MINUTES:
            return self._create("check_in")
        if 10 <= hour < 18:
            return self._create("suggestion")
        if 18 <= hour < 21:
            return self._create("encouragement")
        if self._rng.random() < CURIOSITY_CHANCE:
            return self._create("curiosity")
        return None

    def trigger(self) -> Optional[ProactiveEvent]:
        """Pick and emit a message now, bypassing the gates."""
        event = self.generate_event()
        if event is not None:
            self._deliver(event)
        return event

    def trigger_manual(self, event_type: str) -> Optional[ProactiveEvent]:
        """Emit a message of the given type now. Unknown types emit nothing."""
        if event_type not in ("greeting", "check_in", "suggestion", "encouragement", "curiosity"):
            logger.warning(f"[Proactive] Unknown manual trigger type: {event_type}")
            return None
        event = self._create(event_type)
        self._events.emit("proactive-message", event)
        return event

    def _deliver(self, event: ProactiveEvent) -> None:
        self.last_message_at = self._clock()
        if event.type == "greeting":
            self._last_greeting_date = self.last_message_at.date()
        logger.info(f'[Proactive] {event.type}: "{event.message[:50]}"')
        self._events.emit("proactive-message", event)

    def _create(self, event_type: str) -> ProactiveEvent:
        if event_type == "curiosity":
            return ProactiveEvent(type="curiosity", message=self._rng.choice(CURIOSITY_QUESTIONS), priority="low")
        table = {
            "greeting": GREETINGS,
            "check_in": CHECK_INS,
            "suggestion": SUGGESTIONS,
            "encouragement": ENCOURAGEMENTS,
        }[event_type]
        message = self._rng.choice(table[self.personality])
        if event_type == "check_in":
            return ProactiveEvent(
                type="check_in",
                message=message,
                priority="medium",
                context={"idle_minutes": round(self.idle_minutes())},
            )
        return ProactiveEvent(type=event_type, message=message, priority="low")

    # ------------------------------------------------------------------
    # Config
    # ------------------------------------------------------------------

    def update_config(
        self,
        enabled: Optional[bool] = None,
        frequency: Optional[str] = None,
        personality: Optional[str] = None,
        quiet_hours_start: Optional[int] = None,
        quiet_hours_end: Optional[int] = None,
        min_idle_minutes: Optional[float] = None,
    ) -> None:
        if enabled is not None:
            self.enabled = enabled
        if frequency is not None:
            self.frequency = frequency
        if personality is not None:
            self.personality = personality
        if quiet_hours_start is not None:
            self.quiet_hours_start = quiet_hours_start
        if quiet_hours_end is not None:
            self.quiet_hours_end = quiet_hours_end
        if min_idle_minutes is not None:
            self.min_idle_minutes = min_idle_minutes
        self._check_options()
        logger.info(
            f"[Proactive] Config updated: enabled={self.enabled} frequency={self.frequency} "
            f"personality={self.personality} quiet={self.quiet_hours_start}-{self.quiet_hours_end}"
        )

    def _check_options(self) -> None:
        if self.frequency not in PROACTIVE_FREQUENCIES:
            raise ConfigurationError(f"Unknown proactive frequency: {self.frequency}")
        if self.personality not in PROACTIVE_PERSONALITIES:
            raise ConfigurationError(f"Unknown proactive personality: {self.personality}")
