"""
Conversation Orchestrator for EDEN.

Central coordinator for one conversation session.

Responsibility:
- process_query: retrieve -> pick mode -> (ground) -> generate -> validate
- Regenerate once, in detailed mode, when hallucination risk exceeds tolerance
- Own ConversationContext (mode, voice state, last validation, idle time)
- Translate VAD / wake-word / proactive signals into conversation events
- Run the idle tick

Does NOT:
- Render anything (UI listens to events)
- Transcribe or record audio
- Serialize overlapping process_query calls (they share the memory store)

Failure policy:
- Generation failures become the mode's fallback text, flagged on the result
- Retrieval and validation failures are logged and re-raised
- Event handler failures are logged by the EventBus and never reach here
"""

# ============================================================================
# 1) IMPORTS
# ============================================================================
import logging
import re
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple

from eden import policy
from eden.config import ConversationConfig, normalize_option_names
from eden.errors import ConfigurationError, NotInitializedError, RetrievalError, ValidationError
from eden.events import ConversationEvent, EventBus, Subscription
from eden.generation import GenerationEngine
from eden.grounding import GroundedContext, GroundingValidator, RetrievalGroundingValidator
from eden.instrumentation import log_event, timed
from eden.memory_store import EpisodicMemoryStore
from eden.models import (
    ConversationContext,
    ConversationMode,
    Episode,
    EpisodeContext,
    ProactiveEvent,
    QueryResult,
    RetrievedEpisode,
    RiskLevel,
    ValidationSummary,
    VoiceEvent,
    VoiceEventType,
    VoiceState,
    WakeWordEvent,
    utc_now,
)
from eden.proactive import ProactiveScheduler
from eden.scheduler import Scheduler
from eden.vad import VoiceActivityMonitor
from eden.wake_word import WakeWordDetector

# ============================================================================
# 2) MODULE LOGGER
# ============================================================================
logger = logging.getLogger(__name__)

# ============================================================================
# 3) MODE HEURISTICS
# ============================================================================
CASUAL_PATTERNS = (
    re.compile(r"^(hi|hello|hey)\b", re.IGNORECASE),
    re.compile(r"\b(how are you|what's up|what are you doing)\b", re.IGNORECASE),
    re.compile(r"^(ok|okay|thanks|thank you|cool|nice)\b", re.IGNORECASE),
)

DEEP_PATTERNS = (
    re.compile(r"\b(how|why|explain|describe|what is)\b", re.IGNORECASE),
    re.compile(r"\b(implement|create|build|design)\b", re.IGNORECASE),
    re.compile(r"\b(analyze|compare|review)\b", re.IGNORECASE),
)

GENERATION_PARAMS = {
    ConversationMode.FAST: (policy.FAST_TEMPERATURE, policy.FAST_MAX_TOKENS),
    ConversationMode.DETAILED: (policy.DETAILED_TEMPERATURE, policy.DETAILED_MAX_TOKENS),
    ConversationMode.PROACTIVE: (policy.DETAILED_TEMPERATURE, policy.DETAILED_MAX_TOKENS),
}


def determine_mode(
    query: str,
    retrieved: List[RetrievedEpisode],
    fast_mode_threshold: float = 0.8,
    short_query_length: int = policy.SHORT_QUERY_LENGTH,
) -> ConversationMode:
    """Fast for chit-chat, short queries, or strong memory hits; detailed for deep questions."""
    if any(p.search(query) for p in CASUAL_PATTERNS):
        return ConversationMode.FAST
    if len(query) < short_query_length:
        return ConversationMode.FAST
    if retrieved and max(doc.similarity for doc in retrieved) >= fast_mode_threshold:
        return ConversationMode.FAST
    if any(p.search(query) for p in DEEP_PATTERNS):
        return ConversationMode.DETAILED
    return ConversationMode.FAST


def should_regenerate(risk: RiskLevel, tolerance: RiskLevel) -> bool:
    return RiskLevel(risk).exceeds(RiskLevel(tolerance))


def create_standard_prompt(query: str, episodes: List[RetrievedEpisode], mode: ConversationMode) -> str:
    """Prompt used when grounding is off: top 3 episodes as loose context."""
    prompt = ""
    if episodes:
        prompt += "## Context from memory:\n\n"
        for doc in episodes[:3]:
            prompt += f"User: {doc.user_message}\n"
            prompt += f"Eden: {doc.assistant_response}\n\n"
        prompt += "---\n\n"
    if mode == ConversationMode.FAST:
        prompt += f"User: {query}\n\nRespond briefly in 1-2 sentences."
    else:
        prompt += f"User: {query}\n\nProvide a detailed, well-reasoned response."
    return prompt


# ============================================================================
# 4) ORCHESTRATOR
# ============================================================================
class ConversationOrchestrator:
    """
    Single-use: shutdown() detaches from the child services and closes the
    event bus, so a shut-down orchestrator refuses to initialize again.
    """

    def __init__(
        self,
        config: ConversationConfig,
        memory: EpisodicMemoryStore,
        generator: GenerationEngine,
        validator: Optional[GroundingValidator] = None,
        proactive: Optional[ProactiveScheduler] = None,
        vad: Optional[VoiceActivityMonitor] = None,
        wake_word: Optional[WakeWordDetector] = None,
        scheduler: Optional[Scheduler] = None,
        conversation_id: str = "default",
        clock: Callable[[], datetime] = utc_now,
    ):
        self.config = config
        self.memory = memory
        self.generator = generator
        self.validator = validator or RetrievalGroundingValidator(
            grounding_threshold=config.grounding_threshold,
            max_context_length=config.max_context_length,
        )
        self.proactive = proactive
        self.vad = vad
        self.wake_word = wake_word
        self.scheduler = scheduler or Scheduler()
        self.conversation_id = conversation_id
        self._clock = clock

        self.context = ConversationContext(last_interaction=clock())
        self.events = EventBus("conversation")
        self._initialized = False
        self._child_subscriptions: List[Subscription] = []
        self._closed = False
        self._setup_event_listeners()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def is_ready(self) -> bool:
        return self._initialized

    async def initialize(self) -> None:
        if self._closed:
            raise ConfigurationError("Orchestrator was shut down; build a new one")
        if self._initialized:
            logger.warning("[Orchestrator] Already initialized")
            return

        logger.info("[Orchestrator] Initializing...")
        try:
            if not self.memory.is_initialized:
                await self.memory.initialize()

            if self.config.proactive_enabled and self.proactive:
                self.proactive.update_config(
                    enabled=True,
                    frequency=self.config.proactive_frequency,
                    personality=self.config.proactive_personality,
                )
                self.proactive.start()
                logger.info("[Orchestrator] Proactive scheduler started")

            if self.config.vad_enabled and self.vad:
                self.vad.update_config(enabled=True, sensitivity=self.config.vad_sensitivity)
                self.vad.start()
                logger.info("[Orchestrator] VAD started")

            if self.config.wake_word_enabled and self.wake_word:
                self.wake_word.update_config(wake_words=self.config.wake_words)
                self.wake_word.start()
                logger.info("[Orchestrator] Wake word detection started")

            self.scheduler.schedule("idle-tick", policy.IDLE_TICK_SECONDS, self.update_idle)
        except ConfigurationError:
            logger.error("[Orchestrator] Initialization failed", exc_info=True)
            await self._stop_services()
            raise
        except Exception as e:
            logger.error(f"[Orchestrator] Initialization failed: {e}", exc_info=True)
            await self._stop_services()
            raise ConfigurationError(f"Failed to initialize conversation services: {e}") from e

        self._initialized = True
        logger.info("[Orchestrator] Initialized")

    async def shutdown(self) -> None:
        logger.info("[Orchestrator] Shutting down...")
        await self._stop_services()
        for sub in self._child_subscriptions:
            sub.unsubscribe()
        self._child_subscriptions.clear()
        self.events.close()
        self._initialized = False
        self._closed = True
        logger.info("[Orchestrator] Shut down")

    async def _stop_services(self) -> None:
        await self.scheduler.shutdown()
        if self.proactive:
            self.proactive.stop()
        if self.vad:
            self.vad.stop()
        if self.wake_word:
            self.wake_word.stop()

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def subscribe(self, topic, handler: Callable[[Any], None]) -> Subscription:
        return self.events.subscribe(topic, handler)

    def _setup_event_listeners(self) -> None:
        if self.proactive:
            self._child_subscriptions.append(self.proactive.subscribe(self._on_proactive_message))
        if self.vad:
            self._child_subscriptions.append(self.vad.subscribe(self._on_voice_event))
        if self.wake_word:
            self._child_subscriptions.append(self.wake_word.subscribe(self._on_wake_word))

    def _on_proactive_message(self, event: ProactiveEvent) -> None:
        logger.info(f"[Orchestrator] Proactive message: {event.type}")
        self.context.mode = ConversationMode.PROACTIVE
        self.context.proactive_event = event
        self.events.emit(ConversationEvent.PROACTIVE_MESSAGE, event)

    def _on_voice_event(self, event: VoiceEvent) -> None:
        logger.info(f"[Orchestrator] VAD event: {event.type.value}")
        if event.type == VoiceEventType.SPEECH_START:
            self.context.voice_state = VoiceState.SPEAKING
            self.events.emit(ConversationEvent.SPEECH_START, event)
            if self.config.proactive_enabled and self.proactive:
                self.proactive.pause_for_conversation()
        elif event.type == VoiceEventType.SPEECH_END:
            self.context.voice_state = VoiceState.LISTENING
            self.events.emit(ConversationEvent.SPEECH_END, event)
            logger.info("[Orchestrator] Speech ended, triggering recording")
            self.events.emit(ConversationEvent.TRIGGER_RECORDING, {
                "duration_ms": event.duration_ms,
                "timestamp": event.timestamp.isoformat(),
            })

    def _on_wake_word(self, event: WakeWordEvent) -> None:
        logger.info(f"[Orchestrator] Wake word: {event.wake_word} (confidence: {event.confidence:.2f})")
        self.events.emit(ConversationEvent.WAKE_WORD_DETECTED, event)
        if self.config.vad_enabled:
            self.context.voice_state = VoiceState.LISTENING
            self.events.emit(ConversationEvent.START_LISTENING)

    def update_idle(self) -> int:
        """Idle tick: recompute idle minutes, notify every 15 idle minutes."""
        elapsed = (self._clock() - self.context.last_interaction).total_seconds()
        idle = int(elapsed // 60)
        self.context.idle_minutes = idle
        if idle > 0 and idle % policy.IDLE_NOTIFY_EVERY_MINUTES == 0:
            logger.debug(f"[Orchestrator] User idle for {idle} minutes")
            self.events.emit(ConversationEvent.IDLE_UPDATE, {"idle_minutes": idle})
        return idle

    # ------------------------------------------------------------------
    # Query pipeline
    # ------------------------------------------------------------------

    def determine_mode(self, query: str, retrieved: List[RetrievedEpisode]) -> ConversationMode:
        return determine_mode(
            query,
            retrieved,
            fast_mode_threshold=self.config.fast_mode_threshold,
            short_query_length=self.config.short_query_length,
        )

    @staticmethod
    def should_regenerate(risk: RiskLevel, tolerance: RiskLevel) -> bool:
        return should_regenerate(risk, tolerance)

    async def process_query(
        self,
        query: str,
        force_mode: Optional[ConversationMode] = None,
        skip_grounding: bool = False,
    ) -> QueryResult:
        logger.info(f'[Orchestrator] Processing query: "{query[:50]}"')
        log_event("QUERY_START", stage="orchestrator", conversation_id=self.conversation_id)

        self.context.last_interaction = self._clock()
        self.context.idle_minutes = 0
        paused = self.config.proactive_enabled and self.proactive is not None
        if paused:
            self.proactive.pause_for_conversation()

        try:
            retrieved = await self._retrieve(query)

            mode = ConversationMode(force_mode) if force_mode else self.determine_mode(query, retrieved)
            self.context.mode = mode
            logger.info(f"[Orchestrator] Mode: {mode.value}")

            validation = None
            if self.config.grounding_enabled and not skip_grounding:
                response, validation, fallback = await self._grounded_response(query, retrieved, mode)
                self.context.last_validation = validation
            else:
                prompt = create_standard_prompt(query, retrieved, mode)
                response, fallback = await self._generate(prompt, mode)
        finally:
            if paused:
                self.proactive.resume()

        log_event("QUERY_DONE", stage="orchestrator", conversation_id=self.conversation_id)
        return QueryResult(
            response=response,
            context=self.context.snapshot(),
            validation=validation,
            fallback=fallback,
        )

    async def _retrieve(self, query: str) -> List[RetrievedEpisode]:
        try:
            with timed("retrieve"):
                result = await self.memory.search_episodes(query, top_k=self.config.retrieval_top_k)
        except RetrievalError:
            logger.error("[Orchestrator] Memory retrieval failed", exc_info=True)
            raise
        logger.info(f"[Orchestrator] Retrieved {len(result.episodes)} relevant episodes")
        return result.episodes

    async def _grounded_response(self, query: str, retrieved: List[RetrievedEpisode], mode: ConversationMode):
        bundle = await self.validator.generate_grounded_response(query, retrieved)
        response, fallback = await self._generate(self.validator.create_prompt(query, bundle, mode), mode)
        validation = self._validate(response, bundle)
        logger.info(
            f"[Orchestrator] Validation: grounded={validation.is_grounded} "
            f"risk={validation.hallucination_risk.value}"
        )

        regenerations = 0
        while regenerations < policy.MAX_REGENERATIONS and self.should_regenerate(
            validation.hallucination_risk, self.config.hallucination_risk_tolerance
        ):
            logger.warning("[Orchestrator] Hallucination risk too high, regenerating in detailed mode")
            log_event("REGENERATE", stage="orchestrator", conversation_id=self.conversation_id)
            regenerations += 1
            mode = ConversationMode.DETAILED
            self.context.mode = mode
            bundle = await self.validator.generate_grounded_response(query, retrieved)
            response, fallback = await self._generate(self.validator.create_prompt(query, bundle, mode), mode)
            validation = self._validate(response, bundle)

        validation.regenerated = regenerations > 0
        return response, validation, fallback

    def _validate(self, response: str, bundle: GroundedContext) -> ValidationSummary:
        result = self.validator.validate_response(response, bundle)
        if not result.is_ok:
            logger.error(f"[Orchestrator] Response validation failed: {result.reason}")
            raise ValidationError(result.reason) from result.error
        check = result.value
        risk = self.validator.assess_hallucination_risk(response, bundle, check)
        return ValidationSummary(
            is_grounded=check.is_grounded,
            hallucination_risk=risk,
            confidence=check.confidence,
        )

    async def _generate(self, prompt: str, mode: ConversationMode) -> Tuple[str, bool]:
        """Returns (text, fallback); fallback is True when the engine failed and canned text was used."""
        temperature, max_tokens = GENERATION_PARAMS[mode]
        logger.debug(f"[Orchestrator] Prompt ({mode.value}): {prompt[:100]}")
        try:
            with timed("generate", policy.GENERATION_WATCHDOG_SECONDS):
                response = await self.generator.generate_response(prompt, temperature, max_tokens)
        except Exception as e:
            logger.error(f"[Orchestrator] Generation failed: {e}", exc_info=True)
            if mode == ConversationMode.FAST:
                return self.config.fallback_fast, True
            return self.config.fallback_detailed, True
        logger.info(f"[Orchestrator] Response generated (mode: {mode.value}, length: {len(response)})")
        return response, False

    async def record_exchange(
        self,
        user_message: str,
        assistant_response: str,
        context: Optional[EpisodeContext] = None,
        conversation_id: Optional[str] = None,
    ) -> str:
        """Persist a finished exchange so later queries can retrieve it."""
        episode = Episode(
            conversation_id=conversation_id or self.conversation_id,
            user_message=user_message,
            assistant_response=assistant_response,
            context=context or EpisodeContext(),
        )
        return await self.memory.store_episode(episode)

    # ------------------------------------------------------------------
    # UI-invoked operations
    # ------------------------------------------------------------------

    def start_listening(self) -> None:
        if not self._initialized:
            raise NotInitializedError("ConversationOrchestrator")
        if self.config.vad_enabled and self.vad:
            if not self.vad.is_active():
                self.vad.start()
            self.context.voice_state = VoiceState.LISTENING

    def stop_listening(self) -> None:
        if self.config.vad_enabled and self.vad:
            self.vad.stop()
            self.context.voice_state = VoiceState.IDLE

    def update_config(self, changes: Dict[str, Any]) -> ConversationConfig:
        """Apply option changes (snake_case or camelCase) and push them to child services."""
        self.config = self.config.updated(changes)
        keys = set(normalize_option_names(changes))

        if keys & {"proactive_enabled", "proactive_frequency", "proactive_personality"} and self.proactive:
            self.proactive.update_config(
                enabled=self.config.proactive_enabled,
                frequency=self.config.proactive_frequency,
                personality=self.config.proactive_personality,
            )
        if keys & {"vad_enabled", "vad_sensitivity"} and self.vad:
            self.vad.update_config(enabled=self.config.vad_enabled, sensitivity=self.config.vad_sensitivity)
            if self._initialized:
                if self.config.vad_enabled and not self.vad.is_active():
                    self.vad.start()
                elif not self.config.vad_enabled:
                    self.vad.stop()
                    self.context.voice_state = VoiceState.IDLE
        if keys & {"wake_word_enabled", "wake_words"} and self.wake_word:
            self.wake_word.update_config(wake_words=self.config.wake_words)
            if self._initialized:
                if self.config.wake_word_enabled and not self.wake_word.is_listening():
                    self.wake_word.start()
                elif not self.config.wake_word_enabled:
                    self.wake_word.stop()
        if keys & {"grounding_threshold", "max_context_length"} and isinstance(self.validator, RetrievalGroundingValidator):
            self.validator.grounding_threshold = self.config.grounding_threshold
            self.validator.max_context_length = self.config.max_context_length

        logger.info(f"[Orchestrator] Config updated: {sorted(keys)}")
        return self.config

    def trigger_proactive_message(self) -> Optional[ProactiveEvent]:
        if self.config.proactive_enabled and self.proactive:
            return self.proactive.trigger()
        return None

    def set_proactive_enabled(self, enabled: bool) -> None:
        self.config = self.config.updated({"proactive_enabled": enabled})
        if self.proactive:
            self.proactive.update_config(enabled=enabled)
            if enabled:
                self.proactive.start()
            else:
                self.proactive.stop()
        logger.info(f"[Orchestrator] Proactive mode {'enabled' if enabled else 'disabled'}")

    def get_context(self) -> ConversationContext:
        return self.context.snapshot()

    def get_config(self) -> ConversationConfig:
        return self.config
