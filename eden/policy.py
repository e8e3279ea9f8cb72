"""
Policy Module (Centralized Timeouts, Intervals & Thresholds)

Constants only. No side effects. No imports from other EDEN modules.
"""

# Generation (local LLM) timeouts
LLM_TIMEOUT_SECONDS = 30
GENERATION_WATCHDOG_SECONDS = 35
EMBEDDING_WATCHDOG_SECONDS = 5

# Mode-specific generation parameters
FAST_TEMPERATURE = 0.8
FAST_MAX_TOKENS = 150
DETAILED_TEMPERATURE = 0.7
DETAILED_MAX_TOKENS = 500

# Periodic task intervals
VAD_TICK_SECONDS = 0.1
IDLE_TICK_SECONDS = 60.0
PROACTIVE_TICK_SECONDS = 60.0

# Idle notification boundary (minutes)
IDLE_NOTIFY_EVERY_MINUTES = 15

# Wake-word recognition restart delay after the stream ends
WAKE_WORD_RESTART_DELAY_SECONDS = 0.1

# Regeneration budget when hallucination risk exceeds tolerance
MAX_REGENERATIONS = 1

# Retrieval defaults
RETRIEVAL_TOP_K = 5
EPISODE_CACHE_CAPACITY = 1000
EMBEDDING_MAX_CHARS = 8192

# Mode decision
SHORT_QUERY_LENGTH = 30

# Fallback responses when generation fails (short for fast, longer for detailed)
FALLBACK_RESPONSE_FAST = "Sorry, I can't answer right now. Please try again!"
FALLBACK_RESPONSE_DETAILED = (
    "I'm sorry, something went wrong while generating a response. "
    "Please try again in a moment."
)
