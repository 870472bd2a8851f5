"""Shared constants for the stat extraction engine."""

import re


# Reserved character keys
USER_TRACKER_KEY = "__bst_user__"
GLOBAL_TRACKER_KEY = "__bst_global__"

NUMERIC_STAT_KEYS: tuple[str, ...] = ("affection", "trust", "desire", "connection")
TEXT_STAT_KEYS: tuple[str, ...] = ("mood", "lastThought")
STAT_KEYS: tuple[str, ...] = NUMERIC_STAT_KEYS + TEXT_STAT_KEYS

MOOD_OPTIONS: tuple[str, ...] = (
    "Happy",
    "Sad",
    "Angry",
    "Excited",
    "Confused",
    "In Love",
    "Shy",
    "Playful",
    "Serious",
    "Lonely",
    "Hopeful",
    "Anxious",
    "Content",
    "Frustrated",
    "Neutral",
)

# Free-form labels the model tends to produce, mapped onto MOOD_OPTIONS
MOOD_ALIASES: dict[str, str] = {
    "exhausted": "Sad",
    "exhaustion": "Sad",
    "tired": "Sad",
    "fatigued": "Sad",
    "drained": "Sad",
    "sleepy": "Sad",
    "weary": "Sad",
    "worried": "Anxious",
    "nervous": "Anxious",
    "stressed": "Anxious",
    "overwhelmed": "Anxious",
    "upset": "Frustrated",
    "annoyed": "Frustrated",
    "mad": "Angry",
    "calm": "Content",
    "relaxed": "Content",
    "peaceful": "Content",
    "joyful": "Happy",
    "glad": "Happy",
}

MAX_CUSTOM_STATS = 8
CUSTOM_STAT_ID_PATTERN = re.compile(r"^[a-z][a-z0-9_]{1,31}$")
RESERVED_CUSTOM_STAT_IDS: frozenset[str] = frozenset({
    *STAT_KEYS,
    "custom",
    "custom_stats",
    "customstatistics",
    "statistics",
    "settings",
    "defaults",
    "all",
    "none",
})

STAT_VALUE_MIN = 0
STAT_VALUE_MAX = 100
DEFAULT_CONFIDENCE = 0.8
MAX_RETRY_BUDGET = 4
MAX_WORKER_POOL_SIZE = 8
MAX_ARRAY_ITEMS = 20
TEXT_MAX_LENGTH_DEFAULT = 120
TEXT_MAX_LENGTH_BOUNDS = (20, 200)
BUILT_IN_TEXT_MAX_LENGTH = 200

# Transport retry policy: 1 initial call + 2 retries
TRANSPORT_MAX_ATTEMPTS = 3
TRANSPORT_RETRY_DELAYS_SECONDS: tuple[float, ...] = (0.35, 1.2)

PROGRESS_STEPS_PER_REQUEST = 3
