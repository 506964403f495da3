"""Constants and environment-driven settings for MatchFoundry."""

from __future__ import annotations

import os
from typing import Dict, FrozenSet, List, Tuple

# ---- Categories ----
CATEGORY_OPTIONS: Tuple[str, ...] = (
    "product",
    "sales",
    "fundraising",
    "branding",
    "ux",
    "marketing",
    "tech",
    "ops",
    "other",
)

# ---- Matching ----
STOPWORDS: FrozenSet[str] = frozenset(
    {
        "the",
        "a",
        "an",
        "and",
        "or",
        "to",
        "of",
        "for",
        "with",
        "in",
        "on",
        "my",
        "our",
        "we",
        "is",
        "are",
        "was",
        "were",
        "this",
        "that",
        "it",
    }
)

CATEGORY_BONUS: float = 0.3
# Suggestions must score strictly above this
SCORE_THRESHOLD: float = 0.2
TOP_K_PER_NEED: int = 3
REASON_SEPARATOR: str = " • "
MAX_REASON_KEYWORDS: int = 3

# ---- Extraction ----
MAX_EXTRACTED_ITEMS: int = 3
DEFAULT_OPENAI_MODEL: str = "gpt-4.1-mini"

# Ordered: the first entry with a keyword hit wins.
CATEGORY_KEYWORDS: List[Tuple[str, List[str]]] = [
    ("sales", ["sales", "closing", "outreach", "pipeline", "crm"]),
    ("fundraising", ["fundraising", "investor", "vc", "pitch", "deck", "term sheet"]),
    ("product", ["mvp", "product", "feature", "roadmap", "prototype"]),
    ("ux", ["ux", "user interview", "usability", "design", "onboarding"]),
    ("marketing", ["marketing", "ads", "campaign", "content", "seo", "social"]),
    ("branding", ["brand", "branding", "positioning", "story"]),
    ("tech", ["backend", "frontend", "infra", "database", "deployment", "architecture"]),
    ("ops", ["operations", "ops", "process", "legal", "finance", "hiring", "recruiting"]),
]

NEED_MARKERS: Tuple[str, ...] = ("need", "help", "stuck", "blocker")

# ---- Meetings ----
DEFAULT_MEETING_BASE_URL: str = "https://meet.jit.si"
DEFAULT_MEETING_ROOM_PREFIX: str = "matchfoundry"

# ---- State ----
STATE_FILE_ENV: str = "MATCHFOUNDRY_STATE_FILE"
DEFAULT_STATE_FILE: str = "matchfoundry_state.json"
# Seconds a command waits for another process holding the state file
DEFAULT_LOCK_TIMEOUT: float = 10.0


# Env-backed settings, looked up at call time
def meeting_base_url() -> str:
    return os.environ.get("MATCHFOUNDRY_MEETING_BASE_URL", DEFAULT_MEETING_BASE_URL)


def meeting_room_prefix() -> str:
    return os.environ.get("MATCHFOUNDRY_ROOM_PREFIX", DEFAULT_MEETING_ROOM_PREFIX)


def state_file() -> str:
    return os.environ.get(STATE_FILE_ENV, DEFAULT_STATE_FILE)


def lock_timeout() -> float:
    return float(os.environ.get("MATCHFOUNDRY_LOCK_TIMEOUT", DEFAULT_LOCK_TIMEOUT))


# Demo accounts, same as the seed data of the web app
DEMO_USERS: List[Dict[str, str]] = [
    {"name": "Alice Founder", "email": "alice@example.com", "role": "founder"},
    {"name": "Bob Expert", "email": "bob@example.com", "role": "expert"},
    {"name": "Carla Community", "email": "carla@example.com", "role": "admin"},
]
