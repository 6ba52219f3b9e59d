"""
Runtime configuration for the book generator.

Values are read from the environment (a local .env file is loaded first) and
fall back to the defaults below. Model parameters are fixed for a whole run;
stages never negotiate them per call.
"""

import os
from typing import Optional

from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


def _env_float(name: str, default: float) -> float:
    value = os.environ.get(name)
    return float(value) if value not in (None, "") else default


def _env_int(name: str, default: int) -> int:
    value = os.environ.get(name)
    return int(value) if value not in (None, "") else default


def _env_optional_float(name: str) -> Optional[float]:
    value = os.environ.get(name)
    return float(value) if value not in (None, "") else None


# === Backend ===
# "anthropic" or "gemini"
BACKEND = os.environ.get("BOOK_BACKEND", "anthropic").strip().lower()
ANTHROPIC_MODEL = os.environ.get("ANTHROPIC_MODEL", "claude-sonnet-4-5")
GEMINI_MODEL = os.environ.get("GEMINI_MODEL", "gemini-2.5-flash")
GEMINI_API_KEY = os.environ.get("GEMINI_API_KEY", "")

TEMPERATURE = _env_float("BOOK_TEMPERATURE", 0.6)
TOP_P = _env_float("BOOK_TOP_P", 0.95)
# Recent Claude models reject temperature and top_p in the same request
ANTHROPIC_TOP_P = _env_optional_float("ANTHROPIC_TOP_P")
MAX_OUTPUT_TOKENS = _env_int("BOOK_MAX_OUTPUT_TOKENS", 48000)

# === Retry policy ===
MAX_RETRIES = _env_int("BOOK_MAX_RETRIES", 3)
RETRY_DELAY = _env_float("BOOK_RETRY_DELAY", 5.0)  # seconds

# === Output ===
OUTPUT_DIR = os.environ.get("BOOK_OUTPUT_DIR", "output")

# === Context window management ===
MAX_CONTEXT_TOKENS = 128000  # 128K context window
TOKEN_BUFFER = 10000  # safety margin below the window
TOKENS_PER_CHAR = 0.25  # rough token/character ratio

# Share of the available characters each component keeps when compressing
OUTLINE_SHARE = 0.3
PROFILES_SHARE = 0.3
SUMMARIES_SHARE = 0.4

# === Request excerpt sizes (characters) ===
TITLE_CONCEPT_EXCERPT = 1000
PROFILES_OUTLINE_EXCERPT = 8000
WRITE_CONTEXT_EXCERPT = 10000
SUMMARY_CHAPTER_EXCERPT = 10000
ENHANCE_OUTLINE_EXCERPT = 2000

# === Chapters ===
DEFAULT_CHAPTER_COUNT = 10
ENHANCEMENT_MIN_GROWTH = 1.2  # enhanced/original word ratio needed to accept
DEFAULT_GENRE = "fiction"
