"""
Clean generated text before it becomes pipeline state.

Reasoning models sometimes wrap their planning in <think> blocks or simply
start "thinking out loud" before giving the answer. The sanitizer strips the
former and, through a swappable ReasoningLeakPolicy, tries to pull the final
content out of the latter. Title requests get extra validation because a
title ends up in directory and file names.
"""

import re
import time
from typing import List, Optional, Sequence

from generation_client import Message

TITLE_DIRECTIVE = "Return ONLY the title"
MAX_TITLE_RESPONSE_CHARS = 100
MAX_TITLE_CHARS = 50

_THINK_BLOCK = re.compile(r"<think>[\s\S]*?</think>")

DEFAULT_LEAK_OPENERS = (
    r"I need to come up with",
    r"Let me think about",
    r"I'll create a",
    r"Okay, so I",
    r"I should start by",
    r"First, I'll",
    r"Let's brainstorm",
)

_EMPHASIS = re.compile(r"\*\*([^*]+(?:\*(?!\*)[^*]+)*)\*\*")
_FINAL_LABEL = re.compile(
    r"(?:Here's my final|Here is the|Final concept|Here's the concept)[^:\n]*:([\s\S]*?)(?=\n\n|\Z)",
    re.IGNORECASE,
)
_FIELD_LABEL = re.compile(r"(?:Title:|Main Premise:|Key Themes:)([\s\S]*?)(?=\n\n|\Z)", re.IGNORECASE)

_QUOTED_TITLE = re.compile(r"[\"']([^\"']+)[\"']")
_CAPITALIZED_TITLE = re.compile(r"^([A-Z][^.!?\n]{1,50})(?:[.!?]|$)", re.MULTILINE)
_GO_WITH_TITLE = re.compile(r"I'll go with\s+[\"']?([^\"'\n.]+)[\"']?", re.IGNORECASE)


class SanitizationFallback(Exception):
    """Raised when no heuristic could recover usable content."""


def timestamp_token(now: Optional[float] = None) -> str:
    """Return the current time in milliseconds, base 36."""
    value = int((time.time() if now is None else now) * 1000)
    digits = "0123456789abcdefghijklmnopqrstuvwxyz"
    token = ""
    while value:
        value, remainder = divmod(value, 36)
        token = digits[remainder] + token
    return token or "0"


def strip_thinking_blocks(text: str) -> str:
    """Remove every <think>...</think> section."""
    if "<think>" in text and "</think>" in text:
        print("Detected thinking markers in the response. Removing thinking section...", flush=True)
        return _THINK_BLOCK.sub("", text).strip()
    return text


class ReasoningLeakPolicy:
    """Detects planning narration at the start of a response and extracts the answer.

    The phrase list is English-only pattern matching; replace the policy (or
    pass ``enabled=False``) to change or turn off the behaviour.
    """

    def __init__(self, openers: Sequence[str] = DEFAULT_LEAK_OPENERS, enabled: bool = True):
        self.openers = [re.compile(opener, re.IGNORECASE) for opener in openers]
        self.enabled = enabled

    def is_leaking(self, text: str) -> bool:
        return self.enabled and any(opener.match(text) for opener in self.openers)

    def extract(self, text: str) -> Optional[str]:
        """Return the final content hidden in ``text``, or None if nothing matched."""
        emphasized = [m.strip() for m in _EMPHASIS.findall(text) if m.strip()]
        if emphasized:
            return "\n\n".join(emphasized)

        for pattern in (_FINAL_LABEL, _FIELD_LABEL):
            labelled = [m.strip() for m in pattern.findall(text) if m.strip()]
            if labelled:
                return "\n\n".join(labelled)
        return None

    def apply(self, text: str) -> str:
        if not self.is_leaking(text):
            return text
        print("Detected thinking pattern in the response. Attempting to extract final content...", flush=True)
        extracted = self.extract(text)
        if extracted is None:
            # Known limitation: the reasoning-prefixed text is kept as is
            print("Warning: Could not separate the final content from the reasoning.", flush=True)
            return text
        print("Extracted what appears to be the final content.", flush=True)
        return extracted


def extract_title(text: str) -> str:
    """Pick a short title out of a verbose title response."""
    for pattern in (_QUOTED_TITLE, _CAPITALIZED_TITLE, _GO_WITH_TITLE):
        match = pattern.search(text)
        if match and match.group(1).strip():
            return match.group(1).strip()
    raise SanitizationFallback("No title could be extracted from the response")


def is_title_request(messages: List[Message]) -> bool:
    return any(TITLE_DIRECTIVE in m["content"] for m in messages)


class ResponseSanitizer:
    def __init__(self, leak_policy: Optional[ReasoningLeakPolicy] = None):
        self.leak_policy = leak_policy or ReasoningLeakPolicy()

    def clean(self, text: str, messages: List[Message]) -> str:
        """Sanitize a raw response to the request made with ``messages``."""
        text = strip_thinking_blocks(text)
        text = self.leak_policy.apply(text.strip())

        if is_title_request(messages):
            text = self.validate_title(text)
        return text

    def validate_title(self, text: str) -> str:
        if len(text) <= MAX_TITLE_RESPONSE_CHARS and "\n" not in text:
            return text

        print("Warning: Title response may contain reasoning. Attempting to extract just the title...", flush=True)
        try:
            title = extract_title(text)
        except SanitizationFallback as e:
            title = f"Book_{timestamp_token()}"
            print(f"Warning: {e}; using placeholder title '{title}'", flush=True)
            return title

        print(f'Extracted title: "{title}"', flush=True)
        return title


def clean_title(response: str, genre: str) -> str:
    """Final cleanup for a title that will name files and directories."""
    title = re.split(r"[\r\n]", response.strip(), maxsplit=1)[0].strip()
    title = re.sub(r"^Title:?\s*", "", title, flags=re.IGNORECASE)
    title = re.sub(r'^"(.+)"$', r"\1", title).strip()

    if len(title) > MAX_TITLE_CHARS:
        title = title[: MAX_TITLE_CHARS - 3] + "..."

    if len(title) < 2:
        title = f"{genre[:1].upper()}{genre[1:]}_Tale_{timestamp_token()}"
        print(f"Warning: Generated title was unusable; using '{title}'", flush=True)
    return title


def extract_title_from_outline(outline: str) -> str:
    """Recover a title from an outline's 'Title:' line or an all-caps heading."""
    match = re.search(r"title:?\s*([^\n]+)", outline, re.IGNORECASE)
    if match and match.group(1).strip():
        return match.group(1).strip()

    for line in outline.split("\n")[:5]:
        stripped = line.strip()
        if stripped and stripped == stripped.upper() and len(stripped) > 3:
            return stripped

    return "Untitled Book"
