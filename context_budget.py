"""
Keep per-chapter context inside the model's window.

The context for a chapter is the outline, the character profiles and the
summaries of every earlier chapter. While that fits under
``max_context_tokens - token_buffer`` it is passed through untouched; once it
does not, each part is cut to its share of the budget and the model is asked
to compress the remainder into a single passage.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

import book_config as config
from generation_client import GenerationClient, build_messages
from response_sanitizer import ResponseSanitizer


class CharRatioEstimator:
    """Approximates token counts from character counts."""

    def __init__(self, tokens_per_char: float = config.TOKENS_PER_CHAR):
        self.tokens_per_char = tokens_per_char

    def estimate(self, text: str) -> float:
        return len(text) * self.tokens_per_char

    def chars_for(self, tokens: float) -> int:
        return int(tokens / self.tokens_per_char)


@dataclass
class ContextBundle:
    text: str
    estimated_tokens: float
    compressed: bool = False


@dataclass
class ContextShares:
    outline_chars: int
    profiles_chars: int
    summaries_chars: int

    @property
    def total(self) -> int:
        return self.outline_chars + self.profiles_chars + self.summaries_chars


def format_summaries(summaries: List[str]) -> str:
    if not summaries:
        return ""
    return "\nPrevious Chapter Summaries:\n" + "\n\n".join(summaries)


def assemble_context(outline: str, character_profiles: str, summaries: List[str]) -> str:
    return f"BOOK OUTLINE:\n{outline}\n\nCHARACTER PROFILES:\n{character_profiles}{format_summaries(summaries)}"


class ContextBudgeter:
    def __init__(
        self,
        client: GenerationClient,
        sanitizer: Optional[ResponseSanitizer] = None,
        estimator=None,
        max_context_tokens: int = config.MAX_CONTEXT_TOKENS,
        token_buffer: int = config.TOKEN_BUFFER,
    ):
        self.client = client
        self.sanitizer = sanitizer or ResponseSanitizer()
        self.estimator = estimator or CharRatioEstimator()
        self.max_context_tokens = max_context_tokens
        self.token_buffer = token_buffer

    @property
    def token_limit(self) -> int:
        return self.max_context_tokens - self.token_buffer

    @property
    def available_chars(self) -> int:
        return self.estimator.chars_for(self.token_limit)

    def shares(self) -> ContextShares:
        available = self.available_chars
        return ContextShares(
            outline_chars=int(available * config.OUTLINE_SHARE),
            profiles_chars=int(available * config.PROFILES_SHARE),
            summaries_chars=int(available * config.SUMMARIES_SHARE),
        )

    def build(
        self,
        genre: str,
        chapter_number: int,
        outline: str,
        character_profiles: str,
        summaries: List[str],
        output_dir: Optional[Path] = None,
    ) -> ContextBundle:
        """Return the context bundle for ``chapter_number``, compressing if needed."""
        full_context = assemble_context(outline, character_profiles, summaries)
        estimated = self.estimator.estimate(full_context)
        if estimated <= self.token_limit:
            return ContextBundle(text=full_context, estimated_tokens=estimated)

        print(
            f"Context window limit approaching ({estimated:,.0f} estimated tokens) - compressing context materials...",
            flush=True,
        )
        return self.compress(genre, chapter_number, outline, character_profiles, summaries, output_dir)

    def compress(
        self,
        genre: str,
        chapter_number: int,
        outline: str,
        character_profiles: str,
        summaries: List[str],
        output_dir: Optional[Path] = None,
    ) -> ContextBundle:
        shares = self.shares()
        truncated_outline = outline[: shares.outline_chars]
        truncated_profiles = character_profiles[: shares.profiles_chars]
        truncated_summaries = format_summaries(summaries)[: shares.summaries_chars]

        messages = build_messages(
            system="You are an AI assistant specialized in summarizing and compressing information while maintaining all key details.",
            user=f"""The following book materials need to be compressed while retaining all essential information for writing Chapter {chapter_number}:

OUTLINE: {truncated_outline}

CHARACTER PROFILES: {truncated_profiles}

{truncated_summaries}

Please create a compressed version that maintains all key plot points, character details, and continuity information needed to write Chapter {chapter_number} of this {genre} book.""",
        )
        compressed = self.sanitizer.clean(self.client.complete(messages), messages)

        if self.estimator.estimate(compressed) > self.token_limit:
            print("Warning: Compressed context is still over budget; cutting it to fit.", flush=True)
            compressed = compressed[: self.available_chars]

        if output_dir is not None:
            path = Path(output_dir) / f"compressed_context_ch{chapter_number}.txt"
            path.write_text(compressed, encoding="utf-8")
            print(f"  Compressed context saved to: {path}", flush=True)

        return ContextBundle(
            text=compressed,
            estimated_tokens=self.estimator.estimate(compressed),
            compressed=True,
        )
