import sys
from pathlib import Path

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from context_budget import ContextBudgeter, assemble_context, format_summaries
from fakes import ScriptedBackend, make_client
from generation_client import GenerationFailure

SUMMARIES = ["Chapter 1: The lamp goes out.", "Chapter 2: Mara rows to the mainland."]


def small_budgeter(script, max_retries=2):
    backend = ScriptedBackend(script)
    # 1000-token limit -> 4000 characters
    budgeter = ContextBudgeter(make_client(backend, max_retries), max_context_tokens=1100, token_buffer=100)
    return budgeter, backend


def test_default_budget_split():
    budgeter = ContextBudgeter(client=None)
    shares = budgeter.shares()

    assert budgeter.token_limit == 118000
    assert budgeter.available_chars == 472000
    assert (shares.outline_chars, shares.profiles_chars, shares.summaries_chars) == (141600, 141600, 188800)
    assert shares.total <= budgeter.available_chars


def test_small_context_passes_through_untouched():
    budgeter, backend = small_budgeter([])

    bundle = budgeter.build("fantasy", 3, "Outline.", "Profiles.", SUMMARIES)

    assert bundle.text == assemble_context("Outline.", "Profiles.", SUMMARIES)
    assert not bundle.compressed
    assert backend.calls == []


def test_context_layout():
    text = assemble_context("O", "P", SUMMARIES)

    assert text.startswith("BOOK OUTLINE:\nO\n\nCHARACTER PROFILES:\nP\nPrevious Chapter Summaries:\n")
    assert text.endswith("Chapter 1: The lamp goes out.\n\nChapter 2: Mara rows to the mainland.")
    assert format_summaries([]) == ""


def test_oversized_context_is_compressed_from_truncated_parts(tmp_path):
    budgeter, backend = small_budgeter(["A compressed digest."])

    bundle = budgeter.build("fantasy", 4, "o" * 5000, "p" * 5000, SUMMARIES, output_dir=tmp_path)

    assert bundle.compressed
    assert bundle.text == "A compressed digest."
    assert bundle.estimated_tokens <= budgeter.token_limit

    prompt = backend.calls[0][-1]["content"]
    assert "o" * 1200 in prompt and "o" * 1201 not in prompt
    assert "p" * 1200 in prompt and "p" * 1201 not in prompt
    assert "Chapter 4" in prompt
    assert (tmp_path / "compressed_context_ch4.txt").read_text(encoding="utf-8") == "A compressed digest."


def test_compressed_context_over_budget_is_cut():
    budgeter, _ = small_budgeter(["c" * 10000])

    bundle = budgeter.build("fantasy", 2, "o" * 5000, "", [])

    assert len(bundle.text) == budgeter.available_chars
    assert bundle.estimated_tokens <= budgeter.token_limit


def test_compression_failure_propagates():
    budgeter, _ = small_budgeter([RuntimeError("down"), RuntimeError("still down")])

    with pytest.raises(GenerationFailure):
        budgeter.build("fantasy", 2, "o" * 5000, "", [])
