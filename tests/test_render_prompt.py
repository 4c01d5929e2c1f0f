"""Tests for prompt template rendering with pystache."""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

# Add project root to path
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from src.prompt.render_prompt import (
    TEMPLATE_PARTIALS,
    _read_prompt,
    _strip_code_fences,
    render_prompts,
    render_template,
)


class TestStripCodeFences:
    def test_strip_triple_backticks(self) -> None:
        assert _strip_code_fences("```\nHello world\n```") == "Hello world"

    def test_strip_with_language_tag(self) -> None:
        assert _strip_code_fences("```markdown\nHello world\n```") == "Hello world"

    def test_no_fences(self) -> None:
        assert _strip_code_fences("Hello\nworld") == "Hello\nworld"

    def test_empty(self) -> None:
        assert _strip_code_fences("") == ""


def test_every_template_and_partial_exists() -> None:
    for template_name, partials in TEMPLATE_PARTIALS.items():
        assert _read_prompt(template_name)
        for partial in partials:
            assert _read_prompt(f"{partial}.md")


def test_missing_template_raises() -> None:
    with pytest.raises(FileNotFoundError):
        _read_prompt("does_not_exist.md")


def _context(**extra: object) -> dict:
    context = {
        "items": [{"id": 7, "content": "Is the <scope> defined?"}],
        "evaluation_labels": [{"label": "A", "description": "Good"}, {"label": "-", "description": ""}],
        "require_evaluation": True,
        "additional_instructions": None,
        "comment_format": None,
    }
    context.update(extra)
    return context


def test_small_review_prompts_render_items_and_labels() -> None:
    system_prompt, user_prompt = render_prompts(
        "system_small_review.md",
        "user_small_review.md",
        _context(documents=[{"name": "a.md"}], additional_instructions="Be strict."),
    )

    assert "checklistId 7: Is the <scope> defined?" in user_prompt
    assert "- a.md" in user_prompt
    assert "`A`: Good" in system_prompt
    assert '"evaluation"' in system_prompt
    assert "Be strict." in system_prompt


def test_individual_review_omits_evaluation_and_marks_chunks() -> None:
    system_prompt, user_prompt = render_prompts(
        "system_individual_review.md",
        "user_individual_review.md",
        _context(
            require_evaluation=False,
            document_name="a.md (part 2)",
            original_name="a.md",
            is_chunk=True,
            chunk_number=2,
            total_chunks=3,
        ),
    )

    assert '"evaluation"' not in system_prompt
    assert 'part 2 of 3 of "a.md"' in user_prompt


def test_consolidation_lists_comments_per_item() -> None:
    items = [
        {"id": 1, "content": "First", "comments": [{"documentId": "d1", "documentName": "a.md", "comment": "Looks fine"}]},
        {"id": 2, "content": "Second", "comments": []},
    ]
    _, user_prompt = render_prompts(
        "system_consolidation.md", "user_consolidation.md", _context(items=items)
    )

    assert "#### Document: a.md (id: d1)" in user_prompt
    assert "Looks fine" in user_prompt
    assert "No individual comments were recorded for this item." in user_prompt


def test_render_template_single_file() -> None:
    rendered = render_template("reviewer_role.md")
    assert rendered.startswith("You are a meticulous document reviewer.")
