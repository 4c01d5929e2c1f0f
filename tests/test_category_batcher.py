from __future__ import annotations

import sys
import threading
from pathlib import Path
from typing import Sequence

import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from src.llm.provider import CompletionOutcome, LLMParseError
from src.models.checklist import ChecklistItem, EvaluationLabel
from src.models.enums import FinishReason
from src.review_engine.category_batcher import CategoryBatcher, partition_checklist
from src.review_engine.config import ReviewConfiguration
from src.review_engine.errors import (
    ContentFilteredError,
    IncompleteResultError,
    ModelError,
    TruncatedOutputError,
)
from tests.review_fakes import answer, checklist


class TestPartitionChecklist:
    def test_sizes_are_balanced(self) -> None:
        categories = partition_checklist(checklist(7), 3)

        assert [len(c.items) for c in categories] == [3, 2, 2]
        assert [c.name for c in categories] == ["Part 1", "Part 2", "Part 3"]

    def test_order_is_preserved(self) -> None:
        categories = partition_checklist(checklist(5), 2)

        flattened = [item.id for category in categories for item in category.items]
        assert flattened == [1, 2, 3, 4, 5]

    def test_size_one_gives_one_category_per_item(self) -> None:
        categories = partition_checklist(checklist(4), 1)

        assert [c.item_ids for c in categories] == [[1], [2], [3], [4]]

    def test_fits_in_one_category(self) -> None:
        assert len(partition_checklist(checklist(4), 10)) == 1

    def test_empty_and_invalid(self) -> None:
        assert partition_checklist([], 3) == []
        with pytest.raises(ValueError):
            partition_checklist(checklist(2), 0)


def _batcher(**overrides) -> CategoryBatcher:
    require_evaluation = overrides.pop("require_evaluation", True)
    return CategoryBatcher(ReviewConfiguration(**overrides), require_evaluation=require_evaluation)


def test_missing_items_are_resubmitted_alone():
    submitted: list[list[int]] = []

    def submit(items: Sequence[ChecklistItem]) -> CompletionOutcome:
        ids = [item.id for item in items]
        submitted.append(ids)
        # First call omits item 2
        return answer([i for i in ids if i != 2] if len(submitted) == 1 else ids)

    results = _batcher(category_size=3).resolve_category(checklist(3), submit)

    assert submitted == [[1, 2, 3], [2]]
    assert [r.checklist_id for r in results] == [1, 2, 3]


def test_exhausted_attempts_name_the_missing_items():
    calls = 0

    def submit(items: Sequence[ChecklistItem]) -> CompletionOutcome:
        nonlocal calls
        calls += 1
        return answer([item.id for item in items if item.id != 2])

    with pytest.raises(IncompleteResultError) as exc_info:
        _batcher(category_size=3).resolve_category(checklist(3), submit)

    assert calls == 3
    assert [item.id for item in exc_info.value.missing_items] == [2]
    assert str(exc_info.value) == (
        "・Item 2: the model output did not include a review result for this item"
    )


def test_unknown_and_duplicate_ids_are_ignored():
    def submit(items: Sequence[ChecklistItem]) -> CompletionOutcome:
        return CompletionOutcome(
            payload=[
                {"checklistId": 99, "evaluation": "A", "comment": "stray"},
                {"checklistId": 1, "evaluation": "B", "comment": "first"},
                {"checklistId": 1, "evaluation": "C", "comment": "second"},
            ]
        )

    results = _batcher().resolve_category(checklist(1), submit)

    assert len(results) == 1
    assert results[0].evaluation == "B"
    assert results[0].comment == "first"


def test_disallowed_evaluation_counts_as_missing():
    outcomes = iter(
        [
            CompletionOutcome(payload=[{"checklistId": 1, "evaluation": "Z", "comment": "?"}]),
            CompletionOutcome(payload=[{"checklistId": 1, "evaluation": "ok", "comment": "fine"}]),
        ]
    )
    labels = [EvaluationLabel(label="ok"), EvaluationLabel(label="ng")]

    results = _batcher(evaluation_labels=labels).resolve_category(
        checklist(1), lambda items: next(outcomes)
    )

    assert results[0].evaluation == "ok"


def test_evaluation_not_required_for_comment_only_stage():
    results = _batcher(require_evaluation=False).resolve_category(
        checklist(2), lambda items: answer([i.id for i in items], evaluation=None)
    )

    assert [r.evaluation for r in results] == [None, None]


def test_wrapped_payload_is_accepted():
    def submit(items: Sequence[ChecklistItem]) -> CompletionOutcome:
        return CompletionOutcome(payload={"results": [{"checklist_id": 1, "evaluation": "A"}]})

    assert _batcher().resolve_category(checklist(1), submit)[0].checklist_id == 1


def test_unparseable_response_is_retried_as_empty():
    calls = 0

    def submit(items: Sequence[ChecklistItem]) -> CompletionOutcome:
        nonlocal calls
        calls += 1
        if calls == 1:
            raise LLMParseError("no json", response_text="sorry")
        return answer([item.id for item in items])

    results = _batcher().resolve_category(checklist(1), submit)

    assert calls == 2
    assert results[0].checklist_id == 1


@pytest.mark.parametrize(
    "reason,error",
    [
        (FinishReason.LENGTH, TruncatedOutputError),
        (FinishReason.CONTENT_FILTER, ContentFilteredError),
        (FinishReason.ERROR, ModelError),
    ],
)
def test_unusable_finish_reasons_are_not_retried(reason, error):
    calls = 0

    def submit(items: Sequence[ChecklistItem]) -> CompletionOutcome:
        nonlocal calls
        calls += 1
        return answer([item.id for item in items], finish_reason=reason)

    with pytest.raises(error):
        _batcher().resolve_category(checklist(1), submit)

    assert calls == 1


def test_other_finish_reason_is_accepted():
    results = _batcher().resolve_category(
        checklist(1), lambda items: answer([1], finish_reason=FinishReason.OTHER)
    )
    assert results[0].checklist_id == 1


def test_completeness_retry_does_not_touch_other_categories():
    calls: dict[int, int] = {}
    lock = threading.Lock()

    def submit(items: Sequence[ChecklistItem]) -> CompletionOutcome:
        first_id = items[0].id
        with lock:
            calls[first_id] = calls.get(first_id, 0) + 1
            attempt = calls[first_id]
        # Category containing item 3 drops it once
        if first_id == 3 and attempt == 1:
            return answer([])
        return answer([item.id for item in items])

    results = _batcher(category_size=1).run(checklist(4), submit)

    assert [r.checklist_id for r in results] == [1, 2, 3, 4]
    assert calls == {1: 1, 2: 1, 3: 2, 4: 1}


def test_category_failure_fails_the_run():
    def submit(items: Sequence[ChecklistItem]) -> CompletionOutcome:
        if items[0].id == 2:
            return answer([2], finish_reason=FinishReason.CONTENT_FILTER)
        return answer([item.id for item in items])

    with pytest.raises(ContentFilteredError):
        _batcher(category_size=1).run(checklist(3), submit)
