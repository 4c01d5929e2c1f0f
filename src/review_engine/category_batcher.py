"""Checklist batching with per-category completeness retry.

Each category is submitted as one completion call. Items the model leaves
out are resubmitted on their own, a smaller fresh call each time, until every
item has a result or the attempt bound is reached.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Callable, Sequence

from src.llm.provider import CompletionOutcome, LLMParseError
from src.models.checklist import ChecklistItem
from src.models.enums import FinishReason
from src.models.review_result import ReviewItemResult

from .config import ReviewConfiguration
from .errors import (
    ContentFilteredError,
    IncompleteResultError,
    ModelError,
    TruncatedOutputError,
)
from .orchestrator import CancellationToken, run_all

logger = logging.getLogger(__name__)

Submit = Callable[[Sequence[ChecklistItem]], CompletionOutcome]


@dataclass
class Category:
    """An ordered batch of checklist items submitted together."""

    name: str
    items: list[ChecklistItem]

    @property
    def item_ids(self) -> list[int]:
        return [item.id for item in self.items]


def partition_checklist(items: Sequence[ChecklistItem], max_size: int) -> list[Category]:
    """Split ``items`` into the fewest categories of at most ``max_size`` items.

    Category sizes differ by at most one and item order is preserved.
    """
    if max_size < 1:
        raise ValueError("max_size must be at least 1")
    if not items:
        return []

    part_count = math.ceil(len(items) / max_size)
    base, extra = divmod(len(items), part_count)

    categories: list[Category] = []
    start = 0
    for index in range(part_count):
        size = base + (1 if index < extra else 0)
        categories.append(Category(name=f"Part {index + 1}", items=list(items[start : start + size])))
        start += size
    return categories


def check_finish_reason(outcome: CompletionOutcome) -> None:
    """Raise the dedicated error for finish reasons that make output unusable."""
    reason = outcome.finish_reason
    if reason is FinishReason.LENGTH:
        raise TruncatedOutputError()
    if reason is FinishReason.CONTENT_FILTER:
        raise ContentFilteredError()
    if reason is FinishReason.ERROR:
        raise ModelError("The model reported an unknown error while generating the review")


class CategoryBatcher:
    """Partition checklist items and resolve each category to a complete result set."""

    def __init__(
        self,
        config: ReviewConfiguration,
        *,
        require_evaluation: bool = True,
    ) -> None:
        self._config = config
        self._require_evaluation = require_evaluation
        self._allowed = config.allowed_evaluations

    def is_valid(self, result: ReviewItemResult) -> bool:
        if not self._require_evaluation:
            return True
        return result.evaluation is not None and result.evaluation in self._allowed

    def resolve_category(
        self,
        items: Sequence[ChecklistItem],
        submit: Submit,
        token: CancellationToken | None = None,
    ) -> list[ReviewItemResult]:
        """Submit ``items`` until every one has a valid result.

        Returns results in the order of ``items``. Raises
        :class:`IncompleteResultError` naming the items still missing once
        ``max_completeness_attempts`` submissions have been made.
        """
        resolved: dict[int, ReviewItemResult] = {}
        remaining = list(items)

        for attempt in range(1, self._config.max_completeness_attempts + 1):
            if token is not None:
                token.raise_if_cancelled()

            try:
                outcome = submit(remaining)
            except LLMParseError as exc:
                logger.warning("Unparseable model response (attempt %d): %s", attempt, exc)
                returned: list[ReviewItemResult] = []
            else:
                check_finish_reason(outcome)
                returned = ReviewItemResult.parse_many(outcome.payload)

            requested = {item.id for item in remaining}
            for result in returned:
                if result.checklist_id not in requested or result.checklist_id in resolved:
                    continue
                if self.is_valid(result):
                    resolved[result.checklist_id] = result

            remaining = [item for item in remaining if item.id not in resolved]
            if not remaining:
                break
            logger.info(
                "Attempt %d/%d left %d item(s) without a result: %s",
                attempt,
                self._config.max_completeness_attempts,
                len(remaining),
                [item.id for item in remaining],
            )

        if remaining:
            raise IncompleteResultError(remaining)
        return [resolved[item.id] for item in items]

    def run(
        self,
        items: Sequence[ChecklistItem],
        submit: Submit,
        token: CancellationToken | None = None,
    ) -> list[ReviewItemResult]:
        """Resolve every category concurrently and return results in item order."""
        categories = partition_checklist(items, self._config.category_size)
        per_category = run_all(
            categories,
            lambda category, scope: self.resolve_category(category.items, submit, scope),
            concurrency_limit=self._config.concurrency_limit,
            token=token,
        )
        return [result for results in per_category for result in results]
