"""Consolidate per-document comments into one final result per checklist item."""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import Callable, Sequence

from src.llm.provider import CompletionOutcome, CompletionRequest
from src.models.checklist import ChecklistItem
from src.models.document import PartialComment
from src.models.review_result import ReviewItemResult

from .category_batcher import CategoryBatcher
from .config import ReviewConfiguration
from .orchestrator import CancellationToken
from .prompt_factory import build_consolidation_request

logger = logging.getLogger(__name__)

Complete = Callable[[CompletionRequest], CompletionOutcome]


def group_partial_comments(
    partials: Sequence[PartialComment],
    document_order: Sequence[str] | None = None,
) -> dict[int, list[PartialComment]]:
    """Group comments by checklist id, ordered by document then chunk index.

    ``document_order`` lists parent document ids; comments for documents not
    in it sort after the listed ones, by id.
    """
    rank = {document_id: index for index, document_id in enumerate(document_order or [])}

    def _sort_key(partial: PartialComment) -> tuple[int, str, int]:
        parent = partial.source_document_id
        return (rank.get(parent, len(rank)), parent, partial.chunk_index)

    grouped: dict[int, list[PartialComment]] = defaultdict(list)
    for partial in sorted(partials, key=_sort_key):
        grouped[partial.checklist_id].append(partial)
    return dict(grouped)


class ConsolidationStage:
    """Second phase of a large-document review.

    One completion call is made per checklist category, regardless of how
    many documents contributed comments.
    """

    def __init__(self, config: ReviewConfiguration, complete: Complete) -> None:
        self._config = config
        self._complete = complete
        self._batcher = CategoryBatcher(config, require_evaluation=True)

    def run(
        self,
        items: Sequence[ChecklistItem],
        partials: Sequence[PartialComment],
        *,
        document_order: Sequence[str] | None = None,
        token: CancellationToken | None = None,
    ) -> list[ReviewItemResult]:
        comments_by_item = group_partial_comments(partials, document_order)
        logger.info(
            "Consolidating %d comment(s) across %d checklist item(s)",
            len(partials),
            len(items),
        )

        def _submit(batch: Sequence[ChecklistItem]) -> CompletionOutcome:
            return self._complete(
                build_consolidation_request(batch, comments_by_item, self._config)
            )

        return self._batcher.run(items, _submit, token)
