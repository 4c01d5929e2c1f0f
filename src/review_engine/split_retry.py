"""Split-and-retry control for documents that overflow the context window.

A unit is first attempted whole. When any attempt overflows, the *original*
document is re-planned into one more chunk than before and every chunk is
attempted again. Chunks are never retried on their own, so one escalation
level always covers the whole document consistently.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import Callable, Generic, TypeVar

from src.models.checklist import ChecklistItem
from src.models.document import ChunkRange, SourceDocument
from src.models.enums import FailureKind, ProcessMode

from .chunking import plan_chunk_ranges, slice_by_ranges
from .config import ReviewConfiguration
from .errors import SplitExhaustedError
from .orchestrator import CancellationToken, run_all
from .overflow import classify_failure

logger = logging.getLogger(__name__)

R = TypeVar("R")


@dataclass
class ReviewUnit:
    """One document (or chunk of one) paired with the checklist items to review."""

    document: SourceDocument
    items: list[ChecklistItem]
    cache_id: str | None = None
    total_chunks: int = 1
    chunk_index: int = 0
    coverage: ChunkRange | None = None
    parent_document_id: str | None = None

    @property
    def document_id(self) -> str:
        return self.document.id

    @property
    def is_chunk(self) -> bool:
        return self.parent_document_id is not None


@dataclass(frozen=True)
class SplitAttempt:
    retry_count: int

    @property
    def split_factor(self) -> int:
        return self.retry_count + 1


@dataclass
class ChunkResult(Generic[R]):
    """Result of one sub-unit, tagged with the unit that produced it."""

    unit: ReviewUnit
    value: R


@dataclass
class _Overflowed:
    unit: ReviewUnit
    error: BaseException = field(repr=False)


RunOnce = Callable[[ReviewUnit, CancellationToken], R]


class SplitRetryController:
    """Drive one unit through escalating split factors until it fits."""

    def __init__(self, config: ReviewConfiguration) -> None:
        self._config = config

    def overlap_for(self, document: SourceDocument) -> int:
        if document.process_mode is ProcessMode.IMAGE:
            return self._config.image_overlap_pages
        return self._config.text_overlap_chars

    def split_unit(self, unit: ReviewUnit, split_factor: int) -> list[ReviewUnit]:
        """Re-plan ``unit`` into ``split_factor`` sub-units.

        With a factor of one the unit is returned unchanged apart from its
        coverage. Chunks get ``{id}_part{n}`` ids and ``{name} (part {n})``
        names so cached partial results stay distinguishable.
        """
        document = unit.document
        ranges = plan_chunk_ranges(
            document.content_length, split_factor, self.overlap_for(document)
        )
        if split_factor <= 1:
            return [replace(unit, total_chunks=1, chunk_index=0, coverage=ranges[0])]

        if document.process_mode is ProcessMode.IMAGE:
            pieces = [{"image_data": list(pages)} for pages in slice_by_ranges(document.image_data, ranges)]
        else:
            pieces = [{"text_content": text} for text in slice_by_ranges(document.text_content, ranges)]

        sub_units: list[ReviewUnit] = []
        for index, (chunk, content) in enumerate(zip(ranges, pieces)):
            number = index + 1
            chunk_document = replace(
                document,
                id=f"{document.id}_part{number}",
                name=f"{document.name} (part {number})",
                original_name=document.original_name,
                **content,
            )
            sub_units.append(
                replace(
                    unit,
                    document=chunk_document,
                    total_chunks=len(ranges),
                    chunk_index=index,
                    coverage=chunk,
                    parent_document_id=document.id,
                )
            )
        return sub_units

    def execute(
        self,
        unit: ReviewUnit,
        run_once: RunOnce[R],
        token: CancellationToken | None = None,
    ) -> list[ChunkResult[R]]:
        """Run ``unit`` and escalate the split factor on context overflow.

        Returns one :class:`ChunkResult` per chunk of the successful attempt,
        in chunk order. Failures that are not overflows propagate at once and
        cancel sibling chunks. Raises :class:`SplitExhaustedError` when the
        overflow survives ``max_split_escalations`` escalations.
        """

        def _guarded(sub_unit: ReviewUnit, scope: CancellationToken) -> ChunkResult[R] | _Overflowed:
            try:
                return ChunkResult(sub_unit, run_once(sub_unit, scope))
            except Exception as exc:
                if classify_failure(exc) is not FailureKind.CONTEXT_OVERFLOW:
                    raise
                return _Overflowed(sub_unit, exc)

        last_overflow: BaseException | None = None
        attempts = self._config.max_split_escalations + 1

        for retry_count in range(attempts):
            attempt = SplitAttempt(retry_count)
            sub_units = self.split_unit(unit, attempt.split_factor)
            outcomes = run_all(
                sub_units,
                _guarded,
                concurrency_limit=self._config.concurrency_limit,
                token=token,
            )

            overflowed = [outcome for outcome in outcomes if isinstance(outcome, _Overflowed)]
            if not overflowed:
                if retry_count:
                    logger.info(
                        "Document %s fit after splitting into %d chunks",
                        unit.document_id,
                        attempt.split_factor,
                    )
                return outcomes  # type: ignore[return-value]

            last_overflow = overflowed[0].error
            logger.warning(
                "Context overflow for document %s at split factor %d (%d chunk(s) overflowed)",
                unit.document_id,
                attempt.split_factor,
                len(overflowed),
            )

        raise SplitExhaustedError(attempts=attempts) from last_overflow
