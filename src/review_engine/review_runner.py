"""Entry point for a review run in small or large document mode.

Small mode sends all documents together, one completion call per checklist
category. Large mode reviews each document on its own first (splitting it when
it overflows the context window), caches the per-document comments and then
consolidates them into one evaluation per checklist item.
"""

from __future__ import annotations

import contextlib
import logging
import threading
from dataclasses import dataclass, field
from typing import ContextManager, Sequence

from src.llm.provider import CompletionOutcome, CompletionRequest
from src.llm.service import LLMService
from src.models.checklist import ChecklistItem
from src.models.document import PartialComment, SourceDocument
from src.models.enums import DocumentMode, FailureKind
from src.models.review_result import ReviewItemResult

from .category_batcher import Category, CategoryBatcher, partition_checklist
from .config import ReviewConfiguration
from .consolidation import ConsolidationStage
from .errors import ContextOverflowError, ModelError, ReviewError, ReviewInputError
from .orchestrator import CancellationToken, run_all
from .overflow import classify_failure
from .prompt_factory import build_individual_review_request, build_small_review_request
from .split_retry import ChunkResult, ReviewUnit, SplitRetryController
from .storage import ReviewStorage

logger = logging.getLogger(__name__)

SMALL_MODE_OVERFLOW_MESSAGE = (
    "The document content exceeds the model context window. "
    "Retry the review in large document mode."
)


@dataclass
class ReviewSummary:
    mode: DocumentMode
    total_documents: int
    total_checklists: int
    total_categories: int
    completion_calls: int
    results: list[ChecklistItem] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "mode": self.mode.value,
            "total_documents": self.total_documents,
            "total_checklists": self.total_checklists,
            "total_categories": self.total_categories,
            "completion_calls": self.completion_calls,
        }


class ReviewRunner:
    """Run one review of ``documents`` against ``checklist_items``."""

    def __init__(
        self,
        llm_service: LLMService,
        storage: ReviewStorage,
        config: ReviewConfiguration | None = None,
    ) -> None:
        self.llm_service = llm_service
        self.storage = storage
        self.config = config or ReviewConfiguration()
        self._calls = 0
        self._calls_lock = threading.Lock()

    @property
    def completion_calls(self) -> int:
        return self._calls

    def run(
        self,
        documents: Sequence[SourceDocument],
        checklist_items: Sequence[ChecklistItem],
        *,
        token: CancellationToken | None = None,
    ) -> ReviewSummary:
        """Execute the review and persist the final result for every item.

        Raises:
            ReviewInputError: No documents, no checklist items or duplicate ids.
            ReviewError: Any terminal failure; the run is aborted as a whole.
            OSError: The storage collaborator could not persist results.
        """
        self._validate(documents, checklist_items)
        token = token or CancellationToken()
        self._calls = 0
        mode = self.config.document_mode
        categories = partition_checklist(checklist_items, self.config.category_size)

        logger.info(
            "Starting %s document review: %d document(s), %d checklist item(s), %d categories",
            mode.value,
            len(documents),
            len(checklist_items),
            len(categories),
        )

        try:
            self.storage.clear_results()
            self.storage.set_target_document_name("/".join(d.name for d in documents))

            if mode is DocumentMode.LARGE:
                results = self._run_large(documents, checklist_items, categories, token)
            else:
                results = self._run_small(documents, checklist_items, token)

            reviewed = self._apply_results(checklist_items, results)
        except ReviewError as exc:
            logger.error("Review failed (%s): %s", exc.kind.value, exc)
            raise
        except OSError:
            logger.exception("Review storage failed")
            raise
        except Exception as exc:
            logger.exception("Review failed with an unexpected error")
            raise ModelError(f"Review failed: {exc}") from exc

        logger.info("Review finished after %d completion call(s)", self._calls)
        return ReviewSummary(
            mode=mode,
            total_documents=len(documents),
            total_checklists=len(checklist_items),
            total_categories=len(categories),
            completion_calls=self._calls,
            results=reviewed,
        )

    @staticmethod
    def _validate(
        documents: Sequence[SourceDocument], checklist_items: Sequence[ChecklistItem]
    ) -> None:
        if not checklist_items:
            raise ReviewInputError("No checklist items were provided for the review")
        if not documents:
            raise ReviewInputError("No documents were provided for the review")
        if len({item.id for item in checklist_items}) != len(checklist_items):
            raise ReviewInputError("Checklist item ids must be unique")
        if len({document.id for document in documents}) != len(documents):
            raise ReviewInputError("Document ids must be unique")

    def _write_batch(self) -> ContextManager[object]:
        """Group storage writes when the collaborator supports it."""
        deferred = getattr(self.storage, "deferred_writes", None)
        return deferred() if deferred is not None else contextlib.nullcontext()

    def _complete(self, request: CompletionRequest) -> CompletionOutcome:
        with self._calls_lock:
            self._calls += 1
        return self.llm_service.complete(request)

    # Small document mode

    def _run_small(
        self,
        documents: Sequence[SourceDocument],
        items: Sequence[ChecklistItem],
        token: CancellationToken,
    ) -> list[ReviewItemResult]:
        batcher = CategoryBatcher(self.config, require_evaluation=True)

        def _submit(batch: Sequence[ChecklistItem]) -> CompletionOutcome:
            request = build_small_review_request(documents, batch, self.config)
            try:
                return self._complete(request)
            except Exception as exc:
                if classify_failure(exc) is FailureKind.CONTEXT_OVERFLOW:
                    raise ContextOverflowError(SMALL_MODE_OVERFLOW_MESSAGE) from exc
                raise

        return batcher.run(items, _submit, token)

    # Large document mode

    def _run_large(
        self,
        documents: Sequence[SourceDocument],
        items: Sequence[ChecklistItem],
        categories: Sequence[Category],
        token: CancellationToken,
    ) -> list[ReviewItemResult]:
        cache_ids = {document.id: self.storage.save_document_cache(document) for document in documents}
        controller = SplitRetryController(self.config)
        individual = CategoryBatcher(self.config, require_evaluation=False)

        def _review_unit(unit: ReviewUnit, scope: CancellationToken) -> list[ReviewItemResult]:
            def _submit(batch: Sequence[ChecklistItem]) -> CompletionOutcome:
                return self._complete(
                    build_individual_review_request(
                        unit.document,
                        batch,
                        self.config,
                        total_chunks=unit.total_chunks,
                        chunk_index=unit.chunk_index,
                    )
                )

            return individual.resolve_category(unit.items, _submit, scope)

        def _review_document(unit: ReviewUnit, scope: CancellationToken) -> list[PartialComment]:
            chunk_results = controller.execute(unit, _review_unit, scope)
            return self._store_partials(unit, chunk_results)

        def _review_category(category: Category, scope: CancellationToken) -> list[PartialComment]:
            units = [
                ReviewUnit(document=document, items=category.items, cache_id=cache_ids[document.id])
                for document in documents
            ]
            per_document = run_all(
                units,
                _review_document,
                concurrency_limit=self.config.concurrency_limit,
                token=scope,
            )
            return [partial for partials in per_document for partial in partials]

        per_category = run_all(
            categories,
            _review_category,
            concurrency_limit=self.config.concurrency_limit,
            token=token,
        )
        partials = [partial for partials in per_category for partial in partials]
        logger.info("Individual review produced %d partial comment(s)", len(partials))

        stage = ConsolidationStage(self.config, self._complete)
        return stage.run(
            items,
            partials,
            document_order=[document.id for document in documents],
            token=token,
        )

    def _store_partials(
        self,
        unit: ReviewUnit,
        chunk_results: Sequence[ChunkResult[list[ReviewItemResult]]],
    ) -> list[PartialComment]:
        partials: list[PartialComment] = []
        with self._write_batch():
            for chunk in chunk_results:
                for result in chunk.value:
                    partial = PartialComment(
                        checklist_id=result.checklist_id,
                        document_id=chunk.unit.document_id,
                        document_name=chunk.unit.document.name,
                        comment=result.comment,
                        total_chunks=chunk.unit.total_chunks,
                        chunk_index=chunk.unit.chunk_index,
                        parent_document_id=chunk.unit.parent_document_id,
                    )
                    self.storage.save_partial_result(
                        unit.cache_id or unit.document_id,
                        partial.checklist_id,
                        partial.comment,
                        partial.total_chunks,
                        partial.chunk_index,
                        partial.document_name,
                    )
                    partials.append(partial)
        return partials

    def _apply_results(
        self,
        items: Sequence[ChecklistItem],
        results: Sequence[ReviewItemResult],
    ) -> list[ChecklistItem]:
        by_id = {result.checklist_id: result for result in results}
        reviewed: list[ChecklistItem] = []
        with self._write_batch():
            for item in items:
                result = by_id[item.id]
                self.storage.save_final_result(item.id, result.evaluation, result.comment)
                reviewed.append(
                    item.model_copy(update={"evaluation": result.evaluation, "comment": result.comment})
                )
        return reviewed
