"""Exception taxonomy for the review engine.

Every engine error carries a :class:`FailureKind` so the overflow classifier
and the runner boundary can treat engine and provider failures uniformly.
"""

from __future__ import annotations

from typing import Sequence

from src.models.checklist import ChecklistItem
from src.models.enums import FailureKind

SPLIT_EXHAUSTED_MESSAGE = (
    "Document splitting was retried repeatedly but the context-length error did not resolve."
)
MISSING_RESULT_MESSAGE = "the model output did not include a review result for this item"
TRUNCATED_OUTPUT_MESSAGE = "AI model maximum output length exceeded"


class ReviewError(Exception):
    """Base class for failures that abort a review run."""

    kind: FailureKind = FailureKind.OTHER


class ReviewInputError(ReviewError, ValueError):
    """Raised when a run is started without documents or checklist items."""


class ContextOverflowError(ReviewError):
    """The request did not fit in the model's context window."""

    kind = FailureKind.CONTEXT_OVERFLOW


class SplitExhaustedError(ReviewError):
    """Splitting was escalated to its bound and the overflow persisted.

    Terminal: the chained cause is the last overflow, but this error is never
    treated as a splittable overflow itself.
    """

    def __init__(self, message: str = SPLIT_EXHAUSTED_MESSAGE, *, attempts: int = 0) -> None:
        super().__init__(message)
        self.attempts = attempts


class IncompleteResultError(ReviewError):
    """Some checklist items never received a result after all resubmissions."""

    kind = FailureKind.OTHER

    def __init__(self, missing_items: Sequence[ChecklistItem]) -> None:
        self.missing_items = list(missing_items)
        super().__init__(
            "\n".join(
                f"・{item.content}: {MISSING_RESULT_MESSAGE}" for item in self.missing_items
            )
        )


class TruncatedOutputError(ReviewError):
    kind = FailureKind.TRUNCATED_OUTPUT

    def __init__(self, message: str = TRUNCATED_OUTPUT_MESSAGE) -> None:
        super().__init__(message)


class ContentFilteredError(ReviewError):
    kind = FailureKind.CONTENT_FILTERED

    def __init__(self, message: str = "The model response was blocked by a content filter") -> None:
        super().__init__(message)


class ModelError(ReviewError):
    """Any other completion or storage failure; never retried."""

    kind = FailureKind.MODEL_ERROR


class ReviewCancelledError(ReviewError):
    """Work stopped because the run or a sibling unit was cancelled."""

    def __init__(self, message: str = "Review was cancelled") -> None:
        super().__init__(message)
