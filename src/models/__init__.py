"""Public model exports for the project.

Keep the :mod:`src` namespace clean: tests and other modules should import
``from src.models import ChecklistItem, SourceDocument``.
"""

from __future__ import annotations

from .checklist import ChecklistItem, EvaluationLabel, default_evaluation_labels
from .document import ChunkRange, PartialComment, SourceDocument
from .enums import DocumentMode, FailureKind, FinishReason, ProcessMode
from .review_result import ReviewItemResult

__all__ = [
    "ChecklistItem",
    "ChunkRange",
    "DocumentMode",
    "EvaluationLabel",
    "FailureKind",
    "FinishReason",
    "PartialComment",
    "ProcessMode",
    "ReviewItemResult",
    "SourceDocument",
    "default_evaluation_labels",
]
