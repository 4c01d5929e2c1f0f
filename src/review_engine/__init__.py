"""Document review orchestration engine.

The public entry point is :class:`ReviewRunner`; the remaining exports are the
building blocks it composes, usable on their own.
"""

from __future__ import annotations

from .category_batcher import Category, CategoryBatcher, partition_checklist
from .chunking import plan_chunk_ranges, slice_by_ranges
from .config import ReviewConfiguration
from .consolidation import ConsolidationStage, group_partial_comments
from .errors import (
    ContentFilteredError,
    ContextOverflowError,
    IncompleteResultError,
    ModelError,
    ReviewCancelledError,
    ReviewError,
    ReviewInputError,
    SplitExhaustedError,
    TruncatedOutputError,
)
from .orchestrator import CancellationToken, run_all
from .overflow import classify_failure, is_context_overflow
from .review_runner import ReviewRunner, ReviewSummary
from .split_retry import ChunkResult, ReviewUnit, SplitAttempt, SplitRetryController
from .storage import JsonReviewStore, ReviewStorage

__all__ = [
    "CancellationToken",
    "Category",
    "CategoryBatcher",
    "ChunkResult",
    "ConsolidationStage",
    "ContentFilteredError",
    "ContextOverflowError",
    "IncompleteResultError",
    "JsonReviewStore",
    "ModelError",
    "ReviewCancelledError",
    "ReviewConfiguration",
    "ReviewError",
    "ReviewInputError",
    "ReviewRunner",
    "ReviewStorage",
    "ReviewSummary",
    "ReviewUnit",
    "SplitAttempt",
    "SplitExhaustedError",
    "SplitRetryController",
    "TruncatedOutputError",
    "classify_failure",
    "group_partial_comments",
    "is_context_overflow",
    "partition_checklist",
    "plan_chunk_ranges",
    "run_all",
    "slice_by_ranges",
]
