"""Enumerations shared by the review engine and the LLM provider adapters."""

from __future__ import annotations

from enum import Enum


class FinishReason(str, Enum):
    """Normalised reason a completion call stopped producing output.

    Provider adapters map their SDK-specific values onto these members so the
    engine can decide whether a response is usable.
    """

    STOP = "stop"
    LENGTH = "length"
    CONTENT_FILTER = "content-filter"
    ERROR = "error"
    OTHER = "other"

    @classmethod
    def all_values(cls) -> list[str]:
        return [m.value for m in cls]


class FailureKind(str, Enum):
    """Classification of a failed completion call.

    Only CONTEXT_OVERFLOW is recovered by splitting the document. Every other
    kind is terminal for the run.
    """

    CONTEXT_OVERFLOW = "ContextOverflow"
    TRUNCATED_OUTPUT = "TruncatedOutput"
    CONTENT_FILTERED = "ContentFiltered"
    MODEL_ERROR = "ModelError"
    OTHER = "Other"

    @classmethod
    def all_values(cls) -> list[str]:
        return [m.value for m in cls]


class DocumentMode(str, Enum):
    """Review workflow selector.

    SMALL sends every document in one call per category. LARGE reviews each
    document on its own and consolidates the partial comments afterwards.
    """

    SMALL = "small"
    LARGE = "large"


class ProcessMode(str, Enum):
    """How document content is presented to the model."""

    TEXT = "text"
    IMAGE = "image"
