"""Classify completion failures, spotting context-window overflows.

The completion SDKs report an oversized request in different shapes: an HTTP
status with a JSON body, an SDK exception with a ``message`` attribute, or a
wrapped cause. Only provider and SDK errors are matched against the overflow
phrases. Engine errors and parse errors can quote checklist items or prompts,
so they are judged by type alone. Classification never raises on an
unfamiliar shape.
"""

from __future__ import annotations

import logging
from typing import Any, Iterator

from src.llm.provider import LLMParseError, LLMProviderError
from src.models.enums import FailureKind

from .errors import ReviewError

logger = logging.getLogger(__name__)

CONTEXT_OVERFLOW_PHRASES: tuple[str, ...] = (
    "maximum context length",
    "context_length_exceeded",
    "context length",
    "tokens_limit_reached",
    "token_limit_reached",
    "exceeds the maximum number of tokens",
    "input token count",
    "prompt is too long",
    "too many images",
    "many images",
)

_BODY_ATTRIBUTES = ("response_body", "body", "details", "message", "response_text")
_STATUS_ATTRIBUTES = ("status_code", "code", "status")
_MAX_CHAIN_DEPTH = 10


def _iter_chain(exc: BaseException) -> Iterator[BaseException]:
    seen: set[int] = set()
    current: BaseException | None = exc
    while current is not None and id(current) not in seen and len(seen) < _MAX_CHAIN_DEPTH:
        seen.add(id(current))
        yield current
        current = current.__cause__ or current.__context__


def _texts_of(exc: BaseException) -> Iterator[str]:
    for attribute in _BODY_ATTRIBUTES:
        value: Any = getattr(exc, attribute, None)
        if value:
            yield str(value)
    for attribute in _STATUS_ATTRIBUTES:
        value = getattr(exc, attribute, None)
        if isinstance(value, str):
            yield value
    # Constructor arguments rather than str(exc), which subclasses may override
    for arg in exc.args:
        if isinstance(arg, str):
            yield arg


def is_context_overflow(exc: BaseException) -> bool:
    """Return True when the failure chain reports an input overflow.

    The chain is walked from ``exc`` towards its causes. The first engine
    error decides by its ``kind``, and a parse error is never an overflow.
    """
    for link in _iter_chain(exc):
        if isinstance(link, ReviewError):
            return link.kind is FailureKind.CONTEXT_OVERFLOW
        if isinstance(link, LLMParseError):
            return False
        for text in _texts_of(link):
            lowered = text.lower()
            if any(phrase in lowered for phrase in CONTEXT_OVERFLOW_PHRASES):
                return True
    return False


def classify_failure(exc: BaseException) -> FailureKind:
    """Map a failure from the completion service onto a :class:`FailureKind`."""
    if is_context_overflow(exc):
        return FailureKind.CONTEXT_OVERFLOW
    if isinstance(exc, ReviewError):
        return exc.kind
    if isinstance(exc, LLMProviderError):
        return FailureKind.MODEL_ERROR
    logger.debug("Unclassified completion failure: %r", exc)
    return FailureKind.OTHER
