"""Completion service facade and provider adapters."""

from __future__ import annotations

from .provider import (
    CompletionOutcome,
    CompletionRequest,
    LLMParseError,
    LLMProviderConfigurationError,
    LLMProviderError,
    LLMQuotaError,
    PromptPart,
    ProviderStatus,
)
from .service import LLMService

__all__ = [
    "CompletionOutcome",
    "CompletionRequest",
    "LLMParseError",
    "LLMProviderConfigurationError",
    "LLMProviderError",
    "LLMQuotaError",
    "LLMService",
    "PromptPart",
    "ProviderStatus",
]
