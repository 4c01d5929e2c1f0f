from __future__ import annotations

import logging
from typing import Sequence

from .provider import (
    CompletionOutcome,
    CompletionRequest,
    LLMProvider,
    LLMProviderError,
    LLMQuotaError,
    ProviderReporter,
    ProviderStatus,
)

logger = logging.getLogger(__name__)


class LLMService:
    """Facade that routes completion requests across a priority-ordered provider list."""

    def __init__(
        self,
        providers: Sequence[LLMProvider],
        *,
        reporter: ProviderReporter | None = None,
    ) -> None:
        if not providers:
            raise ValueError("LLMService requires at least one provider")
        self._providers = list(providers)
        self._reporter = reporter

    def provider_order(self) -> list[str]:
        """Return the provider names in configured order."""

        return [provider.name for provider in self._providers]

    def health_check(self) -> list[tuple[str, bool]]:
        """Run the optional health check for every provider."""

        return [(provider.name, provider.health_check()) for provider in self._providers]

    def complete(self, request: CompletionRequest) -> CompletionOutcome:
        """Try each provider until one answers or all quotas are exhausted.

        Quota errors fall through to the next provider. Any other provider
        failure is reported and re-raised unchanged so that callers can
        classify it.
        """

        last_error: LLMQuotaError | None = None
        for provider in self._providers:
            try:
                outcome = provider.complete(request)
            except LLMQuotaError as exc:
                last_error = exc
                logger.warning("Provider %s quota exhausted; trying next", provider.name)
                self._report(provider.name, ProviderStatus.QUOTA, exc)
                continue
            except LLMProviderError as exc:
                self._report(provider.name, ProviderStatus.FAILURE, exc)
                raise
            self._report(provider.name, ProviderStatus.SUCCESS)
            return outcome
        raise LLMQuotaError("All providers exceeded quota") from last_error

    def _report(
        self,
        provider_name: str,
        status: ProviderStatus,
        error: Exception | None = None,
    ) -> None:
        if self._reporter is None:
            return
        self._reporter(provider_name, status, error)
