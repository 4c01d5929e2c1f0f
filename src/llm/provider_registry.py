"""Named completion providers and the priority chain built from them."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Sequence

from dotenv import load_dotenv

from .gemini_llm import GeminiLLM
from .mistral_llm import MistralLLM
from .provider import LLMProvider, ProviderFactory


def _gemini_factory(
    *,
    system_prompt: str | Path,
    dotenv_path: str | Path | None,
) -> LLMProvider:
    return GeminiLLM(system_prompt=system_prompt, dotenv_path=dotenv_path)


def _mistral_factory(
    *,
    system_prompt: str | Path,
    dotenv_path: str | Path | None,
) -> LLMProvider:
    return MistralLLM(system_prompt=system_prompt, dotenv_path=dotenv_path)


_PROVIDER_FACTORIES: dict[str, ProviderFactory] = {
    "gemini": _gemini_factory,
    "mistral": _mistral_factory,
}


def available_providers() -> list[str]:
    return list(_PROVIDER_FACTORIES.keys())


def _split_names(value: str | None) -> list[str]:
    if not value:
        return []
    return [chunk.strip().lower() for chunk in value.split(",") if chunk.strip()]


def resolve_provider_order(
    primary: str | None = None,
    fallbacks: Sequence[str] | None = None,
) -> list[str]:
    """Return provider names in call order, without duplicates.

    Explicit names win over ``LLM_PRIMARY`` / ``LLM_FALLBACK``. With neither,
    every registered provider is used in registration order.

    Raises:
        ValueError: A name is not a registered provider.
    """
    names = _split_names(primary) or _split_names(os.environ.get("LLM_PRIMARY"))
    if fallbacks:
        names += [name.strip().lower() for name in fallbacks if name.strip()]
    else:
        names += _split_names(os.environ.get("LLM_FALLBACK"))

    unknown = [name for name in names if name not in _PROVIDER_FACTORIES]
    if unknown:
        raise ValueError(
            f"Unknown LLM provider '{unknown[0]}' (available: {', '.join(available_providers())})"
        )
    return list(dict.fromkeys(names)) or available_providers()


def create_provider_chain(
    *,
    system_prompt: str | Path,
    dotenv_path: str | Path | None = None,
    primary: str | None = None,
    fallbacks: Sequence[str] | None = None,
) -> list[LLMProvider]:
    """Instantiate the providers named by :func:`resolve_provider_order`."""

    # Provider order may live in the dotenv file, so load it first
    if dotenv_path is not None:
        load_dotenv(dotenv_path=str(dotenv_path), override=True)

    return [
        _PROVIDER_FACTORIES[name](system_prompt=system_prompt, dotenv_path=dotenv_path)
        for name in resolve_provider_order(primary, fallbacks)
    ]
