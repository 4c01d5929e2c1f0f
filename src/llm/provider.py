from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Protocol

from src.models.enums import FinishReason

from .json_utils import parse_json_response

ProviderReporter = Callable[[str, "ProviderStatus", Exception | None], None]


class ProviderStatus(str, Enum):
    """Status used when reporting the outcome of a provider call."""

    SUCCESS = "success"
    QUOTA = "quota"
    FAILURE = "failure"


class LLMProviderError(Exception):
    """Generic failure raised by an LLM provider."""


class LLMQuotaError(LLMProviderError):
    """Raised when a provider reports quota or rate-limit exhaustion."""


class LLMProviderConfigurationError(LLMProviderError, ValueError):
    """Raised when a provider cannot be configured or authenticated."""


class LLMParseError(LLMProviderError):
    """Raised when an LLM response cannot be parsed as expected.

    This exception includes the raw response text and input prompts
    to aid debugging when the LLM returns unexpected content.
    """

    def __init__(
        self,
        message: str,
        *,
        response_text: str | None = None,
        prompts: list[str] | None = None,
    ) -> None:
        super().__init__(message)
        self.response_text = response_text
        self.prompts = prompts

    def __str__(self) -> str:
        parts = [super().__str__()]
        if self.response_text is not None:
            # Truncate very long responses for readability
            text = self.response_text
            if len(text) > 2000:
                text = text[:2000] + "... [truncated]"
            parts.append(f"\n--- LLM Response ---\n{text}")
        if self.prompts:
            prompt_text = "\n".join(self.prompts)
            if len(prompt_text) > 2000:
                prompt_text = prompt_text[:2000] + "... [truncated]"
            parts.append(f"\n--- Input Prompts ---\n{prompt_text}")
        return "".join(parts)


@dataclass(frozen=True)
class PromptPart:
    """One piece of user content: plain text or a base64 encoded image."""

    text: str | None = None
    image_base64: str | None = None
    mime_type: str = "image/png"

    @classmethod
    def from_text(cls, text: str) -> "PromptPart":
        return cls(text=text)

    @classmethod
    def from_image(cls, data: str, mime_type: str = "image/png") -> "PromptPart":
        return cls(image_base64=data, mime_type=mime_type)

    @property
    def is_image(self) -> bool:
        return self.image_base64 is not None


@dataclass
class CompletionRequest:
    """A single completion call: ordered user parts and optional instructions.

    ``instructions`` replaces the provider's configured system prompt for this
    call when set.
    """

    parts: list[PromptPart]
    instructions: str | None = None

    def text_prompts(self) -> list[str]:
        return [part.text for part in self.parts if part.text is not None]


@dataclass
class CompletionOutcome:
    """Decoded JSON payload plus the normalised finish reason.

    ``payload`` is ``None`` when the call stopped early and the partial text
    could not be decoded.
    """

    payload: Any
    finish_reason: FinishReason = FinishReason.STOP
    raw_text: str | None = field(default=None, repr=False)


class LLMProvider(Protocol):
    """Shared contract for LLM providers."""

    name: str

    def complete(self, request: CompletionRequest) -> CompletionOutcome:
        """Send one request and return the decoded outcome."""
        ...

    def health_check(self) -> bool:
        """Optional quick check that returns True when the provider is ready."""
        ...


class ProviderFactory(Protocol):
    def __call__(
        self,
        *,
        system_prompt: str | Path,
        dotenv_path: str | Path | None,
    ) -> LLMProvider: ...


def decode_payload(
    text: str | None,
    finish_reason: FinishReason,
    *,
    prompts: list[str] | None = None,
) -> Any:
    """Decode ``text`` as JSON, tolerating failures when the call stopped early.

    A normal stop with unparseable text raises :class:`LLMParseError`. Any
    other finish reason returns ``None`` so that the caller can act on the
    finish reason instead.
    """

    if not text or not text.strip():
        if finish_reason is FinishReason.STOP:
            raise LLMParseError(
                "Empty response text", response_text=text, prompts=prompts
            )
        return None
    try:
        return parse_json_response(text)
    except ValueError as exc:
        if finish_reason is not FinishReason.STOP:
            return None
        raise LLMParseError(str(exc), response_text=text, prompts=prompts) from exc


def load_system_prompt(system_prompt: str | Path) -> str:
    """Accept either a direct string or a path to a file containing the prompt."""
    if not isinstance(system_prompt, (str, Path)):
        raise TypeError(
            f"system_prompt must be str or Path, got {type(system_prompt)}"
        )
    # Short single-line strings may be paths
    if isinstance(system_prompt, Path) or (
        "\n" not in system_prompt and len(system_prompt) < 500
    ):
        try:
            prompt_path = Path(system_prompt)
            if prompt_path.exists() and prompt_path.is_file():
                return prompt_path.read_text(encoding="utf-8")
        except (OSError, ValueError):
            pass
    return str(system_prompt)
