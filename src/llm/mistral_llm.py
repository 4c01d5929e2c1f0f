from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

from dotenv import load_dotenv
from mistralai import Mistral

from src.models.enums import FinishReason

from .provider import (
    CompletionOutcome,
    CompletionRequest,
    LLMProvider,
    LLMProviderConfigurationError,
    LLMQuotaError,
    decode_payload,
    load_system_prompt,
)

logger = logging.getLogger(__name__)

_FINISH_REASONS: dict[str, FinishReason] = {
    "stop": FinishReason.STOP,
    "length": FinishReason.LENGTH,
    "model_length": FinishReason.LENGTH,
    "error": FinishReason.ERROR,
}


class MistralLLM(LLMProvider):
    """Wrapper around the Mistral chat completion API with system instructions.

    The system prompt can be provided either as a string directly or as a Path to a file.
    Page images are sent as ``image_url`` chunks carrying base64 data URIs.
    """

    name = "mistral"
    MODEL = "mistral-medium-latest"

    def __init__(
        self,
        system_prompt: str | Path,
        *,
        client: Mistral | None = None,
        dotenv_path: str | Path | None = None,
    ) -> None:
        self._system_prompt = load_system_prompt(system_prompt)

        if dotenv_path is not None:
            # Existing environment variables take precedence over the file
            load_dotenv(dotenv_path=Path(dotenv_path))
        else:
            load_dotenv()

        # Mistral SDK does not automatically read MISTRAL_API_KEY from environment
        if client is None:
            api_key = os.environ.get("MISTRAL_API_KEY")
            if not api_key:
                raise LLMProviderConfigurationError(
                    "MISTRAL_API_KEY environment variable is required but not set. "
                    "Please set it in your .env file or environment."
                )
            self._client = Mistral(api_key=api_key)
        else:
            self._client = client

    @property
    def system_prompt(self) -> str:
        return self._system_prompt

    def complete(self, request: CompletionRequest) -> CompletionOutcome:
        if not request.parts:
            raise ValueError("request.parts must not be empty.")

        messages = [
            {"role": "system", "content": request.instructions or self._system_prompt},
            {"role": "user", "content": self._build_content(request)},
        ]

        try:
            response = self._client.chat.complete(
                model=self.MODEL,
                messages=messages,
                temperature=0.2,
                response_format={"type": "json_object"},
            )
        except Exception as exc:
            # Translate quota/rate-limit responses so the service can fall
            # through to the next provider; everything else is classified later.
            if getattr(exc, "status_code", None) == 429:
                raise LLMQuotaError(
                    "Mistral provider: quota exhausted or rate limited"
                ) from exc
            raise

        return self._to_outcome(response, prompts=request.text_prompts())

    def health_check(self) -> bool:
        return True

    @staticmethod
    def _build_content(request: CompletionRequest) -> list[dict[str, Any]]:
        content: list[dict[str, Any]] = []
        for part in request.parts:
            if part.is_image:
                content.append(
                    {
                        "type": "image_url",
                        "image_url": f"data:{part.mime_type};base64,{part.image_base64}",
                    }
                )
            else:
                content.append({"type": "text", "text": part.text or ""})
        return content

    @staticmethod
    def finish_reason_of(choice: Any) -> FinishReason:
        reason = getattr(choice, "finish_reason", None)
        if reason is None:
            return FinishReason.OTHER
        value = str(getattr(reason, "value", reason)).lower()
        return _FINISH_REASONS.get(value, FinishReason.OTHER)

    def _to_outcome(
        self, response: Any, prompts: list[str] | None = None
    ) -> CompletionOutcome:
        choices = getattr(response, "choices", None) or []
        if not choices:
            return CompletionOutcome(payload=None, finish_reason=FinishReason.ERROR)

        choice = choices[0]
        finish_reason = self.finish_reason_of(choice)
        message = getattr(choice, "message", None)
        text = self._message_text(getattr(message, "content", None))
        payload = decode_payload(text, finish_reason, prompts=prompts)
        return CompletionOutcome(
            payload=payload, finish_reason=finish_reason, raw_text=text
        )

    @staticmethod
    def _message_text(content: Any) -> str | None:
        """Flatten message content, which is a string or a list of chunks."""
        if isinstance(content, str):
            return content
        if isinstance(content, list):
            texts = []
            for chunk in content:
                if isinstance(chunk, dict):
                    value = chunk.get("text")
                else:
                    value = getattr(chunk, "text", None)
                if isinstance(value, str):
                    texts.append(value)
            return "".join(texts) or None
        return None
