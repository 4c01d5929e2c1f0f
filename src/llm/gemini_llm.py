from __future__ import annotations

import base64
import logging
import os
import threading
import time
from pathlib import Path
from typing import Any

from dotenv import load_dotenv
from google import genai
from google.genai import errors as genai_errors
from google.genai import types

from src.models.enums import FinishReason

from .provider import (
    CompletionOutcome,
    CompletionRequest,
    LLMQuotaError,
    decode_payload,
    load_system_prompt,
)

logger = logging.getLogger(__name__)

# Gemini FinishReason member names mapped onto the engine's finish reasons.
_FINISH_REASONS: dict[str, FinishReason] = {
    "STOP": FinishReason.STOP,
    "MAX_TOKENS": FinishReason.LENGTH,
    "SAFETY": FinishReason.CONTENT_FILTER,
    "RECITATION": FinishReason.CONTENT_FILTER,
    "BLOCKLIST": FinishReason.CONTENT_FILTER,
    "PROHIBITED_CONTENT": FinishReason.CONTENT_FILTER,
    "SPII": FinishReason.CONTENT_FILTER,
    "IMAGE_SAFETY": FinishReason.CONTENT_FILTER,
    "MALFORMED_FUNCTION_CALL": FinishReason.ERROR,
}


class GeminiLLM:
    """Wrapper around the Gemini SDK with system instructions.

    The system prompt can be provided either as a string directly or as a Path to a file.
    Calls are rate limited across threads using ``GEMINI_MIN_REQUEST_INTERVAL`` and
    429 responses are retried ``GEMINI_MAX_RETRIES`` times with exponential backoff.
    """

    name = "gemini"
    MODEL = "gemini-2.5-flash"
    MAX_THINKING_BUDGET = 24576

    def __init__(
        self,
        system_prompt: str | Path,
        *,
        client: genai.Client | None = None,
        dotenv_path: str | Path | None = None,
        min_request_interval: float | None = None,
        max_retries: int | None = None,
    ) -> None:
        self._system_prompt = load_system_prompt(system_prompt)

        if dotenv_path is not None:
            load_dotenv(dotenv_path=Path(dotenv_path))
        else:
            load_dotenv()
        self._client = client or genai.Client()

        # Read rate limiting configuration from environment or parameters
        if min_request_interval is None:
            try:
                min_request_interval = float(
                    os.environ.get("GEMINI_MIN_REQUEST_INTERVAL", "0")
                )
            except ValueError:
                min_request_interval = 0.0
        self._min_request_interval = max(0.0, min_request_interval)

        if max_retries is None:
            try:
                max_retries = int(os.environ.get("GEMINI_MAX_RETRIES", "0"))
            except ValueError:
                max_retries = 0
        self._max_retries = max(0, max_retries)

        # Initialise to 0 so the first request is not rate limited
        self._last_request_time = 0.0
        self._rate_lock = threading.Lock()

    @property
    def system_prompt(self) -> str:
        return self._system_prompt

    def complete(self, request: CompletionRequest) -> CompletionOutcome:
        if not request.parts:
            raise ValueError("request.parts must not be empty.")

        contents = [self._to_part(part) for part in request.parts]
        config = types.GenerateContentConfig(
            system_instruction=request.instructions or self._system_prompt,
            thinking_config=types.ThinkingConfig(
                thinking_budget=self.MAX_THINKING_BUDGET
            ),
            response_mime_type="application/json",
            temperature=0.2,
        )

        attempt = 0
        while True:
            self._enforce_rate_limit()
            try:
                response = self._client.models.generate_content(
                    model=self.MODEL,
                    contents=contents,
                    config=config,
                )
            except genai_errors.APIError as exc:
                if exc.code != 429:
                    raise
                if attempt < self._max_retries:
                    # Backoff: min_interval * 2^attempt, with a small floor
                    backoff_delay = (self._min_request_interval or 0.1) * 2**attempt
                    logger.info(
                        "Gemini rate limited; retrying in %.1fs (attempt %d/%d)",
                        backoff_delay,
                        attempt + 1,
                        self._max_retries,
                    )
                    time.sleep(backoff_delay)
                    attempt += 1
                    continue
                raise LLMQuotaError(
                    "Gemini provider: quota exhausted or rate limited"
                ) from exc
            return self._to_outcome(response, prompts=request.text_prompts())

    def health_check(self) -> bool:
        return True

    @staticmethod
    def _to_part(part: Any) -> types.Part:
        if part.is_image:
            return types.Part.from_bytes(
                data=base64.b64decode(part.image_base64),
                mime_type=part.mime_type,
            )
        return types.Part.from_text(text=part.text or "")

    @staticmethod
    def finish_reason_of(response: Any) -> FinishReason:
        """Normalise the first candidate's finish reason.

        A blocked prompt has no candidates and reports ``prompt_feedback``
        instead, which counts as filtered.
        """
        feedback = getattr(response, "prompt_feedback", None)
        if feedback is not None and getattr(feedback, "block_reason", None):
            return FinishReason.CONTENT_FILTER

        candidates = getattr(response, "candidates", None) or []
        if not candidates:
            return FinishReason.OTHER
        reason = getattr(candidates[0], "finish_reason", None)
        if reason is None:
            return FinishReason.OTHER
        name = str(getattr(reason, "name", reason)).rsplit(".", 1)[-1].upper()
        return _FINISH_REASONS.get(name, FinishReason.OTHER)

    def _to_outcome(
        self, response: Any, prompts: list[str] | None = None
    ) -> CompletionOutcome:
        finish_reason = self.finish_reason_of(response)
        text = getattr(response, "text", None)
        if not isinstance(text, str):
            text = None
        payload = decode_payload(text, finish_reason, prompts=prompts)
        return CompletionOutcome(
            payload=payload, finish_reason=finish_reason, raw_text=text
        )

    def _enforce_rate_limit(self) -> None:
        """Enforce minimum interval between API requests across threads."""
        if self._min_request_interval <= 0:
            return

        with self._rate_lock:
            elapsed = time.time() - self._last_request_time
            if elapsed < self._min_request_interval:
                time.sleep(self._min_request_interval - elapsed)
            self._last_request_time = time.time()
