"""Validation model for per-item results returned by the language model."""

from __future__ import annotations

import logging
from typing import Any, Iterable, List

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

logger = logging.getLogger(__name__)

_WRAPPER_KEYS = ("results", "items", "reviews", "checklists")


class ReviewItemResult(BaseModel):
    """One checklist result as emitted by the model.

    The model is asked for ``checklistId`` and ``comment`` plus ``evaluation``
    where the stage needs one. Snake-case keys are accepted as well.
    """

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    checklist_id: int = Field(alias="checklistId")
    comment: str = ""
    evaluation: str | None = None

    @field_validator("comment", mode="before")
    def _strip_comment(cls, value: object) -> str:
        return str(value or "").strip()

    @field_validator("evaluation", mode="before")
    def _strip_evaluation(cls, value: object) -> str | None:
        if value is None:
            return None
        return str(value).strip() or None

    @classmethod
    def parse_many(cls, payload: Any) -> List["ReviewItemResult"]:
        """Validate a decoded JSON payload into results, skipping bad entries.

        Accepts a bare list or an object wrapping the list under a common key
        such as ``results``. Anything else yields an empty list so that the
        caller treats every requested item as missing.
        """

        entries: Iterable[Any]
        if isinstance(payload, list):
            entries = payload
        elif isinstance(payload, dict):
            entries = []
            for key in _WRAPPER_KEYS:
                if isinstance(payload.get(key), list):
                    entries = payload[key]
                    break
            else:
                if "checklistId" in payload or "checklist_id" in payload:
                    entries = [payload]
        else:
            return []

        results: list[ReviewItemResult] = []
        for entry in entries:
            if not isinstance(entry, dict):
                continue
            try:
                results.append(cls.model_validate(entry))
            except ValidationError as exc:
                logger.debug("Skipping invalid review result %r: %s", entry, exc)
        return results
