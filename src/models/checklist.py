"""Checklist item and evaluation label models."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, field_validator

DEFAULT_EVALUATION_LABELS: tuple[tuple[str, str], ...] = (
    ("A", "Fully meets the checklist item"),
    ("B", "Partially meets the checklist item"),
    ("C", "Does not meet the checklist item"),
    ("-", "Not applicable or cannot be judged from the documents"),
)


class EvaluationLabel(BaseModel):
    """One allowed evaluation value and the meaning shown to the model."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    label: str
    description: str = ""

    @field_validator("label", mode="before")
    def _strip_label(cls, value: object) -> str:
        result = str(value or "").strip()
        if not result:
            raise ValueError("label must not be empty")
        return result

    @field_validator("description", mode="before")
    def _strip_description(cls, value: object) -> str:
        return str(value or "").strip()


def default_evaluation_labels() -> list[EvaluationLabel]:
    return [
        EvaluationLabel(label=label, description=description)
        for label, description in DEFAULT_EVALUATION_LABELS
    ]


class ChecklistItem(BaseModel):
    """A single question or criterion that documents are reviewed against.

    ``evaluation`` and ``comment`` stay ``None`` on input and are filled in
    only by the review engine once a final result exists.
    """

    model_config = ConfigDict(extra="forbid")

    id: int
    content: str
    evaluation: str | None = None
    comment: str | None = None

    @field_validator("content", mode="before")
    def _strip_content(cls, value: object) -> str:
        result = str(value or "").strip()
        if not result:
            raise ValueError("content must not be empty")
        return result

    @field_validator("evaluation", "comment", mode="before")
    def _strip_optional(cls, value: object) -> str | None:
        if value is None:
            return None
        return str(value).strip() or None
