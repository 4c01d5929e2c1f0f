from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping

from dotenv import load_dotenv

from src.models.checklist import EvaluationLabel, default_evaluation_labels
from src.models.enums import DocumentMode

ENV_PREFIX = "REVIEW_"


@dataclass
class ReviewConfiguration:
    """Tunable limits for one review run.

    The defaults reproduce the production behaviour: five concurrent units,
    five split escalations (six attempts), three completeness submissions per
    category and one checklist item per category.
    """

    document_mode: DocumentMode = DocumentMode.SMALL

    # Fan-out and retry bounds
    concurrency_limit: int = 5
    max_split_escalations: int = 5
    max_completeness_attempts: int = 3

    # Batching
    category_size: int = 1

    # Split overlap, in characters for text and pages for images
    text_overlap_chars: int = 500
    image_overlap_pages: int = 0

    # Allowed evaluation values; custom labels replace the defaults entirely
    evaluation_labels: list[EvaluationLabel] = field(default_factory=default_evaluation_labels)

    # Free-form review options passed through to the prompts
    additional_instructions: str | None = None
    comment_format: str | None = None

    def __post_init__(self) -> None:
        self.document_mode = DocumentMode(self.document_mode)
        if self.concurrency_limit < 1:
            raise ValueError("concurrency_limit must be at least 1")
        if self.max_split_escalations < 0:
            raise ValueError("max_split_escalations must not be negative")
        if self.max_completeness_attempts < 1:
            raise ValueError("max_completeness_attempts must be at least 1")
        if self.category_size < 1:
            raise ValueError("category_size must be at least 1")
        if self.text_overlap_chars < 0 or self.image_overlap_pages < 0:
            raise ValueError("overlap sizes must not be negative")
        if not self.evaluation_labels:
            raise ValueError("evaluation_labels must not be empty")

    @property
    def allowed_evaluations(self) -> set[str]:
        return {label.label for label in self.evaluation_labels}

    @classmethod
    def from_env(
        cls,
        *,
        dotenv_path: str | Path | None = None,
        environ: Mapping[str, str] | None = None,
        **overrides: object,
    ) -> "ReviewConfiguration":
        """Build a configuration from ``REVIEW_*`` variables.

        Explicit keyword overrides win over the environment. Unset variables
        fall back to the dataclass defaults.
        """

        if environ is None:
            if dotenv_path is not None:
                load_dotenv(dotenv_path=Path(dotenv_path))
            else:
                load_dotenv()
            environ = os.environ

        values: dict[str, object] = {}
        int_fields = (
            "concurrency_limit",
            "max_split_escalations",
            "max_completeness_attempts",
            "category_size",
            "text_overlap_chars",
            "image_overlap_pages",
        )
        for name in int_fields:
            raw = environ.get(f"{ENV_PREFIX}{name.upper()}")
            if raw is None or not raw.strip():
                continue
            try:
                values[name] = int(raw)
            except ValueError as exc:
                raise ValueError(
                    f"{ENV_PREFIX}{name.upper()} must be an integer, got {raw!r}"
                ) from exc

        mode = environ.get(f"{ENV_PREFIX}DOCUMENT_MODE")
        if mode:
            values["document_mode"] = DocumentMode(mode.strip().lower())

        labels = environ.get(f"{ENV_PREFIX}EVALUATION_LABELS")
        if labels:
            values["evaluation_labels"] = [
                EvaluationLabel(label=label)
                for label in labels.split(",")
                if label.strip()
            ]

        values.update({key: value for key, value in overrides.items() if value is not None})
        return cls(**values)  # type: ignore[arg-type]
