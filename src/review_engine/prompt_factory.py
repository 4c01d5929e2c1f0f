"""Build completion requests for each review stage from the prompt templates."""

from __future__ import annotations

from typing import Mapping, Sequence

from src.llm.provider import CompletionRequest, PromptPart
from src.models.checklist import ChecklistItem
from src.models.document import PartialComment, SourceDocument
from src.models.enums import ProcessMode
from src.prompt.render_prompt import render_prompts

from .config import ReviewConfiguration


def _base_context(
    config: ReviewConfiguration,
    items: Sequence[ChecklistItem],
    *,
    require_evaluation: bool,
) -> dict:
    return {
        "items": [{"id": item.id, "content": item.content} for item in items],
        "evaluation_labels": [
            {"label": label.label, "description": label.description}
            for label in config.evaluation_labels
        ],
        "require_evaluation": require_evaluation,
        "additional_instructions": config.additional_instructions,
        "comment_format": config.comment_format,
    }


def document_parts(document: SourceDocument) -> list[PromptPart]:
    """Content parts for one document: a header then its text or page images."""
    if document.process_mode is ProcessMode.IMAGE:
        header = f"### Document: {document.name} ({len(document.image_data)} page image(s) follow)"
        return [PromptPart.from_text(header)] + [
            PromptPart.from_image(page) for page in document.image_data
        ]
    return [PromptPart.from_text(f"### Document: {document.name}\n\n{document.text_content}")]


def build_small_review_request(
    documents: Sequence[SourceDocument],
    items: Sequence[ChecklistItem],
    config: ReviewConfiguration,
) -> CompletionRequest:
    context = _base_context(config, items, require_evaluation=True)
    context["documents"] = [{"name": document.name} for document in documents]
    system_prompt, user_prompt = render_prompts(
        "system_small_review.md", "user_small_review.md", context
    )
    parts = [PromptPart.from_text(user_prompt)]
    for document in documents:
        parts.extend(document_parts(document))
    return CompletionRequest(parts=parts, instructions=system_prompt)


def build_individual_review_request(
    document: SourceDocument,
    items: Sequence[ChecklistItem],
    config: ReviewConfiguration,
    *,
    total_chunks: int = 1,
    chunk_index: int = 0,
) -> CompletionRequest:
    context = _base_context(config, items, require_evaluation=False)
    context.update(
        {
            "document_name": document.name,
            "original_name": document.original_name,
            "is_chunk": total_chunks > 1,
            "chunk_number": chunk_index + 1,
            "total_chunks": total_chunks,
        }
    )
    system_prompt, user_prompt = render_prompts(
        "system_individual_review.md", "user_individual_review.md", context
    )
    parts = [PromptPart.from_text(user_prompt)] + document_parts(document)
    return CompletionRequest(parts=parts, instructions=system_prompt)


def build_consolidation_request(
    items: Sequence[ChecklistItem],
    comments_by_item: Mapping[int, Sequence[PartialComment]],
    config: ReviewConfiguration,
) -> CompletionRequest:
    """Only comments for ``items`` are included, so a retry sends a smaller request."""
    context = _base_context(config, items, require_evaluation=True)
    for entry in context["items"]:
        entry["comments"] = [
            partial.to_prompt_entry() for partial in comments_by_item.get(entry["id"], [])
        ]
    system_prompt, user_prompt = render_prompts(
        "system_consolidation.md", "user_consolidation.md", context
    )
    return CompletionRequest(
        parts=[PromptPart.from_text(user_prompt)], instructions=system_prompt
    )
