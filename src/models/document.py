"""Document and chunk models used while planning and running reviews."""

from __future__ import annotations

from dataclasses import dataclass, field

from .enums import ProcessMode


@dataclass(frozen=True)
class ChunkRange:
    """Half-open ``[start, end)`` window over characters or page images."""

    start: int
    end: int

    def __post_init__(self) -> None:
        if self.start < 0 or self.end < self.start:
            raise ValueError(f"Invalid chunk range [{self.start}, {self.end})")

    def __len__(self) -> int:
        return self.end - self.start


@dataclass
class SourceDocument:
    """A document handed to the engine after content extraction.

    ``text_content`` is used in text mode and ``image_data`` (base64 encoded
    PNG pages, in page order) in image mode.
    """

    id: str
    name: str
    process_mode: ProcessMode = ProcessMode.TEXT
    text_content: str = ""
    image_data: list[str] = field(default_factory=list)
    original_name: str | None = None

    def __post_init__(self) -> None:
        if not self.id:
            raise ValueError("document id must not be empty")
        if self.original_name is None:
            self.original_name = self.name

    @property
    def content_length(self) -> int:
        """Number of splittable units: characters or pages."""
        if self.process_mode is ProcessMode.IMAGE:
            return len(self.image_data)
        return len(self.text_content)


@dataclass
class PartialComment:
    """Comment produced for one checklist item from one document or chunk."""

    checklist_id: int
    document_id: str
    document_name: str
    comment: str
    total_chunks: int = 1
    chunk_index: int = 0
    parent_document_id: str | None = None

    @property
    def source_document_id(self) -> str:
        """Id of the unsplit document this comment came from."""
        return self.parent_document_id or self.document_id

    def to_prompt_entry(self) -> dict[str, str]:
        return {
            "documentId": self.document_id,
            "documentName": self.document_name,
            "comment": self.comment,
        }
