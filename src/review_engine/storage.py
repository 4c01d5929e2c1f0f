"""Persistence for review runs.

The engine talks to storage through :class:`ReviewStorage`. ``JsonReviewStore``
keeps one JSON file per review and rewrites it atomically after every change,
or once per block inside :meth:`JsonReviewStore.deferred_writes`. A lock
serialises writes, so concurrent units may save freely.
"""

from __future__ import annotations

import contextlib
import csv
import json
import logging
import threading
from pathlib import Path
from typing import Any, Iterator, Protocol

from src.models.document import SourceDocument

logger = logging.getLogger(__name__)

RESULT_CSV_COLUMNS = ["checklist_id", "evaluation", "comment"]


class ReviewStorage(Protocol):
    """Storage collaborator used by the review runner."""

    def clear_results(self) -> None:
        """Remove final results and cached partials from an earlier run."""
        ...

    def set_target_document_name(self, name: str) -> None: ...

    def save_document_cache(self, document: SourceDocument) -> str:
        """Record a document before individual review and return its cache id."""
        ...

    def save_partial_result(
        self,
        cache_id: str,
        checklist_id: int,
        comment: str,
        total_chunks: int,
        chunk_index: int,
        part_label: str,
    ) -> None: ...

    def save_final_result(
        self, checklist_id: int, evaluation: str | None, comment: str
    ) -> None: ...


class JsonReviewStore:
    """File-backed :class:`ReviewStorage` implementation.

    File format::

        {
            "version": "1.0",
            "target_document_name": "a.md/b.md",
            "documents": {"cache-1": {"document_id": "a", "name": "a.md", ...}},
            "partial_results": [
                {"reviewDocumentCacheId": "cache-1", "reviewChecklistId": 1,
                 "comment": "...", "totalChunks": 2, "chunkIndex": 0,
                 "individualFileName": "a.md (part 1)"}
            ],
            "results": {"1": {"evaluation": "A", "comment": "..."}}
        }
    """

    VERSION = "1.0"

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()
        self._local = threading.local()
        self._dirty = False
        self._data: dict[str, Any] = self._empty()
        self._load()

    @classmethod
    def _empty(cls) -> dict[str, Any]:
        return {
            "version": cls.VERSION,
            "target_document_name": None,
            "documents": {},
            "partial_results": [],
            "results": {},
        }

    def _load(self) -> None:
        if not self.path.exists():
            return
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                loaded = json.load(f)
        except (json.JSONDecodeError, OSError) as e:
            logger.warning("Could not load review store %s: %s", self.path, e)
            return
        if loaded.get("version") == self.VERSION:
            self._data = loaded
        else:
            logger.warning("Review store version mismatch in %s, starting fresh", self.path)

    def _save(self) -> None:
        """Write the store to disk atomically. Caller holds the lock."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        temp_file = self.path.with_suffix(".tmp")
        try:
            with open(temp_file, "w", encoding="utf-8") as f:
                json.dump(self._data, f, indent=2, ensure_ascii=False)
            temp_file.replace(self.path)
        except OSError:
            if temp_file.exists():
                temp_file.unlink()
            raise

    def _commit(self) -> None:
        """Persist a change. Caller holds the lock.

        Threads inside :meth:`deferred_writes` only mark the store dirty.
        """
        if getattr(self._local, "depth", 0):
            self._dirty = True
            return
        self._save()
        self._dirty = False

    @contextlib.contextmanager
    def deferred_writes(self) -> Iterator[None]:
        """Write the calling thread's changes once, when the block exits.

        Other threads keep writing immediately; each of their writes also
        carries any pending deferred changes.
        """
        self._local.depth = getattr(self._local, "depth", 0) + 1
        try:
            yield
        finally:
            self._local.depth -= 1
            if not self._local.depth:
                with self._lock:
                    if self._dirty:
                        self._save()
                        self._dirty = False

    # ReviewStorage

    def clear_results(self) -> None:
        with self._lock:
            target = self._data.get("target_document_name")
            self._data = self._empty()
            self._data["target_document_name"] = target
            self._commit()

    def set_target_document_name(self, name: str) -> None:
        with self._lock:
            self._data["target_document_name"] = name
            self._commit()

    def save_document_cache(self, document: SourceDocument) -> str:
        with self._lock:
            cache_id = f"cache-{len(self._data['documents']) + 1}"
            self._data["documents"][cache_id] = {
                "document_id": document.id,
                "name": document.name,
                "original_name": document.original_name,
                "process_mode": document.process_mode.value,
                "content_length": document.content_length,
            }
            self._commit()
        return cache_id

    def save_partial_result(
        self,
        cache_id: str,
        checklist_id: int,
        comment: str,
        total_chunks: int,
        chunk_index: int,
        part_label: str,
    ) -> None:
        with self._lock:
            if cache_id not in self._data["documents"]:
                raise KeyError(f"Unknown document cache id: {cache_id}")
            self._data["partial_results"].append(
                {
                    "reviewDocumentCacheId": cache_id,
                    "reviewChecklistId": checklist_id,
                    "comment": comment,
                    "totalChunks": total_chunks,
                    "chunkIndex": chunk_index,
                    "individualFileName": part_label,
                }
            )
            self._commit()

    def save_final_result(
        self, checklist_id: int, evaluation: str | None, comment: str
    ) -> None:
        with self._lock:
            self._data["results"][str(checklist_id)] = {
                "evaluation": evaluation,
                "comment": comment,
            }
            self._commit()

    # Read access

    @property
    def target_document_name(self) -> str | None:
        return self._data.get("target_document_name")

    def document_caches(self) -> dict[str, dict[str, Any]]:
        with self._lock:
            return {key: dict(value) for key, value in self._data["documents"].items()}

    def partial_results(self) -> list[dict[str, Any]]:
        with self._lock:
            return [dict(row) for row in self._data["partial_results"]]

    def results(self) -> dict[int, dict[str, Any]]:
        with self._lock:
            return {int(key): dict(value) for key, value in self._data["results"].items()}

    def export_results_csv(self, output_file: Path) -> Path:
        """Write final results to ``output_file`` sorted by checklist id."""
        output_file = Path(output_file)
        output_file.parent.mkdir(parents=True, exist_ok=True)
        rows = self.results()
        temp_file = output_file.with_suffix(".tmp")
        try:
            with open(temp_file, "w", encoding="utf-8", newline="") as f:
                writer = csv.DictWriter(f, fieldnames=RESULT_CSV_COLUMNS)
                writer.writeheader()
                for checklist_id in sorted(rows):
                    writer.writerow(
                        {
                            "checklist_id": checklist_id,
                            "evaluation": rows[checklist_id].get("evaluation") or "",
                            "comment": rows[checklist_id].get("comment") or "",
                        }
                    )
            temp_file.replace(output_file)
        except OSError as e:
            print(f"Error writing to {output_file}: {e}")
            if temp_file.exists():
                temp_file.unlink()
            raise
        return output_file
