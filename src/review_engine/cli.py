"""Command-line interface for the document review engine.

Reviews one or more documents against a checklist file and stores the results
in a JSON review store, optionally exporting them to CSV.
"""

from __future__ import annotations

import argparse
import base64
import logging
import os
import sys
from pathlib import Path

from dotenv import load_dotenv

from src.llm.provider_registry import create_provider_chain
from src.llm.service import LLMService
from src.models.checklist import ChecklistItem
from src.models.document import SourceDocument
from src.models.enums import DocumentMode, ProcessMode
from src.prompt.render_prompt import render_template

from .config import ReviewConfiguration
from .errors import ReviewError
from .review_runner import ReviewRunner
from .storage import JsonReviewStore

IMAGE_SUFFIXES = {".png"}


def parse_args(args: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        description="Review documents against a checklist using LLMs",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Review two documents together in one call per checklist category
  python -m src.review_engine --documents policy.md appendix.txt --checklist checklist.txt

  # Review long documents individually, then consolidate
  python -m src.review_engine --documents manual.md --checklist checklist.txt --mode large

  # A directory of PNG page images is reviewed as one image document
  python -m src.review_engine --documents scans/contract --checklist checklist.txt

Environment Variables:
  REVIEW_DOCUMENT_MODE           small or large (default: small)
  REVIEW_CATEGORY_SIZE           Checklist items per completion call (default: 1)
  REVIEW_CONCURRENCY_LIMIT       Concurrent units per fan-out (default: 5)
  REVIEW_STORE                   Review store path (default: data/review_store.json)
  GEMINI_MIN_REQUEST_INTERVAL    Min seconds between Gemini requests (default: 0)
  GEMINI_MAX_RETRIES             Number of retry attempts for 429 rate limit errors (default: 0)
  LLM_PRIMARY                    Primary LLM provider (default: gemini)
  LLM_FALLBACK                   Fallback providers (comma-separated)
        """,
    )

    parser.add_argument(
        "--documents",
        nargs="+",
        type=Path,
        required=True,
        help="Text files, or directories of PNG page images, to review",
    )
    parser.add_argument(
        "--checklist",
        type=Path,
        required=True,
        help="Checklist file with one item per non-empty line",
    )
    parser.add_argument(
        "--mode",
        choices=[mode.value for mode in DocumentMode],
        help="Document mode (default: small, or REVIEW_DOCUMENT_MODE)",
    )
    parser.add_argument(
        "--category-size",
        type=int,
        help="Checklist items per completion call (default: 1)",
    )
    parser.add_argument(
        "--concurrency",
        type=int,
        help="Maximum concurrent units per fan-out (default: 5)",
    )
    parser.add_argument(
        "--store",
        type=Path,
        default=Path(os.environ.get("REVIEW_STORE", "data/review_store.json")),
        help="Path to the JSON review store",
    )
    parser.add_argument(
        "--export-csv",
        type=Path,
        help="Also write the final results to this CSV file",
    )

    # Provider options
    parser.add_argument(
        "--provider",
        help="Primary LLM provider (default: gemini or LLM_PRIMARY)",
    )
    parser.add_argument(
        "--fallback",
        action="append",
        help="Fallback LLM provider, tried in order on quota errors (repeatable; default: LLM_FALLBACK)",
    )
    parser.add_argument(
        "--dotenv",
        type=Path,
        help="Path to .env file for API keys",
    )
    parser.add_argument(
        "--log-level",
        default=os.environ.get("LOG_LEVEL", "INFO"),
        help="Logging level (default: INFO)",
    )

    return parser.parse_args(args)


def load_document(path: Path, index: int) -> SourceDocument:
    """Read a text file, or a directory of page images, as a document."""
    if path.is_dir():
        pages = sorted(p for p in path.iterdir() if p.suffix.lower() in IMAGE_SUFFIXES)
        if not pages:
            raise ValueError(f"No page images found in {path}")
        return SourceDocument(
            id=str(index),
            name=path.name,
            process_mode=ProcessMode.IMAGE,
            image_data=[base64.b64encode(p.read_bytes()).decode("ascii") for p in pages],
        )
    return SourceDocument(
        id=str(index),
        name=path.name,
        text_content=path.read_text(encoding="utf-8"),
    )


def load_checklist(path: Path) -> list[ChecklistItem]:
    lines = [line.strip() for line in path.read_text(encoding="utf-8").splitlines()]
    return [
        ChecklistItem(id=index, content=line)
        for index, line in enumerate((line for line in lines if line), start=1)
    ]


def main(argv: list[str] | None = None) -> int:
    """Main entry point for the CLI.

    Returns:
        Exit code (0 for success, non-zero for error)
    """
    args = parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        if args.dotenv:
            load_dotenv(dotenv_path=str(args.dotenv), override=True)
        else:
            load_dotenv(override=True)

        config = ReviewConfiguration.from_env(
            environ=os.environ,
            document_mode=args.mode,
            category_size=args.category_size,
            concurrency_limit=args.concurrency,
        )
        documents = [load_document(path, index) for index, path in enumerate(args.documents, start=1)]
        checklist = load_checklist(args.checklist)

        provider_chain = create_provider_chain(
            system_prompt=render_template("reviewer_role.md"),
            dotenv_path=None,
            primary=args.provider,
            fallbacks=args.fallback,
        )
        print(f"Using LLM provider(s): {[p.name for p in provider_chain]}")

        store = JsonReviewStore(args.store)
        runner = ReviewRunner(LLMService(provider_chain), store, config)
        summary = runner.run(documents, checklist)

        print("\n" + "=" * 60)
        print("Summary:")
        print(f"  Mode: {summary.mode.value}")
        print(f"  Documents: {summary.total_documents}")
        print(f"  Checklist items: {summary.total_checklists}")
        print(f"  Categories: {summary.total_categories}")
        print(f"  Completion calls: {summary.completion_calls}")
        print("=" * 60)
        for item in summary.results:
            print(f"[{item.evaluation}] {item.content}\n    {item.comment}")

        if args.export_csv:
            output = store.export_results_csv(args.export_csv)
            print(f"Results written to {output}")
        return 0

    except KeyboardInterrupt:
        print("\nInterrupted by user", file=sys.stderr)
        return 130
    except ReviewError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except (OSError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2
