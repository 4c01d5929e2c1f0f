from __future__ import annotations

import sys
from pathlib import Path

import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from src.llm.provider import CompletionOutcome, CompletionRequest, LLMParseError, LLMProviderError
from src.models.checklist import ChecklistItem
from src.models.document import SourceDocument
from src.models.enums import DocumentMode, FinishReason
from src.review_engine.config import ReviewConfiguration
from src.review_engine.errors import (
    SPLIT_EXHAUSTED_MESSAGE,
    ContentFilteredError,
    ContextOverflowError,
    IncompleteResultError,
    ModelError,
    ReviewCancelledError,
    ReviewInputError,
    SplitExhaustedError,
)
from src.review_engine.orchestrator import CancellationToken
from src.review_engine.review_runner import ReviewRunner
from src.review_engine.storage import JsonReviewStore
from tests.review_fakes import (
    ContextLengthError,
    ScriptedProvider,
    answer,
    checklist,
    echo_handler,
    requested_ids,
    service_for,
    stage_of,
    text_document,
    user_text,
)


def _runner(provider: ScriptedProvider, tmp_path: Path, **config) -> tuple[ReviewRunner, JsonReviewStore]:
    store = JsonReviewStore(tmp_path / "store.json")
    return ReviewRunner(service_for(provider), store, ReviewConfiguration(**config)), store


class TestSmallMode:
    def test_one_call_per_category_with_all_documents(self, tmp_path: Path) -> None:
        provider = ScriptedProvider(echo_handler)
        runner, store = _runner(provider, tmp_path, category_size=1)
        documents = [text_document("1", name="alpha.md"), text_document("2", name="beta.md")]

        summary = runner.run(documents, checklist(3))

        assert summary.completion_calls == 3
        assert summary.total_categories == 3
        assert all("alpha.md" in user_text(r) and "beta.md" in user_text(r) for r in provider.requests)
        assert [item.evaluation for item in summary.results] == ["A", "A", "A"]
        assert store.results()[2] == {"evaluation": "A", "comment": "small 2"}
        assert store.target_document_name == "alpha.md/beta.md"

    def test_overflow_suggests_large_mode(self, tmp_path: Path) -> None:
        def handler(request: CompletionRequest) -> CompletionOutcome:
            raise ContextLengthError()

        provider = ScriptedProvider(handler)
        runner, store = _runner(provider, tmp_path)

        with pytest.raises(ContextOverflowError, match="large document mode"):
            runner.run([text_document("1")], checklist(1))

        assert len(provider.requests) == 1
        assert store.results() == {}

    def test_previous_results_are_cleared(self, tmp_path: Path) -> None:
        store = JsonReviewStore(tmp_path / "store.json")
        store.save_final_result(42, "C", "stale")
        runner = ReviewRunner(service_for(ScriptedProvider(echo_handler)), store, ReviewConfiguration())

        runner.run([text_document("1")], checklist(1))

        assert set(store.results()) == {1}


class TestLargeMode:
    def test_individual_reviews_then_consolidation(self, tmp_path: Path) -> None:
        provider = ScriptedProvider(echo_handler)
        runner, store = _runner(provider, tmp_path, document_mode=DocumentMode.LARGE)

        summary = runner.run([text_document("1"), text_document("2")], checklist(2))

        assert len(provider.requests_for("individual")) == 4
        assert len(provider.requests_for("consolidation")) == 2
        assert summary.completion_calls == 6
        assert [item.comment for item in summary.results] == ["consolidation 1", "consolidation 2"]

        partials = store.partial_results()
        assert len(partials) == 4
        assert {p["individualFileName"] for p in partials} == {"1.md", "2.md"}
        assert set(store.document_caches()) == {p["reviewDocumentCacheId"] for p in partials}

    def test_consolidation_sees_every_document_comment(self, tmp_path: Path) -> None:
        provider = ScriptedProvider(echo_handler)
        runner, _ = _runner(provider, tmp_path, document_mode=DocumentMode.LARGE)

        runner.run([text_document("1", name="one.md"), text_document("2", name="two.md")], checklist(1))

        (request,) = provider.requests_for("consolidation")
        assert "one.md" in user_text(request) and "two.md" in user_text(request)
        assert "individual 1" in user_text(request)

    def test_oversized_document_is_split_and_cached_per_chunk(self, tmp_path: Path) -> None:
        def handler(request: CompletionRequest) -> CompletionOutcome:
            if stage_of(request) == "individual" and "x" * 301 in user_text(request):
                raise ContextLengthError()
            return echo_handler(request)

        provider = ScriptedProvider(handler)
        runner, store = _runner(
            provider, tmp_path, document_mode=DocumentMode.LARGE, text_overlap_chars=0
        )

        summary = runner.run(
            [text_document("1", 500, name="big.md"), text_document("2", 100, name="small.md")],
            checklist(1),
        )

        partials = store.partial_results()
        big = sorted(
            (p for p in partials if p["individualFileName"].startswith("big.md")),
            key=lambda p: p["chunkIndex"],
        )
        assert [p["individualFileName"] for p in big] == ["big.md (part 1)", "big.md (part 2)"]
        assert [(p["totalChunks"], p["chunkIndex"]) for p in big] == [(2, 0), (2, 1)]
        assert len({p["reviewDocumentCacheId"] for p in big}) == 1
        assert summary.results[0].evaluation == "A"

    def test_always_overflowing_document_exhausts_splitting(self, tmp_path: Path) -> None:
        def handler(request: CompletionRequest) -> CompletionOutcome:
            if stage_of(request) == "individual":
                raise ContextLengthError()
            return echo_handler(request)

        provider = ScriptedProvider(handler)
        runner, store = _runner(provider, tmp_path, document_mode=DocumentMode.LARGE)

        with pytest.raises(SplitExhaustedError) as exc_info:
            runner.run([text_document("1", 1000)], checklist(1))

        assert str(exc_info.value) == SPLIT_EXHAUSTED_MESSAGE
        assert len(provider.requests) == 21
        assert store.results() == {}

    def test_missing_item_converges_without_touching_siblings(self, tmp_path: Path) -> None:
        seen: dict[tuple[str, int], int] = {}

        def handler(request: CompletionRequest) -> CompletionOutcome:
            ids = requested_ids(request)
            if stage_of(request) == "individual":
                key = ("doc-2" if "2.md" in user_text(request) else "doc-1", ids[0])
                seen[key] = seen.get(key, 0) + 1
                # Document 2 leaves out item 2 the first time it is asked
                if key == ("doc-2", 1) and seen[key] == 1:
                    return answer([1], evaluation=None)
            return echo_handler(request)

        provider = ScriptedProvider(handler)
        runner, _ = _runner(provider, tmp_path, document_mode=DocumentMode.LARGE, category_size=2)

        runner.run([text_document("1"), text_document("2")], checklist(2))

        assert seen == {("doc-1", 1): 1, ("doc-2", 1): 1, ("doc-2", 2): 1}

    def test_terminal_failure_aborts_the_run(self, tmp_path: Path) -> None:
        def handler(request: CompletionRequest) -> CompletionOutcome:
            if stage_of(request) == "individual" and "2.md" in user_text(request):
                return answer(requested_ids(request), finish_reason=FinishReason.CONTENT_FILTER)
            return echo_handler(request)

        provider = ScriptedProvider(handler)
        runner, store = _runner(provider, tmp_path, document_mode=DocumentMode.LARGE)

        with pytest.raises(ContentFilteredError):
            runner.run([text_document("1"), text_document("2")], checklist(3))

        assert provider.requests_for("consolidation") == []
        assert store.results() == {}


def test_unexpected_errors_become_model_errors(tmp_path: Path) -> None:
    def handler(request: CompletionRequest) -> CompletionOutcome:
        raise LLMProviderError("upstream 500")

    runner, _ = _runner(ScriptedProvider(handler), tmp_path)

    with pytest.raises(ModelError, match="upstream 500"):
        runner.run([text_document("1")], checklist(1))


def test_caller_cancellation(tmp_path: Path) -> None:
    token = CancellationToken()
    token.cancel()
    provider = ScriptedProvider(echo_handler)
    runner, _ = _runner(provider, tmp_path)

    with pytest.raises(ReviewCancelledError):
        runner.run([text_document("1")], checklist(2), token=token)

    assert provider.requests == []


@pytest.mark.parametrize(
    "documents,items",
    [
        ([], checklist(1)),
        ([text_document("1")], []),
        ([text_document("1"), text_document("1")], checklist(1)),
    ],
)
def test_invalid_input_is_rejected(tmp_path: Path, documents, items) -> None:
    runner, _ = _runner(ScriptedProvider(echo_handler), tmp_path)

    with pytest.raises(ReviewInputError):
        runner.run(documents, items)


def test_storage_failures_propagate(tmp_path: Path) -> None:
    class FailingStore(JsonReviewStore):
        def save_final_result(self, checklist_id, evaluation, comment) -> None:
            raise OSError("disk full")

    runner = ReviewRunner(
        service_for(ScriptedProvider(echo_handler)),
        FailingStore(tmp_path / "store.json"),
        ReviewConfiguration(),
    )

    with pytest.raises(OSError, match="disk full"):
        runner.run([text_document("1")], checklist(1))


def test_omitted_item_worded_like_an_overflow_is_not_split(tmp_path: Path) -> None:
    provider = ScriptedProvider(lambda request: CompletionOutcome(payload=[]))
    runner, _ = _runner(provider, tmp_path, document_mode=DocumentMode.LARGE)
    items = [ChecklistItem(id=1, content="Document lists too many images per page")]

    with pytest.raises(IncompleteResultError) as exc:
        runner.run([text_document("1")], items)

    assert "too many images" in str(exc.value)
    assert len(provider.requests) == 3
    assert all(stage_of(request) == "individual" for request in provider.requests)


def test_parse_error_echoing_document_text_is_retried(tmp_path: Path) -> None:
    calls: list[CompletionRequest] = []

    def handler(request: CompletionRequest) -> CompletionOutcome:
        calls.append(request)
        if len(calls) == 1:
            raise LLMParseError("Could not decode JSON", prompts=request.text_prompts())
        return echo_handler(request)

    provider = ScriptedProvider(handler)
    runner, store = _runner(provider, tmp_path)
    document = SourceDocument(
        id="1", name="model.md", text_content="The model has a context length of 8k tokens."
    )

    summary = runner.run([document], checklist(1))

    assert summary.completion_calls == 2
    assert store.results()[1] == {"evaluation": "A", "comment": "small 1"}


def test_large_mode_writes_partials_once_per_document(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    saves: list[int] = []
    original_save = JsonReviewStore._save

    def counting_save(self: JsonReviewStore) -> None:
        saves.append(len(self._data["partial_results"]))
        original_save(self)

    monkeypatch.setattr(JsonReviewStore, "_save", counting_save)
    runner, store = _runner(
        ScriptedProvider(echo_handler),
        tmp_path,
        document_mode=DocumentMode.LARGE,
        category_size=3,
        concurrency_limit=1,
    )

    runner.run([text_document("1"), text_document("2")], checklist(3))

    assert len(store.partial_results()) == 6
    # clear, target name, two caches, one per document, one for the final results
    assert len(saves) == 7
