"""Tests for the per-file reviewer, its fan-out and review completion."""

import asyncio
import json

import pytest

from codenest_core.config import ReviewSettings
from codenest_core.errors import ProviderError
from codenest_core.models import Chunk, ChunkType, SourceFile
from codenest_core.providers.anthropic import AnthropicChatProvider
from codenest_core.providers.gemini import GeminiChatProvider
from codenest_core.providers.ollama import OllamaChatProvider
from codenest_core.reviewer import FileReviewer, ReviewTarget, get_chat_provider
from codenest_store.memory import MemoryStore
from codenest_store.models import IssueSeverity, IssueType, Review, ReviewFileStatus, ReviewStatus, ReviewType

REVIEW_REPLY = json.dumps(
    {
        "summary": "One problem",
        "issues": [
            {
                "type": "security",
                "severity": "high",
                "title": "Hardcoded secret",
                "line_start": 3,
                "line_end": 3,
                "affected_code": 'TOKEN = "abc"',
            },
            {"type": "weird", "severity": "urgent", "title": "Odd"},
        ],
        "overall_assessment": "Rotate the token.",
    }
)


def _make_file(name="app.py", file_id=None):
    return SourceFile(
        id=file_id or name,
        workspace_id="ws",
        path=f"/repo/{name}",
        rel_path=name,
        language="python",
    )


def _make_target(name="app.py"):
    return ReviewTarget(file=_make_file(name), content=f"# {name}\nTOKEN = 'abc'\n", chunk_count=1)


class _StubChat:
    """Chat provider stub returning ``reply`` or raising for paths listed in ``fail``."""

    model = "stub-model"

    def __init__(self, reply=REVIEW_REPLY, fail=(), delay=0.0):
        self.reply = reply
        self.fail = set(fail)
        self.delay = delay
        self.calls = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def complete(self, messages, params=None):
        self.calls.append(messages)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if any(path in messages[-1]["content"] for path in self.fail):
                raise ProviderError("model unavailable")
            return self.reply
        finally:
            self.in_flight -= 1


class _StubSearch:
    def __init__(self, chunks=(), error=None):
        self.chunks = list(chunks)
        self.error = error
        self.filters = None

    async def find_similar(self, content, filters):
        self.filters = filters
        if self.error:
            raise self.error
        return self.chunks


async def _make_review(store):
    return await store.create_review(Review(workspace_id="ws", review_type=ReviewType.STAGED))


# ---------------------------------------------------------------------------
# Provider factory
# ---------------------------------------------------------------------------


class TestGetChatProvider:
    def test_anthropic(self, mocker):
        mocker.patch("anthropic.AsyncAnthropic")
        assert isinstance(get_chat_provider(ReviewSettings(anthropic_api_key="k")), AnthropicChatProvider)

    def test_gemini(self, mocker):
        mocker.patch("google.genai.Client")
        provider = get_chat_provider(ReviewSettings(provider="gemini", gemini_api_key="k"))
        assert isinstance(provider, GeminiChatProvider)

    def test_ollama(self, mocker):
        mocker.patch("codenest_core.providers.openai._AsyncOpenAI")
        provider = get_chat_provider(ReviewSettings(provider="ollama", model="llama3"))
        assert isinstance(provider, OllamaChatProvider)
        assert provider.model == "llama3"

    def test_unknown_provider(self):
        with pytest.raises(ValueError, match="Unknown provider"):
            get_chat_provider(ReviewSettings(provider="bard"))


# ---------------------------------------------------------------------------
# review_file
# ---------------------------------------------------------------------------


class TestReviewFile:
    @pytest.mark.asyncio
    async def test_promotes_and_persists_issues(self):
        store = MemoryStore()
        review = await _make_review(store)
        reviewer = FileReviewer(_StubChat(), store, ReviewSettings())

        result = await reviewer.review_file(review, _make_target(), "Staged changes")

        assert result.ok
        assert result.review_file.status is ReviewFileStatus.COMPLETED
        assert result.review_file.issues_count == 2
        assert result.review_file.summary == "One problem"
        assert result.review_file.assessment == "Rotate the token."
        first, second = result.issues
        assert first.type is IssueType.SECURITY
        assert first.severity is IssueSeverity.HIGH
        assert first.affected_code == 'TOKEN = "abc"'
        assert (second.type, second.severity) == (IssueType.BUG, IssueSeverity.MEDIUM)
        assert len(await store.list_issues(review.id, file_id="app.py")) == 2

    @pytest.mark.asyncio
    async def test_prompt_contains_diff_info_and_related_code(self):
        store = MemoryStore()
        review = await _make_review(store)
        chat = _StubChat()
        related = Chunk(
            id="c9",
            workspace_id="ws",
            file_id="util.py",
            path="/repo/util.py",
            chunk_type=ChunkType.FILE,
            name="util.py",
            content="def load(): ...",
            start_line=1,
            end_line=1,
        )
        search = _StubSearch([related])
        reviewer = FileReviewer(chat, store, ReviewSettings(similar_chunks=3), search=search)

        result = await reviewer.review_file(review, _make_target(), "Changes from commit abc")

        user = chat.calls[0][-1]["content"]
        assert "File: app.py (Python, Changes from commit abc)" in user
        assert "### util.py (file)" in user
        assert search.filters["exclude_file_id"] == "app.py"
        assert search.filters["limit"] == 3
        assert result.review_file.metadata["similar_chunk_ids"] == ["c9"]

    @pytest.mark.asyncio
    async def test_similar_lookup_failure_is_not_fatal(self):
        store = MemoryStore()
        review = await _make_review(store)
        chat = _StubChat()
        reviewer = FileReviewer(chat, store, ReviewSettings(), search=_StubSearch(error=RuntimeError("index down")))

        result = await reviewer.review_file(review, _make_target())

        assert result.ok
        assert "## Related Code:" not in chat.calls[0][-1]["content"]

    @pytest.mark.asyncio
    async def test_completion_failure_marks_file_failed(self):
        store = MemoryStore()
        review = await _make_review(store)
        reviewer = FileReviewer(_StubChat(fail={"app.py"}), store, ReviewSettings())

        result = await reviewer.review_file(review, _make_target())

        assert not result.ok
        assert "model unavailable" in result.error
        assert result.review_file.status is ReviewFileStatus.FAILED
        assert result.issues == []

    @pytest.mark.asyncio
    async def test_unparseable_reply_completes_with_zero_issues(self):
        store = MemoryStore()
        review = await _make_review(store)
        reviewer = FileReviewer(_StubChat(reply="Looks fine to me!"), store, ReviewSettings())

        result = await reviewer.review_file(review, _make_target())

        assert result.ok
        assert result.issues == []
        assert result.review_file.status is ReviewFileStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_unexpected_extraction_error_completes_with_zero_issues(self, mocker):
        mocker.patch("codenest_core.reviewer.extract_review_output", side_effect=OverflowError("too large"))
        store = MemoryStore()
        review = await _make_review(store)
        reviewer = FileReviewer(_StubChat(), store, ReviewSettings())

        result = await reviewer.review_file(review, _make_target())

        assert result.ok
        assert result.issues == []
        assert result.review_file.status is ReviewFileStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_review_file_creation_failure(self):
        store = MemoryStore()
        orphan = Review(workspace_id="ws", review_type=ReviewType.STAGED)  # never persisted
        reviewer = FileReviewer(_StubChat(), store, ReviewSettings())

        result = await reviewer.review_file(orphan, _make_target())

        assert not result.ok
        assert result.review_file is None


# ---------------------------------------------------------------------------
# review_files fan-out
# ---------------------------------------------------------------------------


class TestReviewFiles:
    @pytest.mark.asyncio
    async def test_concurrency_is_bounded(self):
        store = MemoryStore()
        review = await _make_review(store)
        chat = _StubChat(delay=0.01)
        reviewer = FileReviewer(chat, store, ReviewSettings(max_concurrent_reviews=2))

        results, cancelled = await reviewer.review_files(review, [_make_target(f"f{i}.py") for i in range(6)])

        assert len(results) == 6
        assert not cancelled
        assert chat.max_in_flight == 2

    @pytest.mark.asyncio
    async def test_sequential_when_concurrency_is_one(self):
        store = MemoryStore()
        review = await _make_review(store)
        chat = _StubChat(delay=0.005)
        reviewer = FileReviewer(chat, store, ReviewSettings(max_concurrent_reviews=1))

        await reviewer.review_files(review, [_make_target(f"f{i}.py") for i in range(3)])

        assert chat.max_in_flight == 1

    @pytest.mark.asyncio
    async def test_failed_files_are_reported_not_raised(self):
        store = MemoryStore()
        review = await _make_review(store)
        reviewer = FileReviewer(_StubChat(fail={"b.py"}), store, ReviewSettings())
        seen = []

        results, _ = await reviewer.review_files(
            review,
            [_make_target("a.py"), _make_target("b.py")],
            on_result=lambda result, done, total: seen.append((done, total)),
        )

        assert sorted(r.ok for r in results) == [False, True]
        assert sorted(seen) == [(1, 2), (2, 2)]

    @pytest.mark.asyncio
    async def test_cancel_keeps_finished_results(self):
        store = MemoryStore()
        review = await _make_review(store)
        cancel = asyncio.Event()
        chat = _StubChat(delay=0.05)
        reviewer = FileReviewer(chat, store, ReviewSettings(max_concurrent_reviews=1))

        def _cancel_after_first(result, done, total):
            cancel.set()

        results, cancelled = await reviewer.review_files(
            review,
            [_make_target(f"f{i}.py") for i in range(4)],
            cancel=cancel,
            on_result=_cancel_after_first,
        )

        assert cancelled
        assert len(results) == 1
        assert results[0].ok

    @pytest.mark.asyncio
    async def test_cancel_before_start_reviews_nothing(self):
        store = MemoryStore()
        review = await _make_review(store)
        cancel = asyncio.Event()
        cancel.set()
        chat = _StubChat()
        reviewer = FileReviewer(chat, store, ReviewSettings())

        results, cancelled = await reviewer.review_files(review, [_make_target()], cancel=cancel)

        assert cancelled
        assert results == []
        assert chat.calls == []


# ---------------------------------------------------------------------------
# complete_review
# ---------------------------------------------------------------------------


class TestCompleteReview:
    @pytest.mark.asyncio
    async def test_tallies_by_type_and_severity(self):
        store = MemoryStore()
        review = await _make_review(store)
        reviewer = FileReviewer(_StubChat(fail={"b.py"}), store, ReviewSettings())
        results, _ = await reviewer.review_files(review, [_make_target("a.py"), _make_target("b.py")])

        completed = await reviewer.complete_review(review, results, processed_chunks=7, execution_time=1.5)

        assert completed.status is ReviewStatus.COMPLETED
        assert completed.result.total_issues == 2
        assert completed.result.by_type == {"security": 1, "bug": 1}
        assert completed.result.by_severity == {"high": 1, "medium": 1}
        assert completed.result.processed_files == 1
        assert completed.result.processed_chunks == 7
        assert completed.result.model == "stub-model"

    @pytest.mark.asyncio
    async def test_no_completed_files_marks_review_failed(self):
        store = MemoryStore()
        review = await _make_review(store)
        reviewer = FileReviewer(_StubChat(fail={"a.py"}), store, ReviewSettings())
        results, _ = await reviewer.review_files(review, [_make_target("a.py")])

        completed = await reviewer.complete_review(review, results)

        assert completed.status is ReviewStatus.FAILED
        assert completed.result.total_issues == 0
