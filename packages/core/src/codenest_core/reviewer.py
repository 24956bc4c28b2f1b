"""Per-file AI review: related-code lookup, prompt, completion, extraction.

FileReviewer turns one file into a persisted ReviewFile plus its Issues, and
fans out over many files with bounded concurrency. Failures are contained per
file: a failed completion marks only that file failed, and an unparseable
reply counts as a reviewed file with zero issues.
"""

from __future__ import annotations

import asyncio
import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Callable, Optional

from codenest_core.errors import ExtractionError
from codenest_core.extractor import extract_review_output
from codenest_core.prompts import build_messages
from codenest_core.providers.anthropic import AnthropicChatProvider
from codenest_core.providers.gemini import GeminiChatProvider
from codenest_core.providers.ollama import OllamaChatProvider
from codenest_core.providers.openai import OpenAIChatProvider
from codenest_store.models import (
    Issue,
    ReviewFile,
    ReviewFileStatus,
    ReviewResult,
    ReviewStatus,
    map_issue_severity,
    map_issue_type,
)

if TYPE_CHECKING:
    from codenest_core.config import ReviewSettings
    from codenest_core.interfaces import ChatProvider, SimilaritySearch
    from codenest_core.models import Chunk, SourceFile
    from codenest_store.base import ReviewStore
    from codenest_store.models import Review

logger = logging.getLogger(__name__)


def get_chat_provider(settings: ReviewSettings):
    kwargs = {"model": settings.model, "temperature": settings.temperature, "max_tokens": settings.max_tokens}
    if settings.provider == "anthropic":
        return AnthropicChatProvider(api_key=settings.anthropic_api_key, **kwargs)
    if settings.provider == "openai":
        return OpenAIChatProvider(api_key=settings.openai_api_key, **kwargs)
    if settings.provider == "gemini":
        return GeminiChatProvider(api_key=settings.gemini_api_key, **kwargs)
    if settings.provider == "ollama":
        return OllamaChatProvider(host=settings.ollama_host, **kwargs)
    raise ValueError(
        f"Unknown provider: {settings.provider!r}. Choose 'anthropic', 'openai', 'gemini' or 'ollama'."
    )


@dataclass(frozen=True)
class ReviewTarget:
    """A file that passed processing and is ready for analysis."""

    file: SourceFile
    content: str
    chunk_count: int = 0


@dataclass
class FileReviewResult:
    file: SourceFile
    review_file: Optional[ReviewFile] = None
    issues: list[Issue] = field(default_factory=list)
    error: str = ""

    @property
    def ok(self) -> bool:
        return not self.error


class FileReviewer:
    def __init__(
        self,
        chat: ChatProvider,
        store: ReviewStore,
        settings: ReviewSettings,
        search: Optional[SimilaritySearch] = None,
    ):
        self.chat = chat
        self.store = store
        self.settings = settings
        self.search = search
        self.prompt_style = settings.prompt_style or getattr(chat, "PROMPT_STYLE", "standard")

    @property
    def model_name(self) -> str:
        return getattr(self.chat, "model", "") or self.settings.model or ""

    # ------------------------------------------------------------------ #
    # Single file                                                          #
    # ------------------------------------------------------------------ #

    async def review_file(self, review: Review, target: ReviewTarget, diff_info: str = "") -> FileReviewResult:
        file = target.file
        record = ReviewFile(
            review_id=review.id,
            file_id=file.id,
            path=file.rel_path or file.path,
            status=ReviewFileStatus.RUNNING,
        )
        try:
            record = await self.store.create_review_file(record)
        except Exception as e:
            logger.error("Could not create review file for %s: %s", file.path, e)
            return FileReviewResult(file=file, error=f"could not create review file: {e}")

        similar = await self._find_similar(file, target.content)
        record.metadata = {
            "similar_chunk_ids": [c.id for c in similar],
            "similar_chunks": len(similar),
            "chunk_count": target.chunk_count,
        }

        messages = build_messages(
            path=record.path,
            language=file.language,
            content=target.content,
            similar=similar,
            diff_info=diff_info,
            style=self.prompt_style,
            max_chars=self.settings.max_chars_per_file,
        )
        try:
            raw = await self.chat.complete(messages, {"model": self.settings.model})
        except Exception as e:
            logger.warning("Review request failed for %s: %s", record.path, e)
            record.status = ReviewFileStatus.FAILED
            record.metadata["error"] = str(e)
            await self._save(record)
            return FileReviewResult(file=file, review_file=record, error=str(e) or e.__class__.__name__)

        try:
            output = extract_review_output(raw)
        except ExtractionError as e:
            logger.warning("No structured review in response for %s: %s", record.path, e)
            output = None
        except Exception:
            logger.exception("Could not extract review for %s; recording no issues", record.path)
            output = None

        issues: list[Issue] = []
        if output is not None:
            record.summary = output.summary
            record.assessment = output.overall_assessment
            for draft in output.issues:
                issue = Issue(
                    review_id=review.id,
                    file_id=file.id,
                    type=map_issue_type(draft.type),
                    severity=map_issue_severity(draft.severity),
                    title=draft.title,
                    description=draft.description,
                    line_start=draft.line_start,
                    line_end=draft.line_end,
                    suggestion=draft.suggestion,
                    affected_code=draft.affected_code,
                    code_snippet=draft.code_snippet,
                )
                try:
                    issues.append(await self.store.create_issue(issue))
                except Exception as e:
                    logger.warning("Could not save issue %r for %s: %s", draft.title, record.path, e)

        record.issues = issues
        record.issues_count = len(issues)
        record.status = ReviewFileStatus.COMPLETED
        await self._save(record)
        logger.info("Reviewed %s: %d issue(s)", record.path, len(issues))
        return FileReviewResult(file=file, review_file=record, issues=issues)

    async def _find_similar(self, file: SourceFile, content: str) -> list[Chunk]:
        if self.search is None or self.settings.similar_chunks <= 0:
            return []
        filters = {
            "workspace_id": file.workspace_id,
            "exclude_file_id": file.id,
            "limit": self.settings.similar_chunks,
            "min_similarity": self.settings.min_similarity,
        }
        try:
            return list(await self.search.find_similar(content, filters))
        except Exception as e:
            logger.warning("Similar code lookup failed for %s; reviewing without context: %s", file.path, e)
            return []

    async def _save(self, record: ReviewFile) -> None:
        try:
            await self.store.update_review_file(record)
        except Exception as e:
            logger.warning("Could not update review file %s: %s", record.path, e)

    # ------------------------------------------------------------------ #
    # Fan-out                                                              #
    # ------------------------------------------------------------------ #

    async def review_files(
        self,
        review: Review,
        targets: list[ReviewTarget],
        diff_info: str = "",
        cancel: Optional[asyncio.Event] = None,
        on_result: Optional[Callable[[FileReviewResult, int, int], None]] = None,
    ) -> tuple[list[FileReviewResult], bool]:
        """Review ``targets`` with at most ``max_concurrent_reviews`` in flight.

        Returns the finished results in completion order and whether the run
        was cancelled. Cancelling stops new work and aborts in-flight requests;
        results that already finished are kept.
        """
        semaphore = asyncio.Semaphore(self.settings.max_concurrent_reviews)
        lock = asyncio.Lock()
        results: list[FileReviewResult] = []

        async def _review(target: ReviewTarget) -> None:
            async with semaphore:
                if cancel is not None and cancel.is_set():
                    return
                result = await self.review_file(review, target, diff_info)
            async with lock:
                results.append(result)
                done = len(results)
            if on_result is not None:
                on_result(result, done, len(targets))

        tasks = [asyncio.create_task(_review(target)) for target in targets]
        if cancel is None:
            await asyncio.gather(*tasks)
            return results, False

        pending = set(tasks)
        waiter = asyncio.create_task(cancel.wait())
        try:
            while pending and not waiter.done():
                done, pending = await asyncio.wait(pending | {waiter}, return_when=asyncio.FIRST_COMPLETED)
                pending.discard(waiter)
        finally:
            waiter.cancel()

        if pending:
            logger.info("Review cancelled; aborting %d in-flight file review(s)", len(pending))
            for task in pending:
                task.cancel()
        outcomes = await asyncio.gather(*tasks, return_exceptions=True)
        for outcome in outcomes:
            if isinstance(outcome, Exception):
                raise outcome
        return results, cancel.is_set()

    # ------------------------------------------------------------------ #
    # Completion bookkeeping                                               #
    # ------------------------------------------------------------------ #

    async def complete_review(
        self,
        review: Review,
        results: list[FileReviewResult],
        processed_chunks: int = 0,
        execution_time: float = 0.0,
    ) -> Review:
        """Tally the review result, mark the review finished and persist it."""
        completed = [r for r in results if r.ok]
        issues = [issue for r in completed for issue in r.issues]
        by_type = Counter(issue.type.value for issue in issues)
        by_severity = Counter(issue.severity.value for issue in issues)

        review.result = ReviewResult(
            summary=f"Reviewed {len(completed)} file(s) and found {len(issues)} issue(s).",
            total_issues=len(issues),
            by_type=dict(by_type),
            by_severity=dict(by_severity),
            execution_time=execution_time,
            processed_files=len(completed),
            processed_chunks=processed_chunks,
            model=self.model_name,
        )
        review.status = ReviewStatus.COMPLETED if completed else ReviewStatus.FAILED
        return await self.store.update_review(review)
