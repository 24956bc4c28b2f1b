"""Review orchestrator: the state machine that drives one review end to end.

    Idle → ResolvingWorkspace → Ready → SettingUp → ProcessingFiles
         → GeneratingEmbeddings → AnalyzingCode → ViewingResult | Error

The orchestrator is an actor. A single control loop consumes immutable
messages from an asyncio.Queue and is the only code that mutates the
ReviewSession. Every stage's I/O runs in a detached worker task that reports
back by posting a message; workers never touch session state.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, AsyncIterator, Callable, Optional

from codenest_core.errors import ReviewConfigError
from codenest_core.events import (
    EmbeddingProgress,
    FileProgress,
    PhaseChanged,
    ReviewCompleted,
    ReviewFailed,
)
from codenest_core.models import STARTABLE_PHASES, FileTask, Phase, ReviewSession, TaskStatus
from codenest_core.reviewer import ReviewTarget
from codenest_store.models import Review, ReviewStatus, ReviewType

if TYPE_CHECKING:
    from codenest_core.embeddings import BatchReport, EmbeddingBatchProcessor, EmbeddingOutcome
    from codenest_core.events import ReviewEvent
    from codenest_core.interfaces import ChangeDiscovery, Chunker, FileStore, WorkspaceResolver
    from codenest_core.models import Chunk, ReviewOptions, SourceFile, Workspace
    from codenest_core.reviewer import FileReviewer, FileReviewResult
    from codenest_store.base import ReviewStore
    from codenest_store.models import Issue

logger = logging.getLogger(__name__)

CANCELLED = "review cancelled"


# --------------------------------------------------------------------------- #
# Internal messages                                                           #
# --------------------------------------------------------------------------- #


@dataclass(frozen=True)
class _Start:
    pass


@dataclass(frozen=True)
class _WorkspaceResolved:
    workspace: Workspace


@dataclass(frozen=True)
class _SetupDone:
    files: tuple[SourceFile, ...]


@dataclass(frozen=True)
class _FileProcessed:
    index: int
    chunks: tuple[Chunk, ...] = ()
    content: str = ""
    error: str = ""


@dataclass(frozen=True)
class _EmbeddingBatchDone:
    report: BatchReport


@dataclass(frozen=True)
class _EmbeddingsDone:
    outcome: EmbeddingOutcome


@dataclass(frozen=True)
class _FileReviewed:
    result: FileReviewResult
    done: int
    total: int


@dataclass(frozen=True)
class _AnalysisDone:
    review: Review
    results: tuple[FileReviewResult, ...]
    cancelled: bool
    completion_error: str = ""


@dataclass(frozen=True)
class _IssueValidityChanged:
    issue: Issue


@dataclass(frozen=True)
class _StageFailed:
    error: str


# --------------------------------------------------------------------------- #
# Orchestrator                                                                #
# --------------------------------------------------------------------------- #


class ReviewOrchestrator:
    def __init__(
        self,
        resolver: WorkspaceResolver,
        discovery: ChangeDiscovery,
        file_store: FileStore,
        chunker: Chunker,
        embeddings: EmbeddingBatchProcessor,
        reviewer: FileReviewer,
        store: ReviewStore,
    ):
        self.resolver = resolver
        self.discovery = discovery
        self.file_store = file_store
        self.chunker = chunker
        self.embeddings = embeddings
        self.reviewer = reviewer
        self.store = store

        self.phase = Phase.IDLE
        self.workspace: Optional[Workspace] = None
        self.session: Optional[ReviewSession] = None
        self._workspace_dir: Optional[str] = None
        self._inbox: Optional[asyncio.Queue] = None
        self._cancel = asyncio.Event()
        self._workers: set[asyncio.Task] = set()
        self._started_at = 0.0

    # ------------------------------------------------------------------ #
    # Public interface                                                     #
    # ------------------------------------------------------------------ #

    async def start_review(
        self, options: ReviewOptions, cancel: Optional[asyncio.Event] = None
    ) -> AsyncIterator[ReviewEvent]:
        """Run one review, yielding progress events and then exactly one terminal event.

        ``cancel`` may be set at any time. Before analysis starts this ends the
        review with ReviewFailed; during analysis the files reviewed so far are
        returned in a ReviewCompleted with ``cancelled=True``.
        """
        if self.phase not in STARTABLE_PHASES:
            raise ReviewConfigError(f"cannot start a review while {self.phase.value}")

        inbox: asyncio.Queue = asyncio.Queue()
        self._inbox = inbox
        self._cancel = cancel if cancel is not None else asyncio.Event()
        self.session = ReviewSession(options=options)
        self._started_at = time.monotonic()
        inbox.put_nowait(_Start())

        try:
            while True:
                message = await inbox.get()
                for event in self._update(message):
                    yield event
                    if isinstance(event, (ReviewCompleted, ReviewFailed)):
                        return
        finally:
            for task in list(self._workers):
                task.cancel()
            if self.phase not in STARTABLE_PHASES:
                # The consumer stopped iterating before a terminal event.
                self._set_phase(Phase.ERROR)

    async def run_review(
        self,
        options: ReviewOptions,
        cancel: Optional[asyncio.Event] = None,
        on_event: Optional[Callable[[ReviewEvent], None]] = None,
    ) -> ReviewCompleted | ReviewFailed:
        """Consume start_review() and return its terminal event."""
        terminal = None
        async for event in self.start_review(options, cancel):
            if on_event is not None:
                on_event(event)
            terminal = event
        return terminal

    async def set_issue_validity(self, issue_id: str, valid: bool) -> Issue:
        """Persist the user's accept/reject decision for an issue of the current review."""
        issue = await self.store.set_issue_validity(issue_id, valid)
        self._update(_IssueValidityChanged(issue))
        return issue

    # ------------------------------------------------------------------ #
    # Message handler: the only place session state changes                #
    # ------------------------------------------------------------------ #

    def _update(self, message) -> list[ReviewEvent]:
        session = self.session
        events: list[ReviewEvent] = []

        if isinstance(message, _Start):
            if self.workspace is not None and self._workspace_dir == session.options.target_dir:
                session.workspace = self.workspace
                events.append(self._set_phase(Phase.READY))
                events += self._begin_setup()
            else:
                events.append(self._set_phase(Phase.RESOLVING_WORKSPACE))
                self._spawn(self._resolve_workspace(session.options.target_dir))

        elif isinstance(message, _WorkspaceResolved):
            self.workspace = message.workspace
            self._workspace_dir = session.options.target_dir
            session.workspace = message.workspace
            events.append(self._set_phase(Phase.READY))
            events += self._begin_setup()

        elif isinstance(message, _SetupDone):
            if self._cancel.is_set():
                return events + self._fail(CANCELLED)
            session.tasks = [FileTask(file=f) for f in message.files]
            events.append(self._set_phase(Phase.PROCESSING_FILES))
            self._spawn(self._process_file(0, session.tasks[0].file))

        elif isinstance(message, _FileProcessed):
            task = session.tasks[message.index]
            if message.error:
                task.status = TaskStatus.FAILED
                task.error = message.error
            else:
                task.status = TaskStatus.DONE
                task.content = message.content
                task.chunk_count = len(message.chunks)
                session.chunks.extend(message.chunks)
            events.append(
                FileProgress(
                    current=message.index + 1,
                    total=len(session.tasks),
                    path=task.path,
                    error=message.error,
                    phase=Phase.PROCESSING_FILES,
                )
            )
            if self._cancel.is_set():
                return events + self._fail(CANCELLED)
            next_index = message.index + 1
            if next_index < len(session.tasks):
                self._spawn(self._process_file(next_index, session.tasks[next_index].file))
            else:
                events += self._begin_embeddings()

        elif isinstance(message, _EmbeddingBatchDone):
            report = message.report
            events.append(
                EmbeddingProgress(
                    batch=report.batch,
                    total_batches=report.total_batches,
                    embedded_chunks=report.embedded_chunks,
                    error=report.error,
                )
            )

        elif isinstance(message, _EmbeddingsDone):
            outcome = message.outcome
            if not outcome.succeeded:
                return events + self._fail(f"embedding generation failed: {outcome.first_error}")
            if self._cancel.is_set():
                return events + self._fail(CANCELLED)
            events += self._begin_analysis()

        elif isinstance(message, _FileReviewed):
            result = message.result
            events.append(
                FileProgress(
                    current=message.done,
                    total=message.total,
                    path=result.file.rel_path or result.file.path,
                    error=result.error,
                    phase=Phase.ANALYZING_CODE,
                )
            )

        elif isinstance(message, _AnalysisDone):
            session.review = message.review
            session.review_files = [r.review_file for r in message.results if r.review_file is not None]
            session.issues = [issue for r in message.results for issue in r.issues]
            failed = [t.file.rel_path or t.path for t in session.failed_tasks()]
            failed += [r.file.rel_path or r.file.path for r in message.results if not r.ok]
            events.append(self._set_phase(Phase.VIEWING_RESULT))
            events.append(
                ReviewCompleted(
                    review=message.review,
                    files=tuple(session.review_files),
                    issues=tuple(session.issues),
                    failed_files=tuple(failed),
                    cancelled=message.cancelled,
                    completion_error=message.completion_error,
                )
            )

        elif isinstance(message, _IssueValidityChanged):
            if session is not None:
                for issue in session.issues:
                    if issue.id == message.issue.id:
                        issue.is_valid = message.issue.is_valid

        elif isinstance(message, _StageFailed):
            events += self._fail(message.error)

        return events

    def _set_phase(self, phase: Phase) -> PhaseChanged:
        previous, self.phase = self.phase, phase
        if self.session is not None:
            self.session.phase = phase
        logger.debug("Review phase %s -> %s", previous.value, phase.value)
        return PhaseChanged(phase=phase, previous=previous)

    def _fail(self, error: str) -> list[ReviewEvent]:
        logger.error("Review failed: %s", error)
        self.session.error = error
        return [self._set_phase(Phase.ERROR), ReviewFailed(error=error)]

    def _begin_setup(self) -> list[ReviewEvent]:
        events: list[ReviewEvent] = [self._set_phase(Phase.SETTING_UP)]
        if self._cancel.is_set():
            return events + self._fail(CANCELLED)
        try:
            mode, target, base = self.session.options.resolve_mode()
        except ReviewConfigError as e:
            return events + self._fail(str(e))
        self.session.mode = mode
        self._spawn(self._setup(self.session.workspace, mode, target, base))
        return events

    def _begin_embeddings(self) -> list[ReviewEvent]:
        events: list[ReviewEvent] = [self._set_phase(Phase.GENERATING_EMBEDDINGS)]
        if not self.session.chunks:
            logger.info("No chunks to embed; skipping embedding generation")
            return events + self._begin_analysis()
        self._spawn(self._embed(list(self.session.chunks)))
        return events

    def _begin_analysis(self) -> list[ReviewEvent]:
        session = self.session
        targets = [ReviewTarget(file=t.file, content=t.content, chunk_count=t.chunk_count) for t in session.done_tasks()]
        review = Review(workspace_id=session.workspace.id, review_type=session.mode, status=ReviewStatus.RUNNING)
        _, target, base = session.options.resolve_mode()
        if session.mode is ReviewType.COMMIT:
            review.commit_hash = target
        elif session.mode is ReviewType.BRANCH:
            review.branch_from, review.branch_to = base, target
        self._spawn(self._analyze(review, targets, session.options.diff_info(), len(session.chunks)))
        return [self._set_phase(Phase.ANALYZING_CODE)]

    # ------------------------------------------------------------------ #
    # Workers: perform I/O and post results, never mutate session state    #
    # ------------------------------------------------------------------ #

    def _spawn(self, coro) -> None:
        inbox = self._inbox

        async def _run() -> None:
            try:
                await coro
            except Exception as e:
                logger.exception("Review worker failed")
                inbox.put_nowait(_StageFailed(str(e) or e.__class__.__name__))

        task = asyncio.create_task(_run())
        self._workers.add(task)
        task.add_done_callback(self._workers.discard)

    async def _resolve_workspace(self, path: str) -> None:
        inbox = self._inbox
        try:
            workspace = await self.resolver.resolve(path)
        except Exception as e:
            inbox.put_nowait(_StageFailed(f"could not resolve workspace {path}: {e}"))
            return
        inbox.put_nowait(_WorkspaceResolved(workspace))

    async def _setup(self, workspace: Workspace, mode: ReviewType, target: str, base: str) -> None:
        inbox = self._inbox
        try:
            file_ids = await self.discovery.resolve_files(workspace, mode, target, base)
        except Exception as e:
            inbox.put_nowait(_StageFailed(f"could not discover changed files: {e}"))
            return
        if not file_ids:
            inbox.put_nowait(_StageFailed("no files found for review"))
            return

        files = []
        for file_id in file_ids:
            try:
                files.append(await self.file_store.get_file(file_id))
            except Exception as e:
                logger.warning("Skipping file %s: %s", file_id, e)
        if not files:
            inbox.put_nowait(_StageFailed("none of the changed files could be loaded"))
            return
        inbox.put_nowait(_SetupDone(tuple(files)))

    async def _process_file(self, index: int, file: SourceFile) -> None:
        inbox = self._inbox
        try:
            content = await self.file_store.read_content(file.path)
            chunks = self.chunker.chunk(file, content)
        except Exception as e:
            logger.warning("Could not process %s: %s", file.path, e)
            inbox.put_nowait(_FileProcessed(index, error=str(e) or e.__class__.__name__))
            return
        text = content.decode("utf-8", errors="replace")
        inbox.put_nowait(_FileProcessed(index, chunks=tuple(chunks), content=text))

    async def _embed(self, chunks: list[Chunk]) -> None:
        inbox = self._inbox
        outcome = await self.embeddings.process(
            chunks, on_batch=lambda report: inbox.put_nowait(_EmbeddingBatchDone(report))
        )
        inbox.put_nowait(_EmbeddingsDone(outcome))

    async def _analyze(self, review: Review, targets: list[ReviewTarget], diff_info: str, chunk_count: int) -> None:
        inbox = self._inbox
        try:
            review = await self.store.create_review(review)
        except Exception as e:
            logger.error("Could not create review record: %s", e)
            inbox.put_nowait(_StageFailed(f"could not create review: {e}"))
            return

        results, cancelled = await self.reviewer.review_files(
            review,
            targets,
            diff_info=diff_info,
            cancel=self._cancel,
            on_result=lambda result, done, total: inbox.put_nowait(_FileReviewed(result, done, total)),
        )

        completion_error = ""
        try:
            review = await self.reviewer.complete_review(
                review,
                results,
                processed_chunks=chunk_count,
                execution_time=time.monotonic() - self._started_at,
            )
        except Exception as e:
            logger.error("Could not complete review %s: %s", review.id, e)
            completion_error = f"could not complete review: {e}"

        inbox.put_nowait(_AnalysisDone(review, tuple(results), cancelled, completion_error))
