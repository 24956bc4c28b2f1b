"""Events emitted by the review orchestrator to its caller.

A review produces any number of progress events followed by exactly one
terminal event: ReviewCompleted or ReviewFailed.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Union

from codenest_core.models import Phase

if TYPE_CHECKING:
    from codenest_store.models import Issue, Review, ReviewFile


@dataclass(frozen=True)
class PhaseChanged:
    phase: Phase
    previous: Phase


@dataclass(frozen=True)
class FileProgress:
    """One file finished a stage. ``error`` is empty on success."""

    current: int
    total: int
    path: str
    error: str = ""
    phase: Phase = Phase.PROCESSING_FILES


@dataclass(frozen=True)
class EmbeddingProgress:
    batch: int
    total_batches: int
    embedded_chunks: int
    error: str = ""


@dataclass(frozen=True)
class ReviewCompleted:
    """Terminal success.

    ``failed_files`` lists the paths that could not be processed or reviewed,
    so an empty ``issues`` list can be told apart from a review where every
    file failed. ``completion_error`` carries a bookkeeping failure that did
    not prevent the results from being returned.
    """

    review: Review | None
    files: tuple[ReviewFile, ...] = ()
    issues: tuple[Issue, ...] = ()
    failed_files: tuple[str, ...] = ()
    cancelled: bool = False
    completion_error: str = ""
    terminal: bool = field(default=True, init=False)


@dataclass(frozen=True)
class ReviewFailed:
    error: str
    terminal: bool = field(default=True, init=False)


ReviewEvent = Union[PhaseChanged, FileProgress, EmbeddingProgress, ReviewCompleted, ReviewFailed]
