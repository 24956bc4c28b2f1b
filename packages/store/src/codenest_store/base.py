"""Abstract store interface.

Any storage backend (SQLite, Postgres, a remote API) implements this
interface. The core review pipeline depends on ReviewStore, not on a
concrete backend, so backends are swappable without touching the pipeline.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from codenest_store.models import Issue, Review, ReviewFile


class ReviewStore(ABC):
    """Pluggable persistence layer for reviews, review files and issues.

    All methods are coroutines: real backends do network or disk I/O and the
    review pipeline awaits them from its worker tasks. Lookups of unknown ids
    raise KeyError.
    """

    @abstractmethod
    async def create_review(self, review: Review) -> Review:
        """Persist a new review and return it."""

    @abstractmethod
    async def update_review(self, review: Review) -> Review:
        """Persist changes to an existing review (status, result)."""

    @abstractmethod
    async def get_review(self, review_id: str) -> Review:
        """Return a review by id."""

    @abstractmethod
    async def create_review_file(self, review_file: ReviewFile) -> ReviewFile:
        """Persist a new per-file review record."""

    @abstractmethod
    async def update_review_file(self, review_file: ReviewFile) -> ReviewFile:
        """Persist changes to a per-file review record."""

    @abstractmethod
    async def list_review_files(self, review_id: str) -> list[ReviewFile]:
        """Return every file record of a review, in creation order.

        Returns an empty list if the review has no files; never raises.
        """

    @abstractmethod
    async def create_issue(self, issue: Issue) -> Issue:
        """Persist a single issue."""

    @abstractmethod
    async def list_issues(self, review_id: str, file_id: str | None = None) -> list[Issue]:
        """Return issues of a review, optionally restricted to one file."""

    @abstractmethod
    async def set_issue_validity(self, issue_id: str, valid: bool) -> Issue:
        """Record the user's accept/reject decision for an issue."""

    async def close(self) -> None:
        """Release any resources held by the store (connections, file handles).

        Optional; subclasses that need cleanup should override this.
        Default is a no-op so callers can always call close() safely.
        """
