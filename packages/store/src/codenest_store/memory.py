"""In-memory store, the default when no persistent backend is configured.

Records live for the duration of the process. The CLI uses it for one-shot
reviews where results are printed and then discarded.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from codenest_store.base import ReviewStore
from codenest_store.models import utcnow

if TYPE_CHECKING:
    from codenest_store.models import Issue, Review, ReviewFile

logger = logging.getLogger(__name__)


class MemoryStore(ReviewStore):
    """Dict-backed ReviewStore, zero configuration required."""

    def __init__(self) -> None:
        self._reviews: dict[str, Review] = {}
        self._review_files: dict[str, ReviewFile] = {}
        self._issues: dict[str, Issue] = {}

    async def create_review(self, review: Review) -> Review:
        self._reviews[review.id] = review
        logger.debug("Created review %s (%s)", review.id, review.review_type.value)
        return review

    async def update_review(self, review: Review) -> Review:
        if review.id not in self._reviews:
            raise KeyError(f"review not found: {review.id}")
        review.updated_at = utcnow()
        self._reviews[review.id] = review
        return review

    async def get_review(self, review_id: str) -> Review:
        try:
            return self._reviews[review_id]
        except KeyError:
            raise KeyError(f"review not found: {review_id}") from None

    async def create_review_file(self, review_file: ReviewFile) -> ReviewFile:
        if review_file.review_id not in self._reviews:
            raise KeyError(f"review not found: {review_file.review_id}")
        self._review_files[review_file.id] = review_file
        return review_file

    async def update_review_file(self, review_file: ReviewFile) -> ReviewFile:
        if review_file.id not in self._review_files:
            raise KeyError(f"review file not found: {review_file.id}")
        review_file.updated_at = utcnow()
        self._review_files[review_file.id] = review_file
        return review_file

    async def list_review_files(self, review_id: str) -> list[ReviewFile]:
        return [rf for rf in self._review_files.values() if rf.review_id == review_id]

    async def create_issue(self, issue: Issue) -> Issue:
        self._issues[issue.id] = issue
        return issue

    async def list_issues(self, review_id: str, file_id: str | None = None) -> list[Issue]:
        return [
            issue
            for issue in self._issues.values()
            if issue.review_id == review_id and (file_id is None or issue.file_id == file_id)
        ]

    async def set_issue_validity(self, issue_id: str, valid: bool) -> Issue:
        try:
            issue = self._issues[issue_id]
        except KeyError:
            raise KeyError(f"issue not found: {issue_id}") from None
        issue.is_valid = valid
        issue.updated_at = utcnow()
        return issue
