"""Tests for codenest-store models and the in-memory store."""

from __future__ import annotations

from dataclasses import fields

import pytest

from codenest_store.memory import MemoryStore
from codenest_store.models import (
    Issue,
    IssueSeverity,
    IssueType,
    Review,
    ReviewFile,
    ReviewStatus,
    ReviewType,
    map_issue_severity,
    map_issue_type,
)


def _make_review(workspace_id="ws-1", review_type=ReviewType.STAGED):
    return Review(workspace_id=workspace_id, review_type=review_type)


def _make_issue(review_id, file_id="file-1", title="Missing null check"):
    return Issue(
        review_id=review_id,
        file_id=file_id,
        type=IssueType.BUG,
        severity=IssueSeverity.HIGH,
        title=title,
        line_start=42,
        line_end=44,
    )


# ---------------------------------------------------------------------------
# Mapping helpers
# ---------------------------------------------------------------------------


class TestIssueMapping:
    def test_known_type_maps_to_enum(self):
        assert map_issue_type("security") is IssueType.SECURITY

    def test_type_is_case_and_separator_insensitive(self):
        assert map_issue_type("Best-Practice") is IssueType.BEST_PRACTICE
        assert map_issue_type("best practice") is IssueType.BEST_PRACTICE

    def test_unknown_type_falls_back_to_bug(self):
        assert map_issue_type("unknown") is IssueType.BUG
        assert map_issue_type(None) is IssueType.BUG

    def test_unknown_severity_falls_back_to_medium(self):
        assert map_issue_severity("blocker") is IssueSeverity.MEDIUM
        assert map_issue_severity("") is IssueSeverity.MEDIUM

    def test_severity_is_case_insensitive(self):
        assert map_issue_severity(" CRITICAL ") is IssueSeverity.CRITICAL


class TestModels:
    def test_review_defaults(self):
        review = _make_review()
        assert review.status is ReviewStatus.PENDING
        assert review.result.is_empty()
        assert review.id

    def test_ids_are_unique(self):
        assert _make_review().id != _make_review().id

    def test_issue_validity_defaults_to_false(self):
        assert _make_issue("r1").is_valid is False


# ---------------------------------------------------------------------------
# MemoryStore
# ---------------------------------------------------------------------------


class TestMemoryStore:
    @pytest.mark.asyncio
    async def test_create_and_get_review(self):
        store = MemoryStore()
        review = await store.create_review(_make_review())
        assert await store.get_review(review.id) is review

    @pytest.mark.asyncio
    async def test_get_unknown_review_raises_key_error(self):
        with pytest.raises(KeyError):
            await MemoryStore().get_review("missing")

    @pytest.mark.asyncio
    async def test_update_review_persists_status(self):
        store = MemoryStore()
        review = await store.create_review(_make_review())
        review.status = ReviewStatus.COMPLETED
        await store.update_review(review)
        assert (await store.get_review(review.id)).status is ReviewStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_update_unknown_review_raises(self):
        with pytest.raises(KeyError):
            await MemoryStore().update_review(_make_review())

    @pytest.mark.asyncio
    async def test_review_file_requires_existing_review(self):
        with pytest.raises(KeyError):
            await MemoryStore().create_review_file(ReviewFile(review_id="nope", file_id="f1"))

    @pytest.mark.asyncio
    async def test_update_review_file_touches_timestamp(self):
        store = MemoryStore()
        review = await store.create_review(_make_review())
        record = await store.create_review_file(ReviewFile(review_id=review.id, file_id="a", updated_at="old"))

        updated = await store.update_review_file(record)

        assert updated.updated_at != "old"
        assert "updated_at" in {f.name for f in fields(ReviewFile)}

    @pytest.mark.asyncio
    async def test_list_review_files_filters_by_review(self):
        store = MemoryStore()
        first = await store.create_review(_make_review())
        second = await store.create_review(_make_review())
        await store.create_review_file(ReviewFile(review_id=first.id, file_id="a"))
        await store.create_review_file(ReviewFile(review_id=first.id, file_id="b"))
        await store.create_review_file(ReviewFile(review_id=second.id, file_id="c"))

        files = await store.list_review_files(first.id)
        assert [f.file_id for f in files] == ["a", "b"]

    @pytest.mark.asyncio
    async def test_list_review_files_empty(self):
        assert await MemoryStore().list_review_files("nothing") == []

    @pytest.mark.asyncio
    async def test_list_issues_by_file(self):
        store = MemoryStore()
        review = await store.create_review(_make_review())
        await store.create_issue(_make_issue(review.id, file_id="a"))
        await store.create_issue(_make_issue(review.id, file_id="b"))

        assert len(await store.list_issues(review.id)) == 2
        only_a = await store.list_issues(review.id, file_id="a")
        assert [i.file_id for i in only_a] == ["a"]

    @pytest.mark.asyncio
    async def test_set_issue_validity(self):
        store = MemoryStore()
        review = await store.create_review(_make_review())
        issue = await store.create_issue(_make_issue(review.id))

        updated = await store.set_issue_validity(issue.id, True)
        assert updated.is_valid is True
        assert (await store.list_issues(review.id))[0].is_valid is True

    @pytest.mark.asyncio
    async def test_set_validity_of_unknown_issue_raises(self):
        with pytest.raises(KeyError):
            await MemoryStore().set_issue_validity("missing", True)

    @pytest.mark.asyncio
    async def test_close_is_safe(self):
        await MemoryStore().close()
