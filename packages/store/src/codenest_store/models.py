"""Review data models.

Decoupled from codenest_core so the store layer can be used independently.
The core promotes extractor drafts into these records; the store only
persists and returns them.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum


def utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


def new_id() -> str:
    return uuid.uuid4().hex


class ReviewType(str, Enum):
    STAGED = "staged"
    COMMIT = "commit"
    BRANCH = "branch"


class ReviewStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


# Review files share the review lifecycle values.
ReviewFileStatus = ReviewStatus


class IssueType(str, Enum):
    BUG = "bug"
    SECURITY = "security"
    PERFORMANCE = "performance"
    DESIGN = "design"
    STYLE = "style"
    COMPLEXITY = "complexity"
    BEST_PRACTICE = "best_practice"


class IssueSeverity(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


def map_issue_type(value: str | None) -> IssueType:
    """Map a free-form type string to an IssueType; unknown values become BUG."""
    normalized = (value or "").strip().lower().replace("-", "_").replace(" ", "_")
    try:
        return IssueType(normalized)
    except ValueError:
        return IssueType.BUG


def map_issue_severity(value: str | None) -> IssueSeverity:
    """Map a free-form severity string to an IssueSeverity; unknown values become MEDIUM."""
    try:
        return IssueSeverity((value or "").strip().lower())
    except ValueError:
        return IssueSeverity.MEDIUM


@dataclass
class ReviewResult:
    """Aggregate numbers recorded on a review when it completes."""

    summary: str = ""
    total_issues: int = 0
    by_type: dict[str, int] = field(default_factory=dict)
    by_severity: dict[str, int] = field(default_factory=dict)
    execution_time: float = 0.0  # seconds
    processed_files: int = 0
    processed_chunks: int = 0
    model: str = ""

    def is_empty(self) -> bool:
        return not self.summary and self.total_issues == 0 and not self.model


@dataclass
class Review:
    workspace_id: str
    review_type: ReviewType
    commit_hash: str = ""
    branch_from: str = ""
    branch_to: str = ""
    status: ReviewStatus = ReviewStatus.PENDING
    result: ReviewResult = field(default_factory=ReviewResult)
    id: str = field(default_factory=new_id)
    created_at: str = field(default_factory=utcnow)
    updated_at: str = field(default_factory=utcnow)


@dataclass
class Issue:
    """A single issue found in one file of a review."""

    review_id: str
    file_id: str
    type: IssueType
    severity: IssueSeverity
    title: str
    description: str = ""
    line_start: int = 0
    line_end: int = 0
    suggestion: str = ""
    affected_code: str = ""
    code_snippet: str = ""
    is_valid: bool = False
    id: str = field(default_factory=new_id)
    created_at: str = field(default_factory=utcnow)
    updated_at: str = field(default_factory=utcnow)


@dataclass
class ReviewFile:
    review_id: str
    file_id: str
    path: str = ""
    status: ReviewFileStatus = ReviewFileStatus.PENDING
    issues_count: int = 0
    summary: str = ""
    assessment: str = ""
    metadata: dict = field(default_factory=dict)
    issues: list[Issue] = field(default_factory=list)
    id: str = field(default_factory=new_id)
    created_at: str = field(default_factory=utcnow)
    updated_at: str = field(default_factory=utcnow)