"""Review session data models owned by the orchestrator."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

from codenest_core.errors import ReviewConfigError
from codenest_store.models import ReviewType

if TYPE_CHECKING:
    from codenest_store.models import Issue, Review, ReviewFile


class Phase(str, Enum):
    IDLE = "idle"
    RESOLVING_WORKSPACE = "resolving_workspace"
    READY = "ready"
    SETTING_UP = "setting_up"
    PROCESSING_FILES = "processing_files"
    GENERATING_EMBEDDINGS = "generating_embeddings"
    ANALYZING_CODE = "analyzing_code"
    VIEWING_RESULT = "viewing_result"
    ERROR = "error"


# A new review may only start from one of these phases.
STARTABLE_PHASES = frozenset({Phase.IDLE, Phase.READY, Phase.VIEWING_RESULT, Phase.ERROR})


class TaskStatus(str, Enum):
    PENDING = "pending"
    DONE = "done"
    FAILED = "failed"


class ChunkType(str, Enum):
    FILE = "file"
    BLOCK = "block"


@dataclass(frozen=True)
class Workspace:
    id: str
    name: str
    path: str


@dataclass(frozen=True)
class SourceFile:
    id: str
    workspace_id: str
    path: str  # absolute
    rel_path: str
    language: str


@dataclass(frozen=True)
class Chunk:
    """A semantic unit of a source file, the granularity of embeddings."""

    id: str
    workspace_id: str
    file_id: str
    path: str
    chunk_type: ChunkType
    name: str
    content: str
    start_line: int
    end_line: int
    language: str = ""


@dataclass
class ReviewOptions:
    """What to review. At most one of staged / commit_hash / branch may be set."""

    target_dir: str = "."
    staged: bool = False
    commit_hash: str = ""
    branch: str = ""
    base_branch: str = "main"

    def resolve_mode(self) -> tuple[ReviewType, str, str]:
        """Return (mode, target, base) or raise ReviewConfigError.

        Selecting no mode at all reviews staged changes.
        """
        selected = [bool(self.staged), bool(self.commit_hash), bool(self.branch)]
        if sum(selected) > 1:
            raise ReviewConfigError("choose only one of staged, commit or branch")
        if self.commit_hash:
            return ReviewType.COMMIT, self.commit_hash, ""
        if self.branch:
            return ReviewType.BRANCH, self.branch, self.base_branch or "main"
        return ReviewType.STAGED, "", ""

    def diff_info(self) -> str:
        mode, target, base = self.resolve_mode()
        if mode is ReviewType.COMMIT:
            return f"Changes from commit {target}"
        if mode is ReviewType.BRANCH:
            return f"Changes between branches {base}...{target}"
        return "Staged changes"


@dataclass
class FileTask:
    file: SourceFile
    status: TaskStatus = TaskStatus.PENDING
    chunk_count: int = 0
    error: str = ""
    # Decoded file content, kept for the analysis stage.
    content: str = field(default="", repr=False)

    @property
    def path(self) -> str:
        return self.file.path


@dataclass
class ReviewSession:
    """State of one review. Mutated only by the orchestrator's message handler."""

    options: ReviewOptions
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    phase: Phase = Phase.IDLE
    workspace: Workspace | None = None
    mode: ReviewType | None = None
    tasks: list[FileTask] = field(default_factory=list)
    chunks: list[Chunk] = field(default_factory=list)
    review: Review | None = None
    review_files: list[ReviewFile] = field(default_factory=list)
    issues: list[Issue] = field(default_factory=list)
    error: str = ""

    def done_tasks(self) -> list[FileTask]:
        return [t for t in self.tasks if t.status is TaskStatus.DONE]

    def failed_tasks(self) -> list[FileTask]:
        return [t for t in self.tasks if t.status is TaskStatus.FAILED]
