"""Collaborator contracts consumed by the review pipeline.

Every I/O method is a coroutine and raises on failure. The default
implementations live in workspace.py, git/changes.py, rag.py and
providers/; tests substitute small stubs.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from codenest_core.models import Chunk, SourceFile, Workspace
    from codenest_store.models import ReviewType

# A chat message: {"role": "system" | "user" | "assistant", "content": str}
Message = dict[str, str]


@runtime_checkable
class WorkspaceResolver(Protocol):
    async def resolve(self, path: str) -> Workspace:
        """Get or create the workspace rooted at ``path``."""


@runtime_checkable
class ChangeDiscovery(Protocol):
    async def resolve_files(self, workspace: Workspace, mode: ReviewType, target: str, base: str) -> list[str]:
        """Return the ids of the files changed by ``mode``, in a stable order."""


@runtime_checkable
class FileStore(Protocol):
    async def get_file(self, file_id: str) -> SourceFile: ...

    async def read_content(self, path: str) -> bytes: ...


@runtime_checkable
class Chunker(Protocol):
    def chunk(self, file: SourceFile, content: bytes) -> list[Chunk]: ...


@runtime_checkable
class EmbeddingProvider(Protocol):
    async def embed(self, chunks: list[Chunk]) -> None:
        """Generate and store embeddings for ``chunks``."""


@runtime_checkable
class SimilaritySearch(Protocol):
    async def find_similar(self, content: str, filters: dict[str, Any]) -> list[Chunk]: ...


@runtime_checkable
class ChatProvider(Protocol):
    async def complete(self, messages: list[Message], params: dict[str, Any] | None = None) -> str: ...
