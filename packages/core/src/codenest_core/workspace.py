"""Local-filesystem workspace, file store and chunker."""

from __future__ import annotations

import asyncio
import hashlib
import logging
from pathlib import Path

from codenest_core.errors import DiscoveryError
from codenest_core.models import Chunk, ChunkType, SourceFile, Workspace
from codenest_core.utils.code import detect_language

logger = logging.getLogger(__name__)


def _digest(*parts: str) -> str:
    return hashlib.sha1("\x00".join(parts).encode("utf-8")).hexdigest()[:16]


class LocalWorkspaceResolver:
    async def resolve(self, path: str) -> Workspace:
        root = Path(path).expanduser().resolve()
        if not root.is_dir():
            raise DiscoveryError(f"not a directory: {root}")
        return Workspace(id=_digest(str(root)), name=root.name, path=str(root))


class LocalFileStore:
    """Registry of workspace files, addressed by a stable id."""

    def __init__(self) -> None:
        self._files: dict[str, SourceFile] = {}

    def register(self, workspace: Workspace, rel_path: str) -> SourceFile:
        file = SourceFile(
            id=_digest(workspace.id, rel_path),
            workspace_id=workspace.id,
            path=str(Path(workspace.path) / rel_path),
            rel_path=rel_path,
            language=detect_language(rel_path),
        )
        self._files[file.id] = file
        return file

    async def get_file(self, file_id: str) -> SourceFile:
        try:
            return self._files[file_id]
        except KeyError:
            raise KeyError(f"file not found: {file_id}") from None

    async def read_content(self, path: str) -> bytes:
        return await asyncio.to_thread(Path(path).read_bytes)


class LineWindowChunker:
    """Split a file into one whole-file chunk, or fixed line windows when it is long."""

    def __init__(self, max_lines: int = 80):
        self.max_lines = max(max_lines, 1)

    def chunk(self, file: SourceFile, content: bytes) -> list[Chunk]:
        text = content.decode("utf-8", errors="replace")
        lines = text.splitlines()
        if not lines:
            return []

        name = file.rel_path or Path(file.path).name
        if len(lines) <= self.max_lines:
            return [self._make(file, ChunkType.FILE, name, text, 1, len(lines))]

        chunks = []
        for start in range(0, len(lines), self.max_lines):
            window = lines[start : start + self.max_lines]
            first, last = start + 1, start + len(window)
            chunks.append(self._make(file, ChunkType.BLOCK, f"{name}:{first}-{last}", "\n".join(window), first, last))
        logger.debug("Split %s into %d chunk(s)", name, len(chunks))
        return chunks

    @staticmethod
    def _make(file: SourceFile, chunk_type: ChunkType, name: str, content: str, start: int, end: int) -> Chunk:
        return Chunk(
            id=_digest(file.id, str(start), str(end)),
            workspace_id=file.workspace_id,
            file_id=file.id,
            path=file.path,
            chunk_type=chunk_type,
            name=name,
            content=content,
            start_line=start,
            end_line=end,
            language=file.language,
        )
