"""Retrieval context: embedding client and an in-memory similarity index."""

from __future__ import annotations

import logging
import math
from typing import TYPE_CHECKING, Any, Optional

try:
    from openai import AsyncOpenAI as _AsyncOpenAI
except ImportError:
    _AsyncOpenAI = None  # type: ignore[assignment,misc]

if TYPE_CHECKING:
    from codenest_core.models import Chunk

logger = logging.getLogger(__name__)

# Characters of a chunk sent to the embedding model.
MAX_EMBED_CHARS = 8000


class OpenAIEmbeddingClient:
    MODEL = "text-embedding-3-small"

    def __init__(self, api_key: Optional[str], model: Optional[str] = None, base_url: Optional[str] = None):
        if _AsyncOpenAI is None:
            raise ImportError(
                "The 'openai' package is required for embeddings. " "Install it with: pip install openai"
            )
        self.model = model or self.MODEL
        self.client = _AsyncOpenAI(api_key=api_key, base_url=base_url)

    async def embed_texts(self, texts: list[str]) -> list[list[float]]:
        response = await self.client.embeddings.create(model=self.model, input=texts)
        return [item.embedding for item in response.data]


def cosine_similarity(a: list[float], b: list[float]) -> float:
    dot = sum(x * y for x, y in zip(a, b))
    norm = math.sqrt(sum(x * x for x in a)) * math.sqrt(sum(y * y for y in b))
    return dot / norm if norm else 0.0


class VectorIndex:
    """Embedding store and similarity search over the chunks of a workspace.

    Without a client the index stays empty: embed() is a no-op and
    find_similar() returns nothing, so reviews run without related code.
    """

    def __init__(self, client: Optional[OpenAIEmbeddingClient] = None):
        self.client = client
        self._entries: dict[str, tuple[Chunk, list[float]]] = {}

    def __len__(self) -> int:
        return len(self._entries)

    async def embed(self, chunks: list[Chunk]) -> None:
        if self.client is None or not chunks:
            return
        vectors = await self.client.embed_texts([c.content[:MAX_EMBED_CHARS] for c in chunks])
        if len(vectors) != len(chunks):
            raise ValueError(f"expected {len(chunks)} embeddings, got {len(vectors)}")
        for chunk, vector in zip(chunks, vectors):
            self._entries[chunk.id] = (chunk, vector)

    async def find_similar(self, content: str, filters: dict[str, Any]) -> list[Chunk]:
        if self.client is None or not self._entries:
            return []
        [query] = await self.client.embed_texts([content[:MAX_EMBED_CHARS]])

        workspace_id = filters.get("workspace_id")
        exclude_file_id = filters.get("exclude_file_id")
        min_similarity = float(filters.get("min_similarity", 0.0))
        limit = int(filters.get("limit", 5))

        scored = []
        for chunk, vector in self._entries.values():
            if workspace_id and chunk.workspace_id != workspace_id:
                continue
            if exclude_file_id and chunk.file_id == exclude_file_id:
                continue
            score = cosine_similarity(query, vector)
            if score >= min_similarity:
                scored.append((score, chunk))
        scored.sort(key=lambda pair: pair[0], reverse=True)
        return [chunk for _, chunk in scored[:limit]]
