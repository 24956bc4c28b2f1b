"""Embedding generation in fixed-size batches.

Batches run sequentially. A failing batch is recorded and skipped; later
batches still run, so one provider hiccup costs a slice of retrieval context
rather than the whole review.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, Optional

if TYPE_CHECKING:
    from codenest_core.interfaces import EmbeddingProvider
    from codenest_core.models import Chunk

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 20


@dataclass(frozen=True)
class ChunkBatch:
    sequence: int  # 1-based
    chunks: tuple[Chunk, ...]


@dataclass(frozen=True)
class BatchReport:
    batch: int
    total_batches: int
    embedded_chunks: int  # running total
    error: str = ""


@dataclass(frozen=True)
class EmbeddingOutcome:
    total_chunks: int
    embedded_chunks: int
    batches: int
    failed_batches: int
    first_error: str = ""

    @property
    def succeeded(self) -> bool:
        """No chunks, or at least one chunk embedded."""
        return self.total_chunks == 0 or self.embedded_chunks > 0

    @property
    def partial(self) -> bool:
        return self.succeeded and bool(self.first_error)


def partition(chunks: list[Chunk], batch_size: int = DEFAULT_BATCH_SIZE) -> list[ChunkBatch]:
    """Split ``chunks`` into contiguous batches of at most ``batch_size``.

    A non-positive batch size falls back to DEFAULT_BATCH_SIZE.
    """
    if batch_size <= 0:
        batch_size = DEFAULT_BATCH_SIZE
    return [
        ChunkBatch(sequence=i // batch_size + 1, chunks=tuple(chunks[i : i + batch_size]))
        for i in range(0, len(chunks), batch_size)
    ]


class EmbeddingBatchProcessor:
    def __init__(self, provider: EmbeddingProvider, batch_size: int = DEFAULT_BATCH_SIZE):
        self.provider = provider
        self.batch_size = batch_size if batch_size > 0 else DEFAULT_BATCH_SIZE

    async def process(
        self,
        chunks: list[Chunk],
        on_batch: Optional[Callable[[BatchReport], None]] = None,
    ) -> EmbeddingOutcome:
        """Embed every batch, keeping the first error and never stopping early."""
        if not chunks:
            return EmbeddingOutcome(total_chunks=0, embedded_chunks=0, batches=0, failed_batches=0)

        batches = partition(chunks, self.batch_size)
        embedded = 0
        failed = 0
        first_error = ""

        for batch in batches:
            error = ""
            try:
                await self.provider.embed(list(batch.chunks))
                embedded += len(batch.chunks)
            except Exception as e:
                failed += 1
                error = str(e) or e.__class__.__name__
                if not first_error:
                    first_error = error
                logger.warning(
                    "Embedding batch %d/%d failed (%d chunk(s)): %s",
                    batch.sequence,
                    len(batches),
                    len(batch.chunks),
                    error,
                )
            if on_batch is not None:
                on_batch(BatchReport(batch.sequence, len(batches), embedded, error))

        outcome = EmbeddingOutcome(
            total_chunks=len(chunks),
            embedded_chunks=embedded,
            batches=len(batches),
            failed_batches=failed,
            first_error=first_error,
        )
        if outcome.partial:
            logger.warning(
                "Embedded %d/%d chunk(s); %d batch(es) failed, continuing with partial context",
                embedded,
                len(chunks),
                failed,
            )
        return outcome
