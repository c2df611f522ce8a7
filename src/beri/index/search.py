"""Semantic retrieval over the chunk store."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence

import numpy as np

from beri.index.storage import SQLiteChunkStore
from beri.models import ContextChunk, MessageSource, ScoredChunk

LOGGER = logging.getLogger(__name__)

EmbedFn = Callable[[str], Sequence[float]]

FALLBACK_MESSAGE = (
    "I couldn't put together a reliable answer to that. Please try rephrasing your "
    "question, or check habselstree.org.uk or email admissionsboys@habselstree.org.uk."
)


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Dot product over the product of magnitudes; 0.0 when either vector is zero."""
    left = np.asarray(a, dtype="float64")
    right = np.asarray(b, dtype="float64")
    denom = float(np.linalg.norm(left) * np.linalg.norm(right))
    if denom == 0.0:
        return 0.0
    return float(np.dot(left, right) / denom)


class Retriever:
    """High-level API to query the chunk store."""

    def __init__(
        self,
        embed_fn: EmbedFn,
        store: SQLiteChunkStore,
        *,
        top_k: int = 3,
        threshold: float = 0.25,
    ) -> None:
        self.embed_fn = embed_fn
        self.store = store
        self.top_k = top_k
        self.threshold = threshold

    def retrieve(self, query: str) -> List[ScoredChunk]:
        """Return at most ``top_k`` chunks scoring at least ``threshold``, best first."""
        query_vector = np.asarray(self.embed_fn(query), dtype="float64").ravel()
        chunks = [chunk for chunk in self.store.all() if chunk.embedding is not None]
        if not chunks:
            LOGGER.warning("Chunk store is empty, nothing to retrieve")
            return []

        matrix = np.asarray([chunk.embedding for chunk in chunks], dtype="float64")
        if matrix.shape[1] != query_vector.shape[0]:
            raise ValueError(
                f"Query embedding has {query_vector.shape[0]} dimensions, "
                f"stored chunks have {matrix.shape[1]}"
            )

        norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(query_vector)
        dots = matrix @ query_vector
        scores = np.divide(dots, norms, out=np.zeros_like(dots), where=norms != 0)

        scored = [ScoredChunk(chunk=chunk, score=float(score)) for chunk, score in zip(chunks, scores)]
        scored.sort(key=lambda item: (-item.score, item.chunk.chunk_index))
        results = [item for item in scored if item.score >= self.threshold][: self.top_k]

        LOGGER.debug(
            "Retrieved %d/%d chunks for query %r (best score %.3f)",
            len(results),
            len(scored),
            query[:80],
            scored[0].score,
        )
        return results


def format_context(chunks: Sequence[ScoredChunk]) -> str:
    """Render retrieved chunks as the context block of the prompt."""
    blocks = []
    for position, item in enumerate(chunks, start=1):
        meta = item.chunk.metadata
        blocks.append(f"[{position}] Source: {meta.source} — {meta.section}\n{item.chunk.content}")
    return "\n\n".join(blocks)


def extract_sources(chunks: Sequence[ScoredChunk]) -> List[MessageSource]:
    """Citations for the retrieved chunks, de-duplicated, in rank order."""
    sources: List[MessageSource] = []
    for item in chunks:
        source = MessageSource(source=item.chunk.metadata.source, section=item.chunk.metadata.section)
        if source not in sources:
            sources.append(source)
    return sources


def to_context_chunks(chunks: Sequence[ScoredChunk], limit: int = 2) -> List[ContextChunk]:
    return [
        ContextChunk(
            content=item.chunk.content,
            source=item.chunk.metadata.source,
            section=item.chunk.metadata.section,
            score=item.score,
        )
        for item in chunks[:limit]
    ]


@dataclass(slots=True, frozen=True)
class DirectAnswer:
    answer: str
    sources: List[MessageSource]


def try_direct_answer(
    chunks: Sequence[ScoredChunk],
    *,
    min_score: Optional[float] = 0.8,
    min_margin: float = 0.1,
) -> Optional[DirectAnswer]:
    """Answer with the top chunk verbatim when it is clearly the right passage."""
    if min_score is None or not chunks:
        return None
    best = chunks[0]
    if best.score < min_score:
        return None
    if len(chunks) > 1 and best.score - chunks[1].score < min_margin:
        return None
    meta = best.chunk.metadata
    return DirectAnswer(
        answer=f"{best.chunk.content}\n\nSource: {meta.source} — {meta.section}",
        sources=[MessageSource(source=meta.source, section=meta.section)],
    )


# A unit of 1-10 characters repeated at least eight times in a row.
_REPEATED_UNIT = re.compile(r"(.{1,10}?)\1{7,}", re.DOTALL)
_WORD = re.compile(r"\w+")


def _longest_repetition(text: str) -> int:
    return max((match.end() - match.start() for match in _REPEATED_UNIT.finditer(text)), default=0)


def is_garbage(text: str) -> bool:
    """Cheap check for degenerate model output.

    Leans towards accepting: short answers and ordinary prose are never flagged.
    """
    stripped = text.strip()
    if not stripped:
        return True

    compact = re.sub(r"\s+", "", stripped)
    if len(compact) < 20:
        return False

    if _longest_repetition(compact) * 2 >= len(compact):
        return True

    words = _WORD.findall(stripped.lower())
    if len(words) >= 8 and len(set(words)) / len(words) < 0.2:
        return True
    # Digits count as content so numeric answers pass.
    # Digits count as content: fee lists, dates and phone numbers are valid answers.
    alphanumeric = sum(1 for ch in compact if ch.isalnum())
    return alphanumeric / len(compact) < 0.4
