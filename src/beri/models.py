"""Core BERI data models."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Literal, Optional, Sequence, Tuple


@dataclass(slots=True, frozen=True)
class ChunkMetadata:
    """Provenance of a chunk inside the source document."""

    source: str
    section: str
    chunk_index: int

    def to_dict(self) -> Dict[str, Any]:
        return {"source": self.source, "section": self.section, "chunkIndex": self.chunk_index}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ChunkMetadata":
        return cls(
            source=str(data["source"]),
            section=str(data["section"]),
            chunk_index=int(data["chunkIndex"]),
        )


@dataclass(slots=True, frozen=True)
class Chunk:
    """Passage of document text paired with metadata and, once computed, its embedding."""

    id: str
    content: str
    metadata: ChunkMetadata
    embedding: Optional[Tuple[float, ...]] = None

    @property
    def chunk_index(self) -> int:
        return self.metadata.chunk_index

    @property
    def has_embedding(self) -> bool:
        return self.embedding is not None

    def with_embedding(self, vector: Sequence[float]) -> "Chunk":
        """Return a copy of the chunk carrying ``vector``."""
        return replace(self, embedding=tuple(float(value) for value in vector))

    def to_dict(self, *, include_embedding: bool = True) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "id": self.id,
            "content": self.content,
            "metadata": self.metadata.to_dict(),
        }
        if include_embedding and self.embedding is not None:
            data["embedding"] = list(self.embedding)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Chunk":
        embedding = data.get("embedding")
        return cls(
            id=str(data["id"]),
            content=str(data["content"]),
            metadata=ChunkMetadata.from_dict(data["metadata"]),
            embedding=tuple(float(value) for value in embedding) if embedding is not None else None,
        )


@dataclass(slots=True, frozen=True)
class ScoredChunk:
    """A chunk with its similarity to one query vector."""

    chunk: Chunk
    score: float

    @property
    def content(self) -> str:
        return self.chunk.content

    @property
    def metadata(self) -> ChunkMetadata:
        return self.chunk.metadata


@dataclass(slots=True, frozen=True)
class MessageSource:
    """Citation pointing at a source/section pair."""

    source: str
    section: str

    def to_dict(self) -> Dict[str, str]:
        return {"source": self.source, "section": self.section}


@dataclass(slots=True, frozen=True)
class ContextChunk:
    """Retrieved passage shown next to an answer."""

    content: str
    source: str
    section: str
    score: float


@dataclass(slots=True, frozen=True)
class FAQEntry:
    """Hand-authored answer gated by primary and supporting keywords."""

    primary: Tuple[str, ...]
    supporting: Tuple[str, ...]
    answer: str
    sources: Tuple[MessageSource, ...]


@dataclass(slots=True)
class Message:
    """Chat message as seen by the presentation layer."""

    role: Literal["user", "assistant"]
    content: str = ""
    thinking: Optional[str] = None
    is_thinking: bool = False
    is_streaming: bool = False
    sources: List[MessageSource] = field(default_factory=list)
    context_chunks: List[ContextChunk] = field(default_factory=list)
    # Reasoning trace kept for diagnostics even when it is hidden from the user.
    raw_thinking: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "role": self.role,
            "content": self.content,
            "thinking": self.thinking,
            "isThinking": self.is_thinking,
            "isStreaming": self.is_streaming,
            "sources": [source.to_dict() for source in self.sources],
            "contextChunks": [
                {
                    "content": chunk.content,
                    "source": chunk.source,
                    "section": chunk.section,
                    "score": chunk.score,
                }
                for chunk in self.context_chunks
            ],
        }


LoadingStage = Literal["checking", "storage", "embeddings", "chunks", "llm", "ready", "error"]


@dataclass(slots=True, frozen=True)
class LoadingState:
    """Snapshot of the start-up sequence."""

    stage: LoadingStage
    progress: int
    message: str
    error: Optional[str] = None
