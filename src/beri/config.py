"""Application configuration defaults."""

from __future__ import annotations

import sys
from dataclasses import dataclass
from pathlib import Path

from beri.device import DeviceProfile
from beri.embedding.encoder import DEFAULT_MODEL
from beri.generation.llm import DEFAULT_LLM_MODEL, DEFAULT_MAX_TOKENS, DEFAULT_TEMPERATURE
from beri.ingestion.chunker import default_corpus_path

TOP_K_CHUNKS = 3
SIMILARITY_THRESHOLD = 0.25
DIRECT_ANSWER_SCORE = 0.8
FLUSH_INTERVAL = 0.08


def _get_default_db_path() -> Path:
    """Get the default database path based on platform and execution context."""
    user_db = Path.home() / "Documents" / "BERI" / "beri.db"

    if getattr(sys, "frozen", False):
        return user_db

    # When running from source, prefer local data/ if it exists
    local_db = Path("data/beri.db")
    if local_db.exists():
        return local_db

    return user_db


@dataclass(slots=True)
class AppConfig:
    db_path: Path | None = None
    corpus_path: Path | None = None
    embedding_model: str = DEFAULT_MODEL
    llm_model: str = DEFAULT_LLM_MODEL
    top_k: int = TOP_K_CHUNKS
    similarity_threshold: float = SIMILARITY_THRESHOLD
    # None disables the direct chunk answer layer.
    direct_answer_score: float | None = DIRECT_ANSWER_SCORE
    max_tokens: int = DEFAULT_MAX_TOKENS
    temperature: float = DEFAULT_TEMPERATURE
    flush_interval: float = FLUSH_INTERVAL
    reasoning: bool | None = None
    device: DeviceProfile | None = None

    def __post_init__(self) -> None:
        if self.db_path is None:
            self.db_path = _get_default_db_path()
        if self.corpus_path is None:
            self.corpus_path = default_corpus_path()

    def resolve_db_path(self, base_dir: Path | None = None) -> Path:
        if self.db_path is None:
            self.db_path = _get_default_db_path()
        if Path(self.db_path).is_absolute() or base_dir is None:
            return Path(self.db_path)
        return base_dir / self.db_path

    def reasoning_default(self) -> bool:
        """Reasoning mode to use when the caller does not choose one."""
        if self.reasoning is not None:
            return self.reasoning
        if self.device is not None:
            return self.device.reasoning_enabled
        return False
