"""Markdown chunking for the school information document.

The document is a sequence of blocks separated by ``---`` lines. ``## `` headings
name the top-level source, ``### `` headings name sections inside it.
"""

from __future__ import annotations

import logging
import re
from importlib.resources import files
from pathlib import Path
from typing import Iterable, List, Optional, Sequence

from beri.errors import CorpusError
from beri.models import Chunk, ChunkMetadata

LOGGER = logging.getLogger(__name__)

MIN_CHUNK_CHARS = 80
SPLIT_THRESHOLD_CHARS = 1800
CARRY_OVER_MAX_CHARS = 120
DEFAULT_SOURCE = "General"

# Title banner and trailing colophon of the school document. Other H1-led
# blocks are ordinary content.
DEFAULT_SKIP_PREFIXES = ("# Haberdashers", "*Dataset compiled")

_SEPARATOR = re.compile(r"^---[ \t]*$", re.MULTILINE)
_H2 = re.compile(r"^## (.+)$", re.MULTILINE)
_H3 = re.compile(r"^### (.+)$", re.MULTILINE)
_H3_SPLIT = re.compile(r"(?=^### )", re.MULTILINE)


def default_corpus_path() -> Path:
    """Path of the document bundled with the package."""
    return Path(str(files("beri.data").joinpath("about-school.md")))


def load_document(path: Path) -> str:
    """Read the corpus document, failing loudly when it cannot be used."""
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        raise CorpusError(f"Cannot read corpus document {path}: {exc}") from exc
    if not text.strip():
        raise CorpusError(f"Corpus document {path} is empty")
    return text


def _heading(pattern: re.Pattern[str], text: str) -> Optional[str]:
    match = pattern.search(text)
    return match.group(1).strip() if match else None


def split_blocks(document: str) -> List[str]:
    """Normalise line endings and split on horizontal rules."""
    normalized = document.replace("\r\n", "\n").replace("\r", "\n")
    return _SEPARATOR.split(normalized)


class _Emitter:
    def __init__(self) -> None:
        self.chunks: List[Chunk] = []

    def emit(self, content: str, source: str, section: str) -> None:
        if len(content) < MIN_CHUNK_CHARS:
            LOGGER.debug("Dropping short piece under %s / %s", source, section)
            return
        index = len(self.chunks)
        self.chunks.append(
            Chunk(
                id=f"chunk-{index}",
                content=content,
                metadata=ChunkMetadata(source=source, section=section, chunk_index=index),
            )
        )


def parse_document(
    document: str,
    *,
    skip_prefixes: Sequence[str] = DEFAULT_SKIP_PREFIXES,
    default_source: str = DEFAULT_SOURCE,
) -> List[Chunk]:
    """Split ``document`` into ordered chunks without embeddings."""
    emitter = _Emitter()
    current_source = default_source

    for block in split_blocks(document):
        trimmed = block.strip()
        if not trimmed or len(trimmed) < MIN_CHUNK_CHARS:
            continue
        if trimmed.startswith(tuple(skip_prefixes)):
            continue

        h2 = _heading(_H2, trimmed)
        if h2:
            current_source = h2

        parts = [part for part in _H3_SPLIT.split(trimmed) if part.strip()]

        if len(parts) > 1 and len(trimmed) > SPLIT_THRESHOLD_CHARS:
            current_source = _emit_split_block(emitter, parts, current_source)
        else:
            section = _heading(_H3, trimmed) or h2 or current_source
            emitter.emit(trimmed, current_source, section)

    LOGGER.info("Parsed %d chunks from document", len(emitter.chunks))
    return emitter.chunks


def _emit_split_block(emitter: _Emitter, parts: Iterable[str], current_source: str) -> str:
    carry_over = ""
    for part in parts:
        piece = part.strip()
        if not piece:
            continue

        if not _H3.search(piece) and len(piece) < CARRY_OVER_MAX_CHARS:
            sub_h2 = _heading(_H2, piece)
            if sub_h2:
                current_source = sub_h2
            carry_over = piece + "\n\n"
            continue

        content = carry_over + piece
        carry_over = ""
        section = _heading(_H3, content) or current_source
        emitter.emit(content, current_source, section)

    if carry_over:
        # Preamble with no heading after it is not emitted.
        LOGGER.debug("Dropping trailing carry-over text under %s", current_source)
    return current_source


def parse_file(path: Path) -> List[Chunk]:
    """Load and chunk a corpus document."""
    return parse_document(load_document(path))
