"""Shared fixtures: a deterministic keyword embedder and small corpora."""

from __future__ import annotations

import re
from typing import List

import numpy as np
import pytest

from beri.models import Chunk, ChunkMetadata

VOCABULARY = [
    "fees",
    "tuition",
    "term",
    "sport",
    "rugby",
    "cricket",
    "apply",
    "entry",
    "exam",
    "a-level",
    "subjects",
    "music",
    "bursary",
    "coach",
    "school",
    "history",
]


def keyword_embed(text: str) -> np.ndarray:
    """Bag-of-keywords vector, unit-normalised; deterministic for identical input."""
    words = re.findall(r"[a-z\-]+", text.lower())
    vector = np.zeros(len(VOCABULARY), dtype="float32")
    for position, keyword in enumerate(VOCABULARY):
        vector[position] = sum(1 for word in words if word.startswith(keyword))
    norm = np.linalg.norm(vector)
    return vector / norm if norm else vector


def make_chunk(index: int, content: str, source: str = "General", section: str = "Intro", embed: bool = True) -> Chunk:
    chunk = Chunk(
        id=f"chunk-{index}",
        content=content,
        metadata=ChunkMetadata(source=source, section=section, chunk_index=index),
    )
    return chunk.with_embedding(keyword_embed(content)) if embed else chunk


SAMPLE_DOCUMENT = """# Example School Handbook

---

## Fees

### Tuition

Senior School tuition fees are £10,423 per term, including VAT. Fees cover textbooks, stationery and insurance for every pupil.

---

## Sport

### Sport Overview

Rugby and football run in the autumn term, hockey in spring and cricket in the summer term, with many teams per year group.

---

### Music

Music tuition is available on most orchestral instruments, with ensembles, choirs and concerts taking place throughout the year.

---

*Dataset compiled for tests.*
"""


@pytest.fixture
def embed():
    return keyword_embed


@pytest.fixture
def sample_document() -> str:
    return SAMPLE_DOCUMENT


@pytest.fixture
def sample_chunks() -> List[Chunk]:
    return [
        make_chunk(0, "Senior School tuition fees are £10,423 per term. Fees include textbooks.", "Fees", "Tuition"),
        make_chunk(1, "Rugby, football and cricket are played every term by school teams.", "Sport", "Sport Overview"),
        make_chunk(2, "Apply for 11+ entry by registering before the entrance exam in November.", "Admissions", "11+ Entry"),
    ]
