"""Tests for retrieval and answer-quality helpers."""

import numpy as np
import pytest

from beri.index.search import (
    Retriever,
    cosine_similarity,
    extract_sources,
    format_context,
    is_garbage,
    to_context_chunks,
    try_direct_answer,
)
from beri.index.storage import SQLiteChunkStore
from beri.models import MessageSource, ScoredChunk

from conftest import keyword_embed, make_chunk


@pytest.fixture
def populated_store(tmp_path, sample_chunks):
    store = SQLiteChunkStore(tmp_path / "search.db")
    store.replace_all(sample_chunks)
    yield store
    store.close()


def _scored(index, score, source="Fees", section="Tuition"):
    return ScoredChunk(make_chunk(index, f"Passage number {index} about tuition fees.", source, section), score)


class TestCosineSimilarity:
    """Test the similarity function."""

    def test_self_similarity(self):
        vector = [0.3, 0.4, 0.5]
        assert cosine_similarity(vector, vector) == pytest.approx(1.0)

    def test_symmetric(self):
        a, b = [1.0, 2.0, 0.0], [0.5, 0.1, 3.0]
        assert cosine_similarity(a, b) == pytest.approx(cosine_similarity(b, a))

    def test_orthogonal(self):
        assert cosine_similarity([1.0, 0.0], [0.0, 1.0]) == pytest.approx(0.0)

    def test_zero_vector(self):
        """Zero magnitude yields 0 rather than NaN."""
        assert cosine_similarity([0.0, 0.0], [1.0, 1.0]) == 0.0


class TestRetriever:
    """Test ranked retrieval."""

    def test_best_match_first(self, populated_store):
        retriever = Retriever(keyword_embed, populated_store)

        results = retriever.retrieve("What are the tuition fees per term?")

        assert results[0].chunk.id == "chunk-0"
        assert results[0].metadata.source == "Fees"
        assert all(a.score >= b.score for a, b in zip(results, results[1:]))

    def test_threshold_filters(self, populated_store):
        retriever = Retriever(keyword_embed, populated_store, threshold=0.5)

        results = retriever.retrieve("What are the tuition fees per term?")

        assert [item.chunk.id for item in results] == ["chunk-0"]
        assert all(item.score >= 0.5 for item in results)

    def test_top_k_bound(self, populated_store):
        retriever = Retriever(keyword_embed, populated_store, top_k=1, threshold=0.0)

        assert len(retriever.retrieve("school term fees")) == 1

    def test_no_match_returns_empty(self, populated_store):
        retriever = Retriever(keyword_embed, populated_store)
        assert retriever.retrieve("completely unrelated words") == []

    def test_ties_break_by_chunk_index(self, tmp_path):
        store = SQLiteChunkStore(tmp_path / "ties.db")
        text = "Rugby and cricket are coached at school."
        store.replace_all([make_chunk(5, text), make_chunk(2, text)])
        retriever = Retriever(keyword_embed, store, threshold=0.0)

        results = retriever.retrieve("rugby coaching")

        assert [item.chunk.chunk_index for item in results] == [2, 5]
        store.close()

    def test_empty_store(self, tmp_path):
        store = SQLiteChunkStore(tmp_path / "empty.db")
        assert Retriever(keyword_embed, store).retrieve("fees") == []
        store.close()

    def test_dimension_mismatch(self, populated_store):
        retriever = Retriever(lambda text: np.ones(3), populated_store)
        with pytest.raises(ValueError):
            retriever.retrieve("fees")

    def test_deterministic(self, populated_store):
        retriever = Retriever(keyword_embed, populated_store, threshold=0.0)
        first = retriever.retrieve("school sport")
        second = retriever.retrieve("school sport")
        assert first == second


class TestContextHelpers:
    """Test prompt context and citation helpers."""

    def test_format_context(self):
        chunks = [_scored(0, 0.9), _scored(1, 0.5, "Sport", "Rugby")]

        context = format_context(chunks)

        assert context.startswith("[1] Source: Fees — Tuition\nPassage number 0")
        assert "\n\n[2] Source: Sport — Rugby\nPassage number 1" in context

    def test_format_context_empty(self):
        assert format_context([]) == ""

    def test_extract_sources_deduplicates(self):
        chunks = [_scored(0, 0.9), _scored(1, 0.8, "Sport", "Rugby"), _scored(2, 0.7)]

        assert extract_sources(chunks) == [
            MessageSource("Fees", "Tuition"),
            MessageSource("Sport", "Rugby"),
        ]

    def test_context_chunks_limited(self):
        chunks = [_scored(0, 0.9), _scored(1, 0.8), _scored(2, 0.7)]

        context_chunks = to_context_chunks(chunks)

        assert len(context_chunks) == 2
        assert context_chunks[0].score == 0.9


class TestDirectAnswer:
    """Test the single-chunk answer shortcut."""

    def test_confident_match(self):
        direct = try_direct_answer([_scored(0, 0.92), _scored(1, 0.4)])

        assert direct is not None
        assert direct.answer.endswith("Source: Fees — Tuition")
        assert direct.sources == [MessageSource("Fees", "Tuition")]

    def test_low_score(self):
        assert try_direct_answer([_scored(0, 0.6)]) is None

    def test_small_margin(self):
        assert try_direct_answer([_scored(0, 0.85), _scored(1, 0.8)]) is None

    def test_disabled(self):
        assert try_direct_answer([_scored(0, 0.99)], min_score=None) is None

    def test_no_chunks(self):
        assert try_direct_answer([]) is None


class TestIsGarbage:
    """Test degenerate output detection."""

    def test_empty(self):
        assert is_garbage("") is True
        assert is_garbage("   \n") is True

    def test_single_character_repetition(self):
        assert is_garbage("a" * 500) is True

    def test_repeated_phrase(self):
        assert is_garbage("the " * 30) is True

    def test_symbol_soup(self):
        assert is_garbage("!!?? ;; ** -- ## @@ %% ^^ && ((") is True

    def test_normal_prose(self):
        text = (
            "Senior School tuition fees are £10,423 per term, including VAT. "
            "Fees cover textbooks, stationery and insurance."
        )
        assert is_garbage(text) is False

    def test_short_answer(self):
        assert is_garbage("Yes.") is False
        assert is_garbage("£10,423 per term") is False

    def test_phone_numbers(self):
        assert is_garbage("Call 020 8266 1700 or 020 8266 1800.") is False

    def test_dates(self):
        assert is_garbage("Deadline: 06/11/2025. Offers: 12/02/2026.") is False

    def test_fee_list(self):
        assert is_garbage("• Y7: £10,423\n• Y12: £10,423\n• Prep: £9,849") is False
