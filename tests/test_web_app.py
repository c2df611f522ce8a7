"""Tests for the FastAPI application."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest
from fastapi.testclient import TestClient

from beri.config import AppConfig
from beri.device import DeviceProfile
from beri.errors import CorpusError
from beri.index.storage import SQLiteChunkStore
from beri.startup import initialise
from beri.web.app import AskPayload, app, ask_stream, configure

from conftest import keyword_embed


client = TestClient(app)

FULL_DEVICE = DeviceProfile(tier="full", ram_gb=32.0, has_gpu=False, gpu_type=None, low_power=False)


class EchoGenerator:
    async def __call__(self, context, query, on_token, reasoning=False):
        for token in ("Tuition is ", "£10,423 per term."):
            on_token(token)
        return "Tuition is £10,423 per term."


class SlowGenerator:
    """Emits one token, then keeps going after the reader has left."""

    async def __call__(self, context, query, on_token, reasoning=False):
        on_token("Tuition is ")
        for token in ("£10,423 ", "per ", "term."):
            await asyncio.sleep(0.01)
            on_token(token)
        return "Tuition is £10,423 per term."


@pytest.fixture(autouse=True)
def reset_state():
    yield
    if app.state.runtime is not None:
        app.state.runtime.close()
    app.state.runtime = None
    app.state.loading = None
    app.state.init_lock = None
    app.state.db_path = None


@pytest.fixture
def runtime(tmp_path: Path, sample_chunks):
    store = SQLiteChunkStore(tmp_path / "web.db")
    store.replace_all(sample_chunks)
    config = AppConfig(db_path=tmp_path / "web.db", device=FULL_DEVICE)
    runtime = asyncio.run(
        initialise(config, store=store, embedder=keyword_embed, generator=EchoGenerator())
    )
    app.state.runtime = runtime
    return runtime


class TestConfigure:
    def test_configure_sets_db_path(self, tmp_path: Path) -> None:
        configure(tmp_path / "beri.db")
        assert app.state.db_path == tmp_path / "beri.db"


class TestStatusEndpoint:
    """Tests for /status."""

    def test_status_before_start(self) -> None:
        response = client.get("/status")

        assert response.status_code == 200
        assert response.json() == {"ready": False, "loading": None}

    def test_status_ready(self, runtime) -> None:
        data = client.get("/status").json()

        assert data["ready"] is True
        assert data["chunks"] == 3
        assert data["busy"] is False
        assert data["device"] == "full"


class TestSearchEndpoint:
    """Tests for /search."""

    def test_search_empty_query(self) -> None:
        """Empty query returns 400."""
        response = client.post("/search", json={"query": ""})
        assert response.status_code == 400
        assert response.json()["detail"] == "Empty query"

    def test_search_whitespace_query(self) -> None:
        """Whitespace-only query returns 400."""
        response = client.post("/search", json={"query": "   "})
        assert response.status_code == 400

    def test_search_success(self, runtime) -> None:
        response = client.post("/search", json={"query": "tuition fees"})

        assert response.status_code == 200
        results = response.json()["results"]
        assert results[0]["source"] == "Fees"
        assert results[0]["section"] == "Tuition"
        assert results[0]["chunkIndex"] == 0

    def test_search_clamps_top_k(self, runtime) -> None:
        response = client.post("/search", json={"query": "school term fees", "top_k": 0})

        assert response.status_code == 200
        assert len(response.json()["results"]) == 1

    def test_initialisation_declined(self) -> None:
        """Unavailable pipeline returns 503."""
        with patch("beri.web.app.initialise", new=AsyncMock(return_value=None)):
            response = client.post("/search", json={"query": "fees"})
        assert response.status_code == 503

    def test_missing_corpus(self) -> None:
        """Missing corpus returns 404."""
        with patch("beri.web.app.initialise", new=AsyncMock(side_effect=CorpusError("missing"))):
            response = client.post("/search", json={"query": "fees"})
        assert response.status_code == 404


class TestAskEndpoints:
    """Tests for /ask and /ask/stream."""

    def test_ask_faq(self, runtime) -> None:
        response = client.post("/ask", json={"query": "What are the school fees?"})

        assert response.status_code == 200
        data = response.json()
        assert "£10,423" in data["content"]
        assert data["sources"][0]["source"] == "Fees and Financial Support"
        assert data["isStreaming"] is False

    def test_ask_generated(self, runtime) -> None:
        response = client.post("/ask", json={"query": "Tuition charge information"})

        data = response.json()
        assert data["content"] == "Tuition is £10,423 per term."
        assert data["sources"][0] == {"source": "Fees", "section": "Tuition"}
        assert len(data["contextChunks"]) <= 2

    def test_ask_rejected_while_busy(self, runtime) -> None:
        runtime.orchestrator._busy = True
        try:
            response = client.post("/ask", json={"query": "Tuition charge information"})
            stream = client.post("/ask/stream", json={"query": "Tuition charge information"})
        finally:
            runtime.orchestrator._busy = False

        assert response.status_code == 409
        assert stream.status_code == 409

    def test_ask_stream(self, runtime) -> None:
        response = client.post("/ask/stream", json={"query": "Tuition charge information"})

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("application/x-ndjson")
        updates = [json.loads(line) for line in response.text.splitlines() if line]
        assert updates
        assert updates[-1]["isStreaming"] is False
        assert updates[-1]["content"] == "Tuition is £10,423 per term."

    def test_ask_stream_disconnect_cancels_query(self, runtime) -> None:
        """Closing the stream early cancels the query and frees the orchestrator."""
        runtime.orchestrator.generate_fn = SlowGenerator()

        async def scenario():
            with patch.object(runtime.orchestrator, "answer", wraps=runtime.orchestrator.answer) as spy:
                response = await ask_stream(AskPayload(query="Tuition charge information"))
                lines = response.body_iterator
                first = await lines.__anext__()
                await lines.aclose()
            return first, spy.call_args.kwargs["cancel"]

        first, cancel = asyncio.run(scenario())

        assert json.loads(first)["content"] == "Tuition is"
        assert cancel.cancelled is True
        assert runtime.orchestrator.busy is False
