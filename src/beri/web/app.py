"""FastAPI application exposing the BERI pipeline over local HTTP."""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, AsyncIterator, List

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import StreamingResponse
from pydantic import BaseModel

from beri.config import AppConfig
from beri.errors import CorpusError, QueryInProgressError
from beri.index.search import Retriever
from beri.models import LoadingState, Message
from beri.pipeline import CancellationToken
from beri.startup import Runtime, initialise

LOGGER = logging.getLogger(__name__)

app = FastAPI(title="BERI", version="0.1.0")
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)
app.state.db_path = None
app.state.runtime = None
app.state.loading = None
app.state.init_lock = None


class SearchPayload(BaseModel):
    query: str
    top_k: int = 3


class AskPayload(BaseModel):
    query: str
    reasoning: bool | None = None


def _record_loading(state: LoadingState) -> None:
    app.state.loading = state
    LOGGER.info("[%s] %d%% %s", state.stage, state.progress, state.message)


async def get_runtime() -> Runtime:
    """Initialise the pipeline on first use and reuse it afterwards."""
    if app.state.runtime is not None:
        return app.state.runtime
    if app.state.init_lock is None:
        app.state.init_lock = asyncio.Lock()
    async with app.state.init_lock:
        if app.state.runtime is None:
            config = AppConfig(db_path=app.state.db_path or AppConfig().db_path)
            try:
                runtime = await initialise(config, on_state=_record_loading)
            except CorpusError as exc:
                raise HTTPException(status_code=404, detail=str(exc)) from exc
            if runtime is None:
                detail = app.state.loading.error if app.state.loading else "Initialisation cancelled"
                raise HTTPException(status_code=503, detail=detail)
            app.state.runtime = runtime
    return app.state.runtime


def _clean_query(query: str) -> str:
    query = query.strip()
    if not query:
        raise HTTPException(status_code=400, detail="Empty query")
    return query


@app.on_event("startup")
async def startup_event() -> None:
    logging.basicConfig(level=logging.INFO, format="[%(levelname)s] %(message)s")


@app.on_event("shutdown")
async def shutdown_event() -> None:
    if app.state.runtime is not None:
        app.state.runtime.close()
        app.state.runtime = None


@app.get("/status")
async def status() -> dict[str, Any]:
    runtime = app.state.runtime
    loading = app.state.loading
    payload: dict[str, Any] = {
        "ready": runtime is not None,
        "loading": None
        if loading is None
        else {
            "stage": loading.stage,
            "progress": loading.progress,
            "message": loading.message,
            "error": loading.error,
        },
    }
    if runtime is not None:
        payload.update(
            chunks=runtime.store.count(),
            corpus_version=runtime.store.corpus_version,
            busy=runtime.orchestrator.busy,
            device=runtime.config.device.tier if runtime.config.device else None,
        )
    return payload


@app.post("/search")
async def search_chunks(payload: SearchPayload) -> dict[str, List[dict[str, Any]]]:
    query = _clean_query(payload.query)
    top_k = max(1, min(payload.top_k, 20))

    runtime = await get_runtime()
    retriever = Retriever(
        runtime.embedder,
        runtime.store,
        top_k=top_k,
        threshold=runtime.config.similarity_threshold,
    )
    results = await asyncio.to_thread(retriever.retrieve, query)
    return {
        "results": [
            {
                "id": item.chunk.id,
                "score": item.score,
                "content": item.content,
                **item.metadata.to_dict(),
            }
            for item in results
        ]
    }


@app.post("/ask")
async def ask(payload: AskPayload) -> dict[str, Any]:
    query = _clean_query(payload.query)
    runtime = await get_runtime()
    try:
        message = await runtime.orchestrator.answer(query, reasoning=payload.reasoning)
    except QueryInProgressError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    return message.to_dict()


@app.post("/ask/stream")
async def ask_stream(payload: AskPayload) -> StreamingResponse:
    query = _clean_query(payload.query)
    runtime = await get_runtime()
    if runtime.orchestrator.busy:
        raise HTTPException(status_code=409, detail="A query is already being answered")

    queue: asyncio.Queue[Message | None] = asyncio.Queue()
    cancel = CancellationToken()

    async def produce() -> None:
        try:
            await runtime.orchestrator.answer(
                query, queue.put_nowait, reasoning=payload.reasoning, cancel=cancel
            )
        except QueryInProgressError as exc:
            LOGGER.warning("Rejected overlapping query: %s", exc)
        finally:
            queue.put_nowait(None)

    async def lines() -> AsyncIterator[str]:
        task = asyncio.create_task(produce())
        try:
            while True:
                message = await queue.get()
                if message is None:
                    break
                yield json.dumps(message.to_dict(), ensure_ascii=False) + "\n"
        finally:
            # Stop publishing once the client stops reading.
            cancel.cancel()
            await task

    return StreamingResponse(lines(), media_type="application/x-ndjson")


def configure(db_path: Path | None) -> None:
    """Point the app at a database before serving."""
    app.state.db_path = db_path
