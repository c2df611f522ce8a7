"""Start-up sequence: device probe, storage, embeddings, corpus, language model."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Optional

from beri.config import AppConfig
from beri.device import detect_device
from beri.embedding.encoder import EmbeddingConfig, EmbeddingModel
from beri.faq import FAQCache
from beri.generation.llm import GenerationConfig, TransformersGenerator
from beri.index.search import Retriever
from beri.index.storage import SQLiteChunkStore
from beri.ingestion.chunker import load_document
from beri.models import LoadingState, LoadingStage
from beri.pipeline import AnswerOrchestrator, CancellationToken

LOGGER = logging.getLogger(__name__)

StateFn = Callable[[LoadingState], None]


class ProgressReporter:
    """Publishes loading states whose progress never goes backwards."""

    def __init__(self, on_state: Optional[StateFn], cancel: CancellationToken) -> None:
        self._on_state = on_state
        self._cancel = cancel
        self.progress = 0
        self.state: LoadingState | None = None

    def update(self, stage: LoadingStage, progress: int, message: str) -> None:
        self.progress = max(self.progress, min(int(progress), 100))
        self._publish(LoadingState(stage=stage, progress=self.progress, message=message))

    def fail(self, message: str, error: str) -> None:
        self._publish(LoadingState(stage="error", progress=self.progress, message=message, error=error))

    def _publish(self, state: LoadingState) -> None:
        self.state = state
        if self._on_state is not None and not self._cancel.cancelled:
            self._on_state(state)


@dataclass(slots=True)
class Runtime:
    config: AppConfig
    store: SQLiteChunkStore
    embedder: Any
    generator: Any
    retriever: Retriever
    orchestrator: AnswerOrchestrator

    def close(self) -> None:
        self.store.close()


def _threadsafe(loop: asyncio.AbstractEventLoop, fn: Callable[..., None]) -> Callable[..., None]:
    def call(*args: Any) -> None:
        loop.call_soon_threadsafe(fn, *args)

    return call


async def initialise(
    config: AppConfig,
    *,
    on_state: Optional[StateFn] = None,
    cancel: CancellationToken | None = None,
    store: SQLiteChunkStore | None = None,
    embedder: Any = None,
    generator: Any = None,
    faq: FAQCache | None = None,
) -> Optional[Runtime]:
    """Bring every component up in order.

    Returns ``None`` when cancelled or when the device cannot run the models.
    Errors are reported through ``on_state`` and re-raised.
    """
    cancel = cancel or CancellationToken()
    reporter = ProgressReporter(on_state, cancel)
    loop = asyncio.get_running_loop()
    # Closed on every exit except a successful hand-over to the Runtime.
    owned_store: SQLiteChunkStore | None = None

    try:
        reporter.update("checking", 5, "Checking device capabilities...")
        if config.device is None:
            config.device = await asyncio.to_thread(detect_device)
        if cancel.cancelled:
            return None
        if not config.device.can_generate:
            reporter.fail(
                "Device not supported",
                "This device does not have enough memory to run the language model locally.",
            )
            return None

        reporter.update("storage", 10, "Initialising storage...")
        if store is None:
            db_path = config.resolve_db_path(Path.cwd())
            db_path.parent.mkdir(parents=True, exist_ok=True)
            store = owned_store = SQLiteChunkStore(db_path)
        if cancel.cancelled:
            return None

        reporter.update("embeddings", 15, "Loading embedding model...")
        if embedder is None:
            embedder = await asyncio.to_thread(
                EmbeddingModel, EmbeddingConfig(model_name=config.embedding_model)
            )
        if cancel.cancelled:
            return None

        if not store.has():
            reporter.update("chunks", 40, "Generating content embeddings...")
            document = load_document(config.corpus_path)

            def chunk_progress(current: int, total: int) -> None:
                reporter.update(
                    "chunks", 40 + round(current / total * 20), f"Embedding content {current}/{total}..."
                )

            await asyncio.to_thread(
                store.load_all, embedder, _threadsafe(loop, chunk_progress), document=document
            )
        if cancel.cancelled:
            return None

        reporter.update("llm", 60, "Loading language model...")
        if generator is None:
            generator = TransformersGenerator(
                GenerationConfig(
                    model_name=config.llm_model,
                    max_new_tokens=config.max_tokens,
                    temperature=config.temperature,
                )
            )
        load = getattr(generator, "load", None)
        if load is not None:

            def llm_progress(fraction: float, message: str) -> None:
                reporter.update("llm", 60 + round(fraction * 40), message)

            await asyncio.to_thread(load, _threadsafe(loop, llm_progress))
        if cancel.cancelled:
            return None

        retriever = Retriever(
            embedder, store, top_k=config.top_k, threshold=config.similarity_threshold
        )
        orchestrator = AnswerOrchestrator(retriever, generator, faq=faq, config=config)
        reporter.update("ready", 100, "Ready to chat!")
        runtime = Runtime(
            config=config,
            store=store,
            embedder=embedder,
            generator=generator,
            retriever=retriever,
            orchestrator=orchestrator,
        )
        owned_store = None
        return runtime
    except Exception as exc:
        if not cancel.cancelled:
            LOGGER.error("Initialisation error: %s", exc)
            reporter.fail("Failed to initialise", str(exc) or exc.__class__.__name__)
        raise
    finally:
        if owned_store is not None:
            owned_store.close()
