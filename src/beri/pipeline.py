"""Tiered answering: FAQ cache, direct chunk answer, then streamed generation."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from typing import Callable, Optional

from beri.config import AppConfig
from beri.errors import QueryInProgressError
from beri.faq import FAQCache
from beri.generation.llm import GenerateFn
from beri.generation.stream import StreamParser, StreamState, ThrottledEmitter
from beri.index.search import (
    FALLBACK_MESSAGE,
    Retriever,
    extract_sources,
    format_context,
    is_garbage,
    to_context_chunks,
    try_direct_answer,
)
from beri.models import Message

LOGGER = logging.getLogger(__name__)

ERROR_MESSAGE = "Sorry, I encountered an error while generating a response. Please try again."

UpdateFn = Callable[[Message], None]


class CancellationToken:
    """Cooperative cancellation flag checked after every suspension point."""

    def __init__(self) -> None:
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled


class AnswerOrchestrator:
    """Answers one query at a time, choosing the cheapest adequate layer.

    Layers, in order:
        1. FAQ cache (no retrieval, no generation)
        2. direct answer from a single, clearly relevant chunk
        3. streamed generation over the retrieved context, with garbage fallback
    """

    def __init__(
        self,
        retriever: Retriever,
        generate_fn: GenerateFn,
        *,
        faq: FAQCache | None = None,
        config: AppConfig | None = None,
    ) -> None:
        self.retriever = retriever
        self.generate_fn = generate_fn
        self.faq = faq or FAQCache()
        self.config = config or AppConfig()
        self._busy = False

    @property
    def busy(self) -> bool:
        return self._busy

    async def answer(
        self,
        query: str,
        on_update: Optional[UpdateFn] = None,
        *,
        reasoning: bool | None = None,
        cancel: CancellationToken | None = None,
    ) -> Message:
        """Produce the assistant message for ``query``.

        ``on_update`` receives snapshots of the message while it is built; the last
        snapshot is the finished message. Raises ``QueryInProgressError`` if another
        query is still streaming.
        """
        if self._busy:
            raise QueryInProgressError("A query is already being answered")
        self._busy = True
        try:
            return await self._answer(
                query,
                on_update,
                reasoning if reasoning is not None else self.config.reasoning_default(),
                cancel or CancellationToken(),
            )
        finally:
            self._busy = False

    async def _answer(
        self,
        query: str,
        on_update: Optional[UpdateFn],
        reasoning: bool,
        cancel: CancellationToken,
    ) -> Message:
        message = Message(role="assistant", is_streaming=True)

        def publish() -> None:
            if on_update is not None and not cancel.cancelled:
                on_update(
                    replace(
                        message,
                        sources=list(message.sources),
                        context_chunks=list(message.context_chunks),
                    )
                )

        entry = self.faq.lookup(query)
        if entry is not None:
            LOGGER.info("Layer 1: FAQ cache hit")
            message.content = entry.answer
            message.sources = list(entry.sources)
            message.is_streaming = False
            publish()
            return message

        try:
            chunks = await asyncio.to_thread(self.retriever.retrieve, query)
            if cancel.cancelled:
                message.is_streaming = False
                return message

            sources = extract_sources(chunks)
            context_chunks = to_context_chunks(chunks)

            direct = try_direct_answer(chunks, min_score=self.config.direct_answer_score)
            if direct is not None:
                LOGGER.info("Layer 2: direct chunk answer")
                message.content = direct.answer
                message.sources = direct.sources
                message.context_chunks = context_chunks
                message.is_streaming = False
                publish()
                return message

            context = format_context(chunks)
            LOGGER.info(
                "Layer 3: LLM generation, chunks: %d, context: %d chars", len(chunks), len(context)
            )
            state = await self._stream(context, query, reasoning, message, publish, cancel)
            if cancel.cancelled:
                message.is_streaming = False
                return message

            answer = state.answer
            thinking = state.thinking or None
            message.raw_thinking = thinking
            if is_garbage(answer):
                LOGGER.info("Layer 4: garbage detected, using fallback")
                answer = FALLBACK_MESSAGE
                thinking = None

            message.content = answer
            message.thinking = thinking
            message.is_thinking = False
            message.sources = sources
            message.context_chunks = context_chunks
            message.is_streaming = False
            publish()
            return message
        except Exception as exc:
            LOGGER.error(f"Generation error: {exc}", exc_info=True)
            message.content = ERROR_MESSAGE
            message.is_thinking = False
            message.is_streaming = False
            publish()
            return message

    async def _stream(
        self,
        context: str,
        query: str,
        reasoning: bool,
        message: Message,
        publish: Callable[[], None],
        cancel: CancellationToken,
    ) -> StreamState:
        parser = StreamParser()

        def render(state: StreamState) -> None:
            message.content = state.answer
            message.thinking = state.thinking or None
            message.is_thinking = state.in_reasoning
            publish()

        emitter = ThrottledEmitter(render, interval=self.config.flush_interval)

        def on_token(token: str) -> None:
            if cancel.cancelled:
                return
            emitter.push(parser.feed(token))

        await self.generate_fn(context, query, on_token, reasoning)
        if not cancel.cancelled:
            emitter.flush()
        return parser.state
