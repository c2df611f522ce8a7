"""Parsing of streamed model output into reasoning and answer.

Reasoning models wrap their scratch work in ``<think>...</think>`` before the
answer. Tokens arrive one at a time and a marker may be split across several
of them, so every transition re-derives ``thinking`` and ``answer`` from the
whole raw buffer rather than appending to them.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, replace
from typing import Callable, Iterable, Optional

THINK_OPEN = "<think>"
THINK_CLOSE = "</think>"


@dataclass(slots=True, frozen=True)
class StreamState:
    raw: str = ""
    thinking: str = ""
    answer: str = ""
    in_reasoning: bool = False
    reasoning_done: bool = False

    @property
    def reasoning_started(self) -> bool:
        return self.in_reasoning or self.reasoning_done


def advance(state: StreamState, token: str) -> StreamState:
    """Pure transition: the state after ``token`` has been received."""
    raw = state.raw + token

    if not state.reasoning_done:
        in_reasoning = state.in_reasoning or THINK_OPEN in raw
        if in_reasoning:
            start = raw.index(THINK_OPEN) + len(THINK_OPEN)
            end = raw.find(THINK_CLOSE, start)
            if end == -1:
                return replace(state, raw=raw, thinking=raw[start:].strip(), in_reasoning=True)
            return StreamState(
                raw=raw,
                thinking=raw[start:end].strip(),
                answer=raw[end + len(THINK_CLOSE) :].strip(),
                in_reasoning=False,
                reasoning_done=True,
            )
        return replace(state, raw=raw, answer=raw.strip())

    end = raw.index(THINK_CLOSE, raw.index(THINK_OPEN) + len(THINK_OPEN))
    return replace(state, raw=raw, answer=raw[end + len(THINK_CLOSE) :].strip())


def parse_tokens(tokens: Iterable[str], state: Optional[StreamState] = None) -> StreamState:
    """Fold a whole token sequence through :func:`advance`."""
    state = state or StreamState()
    for token in tokens:
        state = advance(state, token)
    return state


class StreamParser:
    """Mutable holder around :func:`advance` for callback-driven streams."""

    def __init__(self) -> None:
        self.state = StreamState()

    def feed(self, token: str) -> StreamState:
        self.state = advance(self.state, token)
        return self.state

    def reset(self) -> None:
        self.state = StreamState()


class ThrottledEmitter:
    """Forward state snapshots to ``callback`` at most once per ``interval`` seconds.

    ``flush`` always delivers the latest pending snapshot.
    """

    def __init__(
        self,
        callback: Callable[[StreamState], None],
        interval: float = 0.08,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.callback = callback
        self.interval = interval
        self._clock = clock
        self._last_emit: Optional[float] = None
        self._pending: Optional[StreamState] = None

    def push(self, state: StreamState) -> None:
        self._pending = state
        now = self._clock()
        if self._last_emit is None or now - self._last_emit >= self.interval:
            self._emit(now)

    def flush(self) -> None:
        if self._pending is not None:
            self._emit(self._clock())

    def _emit(self, now: float) -> None:
        state, self._pending = self._pending, None
        self._last_emit = now
        if state is not None:
            self.callback(state)
