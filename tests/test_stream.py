"""Tests for reasoning/answer stream parsing."""

from beri.generation.stream import (
    StreamParser,
    StreamState,
    ThrottledEmitter,
    advance,
    parse_tokens,
)


class TestAdvance:
    """Test the pure stream transition."""

    def test_reasoning_then_answer(self):
        tokens = ["<think>", "The fees", " are listed", "</think>", "Fees are", " £10,423 per term."]

        state = parse_tokens(tokens)

        assert state.thinking == "The fees are listed"
        assert state.answer == "Fees are £10,423 per term."
        assert state.reasoning_done is True
        assert state.in_reasoning is False

    def test_markers_split_across_tokens(self):
        tokens = ["<th", "ink>", "plan", "</th", "ink>", "answer"]

        state = parse_tokens(tokens)

        assert state.thinking == "plan"
        assert state.answer == "answer"

    def test_no_reasoning(self):
        state = parse_tokens(["Hello", " world"])

        assert state.answer == "Hello world"
        assert state.thinking == ""
        assert state.reasoning_started is False

    def test_unclosed_reasoning(self):
        state = parse_tokens(["<think>", "still", " going"])

        assert state.in_reasoning is True
        assert state.thinking == "still going"
        assert state.answer == ""

    def test_in_reasoning_while_thinking(self):
        state = parse_tokens(["<think>", "step one"])
        assert state.reasoning_started is True

        state = advance(state, "</think>")
        assert state.in_reasoning is False
        assert state.reasoning_done is True

    def test_does_not_mutate_input(self):
        initial = StreamState()
        after = advance(initial, "<think>")

        assert initial.raw == ""
        assert after.raw == "<think>"

    def test_concatenation_equivalence(self):
        """Feeding tokens one at a time equals feeding the joined text."""
        tokens = ["<thi", "nk>a b", "</", "think> c", "d"]
        assert parse_tokens(tokens).answer == parse_tokens(["".join(tokens)]).answer
        assert parse_tokens(tokens).thinking == parse_tokens(["".join(tokens)]).thinking


class TestStreamParser:
    """Test the stateful wrapper."""

    def test_feed_and_reset(self):
        parser = StreamParser()
        parser.feed("<think>x</think>")
        state = parser.feed("y")

        assert state.answer == "y"
        parser.reset()
        assert parser.state == StreamState()


class TestThrottledEmitter:
    """Test update coalescing."""

    def test_coalesces_within_interval(self):
        now = [0.0]
        emitted = []
        emitter = ThrottledEmitter(emitted.append, interval=0.08, clock=lambda: now[0])

        for moment, text in [(0.0, "a"), (0.01, "ab"), (0.05, "abc"), (0.1, "abcd")]:
            now[0] = moment
            emitter.push(StreamState(raw=text, answer=text))

        assert [state.answer for state in emitted] == ["a", "abcd"]

    def test_flush_delivers_pending(self):
        now = [0.0]
        emitted = []
        emitter = ThrottledEmitter(emitted.append, interval=0.08, clock=lambda: now[0])

        emitter.push(StreamState(answer="first"))
        now[0] = 0.02
        emitter.push(StreamState(answer="latest"))
        emitter.flush()

        assert [state.answer for state in emitted] == ["first", "latest"]

    def test_flush_without_pending(self):
        emitted = []
        emitter = ThrottledEmitter(emitted.append)

        emitter.flush()
        emitter.push(StreamState(answer="only"))
        emitter.flush()

        assert len(emitted) == 1
