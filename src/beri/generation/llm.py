"""Local text generation with a streaming token callback."""

from __future__ import annotations

import asyncio
import logging
import threading
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, List, Optional

from transformers import AutoModelForCausalLM, AutoTokenizer, TextIteratorStreamer

DEFAULT_LLM_MODEL = "Qwen/Qwen3-0.6B"
DEFAULT_MAX_TOKENS = 250
DEFAULT_TEMPERATURE = 0.2

LOGGER = logging.getLogger(__name__)

TokenCallback = Callable[[str], None]
GenerateFn = Callable[[str, str, TokenCallback, bool], Awaitable[object]]
LoadProgress = Callable[[float, str], None]

NOT_FOUND_MESSAGE = (
    "I couldn't find this in the school information. Please check habselstree.org.uk "
    "or email admissionsboys@habselstree.org.uk."
)

SYSTEM_PROMPT = f"""You are BERI (Bespoke Education Retrieval Infrastructure), a helpful assistant for Haberdashers' Boys' School (Habs Boys).

Your role is to answer questions about the school using ONLY the provided context. You must:

1. Answer based solely on the information provided in the context
2. Cite sources by mentioning the source and section (e.g. "Source: Admissions — 11+ Year 7 Entry")
3. If the answer is not in the provided context, say "{NOT_FOUND_MESSAGE}"
4. Use clear, accessible language appropriate for prospective parents and students
5. Be concise — use bullet points for lists, keep answers focused
6. Never make up or assume information that isn't in the context
7. Use UK British spelling and grammar
8. Include specific numbers, dates, and figures when they appear in the context
9. Don't answer questions unrelated to the school

Remember: Only use the provided context. Do not invent facts."""


@dataclass(slots=True)
class GenerationConfig:
    model_name: str = DEFAULT_LLM_MODEL
    max_new_tokens: int = DEFAULT_MAX_TOKENS
    temperature: float = DEFAULT_TEMPERATURE
    device: str | None = None


def build_messages(context: str, query: str) -> List[Dict[str, str]]:
    """Chat messages for one retrieval-augmented question."""
    context_block = context.strip() or "(no relevant information was found)"
    return [
        {"role": "system", "content": SYSTEM_PROMPT},
        {"role": "user", "content": f"Context:\n{context_block}\n\nQuestion: {query}"},
    ]


class TransformersGenerator:
    """Causal LM from the Hugging Face hub, streamed token by token.

    Instances are callable with the ``generate(context, query, on_token, reasoning)``
    signature the orchestrator expects.
    """

    def __init__(self, config: GenerationConfig | None = None) -> None:
        self.config = config or GenerationConfig()
        self._tokenizer = None
        self._model = None

    @property
    def loaded(self) -> bool:
        return self._model is not None

    def load(self, on_progress: Optional[LoadProgress] = None) -> None:
        """Load tokenizer and weights; progress is reported in [0, 1]."""
        if self.loaded:
            if on_progress:
                on_progress(1.0, "Language model ready")
            return
        if on_progress:
            on_progress(0.0, f"Loading tokenizer for {self.config.model_name}...")
        self._tokenizer = AutoTokenizer.from_pretrained(self.config.model_name)
        if on_progress:
            on_progress(0.3, f"Loading weights for {self.config.model_name}...")
        model = AutoModelForCausalLM.from_pretrained(self.config.model_name, torch_dtype="auto")
        if self.config.device:
            model = model.to(self.config.device)
        model.eval()
        self._model = model
        LOGGER.info("Loaded language model %s on %s", self.config.model_name, model.device)
        if on_progress:
            on_progress(1.0, "Language model ready")

    def build_prompt(self, context: str, query: str, reasoning: bool) -> str:
        return self._tokenizer.apply_chat_template(
            build_messages(context, query),
            tokenize=False,
            add_generation_prompt=True,
            enable_thinking=reasoning,
        )

    async def generate(
        self,
        context: str,
        query: str,
        on_token: TokenCallback,
        reasoning: bool = False,
    ) -> str:
        """Stream the completion through ``on_token`` and return the full text."""
        if not self.loaded:
            await asyncio.to_thread(self.load)

        prompt = self.build_prompt(context, query, reasoning)
        inputs = self._tokenizer(prompt, return_tensors="pt").to(self._model.device)
        streamer = TextIteratorStreamer(self._tokenizer, skip_prompt=True, skip_special_tokens=True)

        kwargs = dict(inputs, streamer=streamer, max_new_tokens=self.config.max_new_tokens)
        if self.config.temperature > 0:
            kwargs.update(do_sample=True, temperature=self.config.temperature)
        else:
            kwargs.update(do_sample=False)

        errors: List[BaseException] = []

        def _run() -> None:
            try:
                self._model.generate(**kwargs)
            except Exception as exc:
                errors.append(exc)
                streamer.end()

        worker = threading.Thread(target=_run, name="beri-generate", daemon=True)
        worker.start()

        pieces: List[str] = []
        iterator = iter(streamer)
        while True:
            piece = await asyncio.to_thread(next, iterator, None)
            if piece is None:
                break
            if piece:
                pieces.append(piece)
                on_token(piece)

        await asyncio.to_thread(worker.join)
        if errors:
            raise errors[0]
        return "".join(pieces)

    __call__ = generate
