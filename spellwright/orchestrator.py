"""Clue orchestrator: always produces a clue.

Tiers, tried in order:
  1. Live model:   assemble the prompt, one-shot chat, parse + leak check.
  2. Static table: pre-authored clue for the word and clue number.
  3. Generic:      category and letter count; cannot fail.

A failure in one tier (backend not ready, timeout, garbage reply, leaked
word, word not in the table) just moves on to the next one.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator, Callable
from contextlib import aclosing

from spellwright.fallback import StaticFallbackStore
from spellwright.llm.base import InferenceBackend, ModelT, deliver_stream
from spellwright.models import DEFAULT_MOOD, ClueResult, PromptContext
from spellwright.parsing import parse_clue
from spellwright.prompts import build_clue_prompt

logger = logging.getLogger(__name__)


def generic_clue(category: str, word: str) -> ClueResult:
    """Last-resort clue built from what the player already knows."""
    return ClueResult(
        clue_text=f'Think about the category "{category}" — the answer has {len(word)} letters.',
        mood=DEFAULT_MOOD,
        used_fallback=True,
        generation_time_ms=0.0,
    )


class ClueOrchestrator:
    """Composes prompt assembly, a backend, the parser and the static store.

    Owns the cancellation event threaded into every backend call; aclose()
    fires it and tears the backend down.
    """

    def __init__(self, backend: InferenceBackend, store: StaticFallbackStore | None = None) -> None:
        self._backend = backend
        self._store = store or StaticFallbackStore()
        self._cancel = asyncio.Event()

    @property
    def backend(self) -> InferenceBackend:
        return self._backend

    @property
    def store(self) -> StaticFallbackStore:
        return self._store

    @property
    def is_model_ready(self) -> bool:
        return self._backend.is_ready

    @property
    def is_fallback_available(self) -> bool:
        return self._store.is_loaded

    @property
    def is_ready(self) -> bool:
        """At least one real clue source (model or static table) is usable."""
        return self.is_model_ready or self.is_fallback_available

    # ------------------------------------------------------------------
    # Clue generation
    # ------------------------------------------------------------------

    async def generate_clue(self, ctx: PromptContext) -> ClueResult:
        """Return a clue for ctx. Never None, never empty."""
        if self.is_model_ready:
            clue = await self._model_clue(ctx)
            if clue is not None:
                return clue
            logger.warning("Model clue generation failed, trying static clues")

        if self._store.has_word(ctx.target_word):
            clue = self._store.get_clue(ctx.target_word, ctx.clue_index)
            if clue is not None and clue.clue_text.strip():
                logger.info('Using static clue for "%s" (clue #%d)', ctx.target_word, ctx.clue_index)
                return clue

        logger.warning('No clue source available for "%s"; using generic clue', ctx.target_word)
        return generic_clue(ctx.category, ctx.target_word)

    async def _model_clue(self, ctx: PromptContext) -> ClueResult | None:
        try:
            prompt = build_clue_prompt(ctx)
            started = time.perf_counter()
            raw = await self._backend.chat(prompt.system_prompt, prompt.user_message, cancel=self._cancel)
            elapsed_ms = (time.perf_counter() - started) * 1000
            if not raw:
                return None

            parsed = parse_clue(raw, ctx.target_word)
            if parsed is None:
                return None
        except Exception:
            # Backends report failure as None, so anything raised here is a bug.
            logger.exception("Model clue error")
            return None

        return parsed.model_copy(update={"used_fallback": False, "generation_time_ms": elapsed_ms})

    # ------------------------------------------------------------------
    # Raw chat pass-through (no prompt assembly, no parsing, no fallback)
    # ------------------------------------------------------------------

    async def stream_chat(
        self,
        system_prompt: str,
        user_message: str,
        on_token: Callable[[str], None],
        on_done: Callable[[], None],
    ) -> None:
        """Stream a free-form reply into callbacks. on_done always fires once."""
        if not self.is_model_ready:
            logger.warning("Cannot stream: model not ready")
            on_done()
            return
        await deliver_stream(self.iter_chat(system_prompt, user_message), on_token, on_done)

    async def iter_chat(self, system_prompt: str, user_message: str) -> AsyncIterator[str]:
        """Async-iterator form of stream_chat."""
        if not self.is_model_ready:
            logger.warning("Cannot stream: model not ready")
            return
        stream = self._backend.stream_chat(system_prompt, user_message, cancel=self._cancel)
        async with aclosing(stream) as tokens:
            async for token in tokens:
                yield token

    async def chat_structured(
        self, system_prompt: str, user_message: str, model: type[ModelT],
    ) -> ModelT | None:
        if not self.is_model_ready:
            logger.warning("Cannot use JSON mode: model not ready")
            return None
        return await self._backend.chat_structured(system_prompt, user_message, model, cancel=self._cancel)

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    async def aclose(self) -> None:
        self._cancel.set()
        await self._backend.aclose()

    async def __aenter__(self) -> ClueOrchestrator:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()
