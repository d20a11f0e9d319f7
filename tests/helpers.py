"""Test doubles shared across the suite."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Callable

from spellwright.llm.base import ModelT, deliver_stream


class StubBackend:
    """InferenceBackend that replays canned replies and records every call.

    replies:  returned by chat() in order; the last one repeats. An Exception
              instance is raised instead of returned.
    tokens:   yielded by stream_chat().
    """

    def __init__(
        self,
        replies: list[str | None | Exception] | None = None,
        tokens: list[str] | None = None,
        ready: bool = True,
    ) -> None:
        self.replies = list(replies or [None])
        self.tokens = list(tokens or [])
        self.ready = ready
        self.calls: list[tuple[str, str, str]] = []
        self.cancel_events: list[asyncio.Event | None] = []
        self.closed = 0

    @property
    def is_ready(self) -> bool:
        return self.ready

    def _next_reply(self) -> str | None:
        reply = self.replies.pop(0) if len(self.replies) > 1 else self.replies[0]
        if isinstance(reply, Exception):
            raise reply
        return reply

    async def chat(self, system_prompt, user_message, *, cancel=None):
        self.calls.append(("chat", system_prompt, user_message))
        self.cancel_events.append(cancel)
        return self._next_reply()

    async def chat_structured(self, system_prompt, user_message, model: type[ModelT], *, cancel=None):
        self.calls.append(("chat_structured", system_prompt, user_message))
        self.cancel_events.append(cancel)
        reply = self._next_reply()
        return None if reply is None else model.model_validate_json(reply)

    async def stream_chat(self, system_prompt, user_message, *, cancel=None) -> AsyncIterator[str]:
        self.calls.append(("stream_chat", system_prompt, user_message))
        self.cancel_events.append(cancel)
        for token in self.tokens:
            yield token

    async def stream_chat_callbacks(
        self,
        system_prompt: str,
        user_message: str,
        on_token: Callable[[str], None],
        on_done: Callable[[], None],
        *,
        cancel=None,
    ) -> None:
        await deliver_stream(self.stream_chat(system_prompt, user_message, cancel=cancel), on_token, on_done)

    async def aclose(self) -> None:
        self.closed += 1


class FakeLlama:
    """Stands in for llama_cpp.Llama; streams `chunks` as chat-completion deltas.

    Each chunk takes `delay` seconds; a passed stopping_criteria is checked
    after every chunk, as llama.cpp does after every sampled token.
    """

    def __init__(self, chunks: list[str] | None = None, delay: float = 0.0, error: Exception | None = None,
                 **params) -> None:
        self.params = params
        self.chunks = list(chunks or [])
        self.delay = delay
        self.error = error
        self.calls: list[dict] = []
        self.active = 0
        self.max_active = 0
        self.closed = False

    def create_chat_completion(self, **kwargs):
        import time

        self.calls.append(kwargs)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.error is not None:
                raise self.error
            stopping = kwargs.get("stopping_criteria")
            for text in self.chunks:
                if self.delay:
                    time.sleep(self.delay)
                if stopping is not None and stopping(None, None):
                    return
                yield {"choices": [{"delta": {"content": text}}]}
        finally:
            self.active -= 1

    def close(self) -> None:
        self.closed = True
