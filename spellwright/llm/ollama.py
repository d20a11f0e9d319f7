"""Ollama REST client with a primary→fallback model chain.

Wire format:
  GET  /api/tags      {"models": [{"name": "qwen2.5:7b"}, ...]}
  POST /api/chat      {"model", "messages": [{"role", "content"}], "stream",
                       "options", "format"?}
                      one-shot reply: {"message": {"content": "..."}}
                      streamed reply: one JSON object per line, each with
                      message.content (incremental text) and "done"
  POST /api/generate  {"model", "keep_alive"}  (residency hint only)

Each chat call tries the primary model, then once more with the fallback
model if the primary failed or timed out. The whole chain runs under the
backend's single-flight gate.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import aclosing
from typing import Any

import httpx
from pydantic import ValidationError

from spellwright.models import ModelChainConfig
from spellwright.parsing import extract_json

from .base import (
    CallCancelled,
    CallTimedOut,
    LLMError,
    ModelT,
    SingleFlightGate,
    deliver_stream,
    wait_interruptibly,
)

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "http://localhost:11434"


class OllamaBackend:
    """Async client for an Ollama server.

    Args:
        config:       Model chain and per-call limits.
        base_url:     Server URL, e.g. "http://localhost:11434".
        client:       Optional preconfigured httpx.AsyncClient. The backend
                      owns it either way and closes it in aclose().
        assume_ready: Treat the server as usable until a call fails. When
                      False, refresh() must find a model before is_ready.
    """

    def __init__(
        self,
        config: ModelChainConfig,
        base_url: str = DEFAULT_BASE_URL,
        client: httpx.AsyncClient | None = None,
        assume_ready: bool = True,
    ) -> None:
        self._config = config
        self._base_url = base_url.rstrip("/")
        # Each call races its own deadline; the client timeout only guards
        # against a socket that never answers.
        self._client = client or httpx.AsyncClient(timeout=config.timeout_seconds + 5)
        self._gate = SingleFlightGate()
        self._ready = assume_ready
        self._closed = False

    @property
    def config(self) -> ModelChainConfig:
        return self._config

    @property
    def gate(self) -> SingleFlightGate:
        return self._gate

    @property
    def is_ready(self) -> bool:
        return self._ready and not self._closed

    def _models(self) -> list[str]:
        models = [self._config.primary_model_id]
        fallback = self._config.fallback_model_id
        if fallback and fallback != self._config.primary_model_id:
            models.append(fallback)
        return models

    def _deadline(self) -> float:
        return asyncio.get_running_loop().time() + self._config.timeout_seconds

    # ------------------------------------------------------------------
    # Model availability
    # ------------------------------------------------------------------

    async def check_models(self) -> tuple[bool, bool]:
        """Return (primary_available, fallback_available) from /api/tags."""
        if self._closed:
            return False, False
        try:
            resp = await self._client.get(f"{self._base_url}/api/tags")
            resp.raise_for_status()
            models = resp.json().get("models") or []
        except (httpx.HTTPError, ValueError, AttributeError) as e:
            logger.warning("Cannot list Ollama models at %s: %s", self._base_url, e)
            return False, False

        names = [m["name"] for m in models if isinstance(m, dict) and isinstance(m.get("name"), str)]

        def present(model_id: str) -> bool:
            return bool(model_id) and any(
                name == model_id or name.startswith(model_id + ":") for name in names
            )

        return present(self._config.primary_model_id), present(self._config.fallback_model_id)

    async def refresh(self) -> bool:
        """Re-check the server; ready when either model is installed."""
        primary, fallback = await self.check_models()
        self._ready = primary or fallback
        if not primary and fallback:
            logger.warning(
                "Primary model '%s' not installed; only '%s' is available",
                self._config.primary_model_id, self._config.fallback_model_id,
            )
        elif not self._ready:
            logger.warning("No configured model is installed on %s", self._base_url)
        return self._ready

    # ------------------------------------------------------------------
    # Request building
    # ------------------------------------------------------------------

    def _build_payload(
        self,
        model: str,
        system_prompt: str,
        user_message: str,
        stream: bool,
        json_mode: bool = False,
    ) -> dict[str, Any]:
        messages: list[dict[str, str]] = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": user_message})

        body: dict[str, Any] = {
            "model": model,
            "messages": messages,
            "stream": stream,
            "options": self._config.options.to_ollama(),
        }
        if json_mode:
            body["format"] = "json"
        return body

    def _parse_response(self, data: Any) -> str:
        """Extract the reply text from a non-streamed /api/chat body."""
        message = data.get("message") if isinstance(data, dict) else None
        content = message.get("content") if isinstance(message, dict) else None
        if not isinstance(content, str) or not content.strip():
            raise LLMError("Unexpected response format from Ollama")
        return content

    async def _send(
        self,
        request_coro: Awaitable[httpx.Response],
        cancel: asyncio.Event | None,
        deadline: float,
    ) -> httpx.Response:
        try:
            resp = await wait_interruptibly(request_coro, cancel=cancel, deadline=deadline)
            resp.raise_for_status()
        except httpx.ConnectError as e:
            raise LLMError(f"Cannot connect to Ollama at {self._base_url}") from e
        except httpx.HTTPStatusError as e:
            await e.response.aclose()
            raise LLMError(f"Ollama returned HTTP {e.response.status_code}") from e
        except httpx.TimeoutException as e:
            raise CallTimedOut(f"Ollama timed out after {self._config.timeout_seconds}s") from e
        except httpx.HTTPError as e:
            raise LLMError(f"Ollama request failed: {e}") from e
        return resp

    # ------------------------------------------------------------------
    # One-shot chat
    # ------------------------------------------------------------------

    async def _chat_once(
        self,
        model: str,
        system_prompt: str,
        user_message: str,
        json_mode: bool,
        cancel: asyncio.Event | None,
    ) -> str:
        url = f"{self._base_url}/api/chat"
        body = self._build_payload(model, system_prompt, user_message, stream=False, json_mode=json_mode)
        logger.debug("llm call model=%s url=%s json=%s prompt_len=%d",
                     model, url, json_mode, len(system_prompt) + len(user_message))

        resp = await self._send(self._client.post(url, json=body), cancel, self._deadline())
        try:
            data = resp.json()
        except ValueError as e:
            raise LLMError("Ollama returned a non-JSON body") from e
        text = self._parse_response(data)
        logger.debug("llm response model=%s len=%d", model, len(text))
        return text

    async def _chat_chain(
        self,
        label: str,
        system_prompt: str,
        user_message: str,
        json_mode: bool,
        cancel: asyncio.Event | None,
    ) -> str | None:
        if self._closed:
            return None
        try:
            async with self._gate.hold(label, cancel) as record:
                last_error: LLMError | None = None
                for model in self._models():
                    record.model = model
                    if last_error is not None:
                        logger.info("Primary model failed; retrying with fallback '%s'", model)
                    try:
                        return await self._chat_once(model, system_prompt, user_message, json_mode, cancel)
                    except CallCancelled:
                        raise
                    except LLMError as e:
                        logger.warning("Ollama model '%s' failed: %s", model, e)
                        last_error = e
                record.state = "timed_out" if isinstance(last_error, CallTimedOut) else "failed"
                return None
        except CallCancelled:
            logger.info("Ollama %s cancelled", label)
            return None

    async def chat(
        self, system_prompt: str, user_message: str, *, cancel: asyncio.Event | None = None,
    ) -> str | None:
        """Return the full reply text, or None if both models failed."""
        return await self._chat_chain("chat", system_prompt, user_message, False, cancel)

    async def chat_structured(
        self,
        system_prompt: str,
        user_message: str,
        model: type[ModelT],
        *,
        cancel: asyncio.Event | None = None,
    ) -> ModelT | None:
        """JSON-mode chat validated into `model`; None on any failure."""
        raw = await self._chat_chain("chat_structured", system_prompt, user_message, True, cancel)
        if raw is None:
            return None
        try:
            return model.model_validate_json(extract_json(raw))
        except ValidationError as e:
            logger.warning("Structured reply did not match %s: %s", model.__name__, e)
            return None

    # ------------------------------------------------------------------
    # Streaming chat
    # ------------------------------------------------------------------

    async def _stream_once(
        self,
        model: str,
        system_prompt: str,
        user_message: str,
        cancel: asyncio.Event | None,
    ) -> AsyncIterator[str]:
        url = f"{self._base_url}/api/chat"
        body = self._build_payload(model, system_prompt, user_message, stream=True)
        deadline = self._deadline()
        logger.debug("llm stream model=%s url=%s", model, url)

        request = self._client.build_request("POST", url, json=body)
        resp = await self._send(self._client.send(request, stream=True), cancel, deadline)
        try:
            lines = resp.aiter_lines()
            while True:
                line = await wait_interruptibly(_next_or_none(lines), cancel=cancel, deadline=deadline)
                if line is None:
                    break
                if not line.strip():
                    continue
                try:
                    fragment = json.loads(line)
                except json.JSONDecodeError as e:
                    raise LLMError(f"Malformed stream fragment from Ollama: {line[:80]!r}") from e
                if not isinstance(fragment, dict):
                    raise LLMError(f"Malformed stream fragment from Ollama: {line[:80]!r}")
                message = fragment.get("message") or {}
                token = message.get("content") if isinstance(message, dict) else None
                if isinstance(token, str) and token:
                    yield token
                if fragment.get("done") is True:
                    break
        except httpx.HTTPError as e:
            raise LLMError(f"Ollama stream broke off: {e}") from e
        finally:
            await resp.aclose()

    async def stream_chat(
        self, system_prompt: str, user_message: str, *, cancel: asyncio.Event | None = None,
    ) -> AsyncIterator[str]:
        """Yield reply text as it is generated.

        Falls back to the second model only if the first produced nothing.
        Timeouts and errors after the first token truncate the stream.
        """
        if self._closed:
            return
        try:
            async with self._gate.hold("stream_chat", cancel) as record:
                for model in self._models():
                    record.model = model
                    record.state = "generating"
                    emitted = False
                    try:
                        stream = self._stream_once(model, system_prompt, user_message, cancel)
                        async with aclosing(stream) as tokens:
                            async for token in tokens:
                                emitted = True
                                yield token
                        return
                    except CallCancelled:
                        raise
                    except LLMError as e:
                        logger.warning("Ollama stream on '%s' failed: %s", model, e)
                        record.state = "timed_out" if isinstance(e, CallTimedOut) else "failed"
                        if emitted:
                            return
        except CallCancelled:
            logger.info("Ollama stream cancelled")

    async def stream_chat_callbacks(
        self,
        system_prompt: str,
        user_message: str,
        on_token: Callable[[str], None],
        on_done: Callable[[], None],
        *,
        cancel: asyncio.Event | None = None,
    ) -> None:
        await deliver_stream(self.stream_chat(system_prompt, user_message, cancel=cancel), on_token, on_done)

    # ------------------------------------------------------------------
    # Residency hints and teardown
    # ------------------------------------------------------------------

    async def set_keep_alive(self, model: str, keep_alive: str) -> None:
        """Ask Ollama to keep a model loaded ("5m") or drop it ("0"). Best effort."""
        if self._closed:
            logger.debug("keep_alive hint for %s skipped: backend closed", model)
            return
        try:
            await self._client.post(
                f"{self._base_url}/api/generate",
                json={"model": model, "keep_alive": keep_alive},
            )
        except httpx.HTTPError as e:
            logger.debug("keep_alive hint for %s ignored: %s", model, e)

    async def unload(self) -> None:
        for model in self._models():
            await self.set_keep_alive(model, "0")

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._client.aclose()


async def _next_or_none(lines: AsyncIterator[str]) -> str | None:
    try:
        return await lines.__anext__()
    except StopAsyncIteration:
        return None
