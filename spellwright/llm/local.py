"""In-process inference with llama.cpp (llama-cpp-python).

The GGUF model ships next to the game and is loaded explicitly with
load_model() before any chat call. Generation runs on a worker thread; tokens
cross back to the event loop through an asyncio.Queue. The llama.cpp context
is not safe for concurrent generation, so generations never overlap: a
call holds the backend's single-flight gate until its worker thread has
stopped. A timed-out or cancelled call returns at once and leaves the
stopping thread for the next holder of the gate to wait out.

There is no secondary model: a failed call is simply "no result".
"""

from __future__ import annotations

import asyncio
import logging
import threading
from collections.abc import AsyncIterator, Callable
from contextlib import aclosing
from pathlib import Path
from typing import Any

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

DEFAULT_MODEL_FILENAME = "llama-3.2-3b-q4_k_m.gguf"
STOP_SEQUENCES = ["User:", "\n\nUser:", "<|eot_id|>"]
JSON_ONLY_SUFFIX = "\n\nIMPORTANT: Respond with valid JSON only. No markdown, no explanation."

ModelFactory = Callable[..., Any]


def _llama_factory(**params: Any) -> Any:
    from llama_cpp import Llama

    return Llama(**params)


def _llama_stop_criteria(stop: threading.Event) -> Any:
    from llama_cpp import StoppingCriteriaList

    return StoppingCriteriaList([lambda input_ids, logits: stop.is_set()])


class LocalBackend:
    """llama.cpp model owned by this process.

    Args:
        config:         Generation options and per-call timeout. The
                        fallback model id is ignored.
        model_dir:      Directory holding the GGUF file.
        model_filename: GGUF file name inside model_dir.
        context_size:   Context window in tokens.
        gpu_layers:     Layers to offload to the GPU (99 = all).
        model_factory:  Callable building the model from keyword params;
                        defaults to llama_cpp.Llama.
        stop_criteria:  Callable turning the per-call stop flag into the
                        model's stopping_criteria, checked once per token.
    """

    def __init__(
        self,
        config: ModelChainConfig,
        model_dir: Path | str = "models",
        model_filename: str = DEFAULT_MODEL_FILENAME,
        context_size: int = 2048,
        gpu_layers: int = 99,
        model_factory: ModelFactory = _llama_factory,
        stop_criteria: Callable[[threading.Event], Any] = _llama_stop_criteria,
    ) -> None:
        self._config = config
        self._model_path = Path(model_dir) / model_filename
        self._context_size = context_size
        self._gpu_layers = gpu_layers
        self._factory = model_factory
        self._stop_criteria = stop_criteria
        self._model: Any = None
        self._gate = SingleFlightGate()
        self._load_lock = asyncio.Lock()
        self._closed = False

    @property
    def config(self) -> ModelChainConfig:
        return self._config

    @property
    def gate(self) -> SingleFlightGate:
        return self._gate

    @property
    def model_path(self) -> Path:
        return self._model_path

    @property
    def is_ready(self) -> bool:
        return self._model is not None and not self._closed

    # ------------------------------------------------------------------
    # Model lifecycle
    # ------------------------------------------------------------------

    async def load_model(self) -> bool:
        """Load the GGUF weights. Returns True once the model is usable.

        Takes a few seconds; weights are read on a worker thread.
        """
        async with self._load_lock:
            if self._model is not None:
                return True
            if self._closed:
                return False
            if not self._model_path.is_file():
                logger.warning("Model file not found: %s", self._model_path)
                return False

            params = {
                "model_path": str(self._model_path),
                "n_ctx": self._context_size,
                "n_gpu_layers": self._gpu_layers,
                "verbose": False,
            }
            try:
                self._model = await asyncio.to_thread(self._factory, **params)
            except Exception as e:
                logger.error("Failed to load model %s: %s", self._model_path.name, e)
                return False

        logger.info("Model loaded: %s (ctx=%d, gpu_layers=%d)",
                    self._model_path.name, self._context_size, self._gpu_layers)
        return True

    async def unload_model(self) -> None:
        """Free the model. Waits for an in-flight generation to finish first."""
        async with self._gate.hold("unload") as record:
            record.model = self._model_path.name
            model, self._model = self._model, None
            if model is not None:
                close = getattr(model, "close", None)
                if close is not None:
                    close()
                logger.info("Model unloaded: %s", self._model_path.name)

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self.unload_model()

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------

    def _messages(self, system_prompt: str, user_message: str) -> list[dict[str, str]]:
        messages: list[dict[str, str]] = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": user_message})
        return messages

    async def _generate(
        self,
        messages: list[dict[str, str]],
        cancel: asyncio.Event | None,
    ) -> AsyncIterator[str]:
        """Run one completion on a worker thread, yielding text deltas.

        Must be called with the gate held. Raises CallTimedOut, CallCancelled
        or LLMError. The worker is joined when the stream ends normally;
        otherwise it is flagged to stop and deferred on the gate.
        """
        model = self._model
        if model is None:
            raise LLMError("Model not loaded")

        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._config.timeout_seconds
        queue: asyncio.Queue[tuple[str, Any]] = asyncio.Queue()
        stop = threading.Event()
        options = self._config.options

        def produce() -> None:
            try:
                chunks = model.create_chat_completion(
                    messages=messages,
                    temperature=options.temperature,
                    max_tokens=options.max_tokens,
                    stop=STOP_SEQUENCES,
                    stopping_criteria=self._stop_criteria(stop),
                    stream=True,
                )
                for chunk in chunks:
                    if stop.is_set():
                        break
                    choices = chunk.get("choices") or [{}]
                    text = (choices[0].get("delta") or {}).get("content")
                    if text:
                        loop.call_soon_threadsafe(queue.put_nowait, ("token", text))
            except Exception as e:
                loop.call_soon_threadsafe(queue.put_nowait, ("error", e))
            finally:
                loop.call_soon_threadsafe(queue.put_nowait, ("end", None))

        worker = asyncio.ensure_future(asyncio.to_thread(produce))
        finished = False
        try:
            while True:
                kind, value = await wait_interruptibly(queue.get(), cancel=cancel, deadline=deadline)
                if kind == "token":
                    yield value
                elif kind == "error":
                    raise LLMError(f"Generation failed: {value}") from value
                else:
                    finished = True
                    break
        finally:
            stop.set()
            if finished:
                await asyncio.shield(worker)
            else:
                # The caller gets its answer now; the context stays busy until
                # the thread reaches the next stop check, so the next call waits.
                self._gate.defer(worker)

    async def _collect(
        self,
        label: str,
        system_prompt: str,
        user_message: str,
        cancel: asyncio.Event | None,
    ) -> str | None:
        if not self.is_ready:
            logger.warning("Model not loaded, cannot chat")
            return None

        parts: list[str] = []
        try:
            async with self._gate.hold(label, cancel) as record:
                record.model = self._model_path.name
                messages = self._messages(system_prompt, user_message)
                async with aclosing(self._generate(messages, cancel)) as tokens:
                    async for token in tokens:
                        parts.append(token)
        except CallTimedOut:
            logger.warning("Local %s timed out after %.1fs", label, self._config.timeout_seconds)
            return None
        except CallCancelled:
            logger.info("Local %s cancelled", label)
            return None
        except LLMError as e:
            logger.error("Local %s failed: %s", label, e)
            return None

        text = "".join(parts).strip()
        return text or None

    async def chat(
        self, system_prompt: str, user_message: str, *, cancel: asyncio.Event | None = None,
    ) -> str | None:
        """Return the full reply, or None on timeout, cancellation or error."""
        return await self._collect("chat", system_prompt, user_message, cancel)

    async def chat_structured(
        self,
        system_prompt: str,
        user_message: str,
        model: type[ModelT],
        *,
        cancel: asyncio.Event | None = None,
    ) -> ModelT | None:
        """Chat with a JSON-only instruction and validate the reply into `model`.

        llama.cpp has no server-side JSON mode here, so the system prompt must
        already describe the expected schema.
        """
        raw = await self._collect("chat_structured", system_prompt + JSON_ONLY_SUFFIX, user_message, cancel)
        if raw is None:
            return None
        try:
            return model.model_validate_json(extract_json(raw))
        except ValidationError as e:
            logger.warning("Structured reply did not match %s: %s\nRaw: %s", model.__name__, e, raw)
            return None

    async def stream_chat(
        self, system_prompt: str, user_message: str, *, cancel: asyncio.Event | None = None,
    ) -> AsyncIterator[str]:
        """Yield reply text as it is generated; a timeout truncates the stream."""
        if not self.is_ready:
            logger.warning("Model not loaded, cannot stream")
            return
        try:
            async with self._gate.hold("stream_chat", cancel) as record:
                record.model = self._model_path.name
                messages = self._messages(system_prompt, user_message)
                async with aclosing(self._generate(messages, cancel)) as tokens:
                    async for token in tokens:
                        yield token
        except CallTimedOut:
            logger.warning("Streaming timed out after %.1fs", self._config.timeout_seconds)
        except CallCancelled:
            logger.info("Streaming cancelled")
        except LLMError as e:
            logger.error("Streaming error: %s", e)

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
