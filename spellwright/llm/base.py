"""Shared inference-backend plumbing.

Every backend matches the InferenceBackend protocol below. Two variants ship
with the package:

    OllamaBackend: HTTP client for an Ollama server, primary→fallback model
                   chain per call.
    LocalBackend:  in-process llama.cpp model, single model, explicit
                   load_model() step.

Both serialise generation through a SingleFlightGate and never raise past
their public methods: failures come back as None (one-shot calls) or as a
truncated token stream (streaming calls).

Cancellation is an asyncio.Event threaded through every call. Each call also
carries its own deadline; whichever fires first interrupts the call.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import aclosing, asynccontextmanager
from typing import Literal, Protocol, TypeVar

from pydantic import BaseModel

logger = logging.getLogger(__name__)

T = TypeVar("T")
ModelT = TypeVar("ModelT", bound=BaseModel)

CallState = Literal[
    "idle",
    "acquiring_gate",
    "generating",
    "completed",
    "timed_out",
    "cancelled",
    "failed",
]


# ---------------------------------------------------------------------------
# Protocol: every backend implementation must match these signatures
# ---------------------------------------------------------------------------

class InferenceBackend(Protocol):
    @property
    def is_ready(self) -> bool: ...

    def stream_chat(
        self, system_prompt: str, user_message: str, *, cancel: asyncio.Event | None = None,
    ) -> AsyncIterator[str]: ...

    async def stream_chat_callbacks(
        self,
        system_prompt: str,
        user_message: str,
        on_token: Callable[[str], None],
        on_done: Callable[[], None],
        *,
        cancel: asyncio.Event | None = None,
    ) -> None: ...

    async def chat(
        self, system_prompt: str, user_message: str, *, cancel: asyncio.Event | None = None,
    ) -> str | None: ...

    async def chat_structured(
        self,
        system_prompt: str,
        user_message: str,
        model: type[ModelT],
        *,
        cancel: asyncio.Event | None = None,
    ) -> ModelT | None: ...

    async def aclose(self) -> None: ...


# ---------------------------------------------------------------------------
# Errors: internal to the backends, never raised from public methods
# ---------------------------------------------------------------------------

class LLMError(RuntimeError):
    """Raised when a model cannot be reached or returns an unusable reply."""


class CallTimedOut(LLMError):
    """The per-call deadline passed before the model finished."""


class CallCancelled(LLMError):
    """The caller's cancellation event fired."""


# ---------------------------------------------------------------------------
# Single-flight gate
# ---------------------------------------------------------------------------

class CallRecord(BaseModel):
    """Lifecycle of one backend call, kept for logging and instrumentation."""

    label: str
    model: str = ""
    state: CallState = "idle"
    started_at: float | None = None   # generation window start (loop clock)
    finished_at: float | None = None  # generation window end


class SingleFlightGate:
    """Admits one generation at a time; waiters are served in FIFO order.

    hold() releases the gate however the body exits, so a stuck call can block
    later calls only until its own deadline. Work the holder abandoned but
    could not stop at once (a worker thread finishing its current token) is
    registered with defer(); the next holder waits for it before its body runs.
    """

    def __init__(self, history: int = 100) -> None:
        self._lock = asyncio.Lock()
        self._deferred: set[asyncio.Future] = set()
        self.records: deque[CallRecord] = deque(maxlen=history)

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    @property
    def draining(self) -> bool:
        """Abandoned work from an earlier holder is still running."""
        return bool(self._deferred)

    def defer(self, work: asyncio.Future) -> None:
        """Keep later holders out until `work` has finished."""
        if work.done():
            return
        self._deferred.add(work)
        work.add_done_callback(self._deferred.discard)

    async def _acquire(self, cancel: asyncio.Event | None) -> None:
        await wait_interruptibly(self._lock.acquire(), cancel=cancel)
        if not self._deferred:
            return
        try:
            # asyncio.wait never cancels the deferred work itself.
            await wait_interruptibly(asyncio.wait(set(self._deferred)), cancel=cancel)
        except BaseException:
            self._lock.release()
            raise

    @asynccontextmanager
    async def hold(
        self, label: str, cancel: asyncio.Event | None = None,
    ) -> AsyncIterator[CallRecord]:
        record = CallRecord(label=label, state="acquiring_gate")
        self.records.append(record)
        try:
            await self._acquire(cancel)
        except CallCancelled:
            record.state = "cancelled"
            logger.debug("gate wait cancelled label=%s", label)
            raise

        loop = asyncio.get_running_loop()
        record.state = "generating"
        record.started_at = loop.time()
        try:
            yield record
        except CallTimedOut:
            record.state = "timed_out"
            raise
        except (CallCancelled, asyncio.CancelledError, GeneratorExit):
            record.state = "cancelled"
            raise
        except Exception:
            record.state = "failed"
            raise
        else:
            if record.state == "generating":
                record.state = "completed"
        finally:
            record.finished_at = loop.time()
            self._lock.release()
            logger.debug(
                "gate released label=%s model=%s state=%s elapsed=%.3fs",
                label, record.model, record.state,
                record.finished_at - record.started_at,
            )


# ---------------------------------------------------------------------------
# Deadline / cancellation race
# ---------------------------------------------------------------------------

async def wait_interruptibly(
    aw: Awaitable[T],
    *,
    cancel: asyncio.Event | None = None,
    deadline: float | None = None,
) -> T:
    """Await aw, racing it against the cancel event and a loop-clock deadline.

    Raises CallCancelled or CallTimedOut; the losing awaitable is cancelled.
    If aw completes, its result wins even when cancel fired at the same time.
    """
    loop = asyncio.get_running_loop()
    timeout = None
    if deadline is not None:
        timeout = deadline - loop.time()
        if timeout <= 0:
            _discard(aw)
            raise CallTimedOut("deadline passed")
    if cancel is not None and cancel.is_set():
        _discard(aw)
        raise CallCancelled("cancelled by caller")

    task = asyncio.ensure_future(aw)
    waiters: set[asyncio.Future] = {task}
    cancel_waiter = None
    if cancel is not None:
        cancel_waiter = asyncio.ensure_future(cancel.wait())
        waiters.add(cancel_waiter)

    try:
        done, _ = await asyncio.wait(waiters, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        task.cancel()
        raise
    finally:
        if cancel_waiter is not None:
            cancel_waiter.cancel()

    if task in done:
        return task.result()

    task.cancel()
    try:
        await task
    except (asyncio.CancelledError, Exception):
        pass
    if cancel_waiter is not None and cancel_waiter in done:
        raise CallCancelled("cancelled by caller")
    raise CallTimedOut(f"no reply within {timeout:.1f}s")


def _discard(aw: Awaitable) -> None:
    # Close a coroutine that will never be awaited so it does not warn.
    close = getattr(aw, "close", None)
    if close is not None:
        close()


# ---------------------------------------------------------------------------
# Callback adapter
# ---------------------------------------------------------------------------

async def deliver_stream(
    tokens: AsyncIterator[str],
    on_token: Callable[[str], None],
    on_done: Callable[[], None],
) -> None:
    """Push a token stream into callbacks.

    on_done fires exactly once, after the stream is closed (and so after the
    backend has released its gate), even if on_token raises.
    """
    try:
        async with aclosing(tokens) as stream:
            async for token in stream:
                on_token(token)
    except Exception:
        logger.exception("on_token callback failed; stream abandoned")
    finally:
        on_done()
