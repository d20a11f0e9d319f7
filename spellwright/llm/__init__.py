"""Inference backends.

The orchestrator talks to a backend through the InferenceBackend protocol:

    stream_chat(system, user, cancel=...)    -> async iterator of text deltas
    stream_chat_callbacks(system, user, on_token, on_done, cancel=...)
    chat(system, user, cancel=...)           -> str | None
    chat_structured(system, user, Model, cancel=...) -> Model | None

OllamaBackend talks to an Ollama server (primary→fallback model chain).
LocalBackend runs a llama.cpp model in-process (single model, explicit
load_model()). Tests use StubBackend from tests/helpers.py instead.
"""

from .base import (  # noqa: F401
    CallCancelled,
    CallRecord,
    CallTimedOut,
    InferenceBackend,
    LLMError,
    SingleFlightGate,
    deliver_stream,
    wait_interruptibly,
)
from .local import LocalBackend  # noqa: F401
from .ollama import OllamaBackend  # noqa: F401
