"""Runtime configuration from the environment (and an optional .env file)."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Literal

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from spellwright.fallback import DEFAULT_CLUES_PATH, StaticFallbackStore
from spellwright.llm import InferenceBackend, LocalBackend, OllamaBackend
from spellwright.llm.local import DEFAULT_MODEL_FILENAME
from spellwright.llm.ollama import DEFAULT_BASE_URL
from spellwright.models import GenerationOptions, ModelChainConfig
from spellwright.orchestrator import ClueOrchestrator

logger = logging.getLogger(__name__)

BackendKind = Literal["ollama", "local"]

# env var -> Settings field
_ENV_FIELDS = {
    "SPELLWRIGHT_BACKEND": "backend",
    "OLLAMA_URL": "ollama_url",
    "PRIMARY_MODEL": "primary_model",
    "FALLBACK_MODEL": "fallback_model",
    "MODEL_DIR": "model_dir",
    "MODEL_FILENAME": "model_filename",
    "CONTEXT_SIZE": "context_size",
    "GPU_LAYERS": "gpu_layers",
    "TEMPERATURE": "temperature",
    "MAX_TOKENS": "max_tokens",
    "LLM_TIMEOUT": "timeout_seconds",
    "FALLBACK_CLUES_PATH": "fallback_clues_path",
    "LOG_LEVEL": "log_level",
}


class ConfigError(ValueError):
    """A configuration value is missing or malformed."""


class Settings(BaseModel):
    model_config = ConfigDict(frozen=True, protected_namespaces=())

    backend: BackendKind = "ollama"
    ollama_url: str = DEFAULT_BASE_URL
    primary_model: str = "qwen2.5:7b"
    fallback_model: str = "llama3.2:3b"
    model_dir: Path = Path("models")
    model_filename: str = DEFAULT_MODEL_FILENAME
    context_size: int = Field(default=2048, gt=0)
    gpu_layers: int = Field(default=99, ge=0)
    temperature: float = Field(default=0.8, ge=0)
    max_tokens: int = Field(default=200, gt=0)
    timeout_seconds: float = Field(default=15.0, gt=0)
    fallback_clues_path: Path = DEFAULT_CLUES_PATH
    log_level: str = "INFO"

    def chain_config(self) -> ModelChainConfig:
        return ModelChainConfig(
            primary_model_id=self.primary_model,
            fallback_model_id=self.fallback_model,
            timeout_seconds=self.timeout_seconds,
            options=GenerationOptions(temperature=self.temperature, max_tokens=self.max_tokens),
        )


def load_settings(env_file: Path | str | None = None) -> Settings:
    """Read settings from os.environ after loading env_file (if given).

    Unset or empty variables keep their defaults. Raises ConfigError when a
    value does not validate.
    """
    if env_file is not None:
        load_dotenv(env_file)

    values: dict[str, str] = {}
    for env_name, field in _ENV_FIELDS.items():
        raw = os.getenv(env_name, "").strip()
        if raw:
            values[field] = raw.lower() if field == "backend" else raw
    try:
        return Settings.model_validate(values)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration: {e}") from e


def build_backend(settings: Settings) -> InferenceBackend:
    chain = settings.chain_config()
    if settings.backend == "local":
        return LocalBackend(
            chain,
            model_dir=settings.model_dir,
            model_filename=settings.model_filename,
            context_size=settings.context_size,
            gpu_layers=settings.gpu_layers,
        )
    return OllamaBackend(chain, base_url=settings.ollama_url)


def build_orchestrator(settings: Settings, backend: InferenceBackend | None = None) -> ClueOrchestrator:
    """Wire a backend and the static clue table.

    The in-process model is not loaded here; callers await
    backend.load_model() when they are ready to pay for it.
    """
    store = StaticFallbackStore()
    store.load_file(settings.fallback_clues_path)
    if backend is None:
        backend = build_backend(settings)
    logger.info("Clue engine using %s backend (%d static words)", settings.backend, store.word_count)
    return ClueOrchestrator(backend, store)
