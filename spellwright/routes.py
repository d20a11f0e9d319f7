"""HTTP endpoints: health, clue generation, raw streaming chat, model status."""

from __future__ import annotations

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from spellwright.llm import OllamaBackend
from spellwright.models import ClueResult, NPCIdentity, PromptContext
from spellwright.npcs import list_presets, load_npc
from spellwright.orchestrator import ClueOrchestrator

router = APIRouter()


class ClueRequest(BaseModel):
    """Either a preset slug or an inline NPC; inline fields win when both are set."""

    preset: str | None = None
    npc: NPCIdentity | None = None
    target_word: str = Field(min_length=1)
    category: str
    clue_index: int = Field(default=1, ge=1)
    previous_guesses: list[str] = []
    active_modifiers: list[str] = []


class ChatBody(BaseModel):
    system_prompt: str = ""
    user_message: str


def _orchestrator(request: Request) -> ClueOrchestrator:
    return request.app.state.orchestrator


@router.get("/health")
async def health(request: Request):
    orchestrator = _orchestrator(request)
    return {
        "status": "ok",
        "model_ready": orchestrator.is_model_ready,
        "fallback_ready": orchestrator.is_fallback_available,
    }


@router.get("/npcs")
async def npcs():
    """List bundled NPC presets."""
    return list_presets()


@router.post("/clue", response_model=ClueResult)
async def clue(body: ClueRequest, request: Request):
    """Generate one clue. Always answers with a clue once the request validates."""
    npc = body.npc
    if npc is None:
        if not body.preset:
            raise HTTPException(422, "Either 'npc' or 'preset' is required")
        npc = load_npc(body.preset)
        if npc is None:
            raise HTTPException(404, f"Unknown NPC preset '{body.preset}'")

    ctx = PromptContext(
        npc=npc,
        target_word=body.target_word,
        category=body.category,
        clue_index=body.clue_index,
        previous_guesses=tuple(body.previous_guesses),
        active_modifiers=tuple(body.active_modifiers),
    )
    return await _orchestrator(request).generate_clue(ctx)


@router.post("/chat/stream")
async def chat_stream(body: ChatBody, request: Request):
    """Stream a free-form reply as plain text. Empty body when no model is ready."""
    tokens = _orchestrator(request).iter_chat(body.system_prompt, body.user_message)
    return StreamingResponse(tokens, media_type="text/plain; charset=utf-8")


@router.get("/models")
async def models(request: Request):
    """Which configured models the backend can use right now."""
    backend = _orchestrator(request).backend
    if isinstance(backend, OllamaBackend):
        primary, fallback = await backend.check_models()
        return {"primary": primary, "fallback": fallback}
    return {"primary": backend.is_ready, "fallback": False}
