import logging
from contextlib import asynccontextmanager
from pathlib import Path

from dotenv import load_dotenv
from fastapi import FastAPI

from spellwright.config import Settings, build_orchestrator, load_settings
from spellwright.llm import LocalBackend
from spellwright.orchestrator import ClueOrchestrator
from spellwright.routes import router

logger = logging.getLogger(__name__)

load_dotenv(Path(__file__).parent.parent / ".env")


def create_app(orchestrator: ClueOrchestrator | None = None, settings: Settings | None = None) -> FastAPI:
    """Build the API app.

    With no orchestrator one is built from settings (or the environment) at
    startup, the in-process model is loaded, and everything is closed again
    at shutdown. A supplied orchestrator is used as-is and left open.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if orchestrator is not None:
            yield
            return

        owned = build_orchestrator(settings or load_settings())
        if isinstance(owned.backend, LocalBackend):
            if not await owned.backend.load_model():
                logger.warning("Local model unavailable; serving static clues only")
        app.state.orchestrator = owned
        try:
            yield
        finally:
            await owned.aclose()

    app = FastAPI(title="Spellwright clue engine", lifespan=lifespan)
    if orchestrator is not None:
        app.state.orchestrator = orchestrator
    app.include_router(router, prefix="/api")
    return app


# Default app instance for uvicorn (configured from the environment)
app = create_app()
