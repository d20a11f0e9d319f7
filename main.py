"""Spellwright clue engine — dev launcher.

    python main.py clue bridge --category structures --npc riddlemaster -n 2
    python main.py stream "Say hello like a wizard."
    python main.py serve --port 13013
"""

import argparse
import asyncio
import logging
import os
import sys
from pathlib import Path

from dotenv import load_dotenv

ROOT = Path(__file__).parent
load_dotenv(ROOT / ".env")

HOST = os.getenv("HOST", "0.0.0.0")
BACKEND_PORT = os.getenv("BACKEND_PORT", "13013")


async def _open(settings):
    from spellwright.config import build_orchestrator
    from spellwright.llm import LocalBackend

    orchestrator = build_orchestrator(settings)
    if isinstance(orchestrator.backend, LocalBackend):
        await orchestrator.backend.load_model()
    return orchestrator


async def run_clue(args, settings) -> int:
    from spellwright.models import PromptContext
    from spellwright.npcs import load_npc

    npc = load_npc(args.npc)
    if npc is None:
        print(f"Unknown NPC preset '{args.npc}'", file=sys.stderr)
        return 2

    ctx = PromptContext(
        npc=npc,
        target_word=args.word,
        category=args.category,
        clue_index=args.clue_number,
        previous_guesses=tuple(args.guess),
        active_modifiers=tuple(args.modifier),
    )
    async with await _open(settings) as orchestrator:
        result = await orchestrator.generate_clue(ctx)
    source = "fallback" if result.used_fallback else f"model, {result.generation_time_ms:.0f} ms"
    print(f"[{result.mood}] {result.clue_text}  ({source})")
    return 0


async def run_stream(args, settings) -> int:
    async with await _open(settings) as orchestrator:
        if not orchestrator.is_model_ready:
            print("No model ready.", file=sys.stderr)
            return 1
        async for token in orchestrator.iter_chat(args.system, args.message):
            print(token, end="", flush=True)
    print()
    return 0


def run_serve(args) -> int:
    import uvicorn

    uvicorn.run("spellwright.app:app", host=args.host, port=args.port, reload=args.reload)
    return 0


def main():
    parser = argparse.ArgumentParser(description="Spellwright clue engine dev launcher")
    parser.add_argument("--env-file", type=Path, default=None,
                        help="Extra .env file to load before reading settings")
    sub = parser.add_subparsers(dest="command", required=True)

    clue = sub.add_parser("clue", help="Generate one clue for a word")
    clue.add_argument("word")
    clue.add_argument("--category", required=True)
    clue.add_argument("--npc", default="riddlemaster", help="NPC preset slug (default: riddlemaster)")
    clue.add_argument("-n", "--clue-number", type=int, default=1)
    clue.add_argument("--guess", action="append", default=[], help="Previous wrong guess (repeatable)")
    clue.add_argument("--modifier", action="append", default=[], help="Active modifier (repeatable)")

    stream = sub.add_parser("stream", help="Stream a free-form reply")
    stream.add_argument("message")
    stream.add_argument("--system", default="", help="System prompt")

    serve = sub.add_parser("serve", help="Run the HTTP API")
    serve.add_argument("--host", default=HOST)
    serve.add_argument("--port", type=int, default=int(BACKEND_PORT))
    serve.add_argument("--reload", action="store_true")

    args = parser.parse_args()

    from spellwright.config import ConfigError, load_settings

    try:
        settings = load_settings(args.env_file)
    except ConfigError as e:
        print(e, file=sys.stderr)
        sys.exit(2)

    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.command == "serve":
        sys.exit(run_serve(args))
    if args.command == "clue":
        sys.exit(asyncio.run(run_clue(args, settings)))
    sys.exit(asyncio.run(run_stream(args, settings)))


if __name__ == "__main__":
    main()
