"""CLI entrypoint for serving the story_play HTTP API."""

from __future__ import annotations

import argparse
import os

import uvicorn

from story_play.adapters.observability import configure_runtime_logging


def build_arg_parser() -> argparse.ArgumentParser:
    """Create CLI args for the local API server process."""
    parser = argparse.ArgumentParser(description="Serve story_play API.")
    parser.add_argument("--host", default="127.0.0.1")
    parser.add_argument("--port", type=int, default=8000)
    parser.add_argument("--reload", action="store_true")
    parser.add_argument(
        "--db-path",
        default="",
        help="SQLite path for projects and playthroughs (default: work/local/story_play.db).",
    )
    parser.add_argument(
        "--generation-url",
        default="",
        help="Base URL of the generation service. Without it, the offline backend is used.",
    )
    return parser


def main(argv: list[str] | None = None) -> None:
    """Parse CLI flags and start uvicorn with the app factory path."""
    configure_runtime_logging()
    parser = build_arg_parser()
    parsed = parser.parse_args(argv)
    db_path = str(parsed.db_path).strip()
    if db_path:
        os.environ["STORY_PLAY_DB_PATH"] = db_path
    generation_url = str(parsed.generation_url).strip()
    if generation_url:
        os.environ["STORY_PLAY_GENERATION_URL"] = generation_url
    uvicorn.run(
        "story_play.api.app:app",
        host=str(parsed.host),
        port=int(parsed.port),
        reload=bool(parsed.reload),
    )


if __name__ == "__main__":
    main()
