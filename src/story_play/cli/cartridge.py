"""CLI helpers for cartridge JSON workflows: sanitize, validate, and local play."""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Any, TextIO

from story_play.adapters.http_generation_backend import HttpGenerationBackend
from story_play.adapters.memory_playthrough_store import InMemoryPlaythroughStore
from story_play.adapters.observability import configure_runtime_logging
from story_play.adapters.offline_generation_backend import OfflineGenerationBackend
from story_play.application.orchestrator import PlaythroughOrchestrator
from story_play.application.playthrough_actions import Create
from story_play.application.playthrough_session import PlaythroughEndedError, PlaythroughSession
from story_play.core.graph_sanitizer import (
    sanitize_cartridge,
    sanitize_project,
    validate_cartridge_payload,
    validate_project,
    validate_project_payload,
)
from story_play.core.trigger_engine import playthrough_has_ended
from story_play.domain.models import Cartridge, DisplayLine, Project
from story_play.domain.ports import GenerationBackend, GenerationBackendError


def build_arg_parser() -> argparse.ArgumentParser:
    """Define subcommands for cartridge maintenance and local play."""
    parser = argparse.ArgumentParser(description="Sanitize, validate, or play story cartridges.")
    subparsers = parser.add_subparsers(dest="command", required=True)

    sanitize = subparsers.add_parser("sanitize", help="Repair dangling references.")
    sanitize.add_argument("--input", required=True, help="Path to cartridge or project JSON.")
    sanitize.add_argument(
        "--output",
        default="",
        help="Optional path to write repaired JSON. Defaults to stdout.",
    )

    validate = subparsers.add_parser("validate", help="Strictly validate without repairing.")
    validate.add_argument("--input", required=True, help="Path to cartridge or project JSON.")

    play = subparsers.add_parser("play", help="Play a project JSON file in the terminal.")
    play.add_argument("--input", required=True, help="Path to project JSON.")
    play.add_argument(
        "--offline",
        action="store_true",
        help="Use the deterministic offline backend instead of STORY_PLAY_GENERATION_URL.",
    )
    return parser


def _load_json(path: Path) -> Any:
    return json.loads(path.read_text(encoding="utf-8"))


def _is_project_payload(payload: Any) -> bool:
    return isinstance(payload, dict) and "cartridge" in payload


def _format_line(line: DisplayLine) -> str:
    if line.type == "character":
        return f"{line.character_name or '???'}: {line.text}"
    if line.type == "player":
        return f"> {line.text}"
    if line.type == "hint":
        return f"(hint) {line.text}"
    metadata = line.metadata
    if metadata is not None and metadata.scene_id and not line.text:
        return f"-- scene {metadata.scene_id} --"
    if metadata is not None and metadata.should_end:
        return f"{line.text}\n== {metadata.ending_name} =="
    return line.text


def run_sanitize(input_path: Path, output: str, stdout: TextIO) -> None:
    payload = _load_json(input_path)
    if _is_project_payload(payload):
        rendered = sanitize_project(Project.model_validate(payload)).model_dump_json(indent=2)
    else:
        rendered = sanitize_cartridge(Cartridge.model_validate(payload)).model_dump_json(indent=2)
    if output.strip():
        output_path = Path(output)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_text(rendered + "\n", encoding="utf-8")
        print(f"Wrote sanitized JSON: {output_path}", file=stdout)
    else:
        print(rendered, file=stdout)


def run_validate(input_path: Path, stdout: TextIO) -> None:
    payload = _load_json(input_path)
    if _is_project_payload(payload):
        error = validate_project_payload(payload)
    else:
        error = validate_cartridge_payload(payload)
    if error is not None:
        raise SystemExit(f"Invalid: {error}")
    print(f"Valid: {input_path}", file=stdout)


def run_play(
    input_path: Path, backend: GenerationBackend, stdin: TextIO, stdout: TextIO
) -> None:
    """Drive one local playthrough: blank input advances, `?` asks for a hint."""
    project = sanitize_project(Project.model_validate(_load_json(input_path)))
    error = validate_project(project)
    if error is not None:
        raise SystemExit(f"Invalid: {error}")

    store = InMemoryPlaythroughStore()
    orchestrator = PlaythroughOrchestrator(project=store.create_project(project), repository=store)
    orchestrator.dispatch(Create())
    session = PlaythroughSession(orchestrator=orchestrator, backend=backend)
    for line in session.playthrough.lines:
        print(_format_line(line), file=stdout)

    for raw in stdin:
        text = raw.strip()
        try:
            if not text:
                result = session.advance()
            elif text == "?":
                result = session.request_hint()
            else:
                result = session.submit_player_input(text)
        except PlaythroughEndedError:
            print("The story has ended.", file=stdout)
            return
        except GenerationBackendError as exc:
            print(f"Generation failed, try again: {exc}", file=stdout)
            continue
        for line in result.new_lines:
            if line.type != "player":
                print(_format_line(line), file=stdout)
        if playthrough_has_ended(session.playthrough.lines):
            return


def main(argv: list[str] | None = None) -> None:
    """Dispatch the selected cartridge subcommand."""
    parser = build_arg_parser()
    parsed = parser.parse_args(argv)
    input_path = Path(str(parsed.input))

    if parsed.command == "sanitize":
        run_sanitize(input_path, str(parsed.output), sys.stdout)
    elif parsed.command == "validate":
        run_validate(input_path, sys.stdout)
    else:
        configure_runtime_logging()
        backend: GenerationBackend = (
            OfflineGenerationBackend() if parsed.offline else HttpGenerationBackend()
        )
        run_play(input_path, backend, sys.stdin, sys.stdout)


if __name__ == "__main__":
    main()
