from __future__ import annotations

import io
import json
import logging
import os
from pathlib import Path
from typing import Any

import pytest

from story_play.adapters.observability import configure_runtime_logging
from story_play.adapters.offline_generation_backend import OfflineGenerationBackend
from story_play.cli import api as api_cli
from story_play.cli import cartridge

FIXTURES = Path(__file__).resolve().parent / "fixtures"
MANOR = FIXTURES / "manor.project.json"


def _write_json(path: Path, payload: Any) -> Path:
    path.write_text(json.dumps(payload), encoding="utf-8")
    return path


def test_validate_accepts_fixture(capsys: pytest.CaptureFixture[str]) -> None:
    cartridge.main(["validate", "--input", str(MANOR)])
    assert f"Valid: {MANOR}" in capsys.readouterr().out


def test_validate_reports_first_error(tmp_path: Path) -> None:
    payload = json.loads(MANOR.read_text(encoding="utf-8"))
    payload["settings"]["player_id"] = "ch-nobody"
    broken = _write_json(tmp_path / "broken.json", payload)
    with pytest.raises(SystemExit, match="Invalid: playerId ch-nobody"):
        cartridge.main(["validate", "--input", str(broken)])

    with pytest.raises(SystemExit, match="Invalid: Cartridge must be an object"):
        cartridge.main(["validate", "--input", str(_write_json(tmp_path / "list.json", []))])


def test_sanitize_writes_repaired_cartridge(tmp_path: Path) -> None:
    payload = json.loads(MANOR.read_text(encoding="utf-8"))["cartridge"]
    payload["scenes"][0]["character_ids"].append("ch-ghost")
    source = _write_json(tmp_path / "cartridge.json", payload)
    output = tmp_path / "out" / "clean.json"

    stdout = io.StringIO()
    cartridge.run_sanitize(source, str(output), stdout)
    assert "Wrote sanitized JSON" in stdout.getvalue()
    repaired = json.loads(output.read_text(encoding="utf-8"))
    assert repaired["scenes"][0]["character_ids"] == ["ch-ava", "ch-bram"]


def test_sanitize_prints_project_to_stdout(capsys: pytest.CaptureFixture[str]) -> None:
    cartridge.main(["sanitize", "--input", str(MANOR)])
    printed = json.loads(capsys.readouterr().out)
    assert printed["settings"]["starting_scene_id"] == "sc-hall"


def test_play_runs_offline_session() -> None:
    stdout = io.StringIO()
    cartridge.run_play(
        MANOR, OfflineGenerationBackend(), io.StringIO("\n?\nI look around\n"), stdout
    )
    output = stdout.getvalue()
    assert "-- scene sc-hall --" in output
    assert "Bram: Welcome, traveller." in output
    assert "(hint) Perhaps Ava could try this: Ava finds the key" in output
    assert "The story waits for your next move." in output
    assert "> I look around" not in output


def test_play_stops_at_ending(tmp_path: Path) -> None:
    payload = json.loads(MANOR.read_text(encoding="utf-8"))
    hall = payload["cartridge"]["scenes"][0]
    hall["triggers"] = [dict(hall["triggers"][2], k=1)]
    project = _write_json(tmp_path / "short.json", payload)

    stdout = io.StringIO()
    cartridge.run_play(
        project, OfflineGenerationBackend(), io.StringIO("I leave\nStill here?\n"), stdout
    )
    output = stdout.getvalue()
    assert "== Shown the Door ==" in output
    assert output.count("The story waits for your next move.") == 1


def test_play_main_selects_offline_backend(monkeypatch: pytest.MonkeyPatch) -> None:
    seen: list[Any] = []
    monkeypatch.setattr("story_play.cli.cartridge.configure_runtime_logging", lambda: True)
    monkeypatch.setattr(
        "story_play.cli.cartridge.run_play",
        lambda input_path, backend, stdin, stdout: seen.append((input_path, backend)),
    )
    cartridge.main(["play", "--input", str(MANOR), "--offline"])
    assert seen
    assert seen[0][0] == MANOR
    assert isinstance(seen[0][1], OfflineGenerationBackend)


def test_api_main_runs_uvicorn_with_env_overrides(monkeypatch: pytest.MonkeyPatch) -> None:
    seen: dict[str, Any] = {}
    monkeypatch.setenv("STORY_PLAY_DB_PATH", "")
    monkeypatch.setenv("STORY_PLAY_GENERATION_URL", "")
    monkeypatch.setattr("story_play.cli.api.configure_runtime_logging", lambda: True)
    monkeypatch.setattr(
        "story_play.cli.api.uvicorn.run",
        lambda app_path, **kwargs: seen.update({"app": app_path, **kwargs}),
    )
    api_cli.main(["--port", "9001", "--db-path", "/tmp/play.db", "--generation-url", "http://g"])
    assert seen == {
        "app": "story_play.api.app:app",
        "host": "127.0.0.1",
        "port": 9001,
        "reload": False,
    }
    assert os.environ["STORY_PLAY_DB_PATH"] == "/tmp/play.db"
    assert os.environ["STORY_PLAY_GENERATION_URL"] == "http://g"


def test_runtime_logging_configures_rotating_file(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    log_path = tmp_path / "logs" / "story_play.log"
    monkeypatch.setenv("STORY_PLAY_LOG_PATH", str(log_path))
    monkeypatch.setenv("STORY_PLAY_LOG_LEVEL", "debug")
    root = logging.getLogger()
    saved_handlers = list(root.handlers)
    saved_level = root.level
    try:
        assert configure_runtime_logging(force=True) is True
        assert configure_runtime_logging() is False
        assert root.level == logging.DEBUG
        logging.getLogger("story_play.test").info("cli.test_event value=%s", 1)
        for handler in root.handlers:
            handler.flush()
        assert "cli.test_event value=1" in log_path.read_text(encoding="utf-8")
    finally:
        for handler in list(root.handlers):
            root.removeHandler(handler)
            handler.close()
        for handler in saved_handlers:
            root.addHandler(handler)
        root.setLevel(saved_level)
