from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import pytest

from story_play.core.graph_sanitizer import (
    sanitize_cartridge,
    sanitize_project,
    validate_cartridge,
    validate_cartridge_payload,
    validate_project,
    validate_project_payload,
)
from story_play.domain.models import (
    END_SCENE_ID,
    ActionTrigger,
    Cartridge,
    FallbackTrigger,
    Project,
)

FIXTURES = Path(__file__).resolve().parent / "fixtures"


def _manor() -> Project:
    return Project.model_validate_json((FIXTURES / "manor.project.json").read_text("utf-8"))


def _broken_cartridge() -> Cartridge:
    return Cartridge.model_validate(
        {
            "characters": [{"uuid": "ch-ava", "name": "Ava"}],
            "places": [{"uuid": "pl-hall", "name": "Hall"}],
            "scenes": [
                {
                    "uuid": "sc-hall",
                    "title": "Hall",
                    "place_id": "pl-gone",
                    "character_ids": ["ch-ava", "ch-ghost"],
                    "triggers": [
                        {"type": "action", "uuid": None, "condition": "never"},
                        {
                            "type": "action",
                            "uuid": "trigger-1",
                            "condition": "Ava sits",
                            "go_to_scene_id": "sc-missing",
                        },
                        {
                            "type": "action",
                            "uuid": "tr-oldscene-open",
                            "condition": "Ava opens the door",
                            "depends_on_trigger_ids": ["trigger-1", "tr-hall-nowhere"],
                        },
                        {"type": "fallback", "uuid": "trigger-fallback", "k": 2},
                    ],
                }
            ],
        }
    )


def test_sanitize_repairs_dangling_references() -> None:
    repaired = sanitize_cartridge(_broken_cartridge())
    scene = repaired.scenes[0]
    assert scene.character_ids == ["ch-ava"]
    assert scene.place_id is None
    assert [trigger.uuid for trigger in scene.triggers] == [
        "tr-hall-1",
        "tr-hall-open",
        "tr-hall-fallback",
    ]
    assert scene.triggers[0].go_to_scene_id == END_SCENE_ID
    opener = scene.triggers[1]
    assert isinstance(opener, ActionTrigger)
    assert opener.depends_on_trigger_ids == ["tr-hall-1"]
    assert isinstance(scene.triggers[2], FallbackTrigger)


def test_sanitize_drops_triggers_with_non_string_uuid() -> None:
    cartridge = Cartridge.model_validate(
        {
            "scenes": [
                {
                    "uuid": "sc-hall",
                    "triggers": [
                        {"type": "action", "uuid": 5, "condition": "Ava counts"},
                        {"type": "fallback", "uuid": ["tr-hall-fallback"]},
                        {"type": "action", "uuid": "tr-hall-wave", "condition": "Ava waves"},
                    ],
                }
            ]
        }
    )
    assert [trigger.uuid for trigger in cartridge.scenes[0].triggers] == [
        None,
        None,
        "tr-hall-wave",
    ]
    repaired = sanitize_cartridge(cartridge)
    assert [trigger.uuid for trigger in repaired.scenes[0].triggers] == ["tr-hall-wave"]


def test_sanitize_never_removes_entities_and_leaves_input_alone() -> None:
    original = _broken_cartridge()
    before = original.model_dump(mode="json")
    repaired = sanitize_cartridge(original)
    assert original.model_dump(mode="json") == before
    assert len(repaired.scenes) == len(original.scenes)
    assert len(repaired.characters) == len(original.characters)
    assert len(repaired.places) == len(original.places)


def test_sanitize_is_idempotent() -> None:
    once = sanitize_cartridge(_broken_cartridge())
    twice = sanitize_cartridge(once)
    assert twice.model_dump(mode="json") == once.model_dump(mode="json")


def test_sanitized_graph_passes_validation() -> None:
    assert validate_cartridge(_broken_cartridge()) is not None
    assert validate_cartridge(sanitize_cartridge(_broken_cartridge())) is None


def test_sanitize_logs_each_repair(caplog: pytest.LogCaptureFixture) -> None:
    with caplog.at_level(logging.WARNING, logger="story_play.core.graph_sanitizer"):
        sanitize_cartridge(_broken_cartridge())
    messages = [record.getMessage() for record in caplog.records]
    assert any(message.startswith("sanitize.place_removed") for message in messages)
    assert any(message.startswith("sanitize.characters_removed") for message in messages)
    assert any(message.startswith("sanitize.trigger_dropped") for message in messages)
    assert any(message.startswith("sanitize.go_to_scene_ended") for message in messages)


def test_sanitize_project_keeps_valid_project_unchanged() -> None:
    project = _manor()
    assert sanitize_project(project).model_dump(mode="json") == project.model_dump(mode="json")
    assert validate_project(project) is None


def test_validate_reports_duplicate_ids_and_self_dependency() -> None:
    project = _manor()
    duplicated = project.cartridge.model_copy(
        update={"characters": [*project.cartridge.characters, project.cartridge.characters[0]]}
    )
    assert validate_cartridge(duplicated) == "Duplicate character uuid detected: ch-ava"

    hall = project.cartridge.scenes[0]
    looping = ActionTrigger(uuid="tr-hall-loop", depends_on_trigger_ids=["tr-hall-loop"])
    scenes = [hall.model_copy(update={"triggers": [looping]}), *project.cartridge.scenes[1:]]
    error = validate_cartridge(project.cartridge.model_copy(update={"scenes": scenes}))
    assert error is not None and "cannot depend on itself" in error


def test_validate_rejects_second_fallback_and_missing_characters() -> None:
    project = _manor()
    hall = project.cartridge.scenes[0]
    extra = FallbackTrigger(uuid="tr-hall-second", k=5)
    scenes = [hall.model_copy(update={"triggers": [*hall.triggers, extra]})]
    cartridge = project.cartridge.model_copy(update={"scenes": scenes, "characters": []})
    error = validate_cartridge(cartridge)
    assert error is not None and "does not refer to a valid character" in error

    only_fallbacks = project.cartridge.model_copy(
        update={"scenes": [*scenes, *project.cartridge.scenes[1:]]}
    )
    assert validate_cartridge(only_fallbacks) == "Scene The Hall has more than one fallback trigger"

    empty = Cartridge()
    assert validate_cartridge(empty) == "At least one character must exist for player to play as."


def test_validate_project_checks_settings_references() -> None:
    project = _manor()
    wrong_player = project.model_copy(
        update={"settings": project.settings.model_copy(update={"player_id": "ch-nobody"})}
    )
    assert (
        validate_project(wrong_player) == "playerId ch-nobody does not refer to a valid character"
    )
    no_start = project.model_copy(
        update={"settings": project.settings.model_copy(update={"starting_scene_id": ""})}
    )
    assert (
        validate_project(no_start) == "Settings must include a valid startingSceneId (scene uuid)"
    )


@pytest.mark.parametrize(
    ("payload", "expected"),
    [
        ([], "Cartridge must be an object"),
        ({"scenes": {}, "characters": []}, "Scenes must be an array"),
        ({"scenes": [], "characters": "ava"}, "Characters must be an array"),
        ({"scenes": [], "characters": [], "places": 3}, "Places must be an array"),
    ],
)
def test_validate_cartridge_payload_checks_collection_shapes(
    payload: Any, expected: str
) -> None:
    assert validate_cartridge_payload(payload) == expected


def test_validate_cartridge_payload_reports_first_model_error() -> None:
    payload = {
        "scenes": [{"uuid": "sc-a", "triggers": [{"type": "fallback", "uuid": "tr-a-f", "k": 11}]}],
        "characters": [{"uuid": "ch-a", "name": "A"}],
    }
    error = validate_cartridge_payload(payload)
    assert error is not None
    assert error.startswith("scenes.0.triggers.0.fallback.k")


def test_validate_project_payload_accepts_fixture() -> None:
    payload = _manor().model_dump(mode="json")
    assert validate_project_payload(payload) is None
    assert validate_project_payload("nope") == "Config must be an object"
