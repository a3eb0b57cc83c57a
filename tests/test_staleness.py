from __future__ import annotations

from pathlib import Path

from story_play.core.staleness import (
    is_cartridge_out_of_date,
    is_game_out_of_date,
    is_playthrough_outdated_for_edit,
)
from story_play.domain.models import Character, DisplayLine, LineMetadata, Playthrough, Project

FIXTURES = Path(__file__).resolve().parent / "fixtures"


def _manor() -> Project:
    return Project.model_validate_json((FIXTURES / "manor.project.json").read_text("utf-8"))


def _hall_playthrough(project: Project, *, consumed: list[str] | None = None) -> Playthrough:
    lines = [
        DisplayLine(type="narration", metadata=LineMetadata(scene_id="sc-hall")),
        DisplayLine(type="character", text="Welcome, traveller.", character_name="Bram"),
    ]
    if consumed:
        lines.append(
            DisplayLine(
                type="narration",
                text="Ava pockets a rusty key.",
                metadata=LineMetadata(activated_trigger_ids=consumed),
            )
        )
    return Playthrough(
        project_id=1,
        lines=lines,
        current_line_idx=len(lines) - 1,
        current_scene_id="sc-hall",
        project_snapshot=project.model_copy(deep=True),
    )


def _with_scene(project: Project, index: int, **updates: object) -> Project:
    edited = project.model_copy(deep=True)
    scenes = list(edited.cartridge.scenes)
    scenes[index] = scenes[index].model_copy(update=updates)
    edited.cartridge = edited.cartridge.model_copy(update={"scenes": scenes})
    return edited


def test_unchanged_project_is_current() -> None:
    project = _manor()
    playthrough = _hall_playthrough(project)
    assert not is_game_out_of_date(project, playthrough)
    assert not is_playthrough_outdated_for_edit(project, playthrough)
    assert not is_cartridge_out_of_date(project, project.cartridge.model_copy(deep=True))


def test_edit_to_unvisited_scene_is_only_coarsely_stale() -> None:
    project = _manor()
    playthrough = _hall_playthrough(project)
    edited = _with_scene(project, 1, title="The Wine Cellar")
    assert is_game_out_of_date(edited, playthrough)
    assert not is_playthrough_outdated_for_edit(edited, playthrough)
    assert is_cartridge_out_of_date(edited, project.cartridge)


def test_edit_to_visited_scene_character_is_stale_both_ways() -> None:
    project = _manor()
    playthrough = _hall_playthrough(project)
    edited = project.model_copy(deep=True)
    edited.cartridge.characters[1] = edited.cartridge.characters[1].model_copy(
        update={"description": "A nervous butler."}
    )
    assert is_game_out_of_date(edited, playthrough)
    assert is_playthrough_outdated_for_edit(edited, playthrough)


def test_edit_to_visited_place_is_stale_for_edit() -> None:
    project = _manor()
    playthrough = _hall_playthrough(project)
    edited = project.model_copy(deep=True)
    edited.cartridge.places[0] = edited.cartridge.places[0].model_copy(update={"name": "Ballroom"})
    assert is_playthrough_outdated_for_edit(edited, playthrough)


def test_trigger_edits_matter_only_once_consumed() -> None:
    project = _manor()
    hall = project.cartridge.scenes[0]
    key = hall.triggers[0].model_copy(update={"narrative": "Ava finds a golden key."})
    edited = _with_scene(project, 0, triggers=[key, *hall.triggers[1:]])

    untouched = _hall_playthrough(project)
    assert not is_game_out_of_date(edited, untouched)
    assert not is_playthrough_outdated_for_edit(edited, untouched)

    consumed = _hall_playthrough(project, consumed=["tr-hall-key"])
    assert is_playthrough_outdated_for_edit(edited, consumed)


def test_unreferenced_character_does_not_stale_the_game() -> None:
    project = _manor()
    playthrough = _hall_playthrough(project)
    edited = project.model_copy(deep=True)
    edited.cartridge.characters.append(Character(uuid="ch-cook", name="Cook"))
    assert not is_game_out_of_date(edited, playthrough)
    assert is_cartridge_out_of_date(edited, project.cartridge)


def test_style_prompt_change_stales_the_game() -> None:
    project = _manor()
    playthrough = _hall_playthrough(project)
    edited = project.model_copy(deep=True)
    edited.cartridge.style.prompt = "pixel art"
    assert is_game_out_of_date(edited, playthrough)
    assert not is_playthrough_outdated_for_edit(edited, playthrough)
