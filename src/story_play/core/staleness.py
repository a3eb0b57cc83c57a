"""Compatibility checks between a playthrough's frozen snapshot and the live graph."""

from __future__ import annotations

from typing import Any

from story_play.core.graph_queries import find_character, find_place, find_trigger
from story_play.domain.models import Cartridge, Playthrough, Project


def _dump(model: Any) -> Any:
    return model.model_dump(mode="json") if model is not None else None


def _visible_projection(project: Project) -> dict[str, Any]:
    cartridge = project.cartridge
    scenes = []
    for scene in cartridge.scenes:
        scenes.append(
            {
                "characters": [
                    _dump(find_character(cartridge, character_id))
                    for character_id in scene.character_ids
                ],
                "title": scene.title,
                "place_id": scene.place_id,
                "script": [_dump(line) for line in scene.script],
                "image_url": scene.image_url,
                "place": _dump(find_place(cartridge, scene.place_id)),
            }
        )
    return {"scenes": scenes, "style": cartridge.style.prompt}


def is_game_out_of_date(project: Project, playthrough: Playthrough) -> bool:
    """Coarse check: anything visible anywhere in the graph changed.

    Characters that appear in no scene do not count.
    """
    return _visible_projection(playthrough.project_snapshot) != _visible_projection(project)


def is_cartridge_out_of_date(project: Project, cartridge: Cartridge) -> bool:
    return _dump(project.cartridge) != _dump(cartridge)


def is_playthrough_outdated_for_edit(project: Project, playthrough: Playthrough) -> bool:
    """Fine check scoped to what this playthrough has actually seen.

    Outdated only if a consumed trigger, or a character or place of a visited
    scene, differs between the snapshot and `project`.
    """
    snapshot = playthrough.project_snapshot
    visited_scene_ids: set[str] = set()
    consumed_trigger_ids: set[str] = set()
    for line in playthrough.lines:
        if line.metadata is None:
            continue
        if line.metadata.scene_id:
            visited_scene_ids.add(line.metadata.scene_id)
        if line.metadata.activated_trigger_ids:
            consumed_trigger_ids.update(line.metadata.activated_trigger_ids)
    if playthrough.current_scene_id:
        visited_scene_ids.add(playthrough.current_scene_id)

    for trigger_id in sorted(consumed_trigger_ids):
        before = _dump(find_trigger(snapshot.cartridge, trigger_id))
        after = _dump(find_trigger(project.cartridge, trigger_id))
        if before != after:
            return True

    character_ids: set[str] = set()
    place_ids: set[str] = set()
    for scene in snapshot.cartridge.scenes:
        if scene.uuid not in visited_scene_ids:
            continue
        character_ids.update(scene.character_ids)
        if scene.place_id:
            place_ids.add(scene.place_id)

    for character_id in sorted(character_ids):
        before = _dump(find_character(snapshot.cartridge, character_id))
        after = _dump(find_character(project.cartridge, character_id))
        if before != after:
            return True

    for place_id in sorted(place_ids):
        before = _dump(find_place(snapshot.cartridge, place_id))
        after = _dump(find_place(project.cartridge, place_id))
        if before != after:
            return True
    return False
