"""Read-only lookups over a sanitized story graph."""

from __future__ import annotations

from collections.abc import Sequence

from story_play.domain.identifiers import TriggerRef
from story_play.domain.models import (
    END_SCENE_ID,
    Cartridge,
    Character,
    Place,
    Project,
    Scene,
    Trigger,
)


class GraphLookupError(LookupError):
    """Raised when a referenced scene, character, place, or trigger is missing."""


def find_scene(scenes: Sequence[Scene], scene_id: str | None) -> Scene | None:
    if not scene_id:
        return None
    return next((scene for scene in scenes if scene.uuid == scene_id), None)


def get_scene(project: Project, scene_id: str) -> Scene:
    if scene_id == END_SCENE_ID:
        raise GraphLookupError("The end sentinel is not a scene.")
    scene = find_scene(project.cartridge.scenes, scene_id)
    if scene is None:
        raise GraphLookupError(f"Scene not found: {scene_id}")
    return scene


def get_starting_scene(project: Project) -> Scene:
    """Return the configured starting scene, falling back to the first scene."""
    scene = find_scene(project.cartridge.scenes, project.settings.starting_scene_id)
    if scene is not None:
        return scene
    if not project.cartridge.scenes:
        raise GraphLookupError(
            f"Starting scene not found: {project.settings.starting_scene_id}"
        )
    return project.cartridge.scenes[0]


def find_character(cartridge: Cartridge, character_id: str) -> Character | None:
    return next((c for c in cartridge.characters if c.uuid == character_id), None)


def find_place(cartridge: Cartridge, place_id: str | None) -> Place | None:
    if not place_id:
        return None
    return next((p for p in cartridge.places if p.uuid == place_id), None)


def get_player_character(project: Project) -> Character:
    character = find_character(project.cartridge, project.settings.player_id)
    if character is None:
        raise GraphLookupError(f"Player character not found: {project.settings.player_id}")
    return character


def get_cast(cartridge: Cartridge, scene: Scene) -> list[Character]:
    """Resolve a scene roster in authored order, skipping dangling ids."""
    cast: list[Character] = []
    for character_id in scene.character_ids:
        character = find_character(cartridge, character_id)
        if character is not None:
            cast.append(character)
    return cast


def find_trigger(cartridge: Cartridge, trigger_id: str) -> Trigger | None:
    """Locate a trigger by uuid, checking the scene named by the id first."""
    try:
        ref = TriggerRef.parse(trigger_id)
    except ValueError:
        ref = None
    if ref is not None:
        for scene in cartridge.scenes:
            if not ref.belongs_to(scene.uuid):
                continue
            for trigger in scene.triggers:
                if trigger.uuid == trigger_id:
                    return trigger
    for scene in cartridge.scenes:
        for trigger in scene.triggers:
            if trigger.uuid == trigger_id:
                return trigger
    return None


def format_scene_title(title: str, index: int | None = None) -> str:
    if title:
        return title
    return f"Scene {index + 1}" if index is not None else "Untitled scene"


def scene_title(
    scenes: Sequence[Scene], scene_id: str | None, ending_name: str | None = None
) -> str:
    """Human-readable title used for scene-boundary markers."""
    if not scene_id:
        return "Untitled scene"
    if scene_id == END_SCENE_ID:
        return f"end: {ending_name}" if ending_name else "end"
    for index, scene in enumerate(scenes):
        if scene.uuid == scene_id:
            return format_scene_title(scene.title, index)
    return "Untitled scene"


def find_best_character_match(
    characters: Sequence[Character], character_name: str
) -> Character | None:
    """Match a speaker name: exact, then case-insensitive, then partial either way."""
    if not character_name or not characters:
        return None
    for character in characters:
        if character.name == character_name:
            return character
    normalized = character_name.strip().lower()
    for character in characters:
        if character.name.strip().lower() == normalized:
            return character
    for character in characters:
        candidate = character.name.strip().lower()
        if candidate and (normalized in candidate or candidate in normalized):
            return character
    return None
