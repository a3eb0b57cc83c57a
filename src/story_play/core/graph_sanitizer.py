"""Referential-integrity repair and strict validation for story graphs.

`sanitize_cartridge` is the silent, logged repair applied at every write
boundary (author save, import). It never removes scenes, characters, or places;
it only drops dangling references and rewrites malformed trigger identities.

`validate_cartridge` / `validate_project` are strict and side-effect free. They
return the first violation as a message, or `None` for a playable graph.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping

from pydantic import ValidationError

from story_play.domain.identifiers import normalize_trigger_uuid
from story_play.domain.models import (
    END_SCENE_ID,
    ActionTrigger,
    Cartridge,
    FallbackTrigger,
    Project,
    Scene,
    Trigger,
)

logger = logging.getLogger(__name__)


def sanitize_cartridge(cartridge: Cartridge) -> Cartridge:
    """Return a repaired copy whose references all resolve."""
    source = cartridge.model_copy(deep=True)
    character_ids = {character.uuid for character in source.characters}
    place_ids = {place.uuid for place in source.places}
    scene_ids = {scene.uuid for scene in source.scenes}

    scenes = [
        _sanitize_scene(
            scene,
            character_ids=character_ids,
            place_ids=place_ids,
            scene_ids=scene_ids,
        )
        for scene in source.scenes
    ]
    return source.model_copy(update={"scenes": scenes})


def sanitize_project(project: Project) -> Project:
    return project.model_copy(update={"cartridge": sanitize_cartridge(project.cartridge)})


def _sanitize_scene(
    scene: Scene,
    *,
    character_ids: set[str],
    place_ids: set[str],
    scene_ids: set[str],
) -> Scene:
    kept_characters = [cid for cid in scene.character_ids if cid in character_ids]
    if len(kept_characters) != len(scene.character_ids):
        logger.warning(
            "sanitize.characters_removed scene=%s removed=%s",
            scene.uuid,
            [cid for cid in scene.character_ids if cid not in character_ids],
        )

    place_id = scene.place_id
    if place_id and place_id not in place_ids:
        logger.warning("sanitize.place_removed scene=%s place=%s", scene.uuid, place_id)
        place_id = None

    for line in scene.script:
        if line.type != "character" or not line.character_id:
            continue
        if line.character_id not in character_ids:
            logger.warning(
                "sanitize.script_character_unknown scene=%s character=%s",
                scene.uuid,
                line.character_id,
            )

    return scene.model_copy(
        update={
            "character_ids": kept_characters,
            "place_id": place_id,
            "triggers": _sanitize_triggers(scene, scene_ids=scene_ids),
        }
    )


def _sanitize_triggers(scene: Scene, *, scene_ids: set[str]) -> list[Trigger]:
    renamed: dict[str, str] = {}
    identified: list[Trigger] = []
    for trigger in scene.triggers:
        if not trigger.uuid:
            logger.warning("sanitize.trigger_dropped scene=%s reason=missing_uuid", scene.uuid)
            continue
        normalized = normalize_trigger_uuid(trigger.uuid, scene.uuid)
        if normalized != trigger.uuid:
            logger.warning(
                "sanitize.trigger_renamed scene=%s from=%s to=%s",
                scene.uuid,
                trigger.uuid,
                normalized,
            )
        renamed[trigger.uuid] = normalized
        identified.append(trigger.model_copy(update={"uuid": normalized}))

    action_ids = {t.uuid for t in identified if isinstance(t, ActionTrigger)}
    sanitized: list[Trigger] = []
    for trigger in identified:
        update: dict[str, object] = {}
        target = trigger.go_to_scene_id
        if target and target != END_SCENE_ID and target not in scene_ids:
            logger.warning(
                "sanitize.go_to_scene_ended scene=%s trigger=%s target=%s",
                scene.uuid,
                trigger.uuid,
                target,
            )
            update["go_to_scene_id"] = END_SCENE_ID
        if isinstance(trigger, ActionTrigger) and trigger.depends_on_trigger_ids:
            dependencies = _resolve_dependencies(
                trigger, renamed=renamed, action_ids=action_ids, scene_uuid=scene.uuid
            )
            if dependencies != trigger.depends_on_trigger_ids:
                update["depends_on_trigger_ids"] = dependencies
        sanitized.append(trigger.model_copy(update=update) if update else trigger)
    return sanitized


def _resolve_dependencies(
    trigger: ActionTrigger,
    *,
    renamed: dict[str, str],
    action_ids: set[str | None],
    scene_uuid: str,
) -> list[str]:
    resolved: list[str] = []
    for dependency in trigger.depends_on_trigger_ids or []:
        candidate = renamed.get(dependency, dependency)
        if candidate in action_ids and candidate != trigger.uuid and candidate not in resolved:
            resolved.append(candidate)
        else:
            logger.warning(
                "sanitize.dependency_removed scene=%s trigger=%s dependency=%s",
                scene_uuid,
                trigger.uuid,
                dependency,
            )
    return resolved


def validate_cartridge(cartridge: Cartridge) -> str | None:
    """Return the first structural violation in the graph, or None."""
    character_ids: set[str] = set()
    for character in cartridge.characters:
        if not character.uuid.strip():
            return "Character uuid must be a non-empty string"
        if character.uuid in character_ids:
            return f"Duplicate character uuid detected: {character.uuid}"
        character_ids.add(character.uuid)

    place_ids: set[str] = set()
    for place in cartridge.places:
        if not place.uuid.strip():
            return "Place uuid must be a non-empty string"
        if place.uuid in place_ids:
            return f"Duplicate place uuid detected: {place.uuid}"
        place_ids.add(place.uuid)

    scene_ids: set[str] = set()
    for scene in cartridge.scenes:
        if not scene.uuid.strip():
            return "Scene uuid must be a non-empty string"
        if scene.uuid in scene_ids:
            return f"Duplicate scene uuid detected: {scene.uuid}"
        scene_ids.add(scene.uuid)

    trigger_ids: set[str] = set()
    for scene in cartridge.scenes:
        error = _validate_scene(
            scene,
            character_ids=character_ids,
            place_ids=place_ids,
            scene_ids=scene_ids,
            trigger_ids=trigger_ids,
        )
        if error is not None:
            return error

    if not cartridge.characters:
        return "At least one character must exist for player to play as."
    return None


def _validate_scene(
    scene: Scene,
    *,
    character_ids: set[str],
    place_ids: set[str],
    scene_ids: set[str],
    trigger_ids: set[str],
) -> str | None:
    for character_id in scene.character_ids:
        if character_id not in character_ids:
            return (
                f"Character ID {character_id} in scene {scene.title} "
                "does not refer to a valid character"
            )
    if scene.place_id and scene.place_id not in place_ids:
        return f"Place ID {scene.place_id} in scene {scene.title} does not refer to a valid place"

    action_ids = {
        trigger.uuid for trigger in scene.triggers if isinstance(trigger, ActionTrigger)
    }
    fallback_count = 0
    for trigger in scene.triggers:
        if trigger.uuid is None or not trigger.uuid.strip():
            return "Trigger uuid must be a non-empty string"
        if trigger.uuid in trigger_ids:
            return f"Duplicate trigger uuid detected in scene {scene.title}: {trigger.uuid}"
        trigger_ids.add(trigger.uuid)

        match trigger:
            case ActionTrigger():
                for dependency in trigger.depends_on_trigger_ids or []:
                    if dependency == trigger.uuid:
                        return (
                            f"Trigger {trigger.uuid} in scene {scene.title} cannot depend on itself"
                        )
                    if dependency not in action_ids:
                        return (
                            f"A dependsOnTriggerId in scene {scene.title} does not refer to "
                            f"a valid action trigger in the same scene: {dependency}"
                        )
            case FallbackTrigger():
                fallback_count += 1
                if fallback_count > 1:
                    return f"Scene {scene.title} has more than one fallback trigger"

        target = trigger.go_to_scene_id
        if target and target != END_SCENE_ID and target not in scene_ids:
            return f"goToSceneId {target} does not refer to a valid scene"
    return None


def validate_project(project: Project) -> str | None:
    """Validate the graph plus the settings that make it playable."""
    error = validate_cartridge(project.cartridge)
    if error is not None:
        return error

    player_id = project.settings.player_id
    if not player_id:
        return "Settings must include a valid playerId (character uuid)"
    if player_id not in {character.uuid for character in project.cartridge.characters}:
        return f"playerId {player_id} does not refer to a valid character"

    starting_scene_id = project.settings.starting_scene_id
    if not starting_scene_id:
        return "Settings must include a valid startingSceneId (scene uuid)"
    if starting_scene_id not in {scene.uuid for scene in project.cartridge.scenes}:
        return f"startingSceneId {starting_scene_id} does not refer to a valid scene"
    return None


def validate_cartridge_payload(payload: object) -> str | None:
    """Validate untrusted JSON: collection shapes, model parsing, then references."""
    if not isinstance(payload, Mapping):
        return "Cartridge must be an object"
    for key, label in (("scenes", "Scenes"), ("characters", "Characters"), ("places", "Places")):
        value = payload.get(key)
        if key == "places" and value is None:
            continue
        if not isinstance(value, list):
            return f"{label} must be an array"
    try:
        cartridge = Cartridge.model_validate(payload)
    except ValidationError as exc:
        return _first_validation_error(exc)
    return validate_cartridge(cartridge)


def validate_project_payload(payload: object) -> str | None:
    if not isinstance(payload, Mapping):
        return "Config must be an object"
    cartridge_error = validate_cartridge_payload(payload.get("cartridge"))
    if cartridge_error is not None:
        return cartridge_error
    try:
        project = Project.model_validate(payload)
    except ValidationError as exc:
        return _first_validation_error(exc)
    return validate_project(project)


def _first_validation_error(exc: ValidationError) -> str:
    first = exc.errors()[0]
    location = ".".join(str(part) for part in first["loc"])
    return f"{location}: {first['msg']}" if location else str(first["msg"])
