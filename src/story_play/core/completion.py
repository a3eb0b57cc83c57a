"""Ending and trigger coverage across a project's playthroughs."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

from story_play.domain.models import DEFAULT_ENDING_NAME, END_SCENE_ID, Playthrough, Project


@dataclass(frozen=True)
class CompletionInfo:
    ending_completions: dict[str, bool]
    reached_endings: list[str]
    total_endings: list[str]
    seen_trigger_ids: list[str]
    completion_percentage: float


def all_endings(project: Project) -> list[str]:
    """Distinct ending names in scene order."""
    endings: list[str] = []
    for scene in project.cartridge.scenes:
        for trigger in scene.triggers:
            if trigger.go_to_scene_id != END_SCENE_ID:
                continue
            name = (trigger.ending_name or "").strip() or DEFAULT_ENDING_NAME
            if name not in endings:
                endings.append(name)
    return endings


def _reached_ending(playthrough: Playthrough) -> str | None:
    if not playthrough.lines:
        return None
    metadata = playthrough.lines[-1].metadata
    if metadata is None or not metadata.should_end:
        return None
    return metadata.ending_name or DEFAULT_ENDING_NAME


def completion_info(playthroughs: Sequence[Playthrough], project: Project) -> CompletionInfo:
    endings = all_endings(project)
    reached: list[str] = []
    for playthrough in playthroughs:
        ending = _reached_ending(playthrough)
        if ending is not None and ending in endings and ending not in reached:
            reached.append(ending)

    trigger_ids: list[str] = []
    for scene in project.cartridge.scenes:
        for trigger in scene.triggers:
            if trigger.uuid and trigger.uuid not in trigger_ids:
                trigger_ids.append(trigger.uuid)

    seen: list[str] = []
    for playthrough in playthroughs:
        for line in playthrough.lines:
            if line.metadata is None:
                continue
            for trigger_id in line.metadata.activated_trigger_ids or []:
                if trigger_id in trigger_ids and trigger_id not in seen:
                    seen.append(trigger_id)

    percentage = (len(seen) / len(trigger_ids)) * 100 if trigger_ids else 0.0
    return CompletionInfo(
        ending_completions={ending: ending in reached for ending in endings},
        reached_endings=reached,
        total_endings=endings,
        seen_trigger_ids=seen,
        completion_percentage=percentage,
    )


def completion_text(info: CompletionInfo) -> str:
    if not info.total_endings:
        return f"{round(info.completion_percentage)}% explored"
    return (
        f"{len(info.reached_endings)}/{len(info.total_endings)} endings reached, "
        f"{round(info.completion_percentage)}% explored"
    )
