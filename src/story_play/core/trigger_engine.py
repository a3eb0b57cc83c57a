"""Per-scene trigger state derived from the transcript.

Nothing here is stored. Every call folds the transcript from the most recent
boundary of the scene, so rewinds and branches need no bookkeeping: a trigger
is consumed exactly when some line of the scene run lists it in
`activated_trigger_ids`, whatever the visible pointer says.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from story_play.domain.models import (
    DEFAULT_ENDING_NAME,
    END_SCENE_ID,
    ActionTrigger,
    DisplayLine,
    FallbackTrigger,
    LineMetadata,
    Scene,
    Trigger,
)

logger = logging.getLogger(__name__)


def scene_lines(lines: Sequence[DisplayLine], scene_id: str) -> list[DisplayLine]:
    """Lines from the most recent boundary for `scene_id` to the end."""
    start = 0
    for index in range(len(lines) - 1, -1, -1):
        metadata = lines[index].metadata
        if metadata is not None and metadata.scene_id == scene_id:
            start = index
            break
    return list(lines[start:])


def latest_scene_id(lines: Sequence[DisplayLine]) -> str | None:
    for line in reversed(lines):
        if line.metadata is not None and line.metadata.scene_id:
            return line.metadata.scene_id
    return None


def current_scene_id(lines: Sequence[DisplayLine], line_idx: int) -> str | None:
    """Scene of the line at the pointer, walking back to its boundary."""
    if not lines:
        return None
    for index in range(min(line_idx, len(lines) - 1), -1, -1):
        metadata = lines[index].metadata
        if metadata is not None and metadata.scene_id:
            return metadata.scene_id
    return None


def line_ends_game(line: DisplayLine | None) -> bool:
    return bool(line is not None and line.metadata is not None and line.metadata.should_end)


def playthrough_has_ended(lines: Sequence[DisplayLine]) -> bool:
    return bool(lines) and line_ends_game(lines[-1])


def event_image_url(lines: Sequence[DisplayLine], scene_id: str) -> str | None:
    """Newest event image fired within the current run of `scene_id`."""
    for line in reversed(scene_lines(lines, scene_id)):
        if line.metadata is not None and line.metadata.event_image_url:
            return line.metadata.event_image_url
    return None


def activated_ids(lines: Iterable[DisplayLine]) -> set[str]:
    ids: set[str] = set()
    for line in lines:
        if line.metadata is not None and line.metadata.activated_trigger_ids:
            ids.update(line.metadata.activated_trigger_ids)
    return ids


@dataclass(frozen=True)
class TriggerState:
    trigger: Trigger
    consumed: bool
    turns_left: int | None
    deps_satisfied: bool

    @property
    def armed(self) -> bool:
        return (
            isinstance(self.trigger, ActionTrigger) and self.deps_satisfied and not self.consumed
        )


@dataclass(frozen=True)
class SceneTriggerStates:
    """Trigger states for one visit of one scene."""

    scene_id: str
    states: tuple[TriggerState, ...]
    player_turns: int

    @classmethod
    def derive(cls, scene: Scene, lines: Sequence[DisplayLine]) -> SceneTriggerStates:
        run = scene_lines(lines, scene.uuid)
        player_turns = sum(1 for line in run if line.type == "player")
        scene_trigger_ids = {trigger.uuid for trigger in scene.triggers if trigger.uuid}
        consumed = activated_ids(run) & scene_trigger_ids

        states: list[TriggerState] = []
        for trigger in scene.triggers:
            is_consumed = trigger.uuid in consumed
            match trigger:
                case ActionTrigger():
                    dependencies = trigger.depends_on_trigger_ids or []
                    states.append(
                        TriggerState(
                            trigger=trigger,
                            consumed=is_consumed,
                            turns_left=None,
                            deps_satisfied=is_consumed
                            or all(dep in consumed for dep in dependencies),
                        )
                    )
                case FallbackTrigger():
                    states.append(
                        TriggerState(
                            trigger=trigger,
                            consumed=is_consumed,
                            turns_left=max(0, trigger.k - player_turns),
                            deps_satisfied=True,
                        )
                    )
        return cls(scene_id=scene.uuid, states=tuple(states), player_turns=player_turns)

    def armed(self) -> list[ActionTrigger]:
        armed: list[ActionTrigger] = []
        for state in self.states:
            if state.armed and isinstance(state.trigger, ActionTrigger):
                armed.append(state.trigger)
        return armed

    def armed_by_id(self) -> dict[str, ActionTrigger]:
        return {trigger.uuid: trigger for trigger in self.armed() if trigger.uuid}

    def due_fallback(self) -> FallbackTrigger | None:
        for state in self.states:
            if (
                isinstance(state.trigger, FallbackTrigger)
                and not state.consumed
                and state.turns_left == 0
            ):
                return state.trigger
        return None

    def consumed_ids(self) -> set[str]:
        return {
            state.trigger.uuid for state in self.states if state.consumed and state.trigger.uuid
        }

    def state_for(self, trigger_id: str) -> TriggerState | None:
        return next((s for s in self.states if s.trigger.uuid == trigger_id), None)


def select_firing(states: SceneTriggerStates, reported_ids: Iterable[str]) -> Trigger | None:
    """Pick at most one trigger for this turn.

    The first armed trigger in authored order among `reported_ids` wins;
    otherwise a due fallback fires; otherwise nothing does.
    """
    reported = set(reported_ids)
    armed = states.armed()
    armed_ids = {trigger.uuid for trigger in armed}
    ignored = sorted(reported - armed_ids)
    if ignored:
        logger.warning("triggers.ignored scene=%s ids=%s", states.scene_id, ignored)

    for trigger in armed:
        if trigger.uuid in reported:
            fired_late = [t.uuid for t in armed if t.uuid in reported and t is not trigger]
            if fired_late:
                logger.info(
                    "triggers.tie_break scene=%s kept=%s dropped=%s",
                    states.scene_id,
                    trigger.uuid,
                    fired_late,
                )
            return trigger
    return states.due_fallback()


def scene_transition_lines(scene: Scene) -> list[DisplayLine]:
    return [
        DisplayLine(
            type="narration",
            text="",
            metadata=LineMetadata(scene_id=scene.uuid, should_pause=False),
        )
    ]


def firing_lines(trigger: Trigger, scenes: Sequence[Scene]) -> list[DisplayLine]:
    """Lines emitted when `trigger` fires: its narrative, then any scene boundary."""
    target = trigger.go_to_scene_id
    ends = target == END_SCENE_ID
    metadata = LineMetadata(
        activated_trigger_ids=[trigger.uuid] if trigger.uuid else [],
        event_image_url=trigger.event_image_url or None,
    )
    if ends:
        metadata.should_end = True
        metadata.ending_name = (trigger.ending_name or "").strip() or DEFAULT_ENDING_NAME
    lines = [DisplayLine(type="narration", text=trigger.narrative, metadata=metadata)]

    if target and not ends:
        next_scene = next((scene for scene in scenes if scene.uuid == target), None)
        if next_scene is None:
            logger.warning("triggers.target_missing trigger=%s target=%s", trigger.uuid, target)
        else:
            lines.extend(scene_transition_lines(next_scene))
    return lines


_ENGINE_OWNED_METADATA = {
    "scene_id": None,
    "activated_trigger_ids": None,
    "should_end": None,
    "ending_name": None,
    "event_image_url": None,
    "verbatim": None,
}


def _is_backend_marker(line: DisplayLine) -> bool:
    metadata = line.metadata
    if metadata is None:
        return False
    text = line.text.strip()
    if metadata.scene_id and not text:
        return True
    return bool(metadata.should_end and text.startswith("END:"))


def scrub_generated_lines(lines: Sequence[DisplayLine]) -> list[DisplayLine]:
    """Strip firing effects from backend output.

    Only `firing_lines` may consume triggers, cross scene boundaries or end the
    game. Boundary and `END:` markers a step backend appends on its own are
    dropped; any other line keeps its text with the engine-owned fields cleared.
    """
    scrubbed: list[DisplayLine] = []
    for line in lines:
        if line.metadata is None:
            scrubbed.append(line)
            continue
        if _is_backend_marker(line):
            logger.debug("triggers.backend_marker_dropped text=%r", line.text[:80])
            continue
        if line.metadata.activated_trigger_ids:
            logger.warning(
                "triggers.backend_activation_ignored ids=%s",
                line.metadata.activated_trigger_ids,
            )
        metadata = line.metadata.model_copy(update=_ENGINE_OWNED_METADATA)
        scrubbed.append(line.model_copy(update={"metadata": metadata}))
    return scrubbed
