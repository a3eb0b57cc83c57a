"""Playthrough actions and the pure reducer that applies them to local state.

The reducer never touches persistence. `PlaythroughOrchestrator` runs it to
compute the optimistic local state, then performs the matching side effects.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field, replace
from typing import Any

from story_play.core.graph_queries import get_starting_scene
from story_play.core.trigger_engine import scene_transition_lines
from story_play.domain.models import UNSAVED_ID, Playthrough, Project, utc_now_iso

LOCAL_USER_ID = "local-user"
SETTINGS_FIELDS = frozenset({"title", "liked", "visibility"})
_PROTECTED_FIELDS = frozenset({"id", "project_id", "user_id", "created_at_utc", "revision"})


class NoActivePlaythroughError(RuntimeError):
    """Raised when an action needs a loaded playthrough and none is active."""


@dataclass(frozen=True)
class OrchestratorState:
    project: Project
    current: Playthrough | None = None


@dataclass(frozen=True)
class Create:
    overrides: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Load:
    playthrough: Playthrough


@dataclass(frozen=True)
class Clear:
    pass


@dataclass(frozen=True)
class Progress:
    updates: Mapping[str, Any]


@dataclass(frozen=True)
class SettingsUpdate:
    updates: Mapping[str, Any]


@dataclass(frozen=True)
class UpdateSnapshot:
    update_fn: Callable[[Project], Project]


@dataclass(frozen=True)
class Duplicate:
    updates: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Delete:
    playthrough_id: int


PlaythroughAction = (
    Create | Load | Clear | Progress | SettingsUpdate | UpdateSnapshot | Duplicate | Delete
)


def new_playthrough(
    project: Project,
    *,
    user_id: str = LOCAL_USER_ID,
    overrides: Mapping[str, Any] | None = None,
) -> Playthrough:
    """Unsaved playthrough opening on the starting scene with a frozen snapshot."""
    starting_scene = get_starting_scene(project)
    now = utc_now_iso()
    payload: dict[str, Any] = {
        "id": UNSAVED_ID,
        "project_id": project.id,
        "user_id": user_id,
        "lines": scene_transition_lines(starting_scene),
        "current_line_idx": 0,
        "current_scene_id": starting_scene.uuid,
        "project_snapshot": project.model_copy(deep=True),
        "created_at_utc": now,
        "updated_at_utc": now,
    }
    payload.update(overrides or {})
    return Playthrough.model_validate(payload)


def merge_playthrough(playthrough: Playthrough, updates: Mapping[str, Any]) -> Playthrough:
    """Shallow-merge `updates` over a playthrough and revalidate the result."""
    protected = _PROTECTED_FIELDS.intersection(updates)
    if protected:
        raise ValueError(f"Cannot update protected playthrough fields: {sorted(protected)}")
    payload = dict(playthrough)
    payload.update(updates)
    payload["updated_at_utc"] = utc_now_iso()
    return Playthrough.model_validate(payload)


def branch_playthroughs(
    project: Project, current: Playthrough, updates: Mapping[str, Any]
) -> tuple[Playthrough, Playthrough]:
    """Return the (preservation copy, active branch) pair for a duplicate."""
    lines = updates.get("lines", current.lines)
    line_idx = updates.get("current_line_idx", current.current_line_idx)
    scene_id = updates.get("current_scene_id") or current.current_scene_id
    shared = {
        "lines": [line.model_copy(deep=True) for line in lines],
        "current_line_idx": line_idx,
        "current_scene_id": scene_id,
    }
    preserved_title = f"{current.title} (branched)" if current.title else None
    preserved = new_playthrough(
        project,
        user_id=current.user_id or LOCAL_USER_ID,
        overrides={**shared, "title": preserved_title},
    )
    active = new_playthrough(project, user_id=current.user_id or LOCAL_USER_ID, overrides=shared)
    return preserved, active


def _require_current(state: OrchestratorState) -> Playthrough:
    if state.current is None:
        raise NoActivePlaythroughError("No playthrough is loaded.")
    return state.current


def apply(state: OrchestratorState, action: PlaythroughAction) -> OrchestratorState:
    """Return the local state that results from `action`."""
    match action:
        case Clear():
            return replace(state, current=None)
        case Load(playthrough=playthrough):
            return replace(state, current=playthrough)
        case Create(overrides=overrides):
            return replace(state, current=new_playthrough(state.project, overrides=overrides))
        case Progress(updates=updates):
            return replace(state, current=merge_playthrough(_require_current(state), updates))
        case SettingsUpdate(updates=updates):
            unknown = set(updates) - SETTINGS_FIELDS
            if unknown:
                raise ValueError(f"Unsupported playthrough settings: {sorted(unknown)}")
            return replace(state, current=merge_playthrough(_require_current(state), updates))
        case UpdateSnapshot(update_fn=update_fn):
            current = _require_current(state)
            snapshot = update_fn(current.project_snapshot.model_copy(deep=True))
            return replace(
                state, current=merge_playthrough(current, {"project_snapshot": snapshot})
            )
        case Duplicate(updates=updates):
            _, active = branch_playthroughs(state.project, _require_current(state), updates)
            return replace(state, current=active)
        case Delete(playthrough_id=playthrough_id):
            if state.current is not None and state.current.id == playthrough_id:
                return replace(state, current=None)
            return state
    raise TypeError(f"Unsupported playthrough action: {action!r}")
