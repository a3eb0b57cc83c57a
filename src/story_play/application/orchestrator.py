"""Effect shell around the playthrough reducer: optimistic update, persist, roll back."""

from __future__ import annotations

import logging

from story_play.application.playthrough_actions import (
    Clear,
    Create,
    Delete,
    Duplicate,
    Load,
    OrchestratorState,
    PlaythroughAction,
    Progress,
    SettingsUpdate,
    UpdateSnapshot,
    apply,
    branch_playthroughs,
)
from story_play.domain.models import UNSAVED_ID, Playthrough, Project
from story_play.domain.ports import PlaythroughRepository

logger = logging.getLogger(__name__)


class PlaythroughOrchestrator:
    """Owns the single active playthrough for one project.

    Not safe for concurrent callers mutating the same playthrough; the
    optimistic update plus rollback is the only consistency mechanism.
    """

    def __init__(self, *, project: Project, repository: PlaythroughRepository) -> None:
        self._repository = repository
        self._state = OrchestratorState(project=project)

    @property
    def state(self) -> OrchestratorState:
        return self._state

    @property
    def project(self) -> Project:
        return self._state.project

    @property
    def current(self) -> Playthrough | None:
        return self._state.current

    def replace_project(self, project: Project) -> None:
        """Swap in an edited live graph; the active snapshot is left alone."""
        self._state = OrchestratorState(project=project, current=self._state.current)

    def dispatch(self, action: PlaythroughAction) -> Playthrough | None:
        match action:
            case Clear() | Load():
                self._state = apply(self._state, action)
            case Create():
                self._create(action)
            case Progress() | SettingsUpdate() | UpdateSnapshot():
                self._update(action)
            case Duplicate():
                self._duplicate(action)
            case Delete():
                self._delete(action)
            case _:
                raise TypeError(f"Unsupported playthrough action: {action!r}")
        return self._state.current

    def _create(self, action: Create) -> None:
        pending = apply(self._state, action)
        if self.project.id == UNSAVED_ID or pending.current is None:
            logger.info("playthrough.create_local project=%s", self.project.id)
            self._state = pending
            return
        stored = self._repository.create_playthrough(pending.current)
        logger.info("playthrough.create id=%s project=%s", stored.id, stored.project_id)
        self._state = OrchestratorState(project=self.project, current=stored)

    def _update(self, action: Progress | SettingsUpdate | UpdateSnapshot) -> None:
        previous = self._state
        self._state = apply(previous, action)
        current = self._state.current
        if current is None or current.id == UNSAVED_ID:
            return
        try:
            stored = self._repository.update_playthrough(
                current, expected_revision=previous.current.revision if previous.current else None
            )
        except Exception:
            logger.exception(
                "playthrough.update_failed id=%s action=%s", current.id, type(action).__name__
            )
            self._state = previous
            raise
        logger.debug(
            "playthrough.update id=%s action=%s lines=%s",
            stored.id,
            type(action).__name__,
            len(stored.lines),
        )
        self._state = OrchestratorState(project=self.project, current=stored)

    def _duplicate(self, action: Duplicate) -> None:
        current = self._state.current
        if current is None:
            logger.warning("playthrough.duplicate_skipped reason=no_active_playthrough")
            return
        if self.project.id == UNSAVED_ID:
            self._state = apply(self._state, action)
            return
        preserved, active = branch_playthroughs(self.project, current, action.updates)
        # Two independent writes: a failure on the second leaves the first in place.
        stored_preserved = self._repository.create_playthrough(preserved)
        stored_active = self._repository.create_playthrough(active)
        logger.info(
            "playthrough.duplicate source=%s preserved=%s active=%s",
            current.id,
            stored_preserved.id,
            stored_active.id,
        )
        self._state = OrchestratorState(project=self.project, current=stored_active)

    def _delete(self, action: Delete) -> None:
        if action.playthrough_id != UNSAVED_ID:
            deleted = self._repository.delete_playthrough(playthrough_id=action.playthrough_id)
            logger.info("playthrough.delete id=%s deleted=%s", action.playthrough_id, deleted)
        self._state = apply(self._state, action)
