"""Ports for the generation backend and playthrough persistence."""

from __future__ import annotations

from typing import Protocol

from story_play.domain.models import ActionTrigger, Playthrough, Project, Trigger, XmlLine


class GenerationBackendError(RuntimeError):
    """Raised when the generation backend fails; the call is safe to retry."""


class PersistenceConflictError(RuntimeError):
    """Raised when a stored record changed since it was read."""


class GenerationBackend(Protocol):
    """Evaluates trigger conditions and produces narrative lines."""

    def evaluate(
        self, *, possible_triggers: dict[str, ActionTrigger], lines: list[XmlLine]
    ) -> list[str]:
        ...

    def advance(
        self, *, project: Project, playthrough: Playthrough, triggers: list[Trigger]
    ) -> list[XmlLine]:
        ...

    def hint(
        self,
        *,
        lines: list[XmlLine],
        trigger_conditions: list[str],
        style: str,
        player_character_name: str,
    ) -> list[XmlLine]:
        ...


class ProjectRepository(Protocol):
    """Persists authored projects as whole-object blobs."""

    def create_project(self, project: Project) -> Project:
        ...

    def get_project(self, *, project_id: int) -> Project | None:
        ...

    def update_project(self, project: Project) -> Project | None:
        ...


class PlaythroughRepository(Protocol):
    """Persists playthroughs with optimistic-concurrency revisions."""

    def create_playthrough(self, playthrough: Playthrough) -> Playthrough:
        ...

    def get_playthrough(self, *, playthrough_id: int) -> Playthrough | None:
        ...

    def update_playthrough(
        self, playthrough: Playthrough, *, expected_revision: int | None = None
    ) -> Playthrough:
        ...

    def delete_playthrough(self, *, playthrough_id: int) -> bool:
        ...

    def list_playthroughs_for_project(self, *, project_id: int) -> list[Playthrough]:
        ...

    def list_playthroughs_for_user(self, *, user_id: str) -> list[Playthrough]:
        ...
