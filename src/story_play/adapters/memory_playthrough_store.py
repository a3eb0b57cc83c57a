"""Process-local store with the same contract as the SQLite store."""

from __future__ import annotations

import threading

from story_play.domain.models import Playthrough, Project, utc_now_iso
from story_play.domain.ports import PersistenceConflictError


class InMemoryPlaythroughStore:
    """Keeps deep copies so callers never share state with the store."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._projects: dict[int, Project] = {}
        self._playthroughs: dict[int, Playthrough] = {}
        self._next_project_id = 1
        self._next_playthrough_id = 1

    def create_project(self, project: Project) -> Project:
        with self._lock:
            stored = project.model_copy(update={"id": self._next_project_id}, deep=True)
            self._next_project_id += 1
            self._projects[stored.id] = stored
            return stored.model_copy(deep=True)

    def get_project(self, *, project_id: int) -> Project | None:
        with self._lock:
            project = self._projects.get(project_id)
            return project.model_copy(deep=True) if project is not None else None

    def update_project(self, project: Project) -> Project | None:
        with self._lock:
            if project.id not in self._projects:
                return None
            stored = project.model_copy(update={"updated_at_utc": utc_now_iso()}, deep=True)
            self._projects[stored.id] = stored
            return stored.model_copy(deep=True)

    def create_playthrough(self, playthrough: Playthrough) -> Playthrough:
        with self._lock:
            stored = playthrough.model_copy(
                update={"id": self._next_playthrough_id, "revision": 0}, deep=True
            )
            self._next_playthrough_id += 1
            self._playthroughs[stored.id] = stored
            return stored.model_copy(deep=True)

    def get_playthrough(self, *, playthrough_id: int) -> Playthrough | None:
        with self._lock:
            playthrough = self._playthroughs.get(playthrough_id)
            return playthrough.model_copy(deep=True) if playthrough is not None else None

    def update_playthrough(
        self, playthrough: Playthrough, *, expected_revision: int | None = None
    ) -> Playthrough:
        with self._lock:
            existing = self._playthroughs.get(playthrough.id)
            expected = playthrough.revision if expected_revision is None else expected_revision
            if existing is None or existing.revision != expected:
                raise PersistenceConflictError(
                    f"Playthrough {playthrough.id} changed since revision {expected}."
                )
            stored = playthrough.model_copy(
                update={"revision": expected + 1, "updated_at_utc": utc_now_iso()}, deep=True
            )
            self._playthroughs[stored.id] = stored
            return stored.model_copy(deep=True)

    def delete_playthrough(self, *, playthrough_id: int) -> bool:
        with self._lock:
            return self._playthroughs.pop(playthrough_id, None) is not None

    def list_playthroughs_for_project(self, *, project_id: int) -> list[Playthrough]:
        with self._lock:
            return [
                p.model_copy(deep=True)
                for p in self._playthroughs.values()
                if p.project_id == project_id
            ]

    def list_playthroughs_for_user(self, *, user_id: str) -> list[Playthrough]:
        with self._lock:
            return [
                p.model_copy(deep=True) for p in self._playthroughs.values() if p.user_id == user_id
            ]
