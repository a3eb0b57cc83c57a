"""SQLite-backed persistence for projects and playthroughs.

Both record types are stored as JSON blobs next to a few indexed columns. The
playthrough `revision` column backs optimistic concurrency: an update names the
revision it was computed from and loses if another write got there first.
"""

from __future__ import annotations

import logging
import sqlite3
from pathlib import Path

from story_play.domain.models import Playthrough, Project, utc_now_iso
from story_play.domain.ports import PersistenceConflictError

logger = logging.getLogger(__name__)


class SQLitePlaythroughStore:
    """Persist and query projects and playthroughs from one SQLite database."""

    def __init__(self, db_path: Path) -> None:
        self._db_path = db_path
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._initialize_schema()

    def _connect(self) -> sqlite3.Connection:
        connection = sqlite3.connect(str(self._db_path))
        connection.row_factory = sqlite3.Row
        return connection

    def _initialize_schema(self) -> None:
        with self._connect() as connection:
            connection.execute(
                """
                CREATE TABLE IF NOT EXISTS projects (
                    project_id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id TEXT NOT NULL,
                    title TEXT NOT NULL,
                    project_json TEXT NOT NULL,
                    created_at_utc TEXT NOT NULL,
                    updated_at_utc TEXT NOT NULL
                )
                """
            )
            connection.execute(
                """
                CREATE TABLE IF NOT EXISTS playthroughs (
                    playthrough_id INTEGER PRIMARY KEY AUTOINCREMENT,
                    project_id INTEGER NOT NULL,
                    user_id TEXT NOT NULL,
                    revision INTEGER NOT NULL DEFAULT 0,
                    playthrough_json TEXT NOT NULL,
                    created_at_utc TEXT NOT NULL,
                    updated_at_utc TEXT NOT NULL
                )
                """
            )
            connection.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_playthroughs_project_updated
                ON playthroughs(project_id, updated_at_utc DESC)
                """
            )
            connection.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_playthroughs_user_updated
                ON playthroughs(user_id, updated_at_utc DESC)
                """
            )

    def create_project(self, project: Project) -> Project:
        """Insert a project and return it with its assigned id."""
        now = utc_now_iso()
        with self._connect() as connection:
            cursor = connection.execute(
                """
                INSERT INTO projects (user_id, title, project_json, created_at_utc, updated_at_utc)
                VALUES (?, ?, ?, ?, ?)
                """,
                (project.user_id, project.title, "{}", now, now),
            )
            project_id = int(cursor.lastrowid or 0)
            stored = project.model_copy(
                update={"id": project_id, "created_at_utc": now, "updated_at_utc": now}
            )
            connection.execute(
                "UPDATE projects SET project_json = ? WHERE project_id = ?",
                (stored.model_dump_json(), project_id),
            )
        logger.info("store.project_created id=%s", project_id)
        return stored

    def get_project(self, *, project_id: int) -> Project | None:
        with self._connect() as connection:
            row = connection.execute(
                "SELECT project_json FROM projects WHERE project_id = ?",
                (project_id,),
            ).fetchone()
        if row is None:
            return None
        return Project.model_validate_json(row["project_json"])

    def update_project(self, project: Project) -> Project | None:
        """Replace a stored project; return None when it does not exist."""
        stored = project.model_copy(update={"updated_at_utc": utc_now_iso()})
        with self._connect() as connection:
            cursor = connection.execute(
                """
                UPDATE projects
                SET title = ?, project_json = ?, updated_at_utc = ?
                WHERE project_id = ?
                """,
                (stored.title, stored.model_dump_json(), stored.updated_at_utc, project.id),
            )
        if cursor.rowcount == 0:
            return None
        return stored

    def create_playthrough(self, playthrough: Playthrough) -> Playthrough:
        now = utc_now_iso()
        with self._connect() as connection:
            cursor = connection.execute(
                """
                INSERT INTO playthroughs (
                    project_id, user_id, revision, playthrough_json, created_at_utc, updated_at_utc
                )
                VALUES (?, ?, 0, ?, ?, ?)
                """,
                (playthrough.project_id, playthrough.user_id, "{}", now, now),
            )
            playthrough_id = int(cursor.lastrowid or 0)
            stored = playthrough.model_copy(
                update={
                    "id": playthrough_id,
                    "revision": 0,
                    "created_at_utc": now,
                    "updated_at_utc": now,
                }
            )
            connection.execute(
                "UPDATE playthroughs SET playthrough_json = ? WHERE playthrough_id = ?",
                (stored.model_dump_json(), playthrough_id),
            )
        logger.info(
            "store.playthrough_created id=%s project=%s", playthrough_id, playthrough.project_id
        )
        return stored

    def get_playthrough(self, *, playthrough_id: int) -> Playthrough | None:
        with self._connect() as connection:
            row = connection.execute(
                "SELECT playthrough_json FROM playthroughs WHERE playthrough_id = ?",
                (playthrough_id,),
            ).fetchone()
        if row is None:
            return None
        return Playthrough.model_validate_json(row["playthrough_json"])

    def update_playthrough(
        self, playthrough: Playthrough, *, expected_revision: int | None = None
    ) -> Playthrough:
        """Write a playthrough and bump its revision.

        Raises `PersistenceConflictError` when the row is missing or its
        revision no longer matches `expected_revision`.
        """
        expected = playthrough.revision if expected_revision is None else expected_revision
        stored = playthrough.model_copy(
            update={"revision": expected + 1, "updated_at_utc": utc_now_iso()}
        )
        with self._connect() as connection:
            cursor = connection.execute(
                """
                UPDATE playthroughs
                SET revision = ?, playthrough_json = ?, updated_at_utc = ?
                WHERE playthrough_id = ? AND revision = ?
                """,
                (
                    stored.revision,
                    stored.model_dump_json(),
                    stored.updated_at_utc,
                    playthrough.id,
                    expected,
                ),
            )
        if cursor.rowcount == 0:
            logger.warning(
                "store.playthrough_conflict id=%s expected_revision=%s", playthrough.id, expected
            )
            raise PersistenceConflictError(
                f"Playthrough {playthrough.id} changed since revision {expected}."
            )
        return stored

    def delete_playthrough(self, *, playthrough_id: int) -> bool:
        with self._connect() as connection:
            cursor = connection.execute(
                "DELETE FROM playthroughs WHERE playthrough_id = ?",
                (playthrough_id,),
            )
        return cursor.rowcount > 0

    def list_playthroughs_for_project(self, *, project_id: int) -> list[Playthrough]:
        """Return playthroughs for one project, most recently updated first."""
        with self._connect() as connection:
            rows = connection.execute(
                """
                SELECT playthrough_json
                FROM playthroughs
                WHERE project_id = ?
                ORDER BY updated_at_utc DESC, playthrough_id DESC
                """,
                (project_id,),
            ).fetchall()
        return [Playthrough.model_validate_json(row["playthrough_json"]) for row in rows]

    def list_playthroughs_for_user(self, *, user_id: str) -> list[Playthrough]:
        with self._connect() as connection:
            rows = connection.execute(
                """
                SELECT playthrough_json
                FROM playthroughs
                WHERE user_id = ?
                ORDER BY updated_at_utc DESC, playthrough_id DESC
                """,
                (user_id,),
            ).fetchall()
        return [Playthrough.model_validate_json(row["playthrough_json"]) for row in rows]
