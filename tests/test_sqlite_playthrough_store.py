from __future__ import annotations

from pathlib import Path

import pytest

from story_play.adapters.sqlite_playthrough_store import SQLitePlaythroughStore
from story_play.application.playthrough_actions import new_playthrough
from story_play.domain.models import DisplayLine, Project
from story_play.domain.ports import PersistenceConflictError

FIXTURES = Path(__file__).resolve().parent / "fixtures"


def _manor() -> Project:
    return Project.model_validate_json((FIXTURES / "manor.project.json").read_text("utf-8"))


def test_project_round_trip_and_update(tmp_path: Path) -> None:
    store = SQLitePlaythroughStore(tmp_path / "nested" / "story_play.db")
    created = store.create_project(_manor())
    assert created.id == 1

    loaded = store.get_project(project_id=created.id)
    assert loaded == created
    assert store.get_project(project_id=99) is None

    renamed = store.update_project(created.model_copy(update={"title": "The Old Manor"}))
    assert renamed is not None
    reloaded = store.get_project(project_id=created.id)
    assert reloaded is not None and reloaded.title == "The Old Manor"
    assert store.update_project(created.model_copy(update={"id": 42})) is None


def test_playthrough_revision_guards_updates(tmp_path: Path) -> None:
    store = SQLitePlaythroughStore(tmp_path / "story_play.db")
    project = store.create_project(_manor())
    created = store.create_playthrough(new_playthrough(project, user_id="reader-1"))
    assert created.id == 1 and created.revision == 0

    extended = created.model_copy(
        update={"lines": [*created.lines, DisplayLine(type="player", text="Hi")]}
    )
    saved = store.update_playthrough(extended, expected_revision=0)
    assert saved.revision == 1

    with pytest.raises(PersistenceConflictError):
        store.update_playthrough(extended, expected_revision=0)

    loaded = store.get_playthrough(playthrough_id=created.id)
    assert loaded is not None
    assert loaded.revision == 1
    assert [line.text for line in loaded.lines] == ["", "Hi"]


def test_update_of_missing_playthrough_is_a_conflict(tmp_path: Path) -> None:
    store = SQLitePlaythroughStore(tmp_path / "story_play.db")
    orphan = new_playthrough(_manor()).model_copy(update={"id": 7})
    with pytest.raises(PersistenceConflictError):
        store.update_playthrough(orphan)


def test_list_and_delete_playthroughs(tmp_path: Path) -> None:
    store = SQLitePlaythroughStore(tmp_path / "story_play.db")
    project = store.create_project(_manor())
    first = store.create_playthrough(new_playthrough(project, user_id="reader-1"))
    second = store.create_playthrough(new_playthrough(project, user_id="reader-2"))
    store.update_playthrough(first.model_copy(update={"title": "Touched"}))

    listed = store.list_playthroughs_for_project(project_id=project.id)
    assert [playthrough.id for playthrough in listed] == [first.id, second.id]
    assert [p.id for p in store.list_playthroughs_for_user(user_id="reader-2")] == [second.id]

    assert store.delete_playthrough(playthrough_id=first.id) is True
    assert store.delete_playthrough(playthrough_id=first.id) is False
    assert [p.id for p in store.list_playthroughs_for_project(project_id=project.id)] == [
        second.id
    ]
