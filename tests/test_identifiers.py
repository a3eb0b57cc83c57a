from __future__ import annotations

import pytest

from story_play.domain.identifiers import (
    TriggerRef,
    ensure_character_uuid,
    ensure_scene_uuid,
    generate_trigger_uuid,
    generate_uuid,
    normalize_trigger_uuid,
    strip_known_prefix,
)


def test_trigger_ref_round_trips_canonical_text() -> None:
    ref = TriggerRef.parse("tr-hall-key-2")
    assert ref == TriggerRef(scene_base="hall", suffix="key-2")
    assert str(ref) == "tr-hall-key-2"
    assert ref.belongs_to("sc-hall")
    assert not ref.belongs_to("sc-cellar")


@pytest.mark.parametrize("value", ["trigger-1", "tr-", "tr-hall", "hall-key"])
def test_trigger_ref_rejects_non_canonical_text(value: str) -> None:
    with pytest.raises(ValueError):
        TriggerRef.parse(value)


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("tr-hall-key", "tr-hall-key"),
        ("trigger-fallback", "tr-hall-fallback"),
        ("trigger-3", "tr-hall-3"),
        ("tr-oldscene-abc", "tr-hall-abc"),
        ("tr-oldscene-abc-def", "tr-hall-abc-def"),
        ("abc", "tr-hall-abc"),
    ],
)
def test_normalize_trigger_uuid_rewrites_scene_portion(raw: str, expected: str) -> None:
    assert normalize_trigger_uuid(raw, "sc-hall") == expected


def test_normalize_trigger_uuid_is_idempotent() -> None:
    for raw in ["trigger-fallback", "trigger-7", "tr-x-y", "loose"]:
        once = normalize_trigger_uuid(raw, "sc-hall")
        assert normalize_trigger_uuid(once, "sc-hall") == once


def test_prefix_helpers_swap_known_prefixes() -> None:
    assert strip_known_prefix("sc-hall") == "hall"
    assert strip_known_prefix("hall") == "hall"
    assert ensure_scene_uuid("ch-bram") == "sc-bram"
    assert ensure_character_uuid("bram") == "ch-bram"


def test_generated_ids_are_short_and_dashless() -> None:
    value = generate_uuid()
    assert len(value) == 16
    assert value.isalnum() and value.lower() == value
    trigger_id = generate_trigger_uuid("sc-hall")
    assert TriggerRef.parse(trigger_id).belongs_to("sc-hall")
    with pytest.raises(ValueError):
        generate_trigger_uuid("")
