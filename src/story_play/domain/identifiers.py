"""Entity identifier helpers and the structured trigger reference type."""

from __future__ import annotations

import re
import secrets
from dataclasses import dataclass
from typing import Final

_ALPHABET: Final[str] = "abcdefghijklmnopqrstuvwxyz0123456789"
_UUID_LENGTH: Final[int] = 16
_KNOWN_PREFIX = re.compile(r"^(ch-|sc-|tr-|pl-)")

CHARACTER_PREFIX: Final[str] = "ch-"
SCENE_PREFIX: Final[str] = "sc-"
TRIGGER_PREFIX: Final[str] = "tr-"

_LEGACY_TRIGGER_PREFIX: Final[str] = "trigger-"
_LEGACY_FALLBACK_ID: Final[str] = "trigger-fallback"


@dataclass(frozen=True)
class TriggerRef:
    """Structured form of a trigger uuid: `tr-{scene_base}-{suffix}`."""

    scene_base: str
    suffix: str

    def __str__(self) -> str:
        return f"{TRIGGER_PREFIX}{self.scene_base}-{self.suffix}"

    @classmethod
    def parse(cls, value: str) -> TriggerRef:
        """Split a canonical trigger uuid; the scene base never contains a dash."""
        if not value.startswith(TRIGGER_PREFIX):
            raise ValueError(f"Invalid trigger uuid: {value}")
        scene_base, separator, suffix = value[len(TRIGGER_PREFIX) :].partition("-")
        if not separator or not scene_base:
            raise ValueError(f"Invalid trigger uuid: {value}")
        return cls(scene_base=scene_base, suffix=suffix)

    @classmethod
    def for_scene(cls, scene_uuid: str, suffix: str) -> TriggerRef:
        return cls(scene_base=strip_known_prefix(scene_uuid), suffix=suffix)

    def belongs_to(self, scene_uuid: str) -> bool:
        return self.scene_base == strip_known_prefix(scene_uuid)


def generate_uuid() -> str:
    """Return a short dashless id made of lowercase letters and digits."""
    return "".join(secrets.choice(_ALPHABET) for _ in range(_UUID_LENGTH))


def strip_known_prefix(value: str) -> str:
    return _KNOWN_PREFIX.sub("", value, count=1)


def ensure_character_uuid(value: str) -> str:
    return f"{CHARACTER_PREFIX}{strip_known_prefix(value)}"


def ensure_scene_uuid(value: str) -> str:
    return f"{SCENE_PREFIX}{strip_known_prefix(value)}"


def ensure_trigger_uuid(value: str, scene_uuid: str) -> str:
    return str(TriggerRef.for_scene(scene_uuid, strip_known_prefix(value)))


def generate_trigger_uuid(scene_uuid: str) -> str:
    if not scene_uuid:
        raise ValueError("Scene uuid is required to generate a trigger uuid.")
    return ensure_trigger_uuid(generate_uuid(), scene_uuid)


def normalize_trigger_uuid(value: str, scene_uuid: str) -> str:
    """Rewrite legacy or stale trigger ids into `tr-{current scene base}-{suffix}`.

    Accepted inputs are the canonical form for this scene (returned unchanged),
    `trigger-fallback`, `trigger-N`, `tr-{other scene}-{suffix}` and bare
    suffixes. The scene portion always comes from `scene_uuid`.
    """
    scene_base = strip_known_prefix(scene_uuid)
    if value.startswith(f"{TRIGGER_PREFIX}{scene_base}-"):
        return value
    if value == _LEGACY_FALLBACK_ID:
        return str(TriggerRef(scene_base=scene_base, suffix="fallback"))
    if value.startswith(_LEGACY_TRIGGER_PREFIX):
        suffix = value[len(_LEGACY_TRIGGER_PREFIX) :]
        return str(TriggerRef(scene_base=scene_base, suffix=suffix))
    if value.startswith(TRIGGER_PREFIX):
        parts = value.split("-")
        if len(parts) >= 3:
            return str(TriggerRef(scene_base=scene_base, suffix="-".join(parts[2:])))
    suffix = value[len(TRIGGER_PREFIX) :] if value.startswith(TRIGGER_PREFIX) else value
    return str(TriggerRef(scene_base=scene_base, suffix=suffix))
