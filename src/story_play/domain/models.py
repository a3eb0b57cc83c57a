"""Core story-graph and playthrough domain models."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Annotated, Final, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

END_SCENE_ID: Final[str] = "end"
DEFAULT_ENDING_NAME: Final[str] = "Default Ending"
UNSAVED_ID: Final[int] = -1

Visibility = Literal["public", "unlisted", "private"]
DisplayLineType = Literal["character", "player", "narration", "hint"]
DisplayLineStatus = Literal["game-over", "waiting-on-user", "loading"]
LineRole = Literal["user", "assistant"]


def utc_now_iso() -> str:
    """Return current UTC timestamp in ISO-8601 form."""
    return datetime.now(UTC).isoformat()


class DomainModel(BaseModel):
    """Strict model configuration shared by graph and transcript records."""

    model_config = ConfigDict(extra="forbid")


class Crop(DomainModel):
    scale: float | None = None
    x: float | None = None
    y: float | None = None


class Cutout(DomainModel):
    image_url: str
    scale: float | None = None
    x: float | None = None
    y: float | None = None
    flip: bool | None = None


class Sprite(DomainModel):
    """One image variant of a character or place."""

    image_url: str = ""
    display: Literal["profile", "cutout"] | None = None
    cutout: Cutout | None = None
    crop: Crop | None = None


class Character(DomainModel):
    """A cast member referenced by id from scenes."""

    uuid: str
    name: str
    description: str = ""
    sprites: dict[str, Sprite] = Field(default_factory=dict)


class Place(DomainModel):
    """A location referenced by id from scenes."""

    uuid: str
    name: str
    description: str = ""
    sprites: dict[str, Sprite] = Field(default_factory=dict)


class Style(DomainModel):
    sref: str = ""
    prompt: str = ""


class LineMetadata(DomainModel):
    """Transcript metadata; only the last fragment of a decoded batch carries it."""

    scene_id: str | None = None
    activated_trigger_ids: list[str] | None = None
    status: DisplayLineStatus | None = None
    should_pause: bool | None = None
    should_end: bool | None = None
    ending_name: str | None = None
    event_image_url: str | None = None
    verbatim: bool | None = None


class DisplayLine(DomainModel):
    """One structured transcript line as shown to the player."""

    type: DisplayLineType
    text: str = ""
    character_id: str | None = None
    character_name: str | None = None
    metadata: LineMetadata | None = None


class XmlLine(DomainModel):
    """Inline-tagged line exchanged with the generation backend."""

    text: str = ""
    role: LineRole = "assistant"
    metadata: LineMetadata | None = None
    plan: str | None = None


def _uuid_or_missing(value: object) -> str | None:
    # non-string ids read as missing
    return value if isinstance(value, str) else None


class ActionTrigger(DomainModel):
    """Fires when the generation backend judges its condition true."""

    type: Literal["action"] = "action"
    uuid: str | None = None
    condition: str = ""
    narrative: str = ""
    go_to_scene_id: str | None = None
    ending_name: str | None = None
    depends_on_trigger_ids: list[str] | None = None
    event_image_url: str | None = None

    @field_validator("uuid", mode="before")
    @classmethod
    def _validate_uuid(cls, value: object) -> object:
        return _uuid_or_missing(value)


class FallbackTrigger(DomainModel):
    """Fires after `k` player turns in the scene when nothing else has."""

    type: Literal["fallback"] = "fallback"
    uuid: str | None = None
    k: int = Field(default=3, ge=1, le=10)
    narrative: str = ""
    go_to_scene_id: str | None = None
    ending_name: str | None = None
    event_image_url: str | None = None

    @field_validator("uuid", mode="before")
    @classmethod
    def _validate_uuid(cls, value: object) -> object:
        return _uuid_or_missing(value)


Trigger = Annotated[ActionTrigger | FallbackTrigger, Field(discriminator="type")]


class Scene(DomainModel):
    """A node of the story graph with its opening script and rules."""

    uuid: str
    title: str = ""
    place_id: str | None = None
    script: list[DisplayLine] = Field(default_factory=list)
    character_ids: list[str] = Field(default_factory=list)
    triggers: list[Trigger] = Field(default_factory=list)
    prompt: str | None = None
    image_url: str | None = None


class Cartridge(DomainModel):
    """The authored story graph."""

    scenes: list[Scene] = Field(default_factory=list)
    characters: list[Character] = Field(default_factory=list)
    places: list[Place] = Field(default_factory=list)
    style: Style = Field(default_factory=Style)


class Settings(DomainModel):
    short_description: str = ""
    long_description: str = ""
    genre: str = ""
    visibility: Visibility = "private"
    remixable: bool = False
    thumbnail_image_url: str | None = None
    starting_scene_id: str = ""
    player_id: str = ""


class Project(DomainModel):
    """A cartridge plus its settings and ownership metadata."""

    id: int = UNSAVED_ID
    title: str = ""
    settings: Settings = Field(default_factory=Settings)
    cartridge: Cartridge = Field(default_factory=Cartridge)
    version: str = "1"
    user_id: str = ""
    created_at_utc: str = Field(default_factory=utc_now_iso)
    updated_at_utc: str = Field(default_factory=utc_now_iso)


class Playthrough(DomainModel):
    """One player's transcript against a frozen project snapshot."""

    id: int = UNSAVED_ID
    project_id: int = UNSAVED_ID
    user_id: str = ""
    title: str | None = None
    lines: list[DisplayLine] = Field(default_factory=list)
    current_line_idx: int = Field(default=0, ge=0)
    current_scene_id: str = ""
    project_snapshot: Project
    liked: bool = False
    visibility: Visibility = "private"
    created_at_utc: str = Field(default_factory=utc_now_iso)
    updated_at_utc: str = Field(default_factory=utc_now_iso)
    revision: int = Field(default=0, ge=0)
