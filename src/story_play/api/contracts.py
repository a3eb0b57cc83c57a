"""Typed request and response contracts for the HTTP API."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from story_play.domain.models import (
    Cartridge,
    DisplayLine,
    Playthrough,
    Settings,
    Visibility,
)


class ContractModel(BaseModel):
    """Base model config used by all API contracts."""

    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)


class ProjectWriteRequest(ContractModel):
    """Project payload; the cartridge is sanitized and then validated on every write."""

    title: str = Field(min_length=1, max_length=300)
    settings: Settings = Field(default_factory=Settings)
    cartridge: Cartridge = Field(default_factory=Cartridge)


class PlaythroughCreateRequest(ContractModel):
    title: str | None = Field(default=None, max_length=300)


class PlaythroughSettingsRequest(ContractModel):
    title: str | None = Field(default=None, max_length=300)
    liked: bool | None = None
    visibility: Visibility | None = None

    def updates(self) -> dict[str, Any]:
        return self.model_dump(exclude_unset=True)


class PlayerInputRequest(ContractModel):
    text: str = Field(min_length=1, max_length=4000)


class RewindRequest(ContractModel):
    line_idx: int = Field(ge=0)


class TurnResponse(ContractModel):
    """Result of one turn: the committed playthrough plus what this turn added."""

    playthrough: Playthrough
    new_lines: list[DisplayLine] = Field(default_factory=list)
    fired_trigger_id: str | None = None
    current_line: DisplayLine
    event_image_url: str | None = None


class OutdatedResponse(ContractModel):
    playthrough_id: int
    game_out_of_date: bool
    outdated_for_edit: bool


class CompletionResponse(ContractModel):
    project_id: int
    ending_completions: dict[str, bool]
    reached_endings: list[str]
    total_endings: list[str]
    seen_trigger_ids: list[str]
    completion_percentage: float
    summary: str
