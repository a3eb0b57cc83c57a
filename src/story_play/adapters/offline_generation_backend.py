"""Deterministic stand-in used when no generation service is configured."""

from __future__ import annotations

from story_play.domain.models import (
    ActionTrigger,
    LineMetadata,
    Playthrough,
    Project,
    Trigger,
    XmlLine,
)


class OfflineGenerationBackend:
    """Never fires action triggers; every step is one pausing narration line."""

    def __init__(self, narration: str = "The story waits for your next move.") -> None:
        self._narration = narration

    def evaluate(
        self, *, possible_triggers: dict[str, ActionTrigger], lines: list[XmlLine]
    ) -> list[str]:
        return []

    def advance(
        self, *, project: Project, playthrough: Playthrough, triggers: list[Trigger]
    ) -> list[XmlLine]:
        return [
            XmlLine(
                text=self._narration,
                role="assistant",
                metadata=LineMetadata(should_pause=True),
            )
        ]

    def hint(
        self,
        *,
        lines: list[XmlLine],
        trigger_conditions: list[str],
        style: str,
        player_character_name: str,
    ) -> list[XmlLine]:
        if not trigger_conditions:
            return [XmlLine(text=f"{player_character_name} could look around a little more.")]
        suggestion = f"Perhaps {player_character_name} could try this: {trigger_conditions[0]}"
        return [XmlLine(text=suggestion)]
