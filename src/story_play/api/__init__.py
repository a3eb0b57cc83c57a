"""Public API surface for HTTP serving."""

from story_play.api.app import create_app
from story_play.api.contracts import (
    PlayerInputRequest,
    ProjectWriteRequest,
    TurnResponse,
)

__all__ = [
    "PlayerInputRequest",
    "ProjectWriteRequest",
    "TurnResponse",
    "create_app",
]
