"""Domain models, identifiers, and ports for story playthroughs."""

from story_play.domain.identifiers import TriggerRef, normalize_trigger_uuid
from story_play.domain.models import (
    DEFAULT_ENDING_NAME,
    END_SCENE_ID,
    ActionTrigger,
    Cartridge,
    Character,
    DisplayLine,
    FallbackTrigger,
    LineMetadata,
    Place,
    Playthrough,
    Project,
    Scene,
    Settings,
    Style,
    Trigger,
    XmlLine,
)
from story_play.domain.ports import (
    GenerationBackend,
    GenerationBackendError,
    PersistenceConflictError,
    PlaythroughRepository,
    ProjectRepository,
)

__all__ = [
    "DEFAULT_ENDING_NAME",
    "END_SCENE_ID",
    "ActionTrigger",
    "Cartridge",
    "Character",
    "DisplayLine",
    "FallbackTrigger",
    "GenerationBackend",
    "GenerationBackendError",
    "LineMetadata",
    "PersistenceConflictError",
    "Place",
    "Playthrough",
    "PlaythroughRepository",
    "Project",
    "ProjectRepository",
    "Scene",
    "Settings",
    "Style",
    "Trigger",
    "TriggerRef",
    "XmlLine",
    "normalize_trigger_uuid",
]
