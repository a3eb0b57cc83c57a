"""Turn-by-turn play on top of the orchestrator and a generation backend.

Every turn is computed on a local copy of the transcript and committed with one
`Progress` dispatch after the backend calls succeed. A failed or cancelled turn
therefore commits nothing, not even the player's own line.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Sequence
from dataclasses import dataclass, field

from story_play.application.orchestrator import PlaythroughOrchestrator
from story_play.application.playthrough_actions import (
    Duplicate,
    NoActivePlaythroughError,
    Progress,
)
from story_play.core.graph_queries import (
    find_best_character_match,
    get_cast,
    get_player_character,
    get_scene,
)
from story_play.core.line_codec import decode_lines, encode_lines
from story_play.core.trigger_engine import (
    SceneTriggerStates,
    current_scene_id,
    event_image_url,
    firing_lines,
    latest_scene_id,
    line_ends_game,
    scene_lines,
    scrub_generated_lines,
    select_firing,
)
from story_play.domain.models import (
    Character,
    DisplayLine,
    LineMetadata,
    Playthrough,
    Scene,
    Trigger,
)
from story_play.domain.ports import GenerationBackend

DEFAULT_EVAL_WINDOW_LINES = 40

logger = logging.getLogger(__name__)


class PlaythroughEndedError(RuntimeError):
    """Raised when a turn is requested after the playthrough reached an ending."""


class GenerationCancelledError(RuntimeError):
    """Raised when a turn is cancelled before it could be committed."""


class CancellationToken:
    """Thread-safe flag checked around every backend call."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise GenerationCancelledError("Generation was cancelled.")


@dataclass(frozen=True)
class TurnResult:
    """What one turn committed."""

    playthrough: Playthrough
    new_lines: list[DisplayLine] = field(default_factory=list)
    fired_trigger_id: str | None = None


def _authored(line: DisplayLine) -> DisplayLine:
    """Copy of a scene script line, flagged as served verbatim rather than generated."""
    metadata = line.metadata.model_copy(deep=True) if line.metadata else LineMetadata()
    metadata.verbatim = True
    return line.model_copy(update={"metadata": metadata}, deep=True)


class PlaythroughSession:
    def __init__(
        self,
        *,
        orchestrator: PlaythroughOrchestrator,
        backend: GenerationBackend,
        eval_window_lines: int = DEFAULT_EVAL_WINDOW_LINES,
    ) -> None:
        self._orchestrator = orchestrator
        self._backend = backend
        self._eval_window_lines = max(1, eval_window_lines)
        self._active_token: CancellationToken | None = None
        self._generating = False

    @property
    def playthrough(self) -> Playthrough:
        current = self._orchestrator.current
        if current is None:
            raise NoActivePlaythroughError("No playthrough is loaded.")
        return current

    def submit_player_input(
        self, text: str, cancel: CancellationToken | None = None
    ) -> TurnResult:
        """Append the player's line, evaluate armed triggers, and generate the reply."""
        playthrough = self.playthrough
        if line_ends_game(self._line_at_pointer(playthrough)):
            raise PlaythroughEndedError("The playthrough has ended; rewind or restart to continue.")
        text = text.strip()
        if not text:
            raise ValueError("Player input must not be empty.")

        snapshot = playthrough.project_snapshot
        player = get_player_character(snapshot)
        player_line = DisplayLine(
            type="player",
            text=text,
            character_id=player.uuid,
            character_name=player.name,
            metadata=LineMetadata(should_pause=False),
        )
        lines = [*playthrough.lines[: playthrough.current_line_idx + 1], player_line]
        scene = self._latest_scene(playthrough, lines)
        states = SceneTriggerStates.derive(scene, lines)

        with self._turn(cancel) as token:
            reported: list[str] = []
            armed = states.armed_by_id()
            if armed:
                window = scene_lines(lines, scene.uuid)[-self._eval_window_lines :]
                token.raise_if_cancelled()
                reported = self._backend.evaluate(
                    possible_triggers=armed,
                    lines=encode_lines(window, snapshot.cartridge.scenes),
                )
                token.raise_if_cancelled()
                logger.info(
                    "turn.evaluate playthrough=%s scene=%s armed=%s reported=%s",
                    playthrough.id,
                    scene.uuid,
                    sorted(armed),
                    reported,
                )
            fired = select_firing(states, reported)
            return self._generate(playthrough, lines, fired, token, prefix=[player_line])

    def advance(self, cancel: CancellationToken | None = None) -> TurnResult:
        """Produce the next line without player input."""
        playthrough = self.playthrough
        lines = list(playthrough.lines)
        if playthrough.current_line_idx < len(lines) - 1:
            return self.step_forward()
        if lines and line_ends_game(lines[-1]):
            raise PlaythroughEndedError("The playthrough has ended; rewind or restart to continue.")

        scene = self._latest_scene(playthrough, lines)
        served = len(scene_lines(lines, scene.uuid)) - 1
        if 0 <= served < len(scene.script):
            script_line = _authored(scene.script[served])
            return self._commit(playthrough, [*lines, script_line], [script_line])

        last = lines[-1] if lines else None
        if last is not None and last.metadata is not None and last.metadata.should_pause:
            return TurnResult(playthrough=playthrough)

        states = SceneTriggerStates.derive(scene, lines)
        with self._turn(cancel) as token:
            return self._generate(playthrough, lines, states.due_fallback(), token)

    def request_hint(self, cancel: CancellationToken | None = None) -> TurnResult:
        playthrough = self.playthrough
        lines = list(playthrough.lines)
        if lines and line_ends_game(lines[-1]):
            raise PlaythroughEndedError("The playthrough has ended; rewind or restart to continue.")
        snapshot = playthrough.project_snapshot
        scene = self._latest_scene(playthrough, lines)
        states = SceneTriggerStates.derive(scene, lines)

        with self._turn(cancel) as token:
            token.raise_if_cancelled()
            hint_lines = self._backend.hint(
                lines=encode_lines(lines[-self._eval_window_lines :], snapshot.cartridge.scenes),
                trigger_conditions=[trigger.condition for trigger in states.armed()],
                style=snapshot.cartridge.style.prompt,
                player_character_name=get_player_character(snapshot).name,
            )
            token.raise_if_cancelled()
        text = " ".join(line.text for line in decode_lines(hint_lines) if line.text).strip()
        hint = DisplayLine(type="hint", text=text)
        return self._commit(playthrough, [*lines, hint], [hint])

    def rewind(self, line_idx: int) -> TurnResult:
        """Move the pointer; the transcript and trigger consumption are unchanged."""
        playthrough = self.playthrough
        if not 0 <= line_idx < len(playthrough.lines):
            raise IndexError(f"Line index out of range: {line_idx}")
        self.cancel_pending()
        scene_id = current_scene_id(playthrough.lines, line_idx) or playthrough.current_scene_id
        updated = self._orchestrator.dispatch(
            Progress({"current_line_idx": line_idx, "current_scene_id": scene_id})
        )
        return TurnResult(playthrough=updated or playthrough)

    def step_back(self) -> TurnResult:
        playthrough = self.playthrough
        if playthrough.current_line_idx <= 0:
            return TurnResult(playthrough=playthrough)
        return self.rewind(playthrough.current_line_idx - 1)

    def step_forward(self) -> TurnResult:
        playthrough = self.playthrough
        if playthrough.current_line_idx >= len(playthrough.lines) - 1:
            return TurnResult(playthrough=playthrough)
        return self.rewind(playthrough.current_line_idx + 1)

    def redo_from_line(self) -> Playthrough | None:
        """Branch into a new playthrough truncated at the pointer."""
        playthrough = self.playthrough
        self.cancel_pending()
        idx = playthrough.current_line_idx
        return self._orchestrator.dispatch(
            Duplicate(
                {
                    "lines": playthrough.lines[: idx + 1],
                    "current_line_idx": idx,
                    "current_scene_id": current_scene_id(playthrough.lines, idx)
                    or playthrough.current_scene_id,
                }
            )
        )

    def current_line(self) -> DisplayLine:
        """Line at the pointer with its derived display status."""
        playthrough = self.playthrough
        line = self._line_at_pointer(playthrough)
        if line is None:
            return DisplayLine(type="narration", text="")
        at_end = playthrough.current_line_idx >= len(playthrough.lines) - 1
        metadata = line.metadata or LineMetadata()
        status = None
        if metadata.should_end:
            status = "game-over"
        elif at_end and self._generating:
            status = "loading"
        elif at_end and metadata.should_pause:
            status = "waiting-on-user"
        if status is None:
            return line
        return line.model_copy(update={"metadata": metadata.model_copy(update={"status": status})})

    def event_image_url(self) -> str | None:
        playthrough = self.playthrough
        return event_image_url(playthrough.lines, playthrough.current_scene_id)

    def cancel_pending(self) -> None:
        if self._active_token is not None:
            self._active_token.cancel()

    def _turn(self, cancel: CancellationToken | None) -> _TurnScope:
        return _TurnScope(self, cancel or CancellationToken())

    def _generate(
        self,
        playthrough: Playthrough,
        lines: list[DisplayLine],
        fired: Trigger | None,
        token: CancellationToken,
        *,
        prefix: Sequence[DisplayLine] = (),
    ) -> TurnResult:
        snapshot = playthrough.project_snapshot
        request = playthrough.model_copy(
            update={
                "lines": lines,
                "current_line_idx": len(lines) - 1,
                "current_scene_id": latest_scene_id(lines) or playthrough.current_scene_id,
            }
        )
        token.raise_if_cancelled()
        generated = decode_lines(
            self._backend.advance(
                project=snapshot,
                playthrough=request,
                triggers=[fired] if fired is not None else [],
            )
        )
        token.raise_if_cancelled()

        cast = get_cast(snapshot.cartridge, self._latest_scene(playthrough, lines))
        new_lines = [
            self._attribute_speaker(line, cast) for line in scrub_generated_lines(generated)
        ]
        if fired is not None:
            new_lines.extend(firing_lines(fired, snapshot.cartridge.scenes))
            logger.info(
                "turn.fired playthrough=%s trigger=%s go_to=%s",
                playthrough.id,
                fired.uuid,
                fired.go_to_scene_id,
            )
        result = self._commit(playthrough, [*lines, *new_lines], [*prefix, *new_lines])
        return TurnResult(
            playthrough=result.playthrough,
            new_lines=result.new_lines,
            fired_trigger_id=fired.uuid if fired is not None else None,
        )

    def _commit(
        self,
        playthrough: Playthrough,
        lines: list[DisplayLine],
        new_lines: list[DisplayLine],
    ) -> TurnResult:
        updated = self._orchestrator.dispatch(
            Progress(
                {
                    "lines": lines,
                    "current_line_idx": len(lines) - 1,
                    "current_scene_id": latest_scene_id(lines) or playthrough.current_scene_id,
                }
            )
        )
        return TurnResult(playthrough=updated or playthrough, new_lines=new_lines)

    def _latest_scene(self, playthrough: Playthrough, lines: Sequence[DisplayLine]) -> Scene:
        scene_id = latest_scene_id(lines) or playthrough.current_scene_id
        return get_scene(playthrough.project_snapshot, scene_id)

    @staticmethod
    def _attribute_speaker(line: DisplayLine, cast: Sequence[Character]) -> DisplayLine:
        if line.type != "character" or line.character_id or not line.character_name:
            return line
        speaker = find_best_character_match(cast, line.character_name)
        if speaker is None:
            return line
        return line.model_copy(
            update={"character_id": speaker.uuid, "character_name": speaker.name}
        )

    @staticmethod
    def _line_at_pointer(playthrough: Playthrough) -> DisplayLine | None:
        if not playthrough.lines:
            return None
        return playthrough.lines[min(playthrough.current_line_idx, len(playthrough.lines) - 1)]


class _TurnScope:
    """Marks the session as generating for the duration of backend calls."""

    def __init__(self, session: PlaythroughSession, token: CancellationToken) -> None:
        self._session = session
        self._token = token

    def __enter__(self) -> CancellationToken:
        self._session._active_token = self._token
        self._session._generating = True
        return self._token

    def __exit__(self, *exc_info: object) -> None:
        self._session._generating = False
        if self._session._active_token is self._token:
            self._session._active_token = None
