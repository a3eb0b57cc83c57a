"""FastAPI local-preview application for authoring and playing story graphs."""

from __future__ import annotations

import logging
import os
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Literal, TypeVar

from fastapi import FastAPI, HTTPException, Response
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from story_play.adapters.http_generation_backend import (
    HttpGenerationBackend,
    generation_url_from_env,
)
from story_play.adapters.offline_generation_backend import OfflineGenerationBackend
from story_play.adapters.sqlite_playthrough_store import SQLitePlaythroughStore
from story_play.api.contracts import (
    CompletionResponse,
    OutdatedResponse,
    PlayerInputRequest,
    PlaythroughCreateRequest,
    PlaythroughSettingsRequest,
    ProjectWriteRequest,
    RewindRequest,
    TurnResponse,
)
from story_play.application.orchestrator import PlaythroughOrchestrator
from story_play.application.playthrough_actions import (
    LOCAL_USER_ID,
    Create,
    Delete,
    Load,
    SettingsUpdate,
)
from story_play.application.playthrough_session import (
    DEFAULT_EVAL_WINDOW_LINES,
    GenerationCancelledError,
    PlaythroughEndedError,
    PlaythroughSession,
    TurnResult,
)
from story_play.core.completion import completion_info, completion_text
from story_play.core.graph_queries import GraphLookupError
from story_play.core.graph_sanitizer import sanitize_project, validate_project
from story_play.core.staleness import is_game_out_of_date, is_playthrough_outdated_for_edit
from story_play.domain.models import Playthrough, Project, utc_now_iso
from story_play.domain.ports import (
    GenerationBackend,
    GenerationBackendError,
    PersistenceConflictError,
)

DEFAULT_DB_PATH = Path("work/local/story_play.db")

logger = logging.getLogger(__name__)

_T = TypeVar("_T")


class HealthResponse(BaseModel):
    """Simple health payload used by probes."""

    status: Literal["ok"] = "ok"
    service: str = "story_play"


class ApiRootResponse(BaseModel):
    """Describes currently available API capabilities and runtime mode."""

    name: str = "story_play"
    stage: Literal["local-preview"] = "local-preview"
    persistence: Literal["sqlite"] = "sqlite"
    generation: Literal["http", "offline"] = "offline"
    endpoints: list[str] = Field(
        default_factory=lambda: [
            "/healthz",
            "/api/v1",
            "/api/v1/projects",
            "/api/v1/projects/{project_id}",
            "/api/v1/projects/{project_id}/playthroughs",
            "/api/v1/projects/{project_id}/completion",
            "/api/v1/playthroughs/{playthrough_id}",
            "/api/v1/playthroughs/{playthrough_id}/settings",
            "/api/v1/playthroughs/{playthrough_id}/input",
            "/api/v1/playthroughs/{playthrough_id}/next",
            "/api/v1/playthroughs/{playthrough_id}/hint",
            "/api/v1/playthroughs/{playthrough_id}/rewind",
            "/api/v1/playthroughs/{playthrough_id}/branch",
            "/api/v1/playthroughs/{playthrough_id}/outdated",
        ]
    )


def _resolve_db_path(db_path: Path | None) -> Path:
    """Resolve DB path from explicit arg, env var, then default path."""
    if db_path is not None:
        return db_path
    env_value = os.environ.get("STORY_PLAY_DB_PATH", "").strip()
    if env_value:
        return Path(env_value)
    return DEFAULT_DB_PATH


def _cors_origins() -> list[str]:
    raw = os.environ.get("STORY_PLAY_CORS_ORIGINS", "").strip()
    if raw:
        return [origin.strip() for origin in raw.split(",") if origin.strip()]
    return [
        "http://127.0.0.1:5173",
        "http://localhost:5173",
    ]


def _int_env(name: str, default: int, *, minimum: int, maximum: int) -> int:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    return max(minimum, min(maximum, value))


def _default_backend() -> GenerationBackend:
    if generation_url_from_env():
        return HttpGenerationBackend()
    return OfflineGenerationBackend()


@contextmanager
def _turn_errors() -> Iterator[None]:
    """Map session and backend failures onto HTTP status codes."""
    try:
        yield
    except GenerationBackendError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    except (PlaythroughEndedError, PersistenceConflictError, GenerationCancelledError) as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except (GraphLookupError, IndexError, ValueError) as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc


def create_app(
    db_path: Path | None = None, *, backend: GenerationBackend | None = None
) -> FastAPI:
    """Create the API application."""
    effective_db_path = _resolve_db_path(db_path)
    store = SQLitePlaythroughStore(db_path=effective_db_path)
    generation = backend if backend is not None else _default_backend()
    generation_mode: Literal["http", "offline"] = (
        "http" if isinstance(generation, HttpGenerationBackend) else "offline"
    )
    eval_window_lines = _int_env(
        "STORY_PLAY_EVAL_WINDOW_LINES",
        DEFAULT_EVAL_WINDOW_LINES,
        minimum=1,
        maximum=500,
    )

    app = FastAPI(
        title="story_play API",
        version="0.1.0",
        description=(
            "Local preview API for story graph authoring and trigger-driven playthroughs."
        ),
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        openapi_tags=[
            {"name": "system", "description": "Service health and runtime metadata."},
            {"name": "api", "description": "API discovery and root-level capability listing."},
            {"name": "projects", "description": "Story graph CRUD with sanitize-then-validate."},
            {"name": "playthroughs", "description": "Playthrough lifecycle and turn handling."},
        ],
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=_cors_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    logger.info(
        "api.start db_path=%s generation=%s eval_window_lines=%s",
        effective_db_path,
        generation_mode,
        eval_window_lines,
    )

    def project_or_404(project_id: int) -> Project:
        project = store.get_project(project_id=project_id)
        if project is None:
            raise HTTPException(status_code=404, detail="Project not found")
        return project

    def playthrough_or_404(playthrough_id: int) -> Playthrough:
        playthrough = store.get_playthrough(playthrough_id=playthrough_id)
        if playthrough is None:
            raise HTTPException(status_code=404, detail="Playthrough not found")
        return playthrough

    def accepted_project(payload: ProjectWriteRequest, *, base: Project | None) -> Project:
        draft = Project(
            title=payload.title,
            settings=payload.settings,
            cartridge=payload.cartridge,
            user_id=base.user_id if base is not None else LOCAL_USER_ID,
        )
        if base is not None:
            draft = draft.model_copy(
                update={
                    "id": base.id,
                    "version": base.version,
                    "created_at_utc": base.created_at_utc,
                    "updated_at_utc": utc_now_iso(),
                }
            )
        sanitized = sanitize_project(draft)
        error = validate_project(sanitized)
        if error is not None:
            logger.info("project.rejected id=%s error=%s", draft.id, error)
            raise HTTPException(status_code=422, detail=error)
        return sanitized

    def orchestrator_for(playthrough: Playthrough) -> PlaythroughOrchestrator:
        live = store.get_project(project_id=playthrough.project_id)
        orchestrator = PlaythroughOrchestrator(
            project=live if live is not None else playthrough.project_snapshot,
            repository=store,
        )
        orchestrator.dispatch(Load(playthrough))
        return orchestrator

    def session_for(playthrough_id: int) -> PlaythroughSession:
        return PlaythroughSession(
            orchestrator=orchestrator_for(playthrough_or_404(playthrough_id)),
            backend=generation,
            eval_window_lines=eval_window_lines,
        )

    def run_turn(
        playthrough_id: int, step: Callable[[PlaythroughSession], _T]
    ) -> tuple[PlaythroughSession, _T]:
        session = session_for(playthrough_id)
        with _turn_errors():
            return session, step(session)

    def turn_response(session: PlaythroughSession, result: TurnResult) -> TurnResponse:
        return TurnResponse(
            playthrough=result.playthrough,
            new_lines=result.new_lines,
            fired_trigger_id=result.fired_trigger_id,
            current_line=session.current_line(),
            event_image_url=session.event_image_url(),
        )

    @app.get("/healthz", response_model=HealthResponse, tags=["system"])
    def healthz() -> HealthResponse:
        return HealthResponse()

    @app.get("/api/v1", response_model=ApiRootResponse, tags=["api"])
    def api_v1_root() -> ApiRootResponse:
        return ApiRootResponse(generation=generation_mode)

    @app.post("/api/v1/projects", response_model=Project, tags=["projects"], status_code=201)
    def create_project(payload: ProjectWriteRequest) -> Project:
        return store.create_project(accepted_project(payload, base=None))

    @app.get("/api/v1/projects/{project_id}", response_model=Project, tags=["projects"])
    def get_project(project_id: int) -> Project:
        return project_or_404(project_id)

    @app.put("/api/v1/projects/{project_id}", response_model=Project, tags=["projects"])
    def update_project(project_id: int, payload: ProjectWriteRequest) -> Project:
        existing = project_or_404(project_id)
        updated = store.update_project(accepted_project(payload, base=existing))
        if updated is None:
            raise HTTPException(status_code=404, detail="Project not found")
        return updated

    @app.get(
        "/api/v1/projects/{project_id}/playthroughs",
        response_model=list[Playthrough],
        tags=["projects", "playthroughs"],
    )
    def list_project_playthroughs(project_id: int) -> list[Playthrough]:
        project_or_404(project_id)
        return store.list_playthroughs_for_project(project_id=project_id)

    @app.post(
        "/api/v1/projects/{project_id}/playthroughs",
        response_model=Playthrough,
        tags=["projects", "playthroughs"],
        status_code=201,
    )
    def create_playthrough(project_id: int, payload: PlaythroughCreateRequest) -> Playthrough:
        project = project_or_404(project_id)
        orchestrator = PlaythroughOrchestrator(project=project, repository=store)
        overrides = {"title": payload.title} if payload.title else {}
        with _turn_errors():
            created = orchestrator.dispatch(Create(overrides))
        if created is None:
            raise HTTPException(status_code=500, detail="Playthrough was not created")
        return created

    @app.get(
        "/api/v1/projects/{project_id}/completion",
        response_model=CompletionResponse,
        tags=["projects"],
    )
    def project_completion(project_id: int) -> CompletionResponse:
        project = project_or_404(project_id)
        info = completion_info(store.list_playthroughs_for_project(project_id=project_id), project)
        return CompletionResponse(
            project_id=project_id,
            ending_completions=info.ending_completions,
            reached_endings=info.reached_endings,
            total_endings=info.total_endings,
            seen_trigger_ids=info.seen_trigger_ids,
            completion_percentage=info.completion_percentage,
            summary=completion_text(info),
        )

    @app.get(
        "/api/v1/playthroughs/{playthrough_id}",
        response_model=Playthrough,
        tags=["playthroughs"],
    )
    def get_playthrough(playthrough_id: int) -> Playthrough:
        return playthrough_or_404(playthrough_id)

    @app.delete(
        "/api/v1/playthroughs/{playthrough_id}",
        status_code=204,
        tags=["playthroughs"],
    )
    def delete_playthrough(playthrough_id: int) -> Response:
        orchestrator = orchestrator_for(playthrough_or_404(playthrough_id))
        orchestrator.dispatch(Delete(playthrough_id))
        return Response(status_code=204)

    @app.patch(
        "/api/v1/playthroughs/{playthrough_id}/settings",
        response_model=Playthrough,
        tags=["playthroughs"],
    )
    def update_playthrough_settings(
        playthrough_id: int, payload: PlaythroughSettingsRequest
    ) -> Playthrough:
        orchestrator = orchestrator_for(playthrough_or_404(playthrough_id))
        with _turn_errors():
            updated = orchestrator.dispatch(SettingsUpdate(payload.updates()))
        if updated is None:
            raise HTTPException(status_code=404, detail="Playthrough not found")
        return updated

    @app.post(
        "/api/v1/playthroughs/{playthrough_id}/input",
        response_model=TurnResponse,
        tags=["playthroughs"],
    )
    def submit_input(playthrough_id: int, payload: PlayerInputRequest) -> TurnResponse:
        session, result = run_turn(
            playthrough_id, lambda session: session.submit_player_input(payload.text)
        )
        return turn_response(session, result)

    @app.post(
        "/api/v1/playthroughs/{playthrough_id}/next",
        response_model=TurnResponse,
        tags=["playthroughs"],
    )
    def next_line(playthrough_id: int) -> TurnResponse:
        session, result = run_turn(playthrough_id, lambda session: session.advance())
        return turn_response(session, result)

    @app.post(
        "/api/v1/playthroughs/{playthrough_id}/hint",
        response_model=TurnResponse,
        tags=["playthroughs"],
    )
    def hint(playthrough_id: int) -> TurnResponse:
        session, result = run_turn(playthrough_id, lambda session: session.request_hint())
        return turn_response(session, result)

    @app.post(
        "/api/v1/playthroughs/{playthrough_id}/rewind",
        response_model=TurnResponse,
        tags=["playthroughs"],
    )
    def rewind(playthrough_id: int, payload: RewindRequest) -> TurnResponse:
        session, result = run_turn(playthrough_id, lambda session: session.rewind(payload.line_idx))
        return turn_response(session, result)

    @app.post(
        "/api/v1/playthroughs/{playthrough_id}/branch",
        response_model=Playthrough,
        tags=["playthroughs"],
        status_code=201,
    )
    def branch(playthrough_id: int) -> Playthrough:
        _, branched = run_turn(playthrough_id, lambda session: session.redo_from_line())
        if branched is None:
            raise HTTPException(status_code=500, detail="Branch was not created")
        return branched

    @app.get(
        "/api/v1/playthroughs/{playthrough_id}/outdated",
        response_model=OutdatedResponse,
        tags=["playthroughs"],
    )
    def outdated(playthrough_id: int) -> OutdatedResponse:
        playthrough = playthrough_or_404(playthrough_id)
        live = store.get_project(project_id=playthrough.project_id)
        if live is None:
            raise HTTPException(status_code=404, detail="Project not found")
        return OutdatedResponse(
            playthrough_id=playthrough_id,
            game_out_of_date=is_game_out_of_date(live, playthrough),
            outdated_for_edit=is_playthrough_outdated_for_edit(live, playthrough),
        )

    return app


app = create_app()
