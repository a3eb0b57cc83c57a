"""HTTP client for the remote story-generation service."""

from __future__ import annotations

import logging
import os
import re
from collections.abc import Mapping
from typing import Any

import httpx
from pydantic import ValidationError

from story_play.core.line_codec import step_text_to_xml_line
from story_play.domain.models import ActionTrigger, Playthrough, Project, Trigger, XmlLine
from story_play.domain.ports import GenerationBackendError

DEFAULT_TIMEOUT_SECONDS = 60.0
_TRIGGERS_SECTION = re.compile(r"TRIGGERS:\s*(.*?)(?:\n|$)")

logger = logging.getLogger(__name__)


def _float_env(name: str, default: float, *, minimum: float, maximum: float) -> float:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        return default
    return max(minimum, min(maximum, value))


def generation_url_from_env() -> str:
    return os.environ.get("STORY_PLAY_GENERATION_URL", "").strip()


def parse_triggers_text(text: str, possible_trigger_ids: list[str]) -> list[str]:
    """Map a `TRIGGERS: 0, 2` answer to ids by position in the candidate list."""
    match = _TRIGGERS_SECTION.search(text)
    if match is None:
        logger.warning("generation.check_unparsed text=%r", text[:200])
        return []
    section = match.group(1).strip()
    if section in {"", "NONE"}:
        return []
    activated: list[str] = []
    for token in section.split(","):
        try:
            index = int(token.strip())
        except ValueError:
            continue
        if 0 <= index < len(possible_trigger_ids):
            trigger_id = possible_trigger_ids[index]
            if trigger_id not in activated:
                activated.append(trigger_id)
    return activated


class HttpGenerationBackend:
    """Posts JSON to `{base_url}/api/gen/story/{check,step,hint}`."""

    def __init__(
        self,
        base_url: str | None = None,
        *,
        timeout_seconds: float | None = None,
        client: httpx.Client | None = None,
    ) -> None:
        resolved = (base_url if base_url is not None else generation_url_from_env()).rstrip("/")
        if not resolved:
            raise ValueError("Generation backend URL is required (STORY_PLAY_GENERATION_URL).")
        self._base_url = resolved
        self._timeout = (
            timeout_seconds
            if timeout_seconds is not None
            else _float_env(
                "STORY_PLAY_GENERATION_TIMEOUT_SECONDS",
                DEFAULT_TIMEOUT_SECONDS,
                minimum=1.0,
                maximum=600.0,
            )
        )
        self._client = client

    @property
    def base_url(self) -> str:
        return self._base_url

    def evaluate(
        self, *, possible_triggers: dict[str, ActionTrigger], lines: list[XmlLine]
    ) -> list[str]:
        if not any(line.text.strip() for line in lines):
            return []
        payload = self._post(
            "check",
            {
                "possible_triggers": {
                    trigger_id: trigger.model_dump(mode="json")
                    for trigger_id, trigger in possible_triggers.items()
                },
                "lines": [line.model_dump(mode="json") for line in lines],
            },
        )
        raw_ids = payload.get("activated_trigger_ids")
        if isinstance(raw_ids, list):
            return [str(trigger_id) for trigger_id in raw_ids]
        text = payload.get("text")
        if isinstance(text, str):
            return parse_triggers_text(text, list(possible_triggers))
        raise GenerationBackendError("Check response has neither activated_trigger_ids nor text.")

    def advance(
        self, *, project: Project, playthrough: Playthrough, triggers: list[Trigger]
    ) -> list[XmlLine]:
        payload = self._post(
            "step",
            {
                "project": project.model_dump(mode="json"),
                "playthrough": playthrough.model_dump(mode="json"),
                "triggers": [trigger.model_dump(mode="json") for trigger in triggers],
            },
        )
        text = payload.get("text")
        if "lines" not in payload and isinstance(text, str):
            return [step_text_to_xml_line(text)]
        return self._lines(payload)

    def hint(
        self,
        *,
        lines: list[XmlLine],
        trigger_conditions: list[str],
        style: str,
        player_character_name: str,
    ) -> list[XmlLine]:
        payload = self._post(
            "hint",
            {
                "lines": [line.model_dump(mode="json") for line in lines],
                "trigger_conditions": trigger_conditions,
                "style": style,
                "player_character_name": player_character_name,
            },
        )
        return self._lines(payload)

    def _post(self, endpoint: str, body: dict[str, Any]) -> Mapping[str, Any]:
        url = f"{self._base_url}/api/gen/story/{endpoint}"
        try:
            if self._client is not None:
                response = self._client.post(url, json=body, timeout=self._timeout)
            else:
                with httpx.Client(timeout=self._timeout, follow_redirects=True) as client:
                    response = client.post(url, json=body)
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPError as exc:
            logger.warning("generation.request_failed endpoint=%s error=%s", endpoint, exc)
            raise GenerationBackendError(f"Generation request to {endpoint} failed: {exc}") from exc
        except ValueError as exc:
            raise GenerationBackendError(f"Generation {endpoint} returned invalid JSON.") from exc
        if not isinstance(payload, Mapping):
            raise GenerationBackendError(f"Generation {endpoint} returned a non-object payload.")
        return payload

    @staticmethod
    def _lines(payload: Mapping[str, Any]) -> list[XmlLine]:
        raw_lines = payload.get("lines")
        if not isinstance(raw_lines, list):
            raise GenerationBackendError("Generation response is missing a lines array.")
        try:
            return [XmlLine.model_validate(line) for line in raw_lines]
        except ValidationError as exc:
            raise GenerationBackendError(f"Generation response has malformed lines: {exc}") from exc
