"""Conversion between structured transcript lines and the inline-tagged wire form.

The tagged form wraps speech in `<ch name="X">…</ch>` and player input in
`<player>…</player>`; everything else is narration. Decoding is total: any
text, however malformed, yields at least one narration fragment.
"""

from __future__ import annotations

import html
import re
from collections.abc import Sequence
from dataclasses import dataclass

from story_play.core.graph_queries import scene_title
from story_play.domain.models import DisplayLine, LineMetadata, Scene, XmlLine

_SPAN_PATTERN = re.compile(
    r'<ch name="(?P<name>[^"]+)">(?P<speech>.*?)</ch>'
    r'|<player(?: name="(?P<player_name>[^"]*)")?>(?P<player>.*?)</player>'
    r"|<(?!ch|player|/)[^>]+(?<!/)>(?P<inner>.*?)</[^>]+>",
    flags=re.DOTALL,
)
_NARRATOR_MARKERS = ("narrator", "narration")
_STEP_SECTION_SPLIT = re.compile(r"\n(?=PLAN:|LINE:|PAUSE:|END:)")


def _line_text(line: DisplayLine, scenes: Sequence[Scene]) -> str:
    if line.metadata is not None and line.metadata.scene_id and not line.text.strip():
        return scene_title(scenes, line.metadata.scene_id)
    return line.text.strip()


def _copy_metadata(metadata: LineMetadata | None) -> LineMetadata | None:
    return metadata.model_copy(deep=True) if metadata is not None else None


def encode_line(line: DisplayLine, scenes: Sequence[Scene]) -> XmlLine:
    """Wrap one display line in the tag family the backend expects."""
    text = _line_text(line, scenes)
    metadata = _copy_metadata(line.metadata)
    if line.type == "character":
        name = html.escape(line.character_name or "", quote=True)
        return XmlLine(text=f'<ch name="{name}">{text}</ch>', role="assistant", metadata=metadata)
    if line.type == "player":
        if line.character_name:
            name = html.escape(line.character_name, quote=True)
            return XmlLine(
                text=f'<player name="{name}">{text}</player>', role="user", metadata=metadata
            )
        return XmlLine(text=f"<player>{text}</player>", role="user", metadata=metadata)
    return XmlLine(text=text, role="assistant", metadata=metadata)


def encode_lines(lines: Sequence[DisplayLine], scenes: Sequence[Scene]) -> list[XmlLine]:
    return [encode_line(line, scenes) for line in lines]


def _is_narrator(name: str) -> bool:
    normalized = name.strip().lower()
    return any(marker in normalized for marker in _NARRATOR_MARKERS)


def _fragment_for_span(match: re.Match[str]) -> DisplayLine:
    if match.group("name") is not None:
        name = html.unescape(match.group("name"))
        speech = match.group("speech").strip()
        if _is_narrator(name):
            return DisplayLine(type="narration", text=speech)
        return DisplayLine(type="character", text=speech, character_name=name)
    if match.group("player") is not None:
        player_name = match.group("player_name")
        return DisplayLine(
            type="player",
            text=match.group("player").strip(),
            character_name=html.unescape(player_name) if player_name else None,
        )
    return DisplayLine(type="narration", text=(match.group("inner") or "").strip())


def decode_line(line: XmlLine) -> list[DisplayLine]:
    """Split tagged text into ordered fragments; metadata lands on the last one."""
    fragments: list[DisplayLine] = []
    text = line.text
    if text.strip():
        cursor = 0
        for match in _SPAN_PATTERN.finditer(text):
            before = text[cursor : match.start()].strip()
            if before:
                fragments.append(DisplayLine(type="narration", text=before))
            fragments.append(_fragment_for_span(match))
            cursor = match.end()
        remaining = text[cursor:].strip()
        if remaining:
            fragments.append(DisplayLine(type="narration", text=remaining))

    if not fragments:
        fragments.append(DisplayLine(type="narration", text=text.strip()))

    fragments[-1] = fragments[-1].model_copy(update={"metadata": _copy_metadata(line.metadata)})
    return fragments


def decode_lines(lines: Sequence[XmlLine]) -> list[DisplayLine]:
    decoded: list[DisplayLine] = []
    for line in lines:
        decoded.extend(decode_line(line))
    return decoded


@dataclass(frozen=True)
class ParsedStep:
    """One step response split into its hidden plan, visible line, and pause flag."""

    plan: str | None
    line_content: str
    should_pause: bool


def parse_step_text(text: str) -> ParsedStep:
    """Parse `PLAN:` / `LINE:` / `PAUSE:` sections of a raw step response."""
    plans: list[str] = []
    bodies: list[str] = []
    pause_info = ""
    for section in _STEP_SECTION_SPLIT.split(text):
        stripped = section.strip()
        if stripped.startswith("PLAN:"):
            content = re.sub(r"^PLAN:\s*", "", stripped, flags=re.IGNORECASE).strip()
            if content:
                plans.append(content)
        elif stripped.startswith("LINE:"):
            content = re.sub(r"^LINE:\s*", "", stripped, flags=re.IGNORECASE).strip()
            if content:
                bodies.append(content)
        elif stripped.startswith("PAUSE:"):
            pause_info = re.sub(r"^PAUSE:\s*", "", stripped, flags=re.IGNORECASE).strip()

    line_content = " ".join(bodies)
    if not line_content:
        # older responses: "LINE: ...\nPAUSE: true" without section newlines
        old_line, _, old_pause = text.partition("\nPAUSE: ")
        parts = re.split(r"LINE:\s*", old_line, maxsplit=1, flags=re.IGNORECASE)
        tail = parts[1].strip() if len(parts) > 1 else ""
        line_content = tail or old_line.strip()
        pause_info = old_pause.strip()

    return ParsedStep(
        plan="; ".join(plans) or None,
        line_content=line_content,
        should_pause=pause_info.strip().lower() == "true",
    )


def step_text_to_xml_line(text: str) -> XmlLine:
    parsed = parse_step_text(text)
    return XmlLine(
        text=parsed.line_content,
        role="assistant",
        metadata=LineMetadata(should_pause=parsed.should_pause),
        plan=parsed.plan,
    )
