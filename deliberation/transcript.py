"""Transcript loading for offline replay.

Two formats are accepted. YAML::

    goal: Landing page for a budgeting app
    project: pennywise
    mode: copywrite
    agents:
      - {id: ronny, name: Ronny}
      - {id: yossi, name: Yossi}
    messages:
      - {author: ronny, content: "I propose we lead with the savings number."}
      - {author: yossi, type: agreement, content: "I agree."}

Markdown with YAML frontmatter (same header keys), one ``## author`` heading
per message and an optional ``[type]`` after the author::

    ## ronny
    I propose we lead with the savings number.

    ## yossi [agreement]
    I agree.
"""

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path

import frontmatter
import yaml

from deliberation.models import ARGUMENT, Participant

logger = logging.getLogger(__name__)

_HEADING_RE = re.compile(r"^##\s+([\w.-]+)(?:\s+\[(\w+)\])?\s*$", re.MULTILINE)


class TranscriptError(ValueError):
    """Raised when a transcript file is missing fields or malformed."""


@dataclass
class TranscriptEntry:
    author: str
    content: str
    type: str = ARGUMENT


@dataclass
class Transcript:
    goal: str
    agents: list[Participant]
    entries: list[TranscriptEntry] = field(default_factory=list)
    project: str = ""
    mode: str | None = None


def _parse_agents(raw: object) -> list[Participant]:
    if not isinstance(raw, list) or not raw:
        raise TranscriptError("Transcript needs a non-empty 'agents' list")
    agents = []
    for item in raw:
        if isinstance(item, str):
            agents.append(Participant(id=item, display_name=item))
        elif isinstance(item, dict) and "id" in item:
            agents.append(Participant(id=str(item["id"]), display_name=str(item.get("name", item["id"]))))
        else:
            raise TranscriptError(f"Bad agent entry: {item!r}")
    return agents


def _parse_entries(raw: object) -> list[TranscriptEntry]:
    if not isinstance(raw, list):
        raise TranscriptError("'messages' must be a list")
    entries = []
    for i, item in enumerate(raw, start=1):
        if not isinstance(item, dict) or "author" not in item or "content" not in item:
            raise TranscriptError(f"Message {i} needs 'author' and 'content'")
        entries.append(TranscriptEntry(
            author=str(item["author"]),
            content=str(item["content"]),
            type=str(item.get("type", ARGUMENT)),
        ))
    return entries


def _parse_markdown_body(body: str) -> list[TranscriptEntry]:
    headings = list(_HEADING_RE.finditer(body))
    entries = []
    for i, match in enumerate(headings):
        end = headings[i + 1].start() if i + 1 < len(headings) else len(body)
        content = body[match.end():end].strip()
        if content:
            entries.append(TranscriptEntry(
                author=match.group(1),
                content=content,
                type=(match.group(2) or ARGUMENT).lower(),
            ))
    return entries


def _build(header: dict, entries: list[TranscriptEntry]) -> Transcript:
    goal = header.get("goal")
    if not goal:
        raise TranscriptError("Transcript needs a 'goal'")
    mode = header.get("mode")
    return Transcript(
        goal=str(goal),
        agents=_parse_agents(header.get("agents")),
        entries=entries,
        project=str(header.get("project", "")),
        mode=str(mode) if mode else None,
    )


def load_transcript(path: Path) -> Transcript:
    """Load a .yaml/.yml or .md transcript.

    Raises FileNotFoundError if the file is missing and TranscriptError if
    it cannot be parsed.
    """
    if not path.exists():
        raise FileNotFoundError(f"Transcript not found: {path}")

    if path.suffix.lower() == ".md":
        try:
            post = frontmatter.load(str(path))
        except yaml.YAMLError as exc:
            raise TranscriptError(f"Invalid frontmatter in {path}: {exc}") from exc
        transcript = _build(dict(post.metadata), _parse_markdown_body(post.content))
    else:
        try:
            with path.open("r", encoding="utf-8") as f:
                raw = yaml.safe_load(f)
        except yaml.YAMLError as exc:
            raise TranscriptError(f"Invalid YAML in {path}: {exc}") from exc
        if not isinstance(raw, dict):
            raise TranscriptError(f"Transcript {path} must be a mapping")
        transcript = _build(raw, _parse_entries(raw.get("messages") or []))

    logger.debug("Loaded %d messages from %s", len(transcript.entries), path)
    return transcript
