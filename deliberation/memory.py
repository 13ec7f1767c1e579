"""Pattern-based conversation memory.

Keeps running summaries, decisions, proposals and a per-agent position
snapshot so that a phase handoff can restate what happened earlier in the
session without re-reading the whole transcript.
"""

import logging
import re
from dataclasses import dataclass, field

from deliberation.consensus import ResponseClassifier
from deliberation.models import AGREEMENT, DISAGREEMENT, PROPOSAL, SYSTEM, Message

logger = logging.getLogger(__name__)

SUMMARY_INTERVAL = 12

_DECISION_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"we('ve)?\s+(agreed|decided|concluded)",
        r"consensus\s+(is|reached)",
        r"let's\s+go\s+with",
        r"final\s+(decision|answer)",
        r"\[CONSENSUS\]",
        r"\[DECISION\]",
    )
]
_PROPOSAL_TAG_RE = re.compile(r"\[PROPOSAL\]", re.IGNORECASE)

_TAG_RE = re.compile(r"\[(?:TYPE:\s*)?\w+\]", re.IGNORECASE)
_SENTENCE_RE = re.compile(r"^(.+?[.!?])(\s|$)", re.DOTALL)
_OUTCOME_RE = re.compile(r"(?:decided|agreed|concluded|will|should)\s+(?:to\s+)?(.+?)(?:\.|!|$)", re.IGNORECASE)


@dataclass
class MemoryEntry:
    kind: str              # "summary", "decision", "proposal"
    content: str
    agent_id: str | None = None
    message_range: tuple[int, int] | None = None


@dataclass
class AgentPositions:
    agent_id: str
    key_points: list[str] = field(default_factory=list)
    agreements: list[str] = field(default_factory=list)
    disagreements: list[str] = field(default_factory=list)


def first_sentence(content: str) -> str:
    cleaned = _TAG_RE.sub("", content).strip()
    match = _SENTENCE_RE.match(cleaned)
    if match:
        return match.group(1)[:150]
    return cleaned[:100] + ("..." if len(cleaned) > 100 else "")


def _outcome(content: str) -> str:
    cleaned = _TAG_RE.sub("", content).strip()
    match = _OUTCOME_RE.search(cleaned)
    if match:
        return match.group(1)[:200]
    return first_sentence(cleaned)[:200]


class ConversationMemory:
    def __init__(self, cues: dict[str, list[str]] | None = None) -> None:
        self._cues = ResponseClassifier(cues)
        self.summaries: list[MemoryEntry] = []
        self.decisions: list[MemoryEntry] = []
        self.proposals: list[MemoryEntry] = []
        self.agents: dict[str, AgentPositions] = {}
        self._last_summarized = 0

    def process_message(self, message: Message, history: list[Message]) -> None:
        if message.agent_id != SYSTEM:
            self._extract(message)
        if len(history) - self._last_summarized >= SUMMARY_INTERVAL:
            self._summarize(history)

    def _extract(self, message: Message) -> None:
        state = self.agents.setdefault(message.agent_id, AgentPositions(message.agent_id))
        content = message.content

        if message.type == PROPOSAL or _PROPOSAL_TAG_RE.search(content) or self._cues.matches(PROPOSAL, content):
            self.proposals.append(MemoryEntry("proposal", _outcome(content), message.agent_id))
            state.key_points.append(first_sentence(content))

        if any(p.search(content) for p in _DECISION_PATTERNS):
            self.decisions.append(MemoryEntry("decision", _outcome(content), message.agent_id))

        if message.type == AGREEMENT or self._cues.matches(AGREEMENT, content):
            state.agreements.append(first_sentence(content))
        elif message.type == DISAGREEMENT or self._cues.matches(DISAGREEMENT, content):
            state.disagreements.append(first_sentence(content))

    def _summarize(self, history: list[Message]) -> None:
        start = self._last_summarized
        end = min(start + SUMMARY_INTERVAL, len(history))
        points = [
            f"- {m.agent_id}: {first_sentence(m.content)}"
            for m in history[start:end]
            if m.agent_id != SYSTEM
        ][:5]
        self.summaries.append(MemoryEntry(
            "summary",
            f"Messages {start + 1}-{end}:\n" + "\n".join(points),
            message_range=(start, end),
        ))
        self._last_summarized = end
        logger.debug("Summarized messages %d-%d", start + 1, end)

    def position_snapshot(self) -> dict[str, str]:
        """Latest stance per agent, for handoffs."""
        snapshot = {}
        for agent_id, state in self.agents.items():
            if state.key_points:
                snapshot[agent_id] = f"proposed: {state.key_points[-1]}"
            elif state.agreements:
                snapshot[agent_id] = f"agreed: {state.agreements[-1]}"
            elif state.disagreements:
                snapshot[agent_id] = f"pushed back: {state.disagreements[-1]}"
        return snapshot
