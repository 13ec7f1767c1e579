"""Wireframe consensus: a propose -> critique -> vote cycle that runs once
per session, inside brainstorming.

Phases move forward only: idle -> proposing -> critiquing -> converged.
The one exception is an abandoned proposal round (nobody produced a
parseable block), which drops back to idle for good.
"""

import logging
import re
from collections.abc import Callable
from typing import Any

from deliberation.models import SYSTEM, Critique, Message, Roster, WireframeProposal, new_message
from deliberation.transport import Transport
from deliberation.wireframe import leaf_sections, parse_structure, section_key

logger = logging.getLogger(__name__)

IDLE = "idle"
PROPOSING = "proposing"
CRITIQUING = "critiquing"
CONVERGED = "converged"

_CRITIQUE_RE = re.compile(
    r"\[CANVAS_CRITIQUE:(KEEP|REMOVE|MODIFY)\]\s*(.+?)\s+-\s+(.+)",
    re.IGNORECASE,
)

# Escape hatches, in multiples of the participant count
_ABANDON_AFTER = 3
_FORCE_CRITIQUE_AFTER = 4
_FORCE_CONVERGE_AFTER = 2

_PROPOSE_TEXT = """🧱 **WIREFRAME PROPOSALS**

Everyone has spoken. Before we argue further, each of you propose the page structure you think works best:

[WIREFRAME]
navbar: Logo | Nav Links | CTA Button
hero: Headline + CTA
features: Feature 1 | Feature 2 | Feature 3
footer: Company | Links
[/WIREFRAME]

One block per participant. Your latest block counts."""

_CRITIQUE_TEXT = """🔎 **WIREFRAME CRITIQUE**

Proposals collected:
{summary}

Critique the sections, one tag per line:
[CANVAS_CRITIQUE:KEEP] Section - why it must stay
[CANVAS_CRITIQUE:REMOVE] Section - why it should go
[CANVAS_CRITIQUE:MODIFY] Section - what to change"""

_CONVERGED_TEXT = """✅ **WIREFRAME CONSENSUS** ({count} proposals)

Agreed sections:
{sections}"""


def parse_critiques(content: str) -> list[Critique]:
    """Every critique tag in a message; unmatched lines are ignored."""
    critiques = []
    for line in content.splitlines():
        match = _CRITIQUE_RE.search(line)
        if match:
            action, target, reason = match.groups()
            critiques.append(Critique(action=action.upper(), target=target.strip(), reason=reason.strip()))
    return critiques


def tally_sections(
    proposals: list[WireframeProposal],
    critiques: list[Critique],
    leaves: Callable[[Any], list[Any]] = leaf_sections,
) -> tuple[dict[str, int], dict[str, str]]:
    """Vote count per section key, plus the first label seen for each key.

    Each proposal votes once for every distinct leaf it contains. KEEP adds
    a vote to a known key, REMOVE takes one away (never below zero) and
    MODIFY leaves the count alone.
    """
    tally: dict[str, int] = {}
    labels: dict[str, str] = {}
    for proposal in proposals:
        seen: set[str] = set()
        for leaf in leaves(proposal.wireframe):
            key = section_key(leaf.label)
            if not key or key in seen:
                continue
            seen.add(key)
            labels.setdefault(key, leaf.label)
            tally[key] = tally.get(key, 0) + 1

    for critique in critiques:
        key = section_key(critique.target)
        if key not in tally:
            continue
        if critique.action == "KEEP":
            tally[key] += 1
        elif critique.action == "REMOVE":
            tally[key] = max(0, tally[key] - 1)
    return tally, labels


def consensus_keys(tally: dict[str, int], proposal_count: int) -> list[str]:
    """Keys voted in by a strict majority of proposals. A tie is excluded."""
    return [key for key, votes in tally.items() if votes > proposal_count * 0.5]


class WireframeConsensus:
    """Drives the wireframe voting cycle for one session."""

    def __init__(
        self,
        roster: Roster,
        transport: Transport,
        parse: Callable[[str], Any] = parse_structure,
        leaves: Callable[[Any], list[Any]] = leaf_sections,
        on_event: Callable[[str, dict], None] | None = None,
    ) -> None:
        self._roster = roster
        self._transport = transport
        self._parse = parse
        self._leaves = leaves
        self._on_event = on_event or (lambda _type, _data: None)

        self._phase = IDLE
        self._started = False
        self._proposals: dict[str, WireframeProposal] = {}
        self._critiques: dict[str, list[Critique]] = {}
        self._round_messages = 0
        self._critiqued: set[str] = set()
        self._sections: list[str] = []

    # --- read-only accessors ----------------------------------------------

    def get_canvas_consensus_phase(self) -> str:
        return self._phase

    def get_wireframe_proposals(self) -> dict[str, WireframeProposal]:
        return dict(self._proposals)

    def get_critiques(self) -> dict[str, list[Critique]]:
        return {agent: list(c) for agent, c in self._critiques.items()}

    def consensus_sections(self) -> list[str]:
        return list(self._sections)

    @property
    def started(self) -> bool:
        return self._started

    @property
    def in_progress(self) -> bool:
        return self._phase in (PROPOSING, CRITIQUING)

    # --- protocol -----------------------------------------------------------

    def maybe_start(self, all_participants_spoke: bool) -> bool:
        """Open the proposal round the first time everyone has spoken."""
        if self._started or self._phase != IDLE or not all_participants_spoke:
            return False
        self._started = True
        self._set_phase(PROPOSING)
        self._broadcast(_PROPOSE_TEXT)
        for agent_id in self._roster.ids:
            self._transport.force_speak(agent_id, "Proposing a wireframe")
        return True

    def on_message(self, message: Message, message_index: int) -> None:
        if message.agent_id == SYSTEM or not self.in_progress:
            return
        self._round_messages += 1
        if self._phase == PROPOSING:
            self._collect_proposal(message, message_index)
        elif self._phase == CRITIQUING:
            self._collect_critiques(message)

    def _collect_proposal(self, message: Message, message_index: int) -> None:
        wireframe = self._parse(message.content)
        if wireframe is not None:
            proposal = WireframeProposal(
                agent_id=message.agent_id,
                agent_name=self._roster.display_name(message.agent_id),
                wireframe=wireframe,
                timestamp=message.timestamp,
                message_index=message_index,
            )
            self._proposals[message.agent_id] = proposal
            logger.info("Wireframe proposal from %s (%d so far)", message.agent_id, len(self._proposals))
            self._on_event("wireframe_proposal", {"agent_id": message.agent_id, "count": len(self._proposals)})

        n = len(self._roster)
        if all(agent_id in self._proposals for agent_id in self._roster.ids):
            self._start_critique()
        elif not self._proposals and self._round_messages >= _ABANDON_AFTER * n:
            logger.warning("Wireframe round abandoned: no proposals after %d messages", self._round_messages)
            self._set_phase(IDLE)
        elif self._proposals and self._round_messages >= _FORCE_CRITIQUE_AFTER * n:
            logger.info("Moving to critique with %d/%d proposals", len(self._proposals), n)
            self._start_critique()

    def _start_critique(self) -> None:
        self._round_messages = 0
        self._critiqued = set()
        self._set_phase(CRITIQUING)
        lines = []
        for proposal in self._proposals.values():
            labels = ", ".join(leaf.label for leaf in self._leaves(proposal.wireframe))
            lines.append(f"- **{proposal.agent_name}**: {labels}")
        self._broadcast(_CRITIQUE_TEXT.format(summary="\n".join(lines)))

    def _collect_critiques(self, message: Message) -> None:
        critiques = parse_critiques(message.content)
        if critiques:
            self._critiques[message.agent_id] = critiques
            self._critiqued.add(message.agent_id)
            logger.debug("%d critique(s) from %s", len(critiques), message.agent_id)

        everyone = all(agent_id in self._critiqued for agent_id in self._roster.ids)
        if everyone or self._round_messages >= _FORCE_CONVERGE_AFTER * len(self._roster):
            self._converge()

    def _converge(self) -> None:
        proposals = list(self._proposals.values())
        critiques = [c for author_critiques in self._critiques.values() for c in author_critiques]
        tally, labels = tally_sections(proposals, critiques, self._leaves)
        self._sections = [labels[key] for key in consensus_keys(tally, len(proposals))]
        self._set_phase(CONVERGED)
        logger.info("Wireframe converged on %d sections", len(self._sections))
        listing = "\n".join(f"- {label}" for label in self._sections) or "- (no section reached a majority)"
        self._broadcast(_CONVERGED_TEXT.format(count=len(proposals), sections=listing))
        self._on_event("wireframe_converged", {"sections": list(self._sections), "tally": tally})

    def _set_phase(self, phase: str) -> None:
        self._phase = phase
        self._on_event("canvas_phase", {"phase": phase})

    def _broadcast(self, content: str) -> None:
        self._transport.broadcast(new_message(SYSTEM, content, type="system", metadata={"canvas_phase": self._phase}))
