"""Phase orchestration for one deliberation session.

``DeliberationSession`` is the single dispatch point: every message that
reaches ``on_message`` is fed, in order, to the mode rules engine, the
consensus tracker, the conversation memory and (during brainstorming) the
wireframe sub-protocol, after which phase advancement is evaluated.

Top-level phases::

    initialization -> brainstorming -> argumentation -> synthesis
                   -> drafting -> finalization

All ceilings are message counts; nothing here waits on a clock.
"""

import logging
from collections.abc import Callable
from typing import Any

from config.config_loader import AppConfig, ModePolicy, load_config
from deliberation.canvas import CONVERGED, IDLE, WireframeConsensus
from deliberation.consensus import ConsensusStatus, ConsensusTracker, ResponseClassifier
from deliberation.memory import ConversationMemory
from deliberation.models import (
    HUMAN,
    RESEARCH_RESULT,
    SYSTEM,
    SYSTEM_MESSAGE,
    CopySection,
    Intervention,
    Message,
    Roster,
    new_message,
)
from deliberation.rules import ModeRulesEngine, is_research_request
from deliberation.transport import Transport
from deliberation.wireframe import leaf_sections, parse_structure, section_key

logger = logging.getLogger(__name__)

INITIALIZATION = "initialization"
BRAINSTORMING = "brainstorming"
ARGUMENTATION = "argumentation"
SYNTHESIS = "synthesis"
DRAFTING = "drafting"
FINALIZATION = "finalization"

PHASES = (INITIALIZATION, BRAINSTORMING, ARGUMENTATION, SYNTHESIS, DRAFTING, FINALIZATION)

# Hard ceilings, in non-system messages since the phase started
BRAINSTORMING_CEILING = 36
ARGUMENTATION_NUDGE = 15
ARGUMENTATION_CEILING = 25
SYNTHESIS_CEILING = 15
DRAFTING_CEILING = 20

_SYNTHESIS_AUTHOR_SHARE = 0.6
_BRIEF_SUMMARIES = 2
_BRIEF_DECISIONS = 5
_BRIEF_PROPOSALS = 5

_OPENING_TEXT = """🎬 **SESSION START**: {mode_icon} {mode_name}

**Goal**: {goal}
{project_line}
We begin in **{phase_name}**: {phase_focus}

Mode phase: {mode_phase}{mode_focus}"""

_DIRECTIVE_TEXT = """📍 **PHASE: {name}**

**Focus**: {focus}

{brief}"""

_NUDGE_TEXT = """⏳ **WRAP UP ARGUMENTATION** ({count} messages so far)

{consensus} consensus point(s), {conflicts} open conflict(s).
Each participant: state where you stand in two sentences and name the one point you still dispute."""

_SYNTHESIS_BLOCKED_TEXT = """⚠️ **NOT READY FOR SYNTHESIS**

{recommendation}

Keep discussing, or force the transition."""

_DRAFT_ASSIGNMENT_TEXT = """✍️ **SECTION ASSIGNMENTS**

{assignments}

Write your section when it is your turn. Be specific, not abstract."""

_FINAL_DRAFT_TEXT = """📄 **CONSOLIDATED DRAFT**

{sections}"""


class DeliberationSession:
    """Drives one session through its phases over a transport."""

    def __init__(
        self,
        goal: str,
        roster: Roster,
        transport: Transport,
        mode: ModePolicy | None = None,
        config: AppConfig | None = None,
        project_name: str = "",
        parse: Callable[[str], Any] = parse_structure,
        leaves: Callable[[Any], list[Any]] = leaf_sections,
    ) -> None:
        self.goal = goal
        self.project_name = project_name
        self.roster = roster
        self._transport = transport
        self._config = config or load_config()

        self.rules = ModeRulesEngine(mode)
        self.tracker = ConsensusTracker(roster.ids, ResponseClassifier(self._config.response_cues))
        self.memory = ConversationMemory(self._config.response_cues)
        self.canvas = WireframeConsensus(roster, transport, parse=parse, leaves=leaves, on_event=self._emit)

        self._phase = INITIALIZATION
        self._phase_start = 0
        self._nudged = False
        self._history: list[Message] = []
        self._sections: list[CopySection] = []
        self._listeners: list[Callable[[str, dict], None]] = []

    # --- events -------------------------------------------------------------

    def on(self, callback: Callable[[str, dict], None]) -> Callable[[], None]:
        """Subscribe to session events. Returns an unsubscribe function."""
        self._listeners.append(callback)

        def unsubscribe() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unsubscribe

    def _emit(self, event_type: str, data: dict) -> None:
        for callback in list(self._listeners):
            callback(event_type, data)

    # --- accessors -------------------------------------------------------------

    def get_current_phase(self) -> str:
        return self._phase

    @property
    def history(self) -> list[Message]:
        return list(self._history)

    def get_consensus_status(self) -> ConsensusStatus:
        return self.tracker.status()

    def get_mode_info(self) -> dict[str, Any]:
        mode = self.rules.get_mode()
        progress = self.rules.get_progress()
        phase = self.rules.get_current_phase()
        return {
            "id": mode.id,
            "name": mode.name,
            "icon": mode.icon,
            "phase": phase.name if phase else progress.current_phase_id,
            "progress": progress,
        }

    def check_mode_success(self) -> tuple[bool, list[str]]:
        return self.rules.check_success_criteria()

    def get_wireframe_proposals(self):
        return self.canvas.get_wireframe_proposals()

    def get_canvas_consensus_phase(self) -> str:
        return self.canvas.get_canvas_consensus_phase()

    def get_copy_sections(self) -> list[CopySection]:
        return [CopySection(s.id, s.name, s.assigned_agent, s.content, s.status) for s in self._sections]

    def set_mode(self, mode: ModePolicy) -> None:
        """Explicit mode change: rules progress and consensus bookkeeping start over."""
        self.rules.set_mode(mode)
        self.tracker.reset()
        logger.info("Mode changed to %s", mode.id)

    # --- message flow -----------------------------------------------------------

    def start(self) -> None:
        """Open the session: brainstorming begins and the first participant speaks."""
        if self._phase != INITIALIZATION:
            return
        self._set_phase(BRAINSTORMING)

        mode = self.rules.get_mode()
        mode_phase = self.rules.get_current_phase()
        text = self._config.phases.get(BRAINSTORMING)
        self._broadcast(_OPENING_TEXT.format(
            mode_icon=mode.icon,
            mode_name=mode.name,
            goal=self.goal,
            project_line=f"**Project**: {self.project_name}\n" if self.project_name else "",
            phase_name=text.name if text else BRAINSTORMING.capitalize(),
            phase_focus=text.focus if text else "",
            mode_phase=mode_phase.name if mode_phase else "-",
            mode_focus=f" ({mode_phase.agent_focus})" if mode_phase and mode_phase.agent_focus else "",
        ), {"phase": BRAINSTORMING})

        if len(self.roster):
            self._force(self.roster.ids[0], "Opening the discussion")

    def on_message(self, message: Message) -> None:
        self._history.append(message)
        if message.agent_id == SYSTEM:
            return
        index = len(self._history) - 1

        if is_research_request(message):
            self.tracker.set_research_pending(True)
        elif message.type == RESEARCH_RESULT:
            self.tracker.set_research_pending(False)

        self.tracker.record_message(message.agent_id, message, self._history)
        self.memory.process_message(message, self._history)

        for intervention in self.rules.process_message(message, self._history):
            self._inject(intervention)

        if self._phase == BRAINSTORMING:
            self.canvas.on_message(message, index)
            self.canvas.maybe_start(self.tracker.status().all_participants_spoke)
        elif self._phase == DRAFTING:
            self._collect_draft(message)

        self._check_phase_advance()

    def tick(self) -> None:
        """Re-evaluate phase advancement without a new message."""
        if self._phase in (INITIALIZATION, FINALIZATION):
            return
        self._check_phase_advance()

    def _inject(self, intervention: Intervention) -> None:
        content = intervention.message.replace("{goal}", self.goal)
        self._broadcast(content, {
            "intervention_type": intervention.type,
            "priority": intervention.priority,
        })
        self._emit("intervention", {
            "type": intervention.type,
            "priority": intervention.priority,
            "action": intervention.action,
            "message": content,
        })

    # --- phase advancement ---------------------------------------------------------

    def _messages_since_phase_start(self) -> list[Message]:
        return [m for m in self._history[self._phase_start:] if m.agent_id != SYSTEM]

    def _check_phase_advance(self) -> None:
        since = self._messages_since_phase_start()
        n = len(self.roster)

        if self._phase == BRAINSTORMING:
            status = self.tracker.status()
            total = self.tracker.total_contributions()
            canvas_settled = self.canvas.get_canvas_consensus_phase() in (IDLE, CONVERGED)
            enough = status.all_participants_spoke and total >= 2 * n and (canvas_settled or total >= 4 * n)
            if enough:
                self._advance(ARGUMENTATION, "every participant has contributed")
            elif len(since) >= BRAINSTORMING_CEILING:
                self._advance(ARGUMENTATION, f"{BRAINSTORMING_CEILING} message ceiling")

        elif self._phase == ARGUMENTATION:
            status = self.tracker.status()
            if status.ready:
                self._advance(SYNTHESIS, status.recommendation)
            elif len(since) >= ARGUMENTATION_CEILING:
                self._advance(SYNTHESIS, f"{ARGUMENTATION_CEILING} message ceiling")
            elif len(since) >= ARGUMENTATION_NUDGE and not self._nudged:
                self._nudged = True
                self._broadcast(_NUDGE_TEXT.format(
                    count=len(since),
                    consensus=status.consensus_points,
                    conflicts=status.conflict_points,
                ), {"phase": ARGUMENTATION, "nudge": True})

        elif self._phase == SYNTHESIS:
            authors = {m.agent_id for m in since if m.agent_id != HUMAN}
            needed = max(2, int(n * _SYNTHESIS_AUTHOR_SHARE))
            if len(authors) >= needed:
                self._advance(DRAFTING, f"{len(authors)} participants synthesized")
            elif len(since) >= SYNTHESIS_CEILING:
                self._advance(DRAFTING, f"{SYNTHESIS_CEILING} message ceiling")

        elif self._phase == DRAFTING:
            if self._sections and all(s.status == "complete" for s in self._sections):
                self._advance(FINALIZATION, "all sections drafted")
            elif len(since) >= DRAFTING_CEILING:
                self._advance(FINALIZATION, f"{DRAFTING_CEILING} message ceiling")

    def _advance(self, phase: str, reason: str) -> None:
        previous = self._phase
        brief = self.build_handoff_brief(previous, phase)
        self._set_phase(phase)
        logger.info("Session phase %s -> %s (%s)", previous, phase, reason)

        text = self._config.phases.get(phase)
        directive = _DIRECTIVE_TEXT.format(
            name=text.name if text else phase.capitalize(),
            focus=text.focus if text else "",
            brief=brief,
        )
        self._broadcast(directive, {"phase": phase, "previous_phase": previous, "reason": reason})

        if phase == DRAFTING:
            self._start_drafting()
        elif phase == FINALIZATION:
            self._finalize()

    def _set_phase(self, phase: str) -> None:
        previous = self._phase
        self._phase = phase
        self._phase_start = len(self._history)
        self._nudged = False
        self.tracker.set_research_pending(False)
        self._emit("phase_change", {"from": previous, "to": phase})

    def transition_to_argumentation(self) -> tuple[bool, str]:
        """Manual brainstorming -> argumentation, once everyone has spoken."""
        if self._phase != BRAINSTORMING:
            return False, f"Not in brainstorming (currently {self._phase})"
        status = self.tracker.status()
        if not status.all_participants_spoke:
            return False, status.recommendation
        self._advance(ARGUMENTATION, "manual transition")
        return True, "Moved to argumentation"

    def transition_to_synthesis(self, force: bool = False) -> bool:
        """Manual jump to synthesis from brainstorming or argumentation.

        Without ``force`` the tracker must report ready; otherwise a warning
        directive goes out and nothing changes.
        """
        if self._phase not in (BRAINSTORMING, ARGUMENTATION):
            return False
        status = self.tracker.status()
        if not status.ready and not force:
            self._broadcast(
                _SYNTHESIS_BLOCKED_TEXT.format(recommendation=status.recommendation),
                {"phase": self._phase, "blocked": SYNTHESIS},
            )
            return False
        self._advance(SYNTHESIS, "forced" if force else "manual transition")
        return True

    # --- handoff brief ---------------------------------------------------------

    def build_handoff_brief(self, from_phase: str, to_phase: str) -> str:
        status = self.tracker.status()
        lines = [f"**Handoff: {from_phase} → {to_phase}**"]

        summaries = self.memory.summaries[-_BRIEF_SUMMARIES:]
        if summaries:
            lines.append("\n**Where we are:**")
            lines.extend(s.content for s in summaries)

        decisions = self.memory.decisions[-_BRIEF_DECISIONS:]
        if decisions:
            lines.append("\n**Decisions so far:**")
            lines.extend(f"- {d.content}" for d in decisions)

        insights = list(self.tracker.insights().values())[-_BRIEF_PROPOSALS:]
        if insights:
            lines.append("\n**Active proposals:**")
            for insight in insights:
                preview = insight.content.splitlines()[0][:120] if insight.content else ""
                lines.append(f"- {preview} (+{len(insight.supporters)} / -{len(insight.opposers)})")

        positions = self.memory.position_snapshot()
        if positions:
            lines.append("\n**Positions:**")
            lines.extend(
                f"- {self.roster.display_name(agent_id)}: {stance}" for agent_id, stance in positions.items()
            )

        lines.append(f"\n{status.consensus_points} consensus point(s), {status.conflict_points} conflict(s).")
        return "\n".join(lines)

    # --- drafting --------------------------------------------------------------

    def _start_drafting(self) -> None:
        labels = self.canvas.consensus_sections()
        if labels:
            templates = [(section_key(label), label) for label in labels]
        else:
            templates = [(s.id, s.name) for s in self._config.copy_sections]

        agents = self.roster.ids
        self._sections = [
            CopySection(id=section_id, name=name, assigned_agent=agents[i % len(agents)] if agents else None)
            for i, (section_id, name) in enumerate(templates)
        ]
        if not self._sections:
            logger.warning("Drafting started with no sections to write")
            return

        assignments = "\n".join(
            f"- **{s.name}**: {self.roster.display_name(s.assigned_agent or '')}" for s in self._sections
        )
        self._broadcast(_DRAFT_ASSIGNMENT_TEXT.format(assignments=assignments), {"phase": DRAFTING})
        self._start_next_section()

    def _start_next_section(self) -> None:
        if any(s.status == "in_progress" for s in self._sections):
            return
        section = next((s for s in self._sections if s.status == "pending"), None)
        if section is None:
            return
        section.status = "in_progress"
        self._emit("draft_section", {"id": section.id, "status": section.status, "agent_id": section.assigned_agent})
        if section.assigned_agent:
            self._force(section.assigned_agent, f"Drafting {section.name}")

    def _collect_draft(self, message: Message) -> None:
        section = next((s for s in self._sections if s.status == "in_progress"), None)
        if section is not None and message.agent_id == section.assigned_agent:
            self._complete(section, message.content)

    def _complete(self, section: CopySection, content: str) -> None:
        section.content = content
        section.status = "complete"
        logger.info("Section %s drafted by %s", section.id, section.assigned_agent)
        self._emit("draft_section", {"id": section.id, "status": section.status, "agent_id": section.assigned_agent})
        self._start_next_section()

    def complete_draft_section(self, section_id: str, content: str) -> bool:
        """Record a section's content directly. False for unknown ids or outside drafting."""
        if self._phase != DRAFTING:
            return False
        section = next((s for s in self._sections if s.id == section_id), None)
        if section is None:
            return False
        self._complete(section, content)
        self._check_phase_advance()
        return True

    def _finalize(self) -> None:
        parts = [
            f"## {s.name}\n{s.content}" if s.content else f"## {s.name}\n_(not drafted)_"
            for s in self._sections
        ]
        self._broadcast(
            _FINAL_DRAFT_TEXT.format(sections="\n\n".join(parts) or "_(no sections)_"),
            {"phase": FINALIZATION},
        )
        met, missing = self.rules.check_success_criteria()
        self._emit("finalized", {
            "sections": self.get_copy_sections(),
            "success": met,
            "missing": missing,
        })

    # --- transport helpers -----------------------------------------------------

    def _broadcast(self, content: str, metadata: dict[str, Any] | None = None) -> None:
        self._transport.broadcast(new_message(SYSTEM, content, type=SYSTEM_MESSAGE, metadata=metadata))

    def _force(self, agent_id: str, reason: str) -> None:
        if agent_id not in self.roster:
            logger.warning("Asked to force unknown participant %s to speak", agent_id)
        self._transport.force_speak(agent_id, reason)

    # --- persistence -------------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        status = self.tracker.status()
        return {
            "goal": self.goal,
            "project": self.project_name,
            "phase": self._phase,
            "mode": self.rules.to_dict(),
            "consensus": {
                "ready": status.ready,
                "contributions_by_agent": status.contributions_by_agent,
                "consensus_points": status.consensus_points,
                "conflict_points": status.conflict_points,
                "recommendation": status.recommendation,
            },
            "canvas": {
                "phase": self.canvas.get_canvas_consensus_phase(),
                "proposals": sorted(self.canvas.get_wireframe_proposals()),
                "sections": self.canvas.consensus_sections(),
            },
            "copy_sections": [
                {"id": s.id, "name": s.name, "assigned_agent": s.assigned_agent, "status": s.status, "content": s.content}
                for s in self._sections
            ],
        }
