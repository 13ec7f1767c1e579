"""Mode rules engine: goal reminders, research budgets, loop detection,
phase progression and success detection for one session.

The engine is a pure consumer of the message stream. Each call to
``process_message`` updates ``ModeProgress`` and returns the interventions
the caller should inject into the conversation; the engine never talks to
the transport itself.
"""

import copy
import logging
import re
from collections import Counter
from dataclasses import dataclass, field
from typing import Any

from config.config_loader import ExitCriteria, ModePolicy, PhaseConfig
from deliberation.models import AGREEMENT, CONSENSUS, PROPOSAL, RESEARCH_REQUEST, Intervention, Message
from deliberation.modes import get_default_mode

logger = logging.getLogger(__name__)

_RESEARCH_MARKERS = (
    "@stats-finder",
    "@competitor-analyst",
    "@audience-insight",
    "@copy-explorer",
    "@local-context",
    "[research:",
)
_TOPIC_RE = re.compile(r"@(\w+-\w+)|\[research:\s*(\w+)\]")

# Substrings marking a phase id as synthesis-like (gated on research)
_SYNTHESIS_MARKERS = ("synthesis", "synthesize", "verdict", "conclude", "drafting", "executive-summary")

# (output label, substrings that signal it)
_OUTPUT_PATTERNS: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("hero", ("## hero", "hero:", "headline:")),
    ("value_proposition", ("value prop", "## benefits", "## value")),
    ("cta", ("cta", "call to action")),
    ("verdict", ("verdict:", "our verdict", "final decision")),
    ("next_steps", ("next steps", "## next")),
)

_FINGERPRINT_WORDS = 10
_FINGERPRINT_MIN_WORD = 4
_PERSISTED_FINGERPRINTS = 20

_RESEARCH_LIMIT_TEXT = """⚠️ **RESEARCH LIMIT REACHED** ({limit} requests)

We have enough research. Time to USE what we've learned.

STOP requesting more data. START writing/deciding based on what we have.
If we don't have perfect information, that's okay. Make the best decision with available data."""

_TOPIC_SATURATED_TEXT = """⚠️ **TOPIC SATURATED**: We've researched "{topic}" {count} times.

Move on. Use what we have. Repeated research on the same topic suggests we're avoiding the actual work."""

_RESEARCH_REQUIRED_TEXT = """🔍 **RESEARCH REQUIRED BEFORE {phase}**

We have {have} research request(s); at least {need} are needed before moving to "{phase}".
Request the data we are missing before we conclude."""

_PHASE_TRANSITION_TEXT = """📍 **PHASE TRANSITION**: Moving to "{name}" ({reason})

**Focus now on**: {focus}

Previous phase complete. Carry forward what we learned, but shift focus."""

_FORCE_SYNTHESIS_TEXT = """🚨 **SYNTHESIS REQUIRED**: We've reached {limit} messages.

Time's up. No more discussion. We must now:
1. Summarize what we agree on
2. Make decisions on remaining open questions
3. Produce our final output

Each agent: State your final position in 2 sentences. Then let's conclude."""

_SUCCESS_TEXT = """✅ **SUCCESS CRITERIA MET**: {points} consensus points and all required outputs ({outputs}).

Pause here and confirm the final output with the human before going further."""


@dataclass
class ModeProgress:
    current_phase_id: str = ""
    messages_in_phase: int = 0
    total_messages: int = 0
    research_requests: int = 0
    research_by_topic: dict[str, int] = field(default_factory=dict)
    consensus_points: int = 0
    proposals_count: int = 0
    last_progress_at: int = 0  # message index of the last proposal/agreement
    loop_detected: bool = False
    outputs_produced: set[str] = field(default_factory=set)


def fingerprint(content: str) -> str:
    """Normalized keyword summary of a message, used for loop detection."""
    words = [w for w in content.lower().split() if len(w) > _FINGERPRINT_MIN_WORD]
    return "|".join(sorted(words)[:_FINGERPRINT_WORDS])


def is_research_request(message: Message) -> bool:
    if message.type == RESEARCH_REQUEST:
        return True
    content = message.content.lower()
    return any(marker in content for marker in _RESEARCH_MARKERS)


def is_synthesis_phase(phase_id: str) -> bool:
    return any(marker in phase_id for marker in _SYNTHESIS_MARKERS)


class ModeRulesEngine:
    """Enforces one mode policy over a session's message stream."""

    def __init__(self, mode: ModePolicy | None = None) -> None:
        self._mode = mode or get_default_mode()
        self._progress = self._initial_progress()
        self._fingerprints: list[str] = []

    def _initial_progress(self) -> ModeProgress:
        first = self._mode.phases[0].id if self._mode.phases else "discuss"
        return ModeProgress(current_phase_id=first)

    def set_mode(self, mode: ModePolicy) -> None:
        """Switch policy. Progress and fingerprint history start over."""
        self._mode = mode
        self._progress = self._initial_progress()
        self._fingerprints = []

    def get_mode(self) -> ModePolicy:
        return self._mode

    def get_progress(self) -> ModeProgress:
        return copy.deepcopy(self._progress)

    def process_message(self, message: Message, history: list[Message]) -> list[Intervention]:
        """Update progress for one new message and return interventions.

        ``history`` is the full conversation so far; loop detection works
        off the engine's own fingerprint list instead.
        """
        progress = self._progress
        interventions: list[Intervention] = []

        progress.total_messages += 1
        progress.messages_in_phase += 1

        self._fingerprints.append(fingerprint(message.content))

        if is_research_request(message):
            self._track_research(message)
            limit = self._check_research_limits()
            if limit:
                interventions.append(limit)

        if message.type == PROPOSAL:
            progress.proposals_count += 1
            progress.last_progress_at = progress.total_messages

        if message.type in (AGREEMENT, CONSENSUS):
            progress.consensus_points += 1
            progress.last_progress_at = progress.total_messages

        self._detect_outputs(message)

        frequency = self._mode.goal_reminder.frequency
        if progress.total_messages > 0 and frequency > 0 and progress.total_messages % frequency == 0:
            interventions.append(Intervention(
                type="goal_reminder",
                priority="medium",
                message=self._mode.goal_reminder.template,  # {goal} substituted by the caller
                action="inject_message",
            ))

        loop = self._detect_loop()
        if loop:
            progress.loop_detected = True
            interventions.append(loop)

        transition = self._check_phase_transition()
        if transition:
            interventions.append(transition)

        if self._should_force_synthesis():
            interventions.append(Intervention(
                type="force_synthesis",
                priority="high",
                message=_FORCE_SYNTHESIS_TEXT.format(limit=self._mode.success_criteria.max_messages),
                action="inject_message",
            ))

        # Re-fires on every message once met; there is no acknowledgement latch.
        met, _ = self.check_success_criteria()
        if met:
            outputs = ", ".join(sorted(self._mode.success_criteria.required_outputs)) or "none required"
            interventions.append(Intervention(
                type="success_check",
                priority="high",
                message=_SUCCESS_TEXT.format(points=progress.consensus_points, outputs=outputs),
                action="pause",
            ))

        for intervention in interventions:
            logger.info("Mode intervention: %s (%s)", intervention.type, intervention.priority)
        return interventions

    # --- research -----------------------------------------------------------

    def _track_research(self, message: Message) -> None:
        self._progress.research_requests += 1
        match = _TOPIC_RE.search(message.content.lower())
        topic = (match.group(1) or match.group(2)) if match else None
        topic = topic or "general"
        by_topic = self._progress.research_by_topic
        by_topic[topic] = by_topic.get(topic, 0) + 1
        logger.debug("Research request #%d on topic %s", self._progress.research_requests, topic)

    def _check_research_limits(self) -> Intervention | None:
        limits = self._mode.research
        if self._progress.research_requests >= limits.max_requests:
            return Intervention(
                type="research_limit",
                priority="high",
                message=_RESEARCH_LIMIT_TEXT.format(limit=limits.max_requests),
                action="inject_message",
            )
        for topic, count in self._progress.research_by_topic.items():
            if count >= limits.max_per_topic:
                return Intervention(
                    type="research_limit",
                    priority="medium",
                    message=_TOPIC_SATURATED_TEXT.format(topic=topic, count=count),
                    action="inject_message",
                )
        return None

    def check_required_research(self) -> bool:
        """True when enough research has happened to allow synthesis."""
        return self._progress.research_requests >= self._mode.research.required_before_synthesis

    # --- outputs and loops ----------------------------------------------------

    def _detect_outputs(self, message: Message) -> None:
        content = message.content.lower()
        for label, needles in _OUTPUT_PATTERNS:
            if any(n in content for n in needles):
                self._progress.outputs_produced.add(label)

    def _detect_loop(self) -> Intervention | None:
        settings = self._mode.loop_detection
        if not settings.enabled:
            return None

        recent = self._fingerprints[-settings.window_size:] if settings.window_size > 0 else []
        counts = Counter(h for h in recent if len(h) > settings.min_hash_length)
        repeated = any(c >= settings.max_similar_messages for c in counts.values())

        since_progress = self._progress.total_messages - self._progress.last_progress_at
        stalled = since_progress >= settings.max_rounds_without_progress * settings.messages_per_round

        if repeated or stalled:
            logger.debug("Loop detected (repeated=%s, stalled=%s)", repeated, stalled)
            return Intervention(
                type="loop_detected",
                priority="high",
                message=settings.intervention,
                action="inject_message",
            )
        return None

    # --- phases ----------------------------------------------------------------

    def get_current_phase(self) -> PhaseConfig | None:
        return next((p for p in self._mode.phases if p.id == self._progress.current_phase_id), None)

    def get_current_phase_focus(self) -> str:
        phase = self.get_current_phase()
        return phase.agent_focus if phase else ""

    def get_agent_instructions(self) -> str:
        return self._mode.agent_instructions

    def _exit_criteria_met(self, criteria: ExitCriteria | None) -> bool:
        if criteria is None:
            return False
        progress = self._progress
        checks: list[bool] = []
        if criteria.min_proposals is not None:
            checks.append(progress.proposals_count >= criteria.min_proposals)
        if criteria.min_consensus_points is not None:
            checks.append(progress.consensus_points >= criteria.min_consensus_points)
        if criteria.min_research_requests is not None:
            checks.append(progress.research_requests >= criteria.min_research_requests)
        if criteria.required_outputs is not None:
            checks.append(all(o in progress.outputs_produced for o in criteria.required_outputs))
        # Criteria with nothing specified never fire on their own
        return bool(checks) and all(checks)

    def _check_phase_transition(self) -> Intervention | None:
        current = self.get_current_phase()
        if current is None or not current.auto_transition:
            return None

        criteria_met = self._exit_criteria_met(current.exit_criteria)
        budget_spent = self._progress.messages_in_phase >= current.max_messages
        if not (criteria_met or budget_spent):
            return None

        target = next((p for p in self._mode.phases if p.order == current.order + 1), None)
        if target is None:
            return None

        if is_synthesis_phase(target.id) and not self.check_required_research():
            logger.info("Transition to %s blocked: research required", target.id)
            return Intervention(
                type="research_limit",
                priority="high",
                message=_RESEARCH_REQUIRED_TEXT.format(
                    phase=target.name,
                    have=self._progress.research_requests,
                    need=self._mode.research.required_before_synthesis,
                ),
                action="inject_message",
            )

        self._progress.current_phase_id = target.id
        self._progress.messages_in_phase = 0
        reason = "exit criteria met" if criteria_met else "max messages reached"
        logger.info("Mode phase %s -> %s (%s)", current.id, target.id, reason)
        return Intervention(
            type="phase_transition",
            priority="high",
            message=_PHASE_TRANSITION_TEXT.format(name=target.name, reason=reason, focus=target.agent_focus),
            action="transition_phase",
        )

    def transition_to_phase(self, phase_id: str) -> bool:
        """Jump straight to a phase, skipping every check. False for unknown ids."""
        if not any(p.id == phase_id for p in self._mode.phases):
            return False
        self._progress.current_phase_id = phase_id
        self._progress.messages_in_phase = 0
        return True

    def _should_force_synthesis(self) -> bool:
        at_limit = self._progress.total_messages >= self._mode.success_criteria.max_messages
        return at_limit and self._progress.current_phase_id != "synthesis"

    def check_success_criteria(self) -> tuple[bool, list[str]]:
        """Returns (met, missing) where missing lists what is still lacking."""
        criteria = self._mode.success_criteria
        missing: list[str] = []
        points = self._progress.consensus_points
        if points < criteria.min_consensus_points:
            missing.append(f"Need {criteria.min_consensus_points - points} more consensus points")
        for output in sorted(criteria.required_outputs):
            if output not in self._progress.outputs_produced:
                missing.append(f"Missing output: {output}")
        return not missing, missing

    # --- persistence ---------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        progress = self._progress
        return {
            "mode_id": self._mode.id,
            "progress": {
                "current_phase_id": progress.current_phase_id,
                "messages_in_phase": progress.messages_in_phase,
                "total_messages": progress.total_messages,
                "research_requests": progress.research_requests,
                "research_by_topic": [[topic, count] for topic, count in progress.research_by_topic.items()],
                "consensus_points": progress.consensus_points,
                "proposals_count": progress.proposals_count,
                "last_progress_at": progress.last_progress_at,
                "loop_detected": progress.loop_detected,
                "outputs_produced": sorted(progress.outputs_produced),
            },
            "message_hashes": self._fingerprints[-_PERSISTED_FINGERPRINTS:],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None, mode: ModePolicy) -> "ModeRulesEngine":
        """Restore an engine. Missing fields fall back to fresh-session values."""
        engine = cls(mode)
        data = data or {}
        raw = data.get("progress") or {}
        fresh = engine._progress

        by_topic_raw = raw.get("research_by_topic") or []
        if isinstance(by_topic_raw, dict):
            by_topic_raw = by_topic_raw.items()

        engine._progress = ModeProgress(
            current_phase_id=str(raw.get("current_phase_id") or fresh.current_phase_id),
            messages_in_phase=int(raw.get("messages_in_phase") or 0),
            total_messages=int(raw.get("total_messages") or 0),
            research_requests=int(raw.get("research_requests") or 0),
            research_by_topic={str(topic): int(count or 0) for topic, count in by_topic_raw},
            consensus_points=int(raw.get("consensus_points") or 0),
            proposals_count=int(raw.get("proposals_count") or 0),
            last_progress_at=int(raw.get("last_progress_at") or 0),
            loop_detected=bool(raw.get("loop_detected") or False),
            outputs_produced=set(raw.get("outputs_produced") or []),
        )
        engine._fingerprints = [str(h) for h in data.get("message_hashes") or []]
        return engine
