"""Consensus tracking: who contributed, which insights are supported or
opposed, and whether the discussion is ripe for synthesis."""

import logging
import re
from dataclasses import dataclass, field

from deliberation.models import AGREEMENT, DISAGREEMENT, HUMAN, PROPOSAL, SYNTHESIS, SYSTEM, Message

logger = logging.getLogger(__name__)

_TAG_RE = re.compile(r"\[(ARGUMENT|PROPOSAL|AGREEMENT|DISAGREEMENT|SYNTHESIS)\]", re.IGNORECASE)
_LOOKBACK = 5
_INSIGHT_PREVIEW = 200


@dataclass
class Insight:
    content: str
    supporters: set[str] = field(default_factory=set)
    opposers: set[str] = field(default_factory=set)


@dataclass
class ConsensusStatus:
    ready: bool
    all_participants_spoke: bool
    contributions_by_agent: dict[str, int]
    consensus_points: int
    conflict_points: int
    recommendation: str


class ResponseClassifier:
    """Ordered cue matchers; the first category with a matching cue wins.

    ``cues`` maps a response type ("agreement", "disagreement", "proposal")
    to regex patterns, in the order they should be tried.
    """

    def __init__(self, cues: dict[str, list[str]] | None = None) -> None:
        self._matchers: list[tuple[str, list[re.Pattern[str]]]] = [
            (category, [re.compile(p, re.IGNORECASE) for p in patterns])
            for category, patterns in (cues or {}).items()
        ]

    def classify(self, message: Message) -> str | None:
        tag = _TAG_RE.search(message.content)
        if tag:
            return tag.group(1).lower()
        for category, patterns in self._matchers:
            if any(p.search(message.content) for p in patterns):
                return category
        return None

    def matches(self, category: str, content: str) -> bool:
        """True when any cue of ``category`` appears in ``content``."""
        return any(
            p.search(content) for name, patterns in self._matchers if name == category for p in patterns
        )


class ConsensusTracker:
    """Contribution and agreement bookkeeping for one session."""

    consensus_threshold = 0.6
    conflict_threshold = 0.4
    human_vote_weight = 2

    def __init__(self, agent_ids: list[str], classifier: ResponseClassifier | None = None) -> None:
        self._agent_ids = list(agent_ids)
        self._classifier = classifier or ResponseClassifier()
        self._contributions: dict[str, int] = {}
        self._insights: dict[str, Insight] = {}
        self._research_pending = False

    def reset(self) -> None:
        self._contributions.clear()
        self._insights.clear()
        self._research_pending = False

    def set_research_pending(self, pending: bool) -> None:
        self._research_pending = pending

    def insights(self) -> dict[str, Insight]:
        return {
            key: Insight(i.content, set(i.supporters), set(i.opposers))
            for key, i in self._insights.items()
        }

    def total_contributions(self) -> int:
        return sum(self._contributions.values())

    def record_message(self, agent_id: str, message: Message, history: list[Message]) -> str | None:
        """Count a contribution and update insights. Returns the response type."""
        self._contributions[agent_id] = self._contributions.get(agent_id, 0) + 1
        response_type = self._classifier.classify(message)

        if response_type in (AGREEMENT, DISAGREEMENT):
            target = self._find_reply_target(agent_id, message, history)
            if target is not None:
                key = f"{target.agent_id}-{target.id[:8]}"
                insight = self._insights.get(key)
                if insight is None:
                    insight = Insight(content=target.content[:_INSIGHT_PREVIEW], supporters={target.agent_id})
                    self._insights[key] = insight
                if response_type == AGREEMENT:
                    insight.supporters.add(agent_id)
                    insight.opposers.discard(agent_id)
                else:
                    insight.opposers.add(agent_id)
                    insight.supporters.discard(agent_id)
                logger.debug("%s %s on insight %s", agent_id, response_type, key)

        elif response_type in (PROPOSAL, SYNTHESIS):
            key = f"{agent_id}-{message.id[:8]}"
            self._insights[key] = Insight(content=message.content[:_INSIGHT_PREVIEW], supporters={agent_id})
            logger.debug("New insight %s from %s", key, agent_id)

        return response_type

    @staticmethod
    def _find_reply_target(agent_id: str, message: Message, history: list[Message]) -> Message | None:
        """Most recent message from someone else among the last few, the current one included."""
        prior = [m for m in history[-_LOOKBACK:] if m.id != message.id]
        for candidate in reversed(prior):
            if candidate.agent_id not in (agent_id, SYSTEM):
                return candidate
        return None

    def status(self) -> ConsensusStatus:
        agent_ids = self._agent_ids
        participant_count = len(agent_ids)
        all_spoke = all(a in self._contributions for a in agent_ids)

        total_weight = participant_count + (self.human_vote_weight if HUMAN in self._contributions else 0)
        extra = self.human_vote_weight - 1
        consensus_points = 0
        conflict_points = 0
        for insight in self._insights.values():
            support = len(insight.supporters) + (extra if HUMAN in insight.supporters else 0)
            oppose = len(insight.opposers) + (extra if HUMAN in insight.opposers else 0)
            if total_weight == 0:
                continue
            if support / total_weight >= self.consensus_threshold:
                consensus_points += 1
            if oppose / total_weight >= self.conflict_threshold:
                conflict_points += 1

        total = self.total_contributions()
        min_contributions = participant_count * 2
        fallback_contributions = participant_count * 4

        ready = False
        if self._research_pending:
            recommendation = "Waiting for research results..."
        elif not all_spoke:
            silent = [a for a in agent_ids if a not in self._contributions]
            recommendation = f"Not every participant has spoken yet. Missing: {', '.join(silent)}"
        elif total < min_contributions:
            recommendation = f"Discussion still too short ({total}/{min_contributions} contributions)"
        elif conflict_points > consensus_points:
            recommendation = (
                f"More conflicts than agreements ({conflict_points} conflicts, "
                f"{consensus_points} agreements). Keep discussing."
            )
        elif consensus_points == 0 and total < fallback_contributions:
            recommendation = "No consensus points yet. Participants should respond to each other."
        elif consensus_points == 0:
            ready = True
            recommendation = (
                f"Ready for synthesis: {total} contributions without explicit agreement tags, "
                f"{conflict_points} open conflicts."
            )
        else:
            ready = True
            recommendation = (
                f"Ready for synthesis! {consensus_points} consensus points, {conflict_points} open conflicts."
            )

        return ConsensusStatus(
            ready=ready,
            all_participants_spoke=all_spoke,
            contributions_by_agent=dict(self._contributions),
            consensus_points=consensus_points,
            conflict_points=conflict_points,
            recommendation=recommendation,
        )
