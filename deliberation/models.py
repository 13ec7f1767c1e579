"""Pure dataclasses for the deliberation engine. No logic beyond lookups."""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

SYSTEM = "system"
HUMAN = "human"

# Message type tags
ARGUMENT = "argument"
QUESTION = "question"
PROPOSAL = "proposal"
AGREEMENT = "agreement"
DISAGREEMENT = "disagreement"
CONSENSUS = "consensus"
RESEARCH_REQUEST = "research_request"
RESEARCH_RESULT = "research_result"
HUMAN_INPUT = "human_input"
SYSTEM_MESSAGE = "system"
SYNTHESIS = "synthesis"


@dataclass
class Message:
    id: str
    timestamp: datetime
    agent_id: str          # "system", "human" or an agent id
    type: str              # one of the message type tags above
    content: str
    metadata: dict[str, Any] = field(default_factory=dict)


def new_message(
    agent_id: str,
    content: str,
    type: str = ARGUMENT,
    metadata: dict[str, Any] | None = None,
) -> Message:
    """Create a message with a fresh id and a UTC timestamp."""
    return Message(
        id=str(uuid.uuid4()),
        timestamp=datetime.now(timezone.utc),
        agent_id=agent_id,
        type=type,
        content=content,
        metadata=dict(metadata or {}),
    )


@dataclass
class Intervention:
    type: str              # goal_reminder, loop_detected, phase_transition, research_limit, force_synthesis, success_check
    message: str
    priority: str          # "low", "medium", "high"
    action: str | None = None  # inject_message, transition_phase, pause


@dataclass(frozen=True)
class Participant:
    id: str
    display_name: str


@dataclass(frozen=True)
class UnknownParticipant:
    id: str

    @property
    def display_name(self) -> str:
        return self.id


class Roster:
    """Ordered set of enabled participants, looked up by id."""

    def __init__(self, participants: list[Participant]) -> None:
        self._participants = {p.id: p for p in participants}

    def lookup(self, agent_id: str) -> Participant | UnknownParticipant:
        return self._participants.get(agent_id) or UnknownParticipant(agent_id)

    def display_name(self, agent_id: str) -> str:
        return self.lookup(agent_id).display_name

    @property
    def ids(self) -> list[str]:
        return list(self._participants)

    def __contains__(self, agent_id: object) -> bool:
        return agent_id in self._participants

    def __len__(self) -> int:
        return len(self._participants)

    def __iter__(self):
        return iter(self._participants.values())


@dataclass
class WireframeProposal:
    agent_id: str
    agent_name: str
    wireframe: Any         # parsed section tree from the structure parser
    timestamp: datetime
    message_index: int


@dataclass
class Critique:
    action: str            # "KEEP", "REMOVE", "MODIFY"
    target: str
    reason: str


@dataclass
class CopySection:
    id: str
    name: str
    assigned_agent: str | None = None
    content: str | None = None
    status: str = "pending"  # "pending", "in_progress", "complete"
