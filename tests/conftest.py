"""Shared pytest fixtures."""

from dataclasses import replace

import pytest

from config.config_loader import (
    AppConfig,
    GoalReminder,
    LoopDetection,
    ModePolicy,
    PhaseConfig,
    ResearchLimits,
    SuccessCriteria,
    load_config,
)
from deliberation.models import ARGUMENT, Message, Participant, Roster, new_message
from deliberation.orchestrator import DeliberationSession
from deliberation.transport import InMemoryTransport


def make_phase(phase_id: str, order: int, max_messages: int = 100, **kwargs) -> PhaseConfig:
    return PhaseConfig(
        id=phase_id,
        name=phase_id.replace("-", " ").title(),
        order=order,
        max_messages=max_messages,
        auto_transition=kwargs.pop("auto_transition", True),
        agent_focus=kwargs.pop("agent_focus", f"Focus on {phase_id}"),
        **kwargs,
    )


def make_mode(**overrides) -> ModePolicy:
    """A quiet mode: nothing fires unless a test turns it on."""
    mode = ModePolicy(
        id="test",
        name="Test Mode",
        icon="🧪",
        description="Mode used in tests",
        goal_reminder=GoalReminder(frequency=1000, template="🎯 Remember the goal: {goal}"),
        phases=(make_phase("discuss", 1), make_phase("wrap-up", 2)),
        research=ResearchLimits(max_requests=100, max_per_topic=100, required_before_synthesis=0),
        loop_detection=LoopDetection(
            enabled=False,
            max_similar_messages=3,
            max_rounds_without_progress=100,
            intervention="🔄 Loop detected. Move on.",
        ),
        success_criteria=SuccessCriteria(min_consensus_points=100, required_outputs=frozenset(), max_messages=1000),
        agent_instructions="Be brief.",
    )
    return replace(mode, **overrides)


def msg(agent_id: str, content: str, type: str = ARGUMENT) -> Message:
    return new_message(agent_id, content, type=type)


@pytest.fixture
def quiet_mode() -> ModePolicy:
    return make_mode()


@pytest.fixture
def app_config() -> AppConfig:
    return load_config()


@pytest.fixture
def roster() -> Roster:
    return Roster([
        Participant("ronny", "Ronny"),
        Participant("yossi", "Yossi"),
        Participant("dana", "Dana"),
    ])


@pytest.fixture
def transport() -> InMemoryTransport:
    return InMemoryTransport()


@pytest.fixture
def session(roster: Roster, transport: InMemoryTransport, quiet_mode: ModePolicy, app_config: AppConfig) -> DeliberationSession:
    s = DeliberationSession(
        goal="a landing page for a budgeting app",
        roster=roster,
        transport=transport,
        mode=quiet_mode,
        config=app_config,
        project_name="pennywise",
    )
    transport.subscribe(s.on_message)
    return s
