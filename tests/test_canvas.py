"""Tests for deliberation/canvas.py."""

import pytest

from deliberation.canvas import (
    CONVERGED,
    CRITIQUING,
    IDLE,
    PROPOSING,
    WireframeConsensus,
    consensus_keys,
    parse_critiques,
    tally_sections,
)
from deliberation.models import SYSTEM, Critique, Participant, Roster, WireframeProposal
from deliberation.wireframe import parse_structure
from tests.conftest import msg

FOUR = ["ana", "ben", "cy", "dee"]


def block(*sections: str) -> str:
    return "[WIREFRAME]\n" + "\n".join(sections) + "\n[/WIREFRAME]"


@pytest.fixture
def four_roster() -> Roster:
    return Roster([Participant(a, a.title()) for a in FOUR])


@pytest.fixture
def events() -> list:
    return []


@pytest.fixture
def canvas(four_roster, transport, events) -> WireframeConsensus:
    return WireframeConsensus(four_roster, transport, on_event=lambda t, d: events.append((t, d)))


class Feeder:
    def __init__(self, canvas: WireframeConsensus) -> None:
        self.canvas = canvas
        self.index = 0

    def __call__(self, agent_id: str, content: str) -> None:
        self.canvas.on_message(msg(agent_id, content), self.index)
        self.index += 1


def _proposal(agent_id: str, *sections: str) -> WireframeProposal:
    return WireframeProposal(agent_id, agent_id, parse_structure(block(*sections)), None, 0)


# --- pure helpers -------------------------------------------------------------


def test_parse_critiques_ignores_unmatched_lines():
    content = """Some preamble
[CANVAS_CRITIQUE:keep] Hero - it is the hook
[CANVAS_CRITIQUE:REMOVE] FAQ - nobody reads it
[CANVAS_CRITIQUE:SHRUG] Footer - meh
random line"""
    assert parse_critiques(content) == [
        Critique("KEEP", "Hero", "it is the hook"),
        Critique("REMOVE", "FAQ", "nobody reads it"),
    ]


def test_tally_counts_each_proposal_once_per_section():
    tally, labels = tally_sections([_proposal("ana", "Hero", "Hero", "Pricing")], [])
    assert tally == {"hero": 1, "pricing": 1}
    assert labels == {"hero": "Hero", "pricing": "Pricing"}


def test_tally_remove_floors_at_zero():
    proposals = [_proposal("ana", "FAQ")]
    critiques = [Critique("REMOVE", "faq", "no")] * 3
    tally, _ = tally_sections(proposals, critiques)
    assert tally["faq"] == 0


def test_tally_ignores_modify_and_unknown_targets():
    proposals = [_proposal("ana", "Hero")]
    critiques = [Critique("MODIFY", "Hero", "shorter"), Critique("KEEP", "Blog", "yes")]
    tally, _ = tally_sections(proposals, critiques)
    assert tally == {"hero": 1}


def test_hero_in_three_of_four_with_one_remove_is_excluded():
    proposals = [
        _proposal("ana", "Hero", "Features"),
        _proposal("ben", "Hero", "Pricing"),
        _proposal("cy", "Hero", "Features"),
        _proposal("dee", "Features", "FAQ"),
    ]
    tally, _ = tally_sections(proposals, [Critique("REMOVE", "Hero", "too generic")])
    assert tally["hero"] == 2
    assert consensus_keys(tally, len(proposals)) == ["features"]


def test_consensus_keys_strict_majority():
    assert consensus_keys({"hero": 2, "faq": 3, "cta": 1}, 4) == ["faq"]
    assert consensus_keys({"hero": 2}, 3) == ["hero"]


# --- protocol -------------------------------------------------------------------


def test_starts_once_when_everyone_spoke(canvas, transport):
    assert canvas.maybe_start(False) is False
    assert canvas.get_canvas_consensus_phase() == IDLE

    assert canvas.maybe_start(True) is True
    assert canvas.get_canvas_consensus_phase() == PROPOSING
    assert [agent for agent, _ in transport.forced] == FOUR
    assert "WIREFRAME PROPOSALS" in transport.messages[-1].content
    assert transport.messages[-1].agent_id == SYSTEM

    assert canvas.maybe_start(True) is False


def test_messages_ignored_while_idle(canvas):
    canvas.on_message(msg("ana", block("Hero")), 0)
    assert canvas.get_wireframe_proposals() == {}


def test_full_cycle_excludes_tied_section(canvas, transport, events):
    feed = Feeder(canvas)
    canvas.maybe_start(True)
    feed("ana", block("Hero", "Features"))
    feed("ben", block("Hero", "Pricing"))
    feed("cy", block("Hero", "Features"))
    assert canvas.get_canvas_consensus_phase() == PROPOSING
    feed("dee", block("Features", "FAQ"))
    assert canvas.get_canvas_consensus_phase() == CRITIQUING
    assert "CRITIQUE" in transport.messages[-1].content

    feed("ana", "[CANVAS_CRITIQUE:REMOVE] Hero - too generic")
    feed("ben", "[CANVAS_CRITIQUE:MODIFY] Pricing - add annual toggle")
    feed("cy", "[CANVAS_CRITIQUE:KEEP] Features - core content")
    assert canvas.get_canvas_consensus_phase() == CRITIQUING
    feed("dee", "[CANVAS_CRITIQUE:MODIFY] FAQ - shorter")

    assert canvas.get_canvas_consensus_phase() == CONVERGED
    assert canvas.consensus_sections() == ["Features"]
    assert "WIREFRAME CONSENSUS" in transport.messages[-1].content
    converged = [d for t, d in events if t == "wireframe_converged"]
    assert converged[0]["tally"]["hero"] == 2
    assert [d["phase"] for t, d in events if t == "canvas_phase"] == [PROPOSING, CRITIQUING, CONVERGED]


def test_keep_pushes_section_over_threshold(canvas):
    feed = Feeder(canvas)
    canvas.maybe_start(True)
    feed("ana", block("Hero", "Features"))
    feed("ben", block("Hero", "Pricing"))
    feed("cy", block("Features", "Pricing"))
    feed("dee", block("Features", "FAQ"))
    feed("ana", "[CANVAS_CRITIQUE:KEEP] Hero - it sells")
    for agent in FOUR[1:]:
        feed(agent, "[CANVAS_CRITIQUE:MODIFY] FAQ - trim")
    assert canvas.consensus_sections() == ["Hero", "Features"]


def test_latest_proposal_wins(canvas):
    feed = Feeder(canvas)
    canvas.maybe_start(True)
    feed("ana", block("Hero"))
    feed("ana", block("Pricing"))
    proposals = canvas.get_wireframe_proposals()
    assert list(proposals) == ["ana"]
    assert proposals["ana"].message_index == 1
    assert proposals["ana"].agent_name == "Ana"


def test_abandons_after_three_rounds_without_proposals(canvas):
    feed = Feeder(canvas)
    canvas.maybe_start(True)
    for i in range(11):
        feed(FOUR[i % 4], "no structure from me")
    assert canvas.get_canvas_consensus_phase() == PROPOSING
    feed("ana", "still nothing")
    assert canvas.get_canvas_consensus_phase() == IDLE
    assert canvas.started is True
    assert canvas.maybe_start(True) is False


def test_forces_critique_with_partial_proposals(canvas):
    feed = Feeder(canvas)
    canvas.maybe_start(True)
    feed("ana", block("Hero"))
    for i in range(14):
        feed(FOUR[1 + i % 3], "thinking")
    assert canvas.get_canvas_consensus_phase() == PROPOSING
    feed("ben", "thinking")
    assert canvas.get_canvas_consensus_phase() == CRITIQUING


def test_forces_convergence_after_two_rounds_of_critique(canvas):
    feed = Feeder(canvas)
    canvas.maybe_start(True)
    for agent in FOUR:
        feed(agent, block("Hero", "Features"))
    for i in range(7):
        feed(FOUR[i % 2], "I have no tags for you")
    assert canvas.get_canvas_consensus_phase() == CRITIQUING
    feed("ana", "still no tags")
    assert canvas.get_canvas_consensus_phase() == CONVERGED
    assert canvas.consensus_sections() == ["Hero", "Features"]


def test_system_messages_do_not_count(canvas):
    canvas.maybe_start(True)
    for i in range(20):
        canvas.on_message(msg(SYSTEM, "directive"), i)
    assert canvas.get_canvas_consensus_phase() == PROPOSING


def test_custom_parser_is_used(four_roster, transport):
    calls = []

    def parse(text):
        calls.append(text)
        return None

    canvas = WireframeConsensus(four_roster, transport, parse=parse)
    canvas.maybe_start(True)
    canvas.on_message(msg("ana", "anything"), 0)
    assert calls == ["anything"]
    assert canvas.get_wireframe_proposals() == {}
