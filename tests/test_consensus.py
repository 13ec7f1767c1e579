"""Tests for deliberation/consensus.py."""

import pytest

from deliberation.consensus import ConsensusTracker, ResponseClassifier
from deliberation.models import AGREEMENT, HUMAN, PROPOSAL, SYSTEM
from tests.conftest import msg

AGENTS = ["ronny", "yossi", "dana"]


@pytest.fixture
def classifier(app_config) -> ResponseClassifier:
    return ResponseClassifier(app_config.response_cues)


@pytest.fixture
def tracker(classifier) -> ConsensusTracker:
    return ConsensusTracker(AGENTS, classifier)


def _play(tracker: ConsensusTracker, history: list, *messages) -> list:
    types = []
    for message in messages:
        history.append(message)
        types.append(tracker.record_message(message.agent_id, message, history))
    return types


# --- classification ----------------------------------------------------------


def test_tag_beats_message_type(classifier):
    assert classifier.classify(msg("ronny", "[DISAGREEMENT] hmm", type=AGREEMENT)) == "disagreement"


def test_cues_beat_message_type(classifier):
    assert classifier.classify(msg("ronny", "I disagree, that won't work", type=AGREEMENT)) == "disagreement"


def test_message_type_alone_is_not_a_response(classifier):
    assert classifier.classify(msg("ronny", "Lead with the savings number", type=PROPOSAL)) is None


def test_matches_checks_one_category(classifier):
    assert classifier.matches("disagreement", "The problem with that is churn")
    assert not classifier.matches("agreement", "The problem with that is churn")
    assert not classifier.matches("unknown", "I agree")


@pytest.mark.parametrize("content,expected", [
    ("I agree with the savings angle", "agreement"),
    ("That won't work for freelancers", "disagreement"),
    ("What if we lead with a calculator?", "proposal"),
    ("Here is some context about budgeting", None),
])
def test_cue_phrases(classifier, content, expected):
    assert classifier.classify(msg("ronny", content)) == expected


def test_cue_categories_tried_in_order():
    classifier = ResponseClassifier({"disagreement": [r"agree"], "agreement": [r"agree"]})
    assert classifier.classify(msg("ronny", "I agree")) == "disagreement"


def test_no_cues_means_tags_and_types_only():
    classifier = ResponseClassifier()
    assert classifier.classify(msg("ronny", "I agree")) is None
    assert classifier.classify(msg("ronny", "[synthesis] wrapping up")) == "synthesis"


# --- readiness ------------------------------------------------------------------


def test_three_agents_two_arguments_each_not_ready_until_twelve(tracker):
    history: list = []
    for i in range(11):
        _play(tracker, history, msg(AGENTS[i % 3], f"Context note {i} about onboarding"))
        status = tracker.status()
        assert status.ready is False
        if i >= 5:
            assert status.all_participants_spoke
            assert "No consensus points yet" in status.recommendation

    _play(tracker, history, msg(AGENTS[11 % 3], "Context note 11 about onboarding"))
    status = tracker.status()
    assert status.ready is True
    assert status.consensus_points == 0
    assert "without explicit agreement" in status.recommendation


def test_missing_participants_named(tracker):
    _play(tracker, [], msg("ronny", "hello"))
    status = tracker.status()
    assert status.all_participants_spoke is False
    assert "yossi" in status.recommendation
    assert "dana" in status.recommendation
    assert status.contributions_by_agent == {"ronny": 1}


def test_too_short_until_two_per_participant(tracker):
    _play(tracker, [], *[msg(a, "hello there") for a in AGENTS])
    assert "too short (3/6" in tracker.status().recommendation


def test_research_pending_blocks_readiness(tracker):
    history: list = []
    _play(tracker, history, *[msg(AGENTS[i % 3], f"note {i}") for i in range(12)])
    tracker.set_research_pending(True)
    status = tracker.status()
    assert status.ready is False
    assert status.recommendation == "Waiting for research results..."
    tracker.set_research_pending(False)
    assert tracker.status().ready is True


# --- insights ---------------------------------------------------------------------


def test_agreement_with_proposal_creates_consensus_point(tracker):
    history: list = []
    types = _play(
        tracker,
        history,
        msg("ronny", "[PROPOSAL] Lead with the savings number"),
        msg("yossi", "I agree, that is the hook"),
    )
    assert types == ["proposal", "agreement"]
    (insight,) = tracker.insights().values()
    assert insight.supporters == {"ronny", "yossi"}
    assert tracker.status().consensus_points == 1


def test_ready_with_consensus_after_enough_contributions(tracker):
    history: list = []
    _play(
        tracker,
        history,
        msg("ronny", "[PROPOSAL] Lead with the savings number"),
        msg("yossi", "I agree, that is the hook"),
        msg("dana", "Context about the audience"),
        msg("ronny", "More context"),
        msg("yossi", "Still more context"),
        msg("dana", "Last bit of context"),
    )
    status = tracker.status()
    assert status.ready is True
    assert status.recommendation.startswith("Ready for synthesis!")


def test_reply_targets_most_recent_other_author(tracker):
    history: list = []
    _play(
        tracker,
        history,
        msg("ronny", "Lead with savings"),
        msg(SYSTEM, "reminder"),
        msg("yossi", "Lead with peace of mind"),
        msg("dana", "I agree"),
    )
    (key,) = tracker.insights()
    assert key.startswith("yossi-")


def test_reply_target_outside_lookback_is_ignored(tracker):
    history: list = []
    _play(tracker, history, msg("yossi", "Lead with peace of mind"))
    _play(tracker, history, *[msg("ronny", f"thinking out loud {i}") for i in range(5)])
    _play(tracker, history, msg("ronny", "I agree"))
    assert tracker.insights() == {}


def test_reply_window_counts_the_current_message(tracker):
    history: list = []
    _play(tracker, history, msg("yossi", "Lead with peace of mind"))
    _play(tracker, history, *[msg("ronny", f"thinking out loud {i}") for i in range(4)])
    _play(tracker, history, msg("ronny", "I agree"))
    assert tracker.insights() == {}


def test_reply_target_just_inside_window(tracker):
    history: list = []
    _play(tracker, history, msg("yossi", "Lead with peace of mind"))
    _play(tracker, history, *[msg("ronny", f"thinking out loud {i}") for i in range(3)])
    _play(tracker, history, msg("ronny", "I agree"))
    (key,) = tracker.insights()
    assert key.startswith("yossi-")


def test_conflict_outweighs_consensus(classifier):
    tracker = ConsensusTracker(["ronny", "yossi"], classifier)
    history: list = []
    _play(
        tracker,
        history,
        msg("ronny", "[PROPOSAL] Use a dark theme"),
        msg("yossi", "I disagree, it reads as gloomy"),
    )
    status = tracker.status()
    assert status.conflict_points == 1
    assert status.consensus_points == 0

    _play(tracker, history, msg("ronny", "more context"), msg("yossi", "more context"))
    status = tracker.status()
    assert status.ready is False
    assert "More conflicts than agreements" in status.recommendation


def test_changing_stance_moves_agent_between_sets(tracker):
    history: list = []
    _play(tracker, history, msg("ronny", "[PROPOSAL] Use a calculator widget"), msg("yossi", "I agree"))
    _play(tracker, history, msg("yossi", "[DISAGREEMENT] on reflection no"))
    (insight,) = tracker.insights().values()
    assert "yossi" in insight.opposers
    assert "yossi" not in insight.supporters


def test_human_vote_counts_double(tracker):
    history: list = []
    _play(tracker, history, msg("ronny", "[PROPOSAL] Free tier forever"), msg(HUMAN, "I agree"))
    # support: ronny + human (weight 2) = 3 of 3 agents + 2 human weight
    assert tracker.status().consensus_points == 1


def test_insights_is_a_snapshot(tracker):
    _play(tracker, [], msg("ronny", "[PROPOSAL] Free tier forever"))
    for insight in tracker.insights().values():
        insight.supporters.add("intruder")
    (insight,) = tracker.insights().values()
    assert insight.supporters == {"ronny"}


def test_reset_clears_everything(tracker):
    _play(tracker, [], msg("ronny", "[PROPOSAL] Free tier forever"))
    tracker.set_research_pending(True)
    tracker.reset()
    assert tracker.total_contributions() == 0
    assert tracker.insights() == {}
    assert tracker.status().recommendation != "Waiting for research results..."
