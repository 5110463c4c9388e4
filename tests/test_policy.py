import itertools

import pytest

from backend.db import ApplicationStatus, ReviewResult
from backend.policy import FLAG_THRESHOLD, REVIEW_THRESHOLD, can_transition, decide_from_result, decide_next_status
from backend import scoring

S = ApplicationStatus


@pytest.mark.parametrize("score,action,expected", [
    (0.1, "approve", S.APPROVED),
    (0.39, "approve", S.APPROVED),
    (0.4, "approve", S.UNDER_REVIEW),
    (0.69, "approve", S.UNDER_REVIEW),
    (0.7, "approve", S.FLAGGED),
    (0.0, "manual_review", S.UNDER_REVIEW),
    (0.0, "flag", S.FLAGGED),
    (0.95, "manual_review", S.FLAGGED),
    (1.0, "approve", S.FLAGGED),
])
def test_decide_next_status(score, action, expected):
    assert decide_next_status(score, action) == expected


def test_thresholds():
    assert (FLAG_THRESHOLD, REVIEW_THRESHOLD) == (0.7, 0.4)


def test_local_rules_and_policy_share_the_flag_threshold():
    assert scoring.FLAG_THRESHOLD is FLAG_THRESHOLD
    assert scoring.recommend_action(FLAG_THRESHOLD, 0, 0) == "flag"
    assert decide_next_status(FLAG_THRESHOLD, "approve") == S.FLAGGED
    below = FLAG_THRESHOLD - 0.01
    assert scoring.recommend_action(below, 0, 0) == "approve"
    assert decide_next_status(below, "approve") == S.UNDER_REVIEW


@pytest.mark.parametrize("score,action", list(itertools.product(
    [0.0, 0.2, 0.4, 0.5, 0.7, 0.95, 1.0], ["approve", "manual_review", "flag"])))
def test_decision_is_total_and_pure(score, action):
    first = decide_next_status(score, action)
    assert first in {S.APPROVED, S.UNDER_REVIEW, S.FLAGGED}
    assert all(decide_next_status(score, action) == first for _ in range(3))


def test_decide_from_stored_result():
    r = ReviewResult(fraud_score=0.45, recommended_action="approve", summary="", confidence_level=0.5)
    assert decide_from_result(r) == S.UNDER_REVIEW


def test_automated_transitions_follow_the_graph():
    assert can_transition(S.SUBMITTED, S.UNDER_REVIEW)
    assert not can_transition(S.SUBMITTED, S.APPROVED)
    for target in (S.UNDER_REVIEW, S.APPROVED, S.FLAGGED):
        assert can_transition(S.UNDER_REVIEW, target)
    assert not can_transition(S.APPROVED, S.FLAGGED)
    assert not can_transition(S.FLAGGED, S.UNDER_REVIEW)


def test_manual_decisions_override_any_status():
    for current in S:
        assert can_transition(current, S.APPROVED, manual=True)
        assert can_transition(current, S.FLAGGED, manual=True)
        assert not can_transition(current, S.UNDER_REVIEW, manual=True)


def test_nothing_returns_to_submitted():
    for current, manual in itertools.product(S, [False, True]):
        assert not can_transition(current, S.SUBMITTED, manual=manual)


def test_accepts_plain_strings():
    assert can_transition("under_review", "approved")
