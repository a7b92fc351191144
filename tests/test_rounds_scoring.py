from __future__ import annotations

import pytest

from recruitment.rounds import (
    Actor,
    InterviewRecord,
    ProgressRecord,
    RoundConfig,
    can_access_round,
    is_last_round,
    is_round_locked,
    next_round_after,
    progress_from_interviews,
    validate_flow,
)
from recruitment.scoring import assert_valid_submission, overall_score, parse_score, validate_responses
from recruitment.statuses import InterviewStatus, Recommendation
from utils import ApiError

QUESTIONS = RoundConfig.from_dict(
    {
        "roundNumber": 1,
        "questions": [
            {"id": "q1", "questionText": "Communication", "isRequired": True, "maxScore": 10},
            {"id": "q2", "questionText": "Excel", "maxScore": 5},
        ],
    }
).questions


def test_round_one_is_never_locked():
    assert is_round_locked(1, []) is False


def test_round_unlocks_only_after_previous_proceed():
    assert is_round_locked(2, []) is True
    assert is_round_locked(2, [ProgressRecord(1, True, Recommendation.HOLD)]) is True
    assert is_round_locked(2, [ProgressRecord(1, True, Recommendation.PROCEED)]) is False


def test_lock_skips_disabled_rounds():
    progress = [ProgressRecord(1, True, Recommendation.PROCEED)]
    assert is_round_locked(3, progress, enabled_round_numbers=[1, 3]) is False
    assert is_round_locked(3, [], enabled_round_numbers=[3]) is False


def test_latest_submission_per_round_wins():
    records = [
        InterviewRecord("INT-1", 1, InterviewStatus.COMPLETED, Recommendation.HOLD, submitted_at="2026-01-01T10:00:00.000Z"),
        InterviewRecord("INT-2", 1, InterviewStatus.COMPLETED, Recommendation.PROCEED, submitted_at="2026-01-02T10:00:00.000Z"),
        InterviewRecord("INT-3", 2, InterviewStatus.SCHEDULED),
    ]
    assert progress_from_interviews(records) == [ProgressRecord(1, True, Recommendation.PROCEED)]


def test_next_and_last_round_follow_enabled_rounds():
    rounds = [RoundConfig(1), RoundConfig(2, enabled=False), RoundConfig(4)]
    assert next_round_after(1, rounds) == 4
    assert is_last_round(4, rounds) is True
    assert is_last_round(1, rounds) is False


def test_round_access():
    rc = RoundConfig(1, assigned_role="RECRUITER", assigned_interviewers=("USR-0042",))
    assert can_access_round(rc, Actor("USR-0001", "SUPER_ADMIN"))
    assert can_access_round(rc, Actor("USR-0042", "EMPLOYEE"))
    assert can_access_round(rc, Actor("USR-0005", "recruiter"))
    assert can_access_round(rc, Actor("USR-0006", "SENIOR_HR"))
    assert not can_access_round(rc, Actor("USR-0007", "MANAGER"))


@pytest.mark.parametrize(
    "round_role,actor_role,allowed",
    [
        ("RECRUITER", "HR", True),
        ("RECRUITER", "SENIOR_HR", True),
        ("HR", "SENIOR_HR", True),
        ("HR", "RECRUITER", False),
        ("HR", "MANAGER", False),
        ("MANAGER", "HR", False),
    ],
)
def test_round_role_equivalents(round_role, actor_role, allowed):
    rc = RoundConfig(1, assigned_role=round_role)
    assert can_access_round(rc, Actor("USR-0010", actor_role)) is allowed


def test_flow_validation_rejects_duplicates():
    with pytest.raises(ApiError):
        validate_flow([RoundConfig(1), RoundConfig(1)])


@pytest.mark.parametrize(
    "raw,message",
    [
        (None, "Score is required"),
        ("", "Score is required"),
        ("7.5", "Score must be a whole number"),
        (2.5, "Score must be a whole number"),
        (0, "Score must be at least 1"),
        (-1, "Score must be at least 1"),
        ("-1", "Score must be at least 1"),
        (11, "Score cannot exceed 10"),
    ],
)
def test_parse_score_rejects(raw, message):
    with pytest.raises(ValueError, match=message):
        parse_score(raw, 10)


def test_parse_score_accepts_integral_values():
    assert parse_score("10", 10) == 10
    assert parse_score(4.0, 10) == 4


def test_validation_reports_each_problem():
    errors = validate_responses(QUESTIONS, [{"questionId": "q1", "answer": "", "score": 12}])
    fields = {(e.question_id, e.field) for e in errors}
    assert fields == {("q1", "answer"), ("q1", "score"), ("q2", "score")}


def test_submission_error_carries_details():
    with pytest.raises(ApiError) as exc:
        assert_valid_submission(QUESTIONS, [])
    assert exc.value.code == "VALIDATION_FAILED"
    assert len(exc.value.details["errors"]) == 3


def test_overall_score_is_percent_of_max():
    responses = [
        {"questionId": "q1", "answer": "Clear", "score": 8},
        {"questionText": "excel", "answer": "", "score": 4},
    ]
    assert_valid_submission(QUESTIONS, responses)
    assert overall_score(QUESTIONS, responses) == 80.0
