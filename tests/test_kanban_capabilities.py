from __future__ import annotations

import pytest

from recruitment.capabilities import (
    FULL_ACCESS,
    is_action_allowed,
    normalize_permissions,
    parse_permission_string,
    resolve_permissions,
    serialize_permissions,
)
from recruitment.kanban import KanbanColumn, column_for, matching_columns
from recruitment.resolver import ActionType
from recruitment.statuses import CandidateStatus as S
from recruitment.statuses import VerificationStatus as V


@pytest.mark.parametrize(
    "status,rnd,bgv,column",
    [
        (S.APPLIED, 0, None, KanbanColumn.APPLIED),
        (S.INTERVIEW_SCHEDULED, 0, None, KanbanColumn.INTERVIEW_SCHEDULED),
        (S.INTERVIEW_SCHEDULED, 1, None, KanbanColumn.ROUND_1),
        (S.INTERVIEW_COMPLETED, 3, None, KanbanColumn.ROUND_3),
        (S.INTERVIEW_COMPLETED, 6, None, KanbanColumn.FINAL_ROUND),
        (S.SELECTED, 3, None, KanbanColumn.GENERATE_OFFER),
        (S.OFFER_SENT, 3, None, KanbanColumn.GENERATE_OFFER),
        (S.OFFER_ACCEPTED, 3, V.NOT_STARTED, KanbanColumn.DOCUMENT_COLLECTION),
        (S.OFFER_ACCEPTED, 3, V.FAILED, KanbanColumn.BACKGROUND_VERIFICATION),
        (S.HIRED, 3, V.CLEARED, KanbanColumn.ONBOARDED),
        (S.REJECTED, 2, None, KanbanColumn.REJECTED),
    ],
)
def test_each_candidate_lands_in_one_column(status, rnd, bgv, column):
    assert column_for(status, rnd, bgv) == column


def test_every_status_round_combination_is_unambiguous():
    for status in S:
        for rnd in range(0, 7):
            for bgv in (None,) + tuple(V):
                assert len(matching_columns(status, rnd, bgv)) == 1


def test_permission_string_forms():
    assert parse_permission_string("candidates.view") == ("candidates", "view")
    assert parse_permission_string("interview_appointments_schedule") == ("interview_appointments", "schedule")
    assert parse_permission_string("candidate_action_view_offer") == ("candidates", "view_offer")
    assert parse_permission_string("offer_letter") == ("offer_letter", "view")
    assert parse_permission_string("payroll.view") is None


def test_full_hrms_access_expands():
    perms = normalize_permissions(["full_hrms_access"])
    assert set(perms) == set(FULL_ACCESS)


def test_elevated_roles_ignore_explicit_lists():
    perms = resolve_permissions("Super Admin", explicit_permissions=["candidates.view"])
    assert is_action_allowed(perms, ActionType.GENERATE_OFFER)


def test_explicit_permissions_beat_role_defaults():
    perms = resolve_permissions("HR", role_permissions={"staff": ["view"]}, explicit_permissions=["candidates.view"])
    assert perms == {"candidates": frozenset({"view"})}
    assert is_action_allowed(perms, ActionType.VIEW_LOGS)
    assert not is_action_allowed(perms, ActionType.SCHEDULE)


def test_role_defaults():
    recruiter = resolve_permissions("RECRUITER")
    assert is_action_allowed(recruiter, ActionType.SCHEDULE)
    assert is_action_allowed(recruiter, ActionType.START)
    assert not is_action_allowed(recruiter, ActionType.GENERATE_OFFER)
    assert not is_action_allowed(resolve_permissions("CANDIDATE"), ActionType.VIEW_PROFILE)
    assert not is_action_allowed(recruiter, ActionType.NONE)


def test_serialized_permissions_are_sorted():
    out = serialize_permissions({"offer_letter": {"generate", "view"}, "candidates": {"view"}})
    assert out == [
        {"module": "candidates", "actions": ["view"]},
        {"module": "offer_letter", "actions": ["generate", "view"]},
    ]
