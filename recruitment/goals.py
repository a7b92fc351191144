from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Any, Iterable, Optional

from recruitment.rounds import ELEVATED_ROLES
from recruitment.statuses import GoalStatus
from utils import ApiError, normalize_role, parse_ymd


APPROVER_ROLES = frozenset({"SUPER_ADMIN", "ADMIN", "SENIOR_HR", "HR", "MANAGER"})
SELF_SERVICE_ROLES = frozenset({"EMPLOYEE", "TEAM_LEADER"})
# Approvers limited to goals of their direct reports.
TEAM_SCOPED_APPROVERS = frozenset({"MANAGER"})

GOAL_TRANSITIONS: dict[tuple[GoalStatus, str], GoalStatus] = {
    (GoalStatus.DRAFT, "submit"): GoalStatus.PENDING,
    (GoalStatus.PENDING, "approve"): GoalStatus.APPROVED,
    (GoalStatus.PENDING, "reject"): GoalStatus.REJECTED,
    (GoalStatus.APPROVED, "complete"): GoalStatus.COMPLETED,
}

KRA_STATUSES = frozenset({GoalStatus.APPROVED, GoalStatus.COMPLETED})


@dataclass(frozen=True)
class GoalProgress:
    progress: float
    weightage: float
    status: GoalStatus


def is_approver(role: str) -> bool:
    return normalize_role(role) in APPROVER_ROLES


def may_decide(role: str, *, own_goal: bool, reports_to_actor: bool) -> bool:
    r = normalize_role(role)
    if r not in APPROVER_ROLES:
        return False
    if own_goal and r not in ELEVATED_ROLES:
        return False
    if r in TEAM_SCOPED_APPROVERS:
        return reports_to_actor
    return True


def initial_status(role: str, *, own_goal: bool, submit: bool = True) -> GoalStatus:
    """Self-created goals wait for approval; goals assigned by an approver start approved."""
    if own_goal or not is_approver(role):
        return GoalStatus.PENDING if submit else GoalStatus.DRAFT
    return GoalStatus.APPROVED


def goal_transition(current: GoalStatus, verb: str) -> GoalStatus:
    target = GOAL_TRANSITIONS.get((current, verb))
    if target is None:
        raise ApiError("INVALID_TRANSITION", f"Cannot {verb} a goal that is {current.value}", http_status=409)
    return target


def clamp_progress(value: Any) -> float:
    try:
        n = float(value)
    except (TypeError, ValueError):
        raise ApiError("BAD_REQUEST", "progress must be a number")
    if n != n:
        raise ApiError("BAD_REQUEST", "progress must be a number")
    return min(100.0, max(0.0, n))


def validate_weightage(value: Any) -> float:
    try:
        n = float(value)
    except (TypeError, ValueError):
        raise ApiError("BAD_REQUEST", "weightage must be a number")
    if not (0 <= n <= 100):
        raise ApiError("BAD_REQUEST", "weightage must be between 0 and 100")
    return n


def validate_dates(start: Any, end: Any) -> tuple[date, date]:
    s = parse_ymd(start)
    e = parse_ymd(end)
    if s is None or e is None:
        raise ApiError("BAD_REQUEST", "startDate and endDate must be YYYY-MM-DD")
    if e < s:
        raise ApiError("BAD_REQUEST", "endDate cannot be before startDate")
    return s, e


def assert_can_update_progress(status: GoalStatus) -> None:
    if status != GoalStatus.APPROVED:
        raise ApiError("INVALID_TRANSITION", "Progress can only be updated on approved goals", http_status=409)


def assert_can_complete(status: GoalStatus, progress: float) -> None:
    if status != GoalStatus.APPROVED:
        raise ApiError("INVALID_TRANSITION", "Only approved goals can be marked as completed", http_status=409)
    if (progress or 0) < 100:
        raise ApiError("BAD_REQUEST", "Goal progress must be 100% before marking as completed")


def kra_overall_percent(goals: Iterable[GoalProgress]) -> Optional[float]:
    counted = [g for g in goals if g.status in KRA_STATUSES]
    if not counted:
        return None
    total_weight = sum(g.weightage for g in counted)
    if total_weight > 0:
        value = sum(g.progress * g.weightage for g in counted) / total_weight
    else:
        value = sum(g.progress for g in counted) / len(counted)
    return round(value, 1)
