from __future__ import annotations

from typing import Any

from sqlalchemy import select

from actions.helpers import actor_id, append_audit, next_prefixed_id, require_str
from models import Employee, Goal, User
from recruitment.goals import (
    GoalProgress,
    assert_can_complete,
    assert_can_update_progress,
    clamp_progress,
    goal_transition,
    initial_status,
    is_approver,
    kra_overall_percent,
    may_decide,
    validate_dates,
    validate_weightage,
)
from recruitment.statuses import GoalStatus, parse_enum
from utils import ApiError, AuthContext, iso_utc_now, normalize_role


_DECISIONS = {"approve": "approve", "approved": "approve", "reject": "reject", "rejected": "reject"}


def _serialize_goal(g: Goal) -> dict[str, Any]:
    return {
        "goalId": g.goalId,
        "employeeId": g.employeeId,
        "title": g.title,
        "type": g.type,
        "kpi": g.kpi,
        "target": g.target,
        "weightage": g.weightage,
        "startDate": g.startDate,
        "endDate": g.endDate,
        "progress": g.progress,
        "status": g.status,
        "cycle": g.cycle,
        "achievements": g.achievements,
        "challenges": g.challenges,
        "managerNotes": g.managerNotes,
        "hrNotes": g.hrNotes,
        "kraId": g.kraId or None,
        "assignedBy": g.assignedBy,
        "decidedAt": g.decidedAt,
        "decidedBy": g.decidedBy,
        "completedAt": g.completedAt,
        "completedBy": g.completedBy,
        "updatedAt": g.updatedAt,
    }


def _own_employee_id(db, auth: AuthContext) -> str:
    user = db.execute(select(User).where(User.userId == auth.userId)).scalar_one_or_none()
    return str(user.employeeId or "") if user else ""


def _employee_exists(db, employee_id: str) -> bool:
    if db.execute(select(Employee.employeeId).where(Employee.employeeId == employee_id)).first():
        return True
    return db.execute(select(User.userId).where(User.employeeId == employee_id)).first() is not None


def _reports_to(db, employee_id: str, manager_employee_id: str) -> bool:
    if not employee_id or not manager_employee_id:
        return False
    manager = db.execute(select(Employee.managerId).where(Employee.employeeId == employee_id)).scalar_one_or_none()
    return bool(manager) and manager == manager_employee_id


def _goal_status(g: Goal) -> GoalStatus:
    return parse_enum(GoalStatus, g.status, field="goal status")


def _get_goal(db, data: dict) -> Goal:
    gid = require_str(data, "goalId")
    g = db.execute(select(Goal).where(Goal.goalId == gid).with_for_update(of=Goal)).scalar_one_or_none()
    if not g:
        raise ApiError("NOT_FOUND", "Goal not found")
    return g


def _assert_owner_or_approver(db, g: Goal, auth: AuthContext) -> bool:
    """Returns True when the caller owns the goal."""
    own = bool(g.employeeId) and g.employeeId == _own_employee_id(db, auth)
    if not own and not is_approver(auth.role):
        raise ApiError("FORBIDDEN", "You can only act on your own goals", http_status=403)
    return own


def _text(data: dict, key: str) -> str:
    return str(data.get(key) or "").strip()


def goal_create(data, auth: AuthContext | None, db, cfg):
    data = data or {}
    own_id = _own_employee_id(db, auth)
    employee_id = _text(data, "employeeId") or own_id
    if not employee_id:
        raise ApiError("BAD_REQUEST", "No employee record is linked to this user")

    own_goal = employee_id == own_id
    if not own_goal:
        if not is_approver(auth.role):
            raise ApiError("FORBIDDEN", "Only managers and HR can assign goals to others", http_status=403)
        if not _employee_exists(db, employee_id):
            raise ApiError("NOT_FOUND", "Employee not found")

    title = require_str(data, "title")
    start, end = validate_dates(data.get("startDate"), data.get("endDate"))
    weightage = validate_weightage(data.get("weightage", 0))
    submit = data.get("submit") is not False
    status = initial_status(auth.role, own_goal=own_goal, submit=submit)

    now = iso_utc_now()
    g = Goal(
        goalId=next_prefixed_id(db, "GOAL", "GOAL-", width=5),
        employeeId=employee_id,
        title=title,
        type=_text(data, "type"),
        kpi=_text(data, "kpi"),
        target=_text(data, "target"),
        weightage=weightage,
        startDate=start.isoformat(),
        endDate=end.isoformat(),
        progress=0,
        status=status.value,
        cycle=_text(data, "cycle"),
        kraId=_text(data, "kraId"),
        assignedBy="" if own_goal else actor_id(auth),
        decidedAt=now if status == GoalStatus.APPROVED else "",
        decidedBy=actor_id(auth) if status == GoalStatus.APPROVED else "",
        createdAt=now,
        createdBy=actor_id(auth),
        updatedAt=now,
        updatedBy=actor_id(auth),
    )
    db.add(g)

    append_audit(
        db,
        entityType="GOAL",
        entityId=g.goalId,
        action="GOAL_CREATE",
        toState=status.value,
        stageTag="GOAL_CREATE",
        actor=auth,
        at=now,
        meta={"employeeId": employee_id, "assigned": not own_goal},
    )
    db.flush()
    return {"goal": _serialize_goal(g)}


def _move(db, g: Goal, verb: str, auth: AuthContext, *, remark: str = "") -> GoalStatus:
    current = _goal_status(g)
    target = goal_transition(current, verb)
    now = iso_utc_now()
    g.status = target.value
    g.updatedAt = now
    g.updatedBy = actor_id(auth)
    append_audit(
        db,
        entityType="GOAL",
        entityId=g.goalId,
        action=f"GOAL_{verb.upper()}",
        fromState=current.value,
        toState=target.value,
        stageTag="GOAL_STATUS",
        remark=remark,
        actor=auth,
        at=now,
    )
    return target


def goal_submit(data, auth: AuthContext | None, db, cfg):
    g = _get_goal(db, data or {})
    if not _assert_owner_or_approver(db, g, auth):
        raise ApiError("FORBIDDEN", "Only the goal owner can submit it for approval", http_status=403)
    _move(db, g, "submit", auth)
    return {"goal": _serialize_goal(g)}


def goal_decide(data, auth: AuthContext | None, db, cfg):
    data = data or {}
    g = _get_goal(db, data)
    verb = _DECISIONS.get(_text(data, "decision").lower())
    if not verb:
        raise ApiError("BAD_REQUEST", "decision must be approve or reject")

    role = normalize_role(auth.role)
    own_emp = _own_employee_id(db, auth)
    own_goal = bool(g.employeeId) and g.employeeId == own_emp
    if not may_decide(role, own_goal=own_goal, reports_to_actor=_reports_to(db, g.employeeId, own_emp)):
        if own_goal:
            raise ApiError("FORBIDDEN", "You cannot approve your own goals", http_status=403)
        raise ApiError("FORBIDDEN", "You can only decide goals of your direct reports", http_status=403)

    notes = _text(data, "notes")
    _move(db, g, verb, auth, remark=notes)
    if notes:
        if role in {"HR", "SENIOR_HR"}:
            g.hrNotes = notes
        else:
            g.managerNotes = notes
    g.decidedAt = g.updatedAt
    g.decidedBy = actor_id(auth)
    return {"goal": _serialize_goal(g)}


def goal_progress_update(data, auth: AuthContext | None, db, cfg):
    data = data or {}
    g = _get_goal(db, data)
    _assert_owner_or_approver(db, g, auth)
    assert_can_update_progress(_goal_status(g))

    before = g.progress
    g.progress = clamp_progress(data.get("progress"))
    for key in ("achievements", "challenges"):
        if key in data:
            setattr(g, key, _text(data, key))
    g.updatedAt = iso_utc_now()
    g.updatedBy = actor_id(auth)

    append_audit(
        db,
        entityType="GOAL",
        entityId=g.goalId,
        action="GOAL_PROGRESS_UPDATE",
        stageTag="GOAL_PROGRESS",
        actor=auth,
        at=g.updatedAt,
        meta={"from": before, "to": g.progress},
    )
    return {"goal": _serialize_goal(g)}


def goal_complete(data, auth: AuthContext | None, db, cfg):
    g = _get_goal(db, data or {})
    _assert_owner_or_approver(db, g, auth)
    assert_can_complete(_goal_status(g), float(g.progress or 0))
    _move(db, g, "complete", auth)
    g.completedAt = g.updatedAt
    g.completedBy = actor_id(auth)
    return {"goal": _serialize_goal(g)}


def _goals_query(db, data: dict, auth: AuthContext):
    employee_id = _text(data, "employeeId")
    if not is_approver(auth.role):
        own_id = _own_employee_id(db, auth)
        if employee_id and employee_id != own_id:
            raise ApiError("FORBIDDEN", "You can only view your own goals", http_status=403)
        employee_id = own_id
        if not employee_id:
            return None

    q = select(Goal)
    if employee_id:
        q = q.where(Goal.employeeId == employee_id)
    cycle = _text(data, "cycle")
    if cycle:
        q = q.where(Goal.cycle == cycle)
    return q


def goal_list(data, auth: AuthContext | None, db, cfg):
    data = data or {}
    q = _goals_query(db, data, auth)
    if q is None:
        return {"items": [], "total": 0}
    status = _text(data, "status")
    if status:
        q = q.where(Goal.status == parse_enum(GoalStatus, status, field="goal status").value)
    rows = db.execute(q.order_by(Goal.startDate, Goal.goalId)).scalars().all()
    return {"items": [_serialize_goal(g) for g in rows], "total": len(rows)}


def kra_summary_get(data, auth: AuthContext | None, db, cfg):
    data = data or {}
    q = _goals_query(db, data, auth)
    rows = db.execute(q).scalars().all() if q is not None else []

    progress = [
        GoalProgress(progress=float(g.progress or 0), weightage=float(g.weightage or 0), status=_goal_status(g))
        for g in rows
    ]
    counts = {s.value: 0 for s in GoalStatus}
    for p in progress:
        counts[p.status.value] += 1

    return {
        "employeeId": _text(data, "employeeId") or None,
        "cycle": _text(data, "cycle") or None,
        "overallPercent": kra_overall_percent(progress),
        "counts": counts,
        "total": len(rows),
    }
