from __future__ import annotations

import json

from db import SessionLocal
from models import Employee, User
from utils import iso_utc_now


def _seed_user(app, *, user_id: str, email: str, role: str, employee_id: str = "") -> None:
    now = iso_utc_now()
    with SessionLocal() as db:
        db.add(
            User(
                userId=user_id,
                email=email,
                fullName="",
                role=role,
                permissionsJson="",
                employeeId=employee_id,
                status="ACTIVE",
                lastLoginAt="",
                createdAt=now,
                createdBy="TEST",
                updatedAt=now,
                updatedBy="TEST",
            )
        )
        db.commit()


def _api(client, payload: dict):
    return client.post("/api", data=json.dumps(payload), content_type="text/plain; charset=utf-8")


def _login(client, email: str) -> str:
    res = _api(client, {"action": "LOGIN_EXCHANGE", "token": None, "data": {"idToken": f"TEST:{email}"}})
    assert res.status_code == 200
    return res.get_json()["data"]["sessionToken"]


def _call(client, token: str, action: str, data: dict, *, ok: bool = True, status: int = 200) -> dict:
    res = _api(client, {"action": action, "token": token, "data": data})
    body = res.get_json()
    assert res.status_code == status, body
    assert body["ok"] is ok, body
    return body["data"] if ok else body["error"]


def _seed_employee(*, employee_id: str, manager_id: str = "") -> None:
    with SessionLocal() as db:
        db.add(
            Employee(
                employeeId=employee_id,
                candidateId=f"CAND-{employee_id}",
                name=employee_id,
                managerId=manager_id,
                status="ACTIVE",
                createdAt=iso_utc_now(),
                createdBy="TEST",
            )
        )
        db.commit()


def _goal(**extra) -> dict:
    return {"title": "Close books by day 3", "startDate": "2026-04-01", "endDate": "2027-03-31", "cycle": "FY26", **extra}


def _people(app, client) -> tuple[str, str]:
    _seed_user(app, user_id="USR-EMP", email="emp@example.com", role="EMPLOYEE", employee_id="EMP-0100")
    _seed_user(app, user_id="USR-MGR", email="mgr@example.com", role="MANAGER", employee_id="EMP-0200")
    _seed_employee(employee_id="EMP-0100", manager_id="EMP-0200")
    return _login(client, "emp@example.com"), _login(client, "mgr@example.com")


def test_goal_lifecycle_and_kra_summary(app_client):
    app, client = app_client
    emp, mgr = _people(app, client)

    goal = _call(client, emp, "GOAL_CREATE", _goal(weightage=60, kpi="Days to close", target="3"))["goal"]
    assert goal["goalId"] == "GOAL-00001"
    assert goal["employeeId"] == "EMP-0100"
    assert goal["status"] == "pending"

    error = _call(client, emp, "GOAL_DECIDE", {"goalId": goal["goalId"], "decision": "approve"}, ok=False, status=403)
    assert error["code"] == "FORBIDDEN"

    error = _call(client, emp, "GOAL_PROGRESS_UPDATE", {"goalId": goal["goalId"], "progress": 10}, ok=False, status=409)
    assert error["code"] == "INVALID_TRANSITION"

    decided = _call(client, mgr, "GOAL_DECIDE", {"goalId": goal["goalId"], "decision": "APPROVED", "notes": "Agreed"})["goal"]
    assert decided["status"] == "approved"
    assert decided["managerNotes"] == "Agreed"
    assert decided["decidedBy"] == "USR-MGR"

    error = _call(client, emp, "GOAL_COMPLETE", {"goalId": goal["goalId"]}, ok=False)
    assert error["code"] == "BAD_REQUEST"

    updated = _call(
        client, emp, "GOAL_PROGRESS_UPDATE", {"goalId": goal["goalId"], "progress": 140, "achievements": "Closed in 3 days"}
    )["goal"]
    assert updated["progress"] == 100.0
    assert updated["achievements"] == "Closed in 3 days"

    done = _call(client, emp, "GOAL_COMPLETE", {"goalId": goal["goalId"]})["goal"]
    assert done["status"] == "completed"
    assert done["completedBy"] == "USR-EMP"

    assigned = _call(client, mgr, "GOAL_CREATE", _goal(title="Automate reconciliations", employeeId="EMP-0100", weightage=40))["goal"]
    assert assigned["status"] == "approved"
    assert assigned["assignedBy"] == "USR-MGR"
    _call(client, emp, "GOAL_PROGRESS_UPDATE", {"goalId": assigned["goalId"], "progress": "50"})

    draft = _call(client, emp, "GOAL_CREATE", _goal(title="Learn SQL", weightage=0, submit=False))["goal"]
    assert draft["status"] == "draft"

    summary = _call(client, emp, "KRA_SUMMARY_GET", {"cycle": "FY26"})
    assert summary["overallPercent"] == 80.0
    assert summary["total"] == 3
    assert summary["counts"] == {"draft": 1, "pending": 0, "approved": 1, "rejected": 0, "completed": 1}

    listed = _call(client, mgr, "GOAL_LIST", {"employeeId": "EMP-0100", "status": "approved"})
    assert [g["goalId"] for g in listed["items"]] == [assigned["goalId"]]


def test_goal_ownership_rules(app_client):
    app, client = app_client
    emp, mgr = _people(app, client)

    error = _call(client, emp, "GOAL_CREATE", _goal(employeeId="EMP-0200"), ok=False, status=403)
    assert error["code"] == "FORBIDDEN"

    error = _call(client, mgr, "GOAL_CREATE", _goal(employeeId="EMP-9999"), ok=False)
    assert error["code"] == "NOT_FOUND"

    error = _call(client, emp, "GOAL_CREATE", _goal(endDate="2026-01-01"), ok=False)
    assert error["code"] == "BAD_REQUEST"

    own = _call(client, mgr, "GOAL_CREATE", _goal())["goal"]
    assert own["status"] == "pending"
    error = _call(client, mgr, "GOAL_DECIDE", {"goalId": own["goalId"], "decision": "approve"}, ok=False, status=403)
    assert error["code"] == "FORBIDDEN"

    error = _call(client, emp, "GOAL_PROGRESS_UPDATE", {"goalId": own["goalId"], "progress": 5}, ok=False, status=403)
    assert error["code"] == "FORBIDDEN"

    error = _call(client, emp, "GOAL_LIST", {"employeeId": "EMP-0200"}, ok=False, status=403)
    assert error["code"] == "FORBIDDEN"
    assert _call(client, emp, "GOAL_LIST", {})["total"] == 0

    mine = _call(client, emp, "GOAL_CREATE", _goal(submit=False))["goal"]
    submitted = _call(client, emp, "GOAL_SUBMIT", {"goalId": mine["goalId"]})["goal"]
    assert submitted["status"] == "pending"
    rejected = _call(client, mgr, "GOAL_DECIDE", {"goalId": mine["goalId"], "decision": "reject", "notes": "Too vague"})["goal"]
    assert rejected["status"] == "rejected"

    error = _call(client, mgr, "GOAL_DECIDE", {"goalId": mine["goalId"], "decision": "approve"}, ok=False, status=409)
    assert error["code"] == "INVALID_TRANSITION"


def test_managers_decide_only_for_direct_reports(app_client):
    app, client = app_client
    emp, mgr = _people(app, client)
    _seed_user(app, user_id="USR-MGR2", email="mgr2@example.com", role="MANAGER", employee_id="EMP-0300")
    _seed_user(app, user_id="USR-HR", email="hr@example.com", role="HR", employee_id="EMP-0400")
    other_mgr, hr = _login(client, "mgr2@example.com"), _login(client, "hr@example.com")

    first = _call(client, emp, "GOAL_CREATE", _goal())["goal"]
    error = _call(client, other_mgr, "GOAL_DECIDE", {"goalId": first["goalId"], "decision": "approve"}, ok=False, status=403)
    assert error["code"] == "FORBIDDEN"
    assert error["message"] == "You can only decide goals of your direct reports"

    approved = _call(client, mgr, "GOAL_DECIDE", {"goalId": first["goalId"], "decision": "approve"})["goal"]
    assert approved["status"] == "approved"

    second = _call(client, emp, "GOAL_CREATE", _goal(title="Cut vendor payment cycle"))["goal"]
    decided = _call(client, hr, "GOAL_DECIDE", {"goalId": second["goalId"], "decision": "reject", "notes": "Out of scope"})["goal"]
    assert decided["status"] == "rejected"
    assert decided["hrNotes"] == "Out of scope"
