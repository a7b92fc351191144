from __future__ import annotations

import json

from db import SessionLocal
from models import Candidate, User
from utils import iso_utc_now


def _seed_user(app, *, user_id: str, email: str, role: str, employee_id: str = "") -> None:
    now = iso_utc_now()
    with SessionLocal() as db:
        db.add(
            User(
                userId=user_id,
                email=email,
                fullName=email.split("@")[0].title(),
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
    body = res.get_json()
    assert body["ok"] is True
    return body["data"]["sessionToken"]


def _call(client, token: str, action: str, data: dict) -> dict:
    res = _api(client, {"action": action, "token": token, "data": data})
    body = res.get_json()
    assert res.status_code == 200, body
    assert body["ok"] is True, body
    return body["data"]


def _call_err(client, token: str, action: str, data: dict, *, status: int = 409) -> dict:
    res = _api(client, {"action": action, "token": token, "data": data})
    body = res.get_json()
    assert res.status_code == status, body
    assert body["ok"] is False
    return body["error"]


def _setup(app, client) -> dict:
    _seed_user(app, user_id="USR-HR", email="hr@example.com", role="HR")
    _seed_user(app, user_id="USR-MGR", email="manager@example.com", role="MANAGER")
    hr = _login(client, "hr@example.com")
    mgr = _login(client, "manager@example.com")

    job = _call(client, hr, "JOB_OPENING_UPSERT", {"title": "Data Analyst", "department": "Ops"})["job"]
    _call(
        client,
        hr,
        "INTERVIEW_FLOW_UPSERT",
        {
            "jobId": job["jobId"],
            "rounds": [
                {
                    "roundNumber": 1,
                    "roundName": "HR Screen",
                    "assignedRole": "HR",
                    "questions": [{"id": "q1", "questionText": "Why this role?", "isRequired": True, "maxScore": 10}],
                },
                {"roundNumber": 2, "roundName": "Manager Round", "assignedRole": "MANAGER"},
            ],
        },
    )
    cand = _call(client, hr, "CANDIDATE_ADD", {"jobId": job["jobId"], "name": "Asha Rao", "email": "Asha@Example.com"})[
        "candidate"
    ]
    return {"hr": hr, "mgr": mgr, "job": job, "cand": cand}


def _clear_rounds(client, ctx) -> None:
    hr, mgr, cid = ctx["hr"], ctx["mgr"], ctx["cand"]["candidateId"]
    it = _call(
        client,
        hr,
        "INTERVIEW_SCHEDULE",
        {"candidateId": cid, "scheduledAt": "2026-11-02T10:00:00Z", "interviewerId": "USR-HR"},
    )["interview"]
    _call(
        client,
        hr,
        "INTERVIEW_SUBMIT",
        {
            "interviewId": it["interviewId"],
            "recommendation": "PROCEED",
            "responses": [{"questionId": "q1", "answer": "Growth", "score": 8}],
        },
    )
    it2 = _call(
        client,
        hr,
        "INTERVIEW_SCHEDULE",
        {"candidateId": cid, "scheduledAt": "2026-11-03T10:00:00Z", "interviewerId": "USR-MGR"},
    )["interview"]
    assert it2["round"] == 2
    out = _call(client, mgr, "INTERVIEW_SUBMIT", {"interviewId": it2["interviewId"], "recommendation": "PROCEED"})
    assert out["status"] == "SELECTED"


def _accepted_offer(client, ctx) -> str:
    hr, cid = ctx["hr"], ctx["cand"]["candidateId"]
    offer = _call(
        client,
        hr,
        "OFFER_CREATE",
        {"candidateId": cid, "designation": "Analyst", "ctc": 800000, "joiningDate": "2026-12-01", "expiryDate": "2099-01-01"},
    )["offer"]
    assert offer["offerId"] == "OFF-00001"
    assert offer["status"] == "DRAFT"
    _call(client, hr, "OFFER_SEND", {"offerId": offer["offerId"]})
    out = _call(client, hr, "OFFER_ACCEPT", {"offerId": offer["offerId"]})
    assert out["candidate"]["status"] == "OFFER_ACCEPTED"
    return offer["offerId"]


def test_candidate_walks_from_applied_to_staff(app_client):
    app, client = app_client
    ctx = _setup(app, client)
    hr, cid = ctx["hr"], ctx["cand"]["candidateId"]
    assert cid == "CAND-00001"
    assert ctx["cand"]["email"] == "asha@example.com"
    assert ctx["cand"]["status"] == "APPLIED"

    action = _call(client, hr, "CANDIDATE_ACTION_GET", {"candidateId": cid})["action"]
    assert action["type"] == "SCHEDULE"
    assert action["round"] == 1

    _clear_rounds(client, ctx)
    assert _call(client, hr, "CANDIDATE_ACTION_GET", {"candidateId": cid})["action"]["type"] == "GENERATE_OFFER"

    offer_id = _accepted_offer(client, ctx)

    error = _call_err(client, hr, "MOVE_TO_ONBOARDING", {"candidateId": cid})
    assert error["code"] == "BGV_NOT_CLEARED"

    bgv = _call(client, hr, "BGV_START", {"candidateId": cid})
    assert bgv["created"] is True
    assert bgv["bgv"]["overallStatus"] == "NOT_STARTED"
    assert len(bgv["bgv"]["items"]) == 6

    error = _call_err(client, hr, "BGV_STATUS_SET", {"candidateId": cid, "status": "FAILED"}, status=200)
    assert error["code"] == "REASON_REQUIRED"
    _call(client, hr, "BGV_STATUS_SET", {"candidateId": cid, "status": "APPROVE"})

    res = client.post(f"/api/offers/{offer_id}/move-to-onboarding", json={}, headers={"Authorization": f"Bearer {hr}"})
    assert res.status_code == 200
    assert res.get_json()["data"]["candidate"]["status"] == "HIRED"

    converted = _call(client, hr, "CANDIDATE_CONVERT_TO_STAFF", {"candidateId": cid})
    assert converted["alreadyConverted"] is False
    assert converted["employee"]["employeeId"] == "EMP-0001"
    assert converted["employee"]["designation"] == "Analyst"
    assert converted["candidate"]["employeeId"] == "EMP-0001"

    again = _call(client, hr, "CANDIDATE_CONVERT_TO_STAFF", {"candidateId": cid})
    assert again["alreadyConverted"] is True
    assert again["employee"]["employeeId"] == "EMP-0001"

    error = _call_err(client, hr, "MOVE_TO_ONBOARDING", {"candidateId": cid})
    assert error["code"] == "ALREADY_CONVERTED"

    logs = _call(client, hr, "CANDIDATE_LOGS", {"candidateId": cid})["items"]
    transitions = [(r["fromState"], r["toState"]) for r in logs if r["entityType"] == "CANDIDATE" and r["fromState"]]
    assert ("OFFER_ACCEPTED", "HIRED") in transitions
    assert ("INTERVIEW_COMPLETED", "SELECTED") not in transitions


def test_conversion_freezes_other_applications(app_client):
    app, client = app_client
    ctx = _setup(app, client)
    hr = ctx["hr"]
    other_job = _call(client, hr, "JOB_OPENING_UPSERT", {"title": "Support Lead"})["job"]
    other = _call(client, hr, "CANDIDATE_ADD", {"jobId": other_job["jobId"], "name": "Asha Rao", "email": "asha@example.com"})[
        "candidate"
    ]

    _clear_rounds(client, ctx)
    _accepted_offer(client, ctx)
    _call(client, hr, "BGV_START", {"candidateId": ctx["cand"]["candidateId"]})
    _call(client, hr, "BGV_STATUS_SET", {"candidateId": ctx["cand"]["candidateId"], "status": "CLEARED"})

    converted = _call(client, hr, "CANDIDATE_CONVERT_TO_STAFF", {"candidateId": ctx["cand"]["candidateId"]})
    assert converted["candidate"]["status"] == "HIRED"
    assert converted["frozenApplications"] == [other["candidateId"]]

    action = _call(client, hr, "CANDIDATE_ACTION_GET", {"candidateId": other["candidateId"]})["action"]
    assert action["type"] == "NONE"
    assert action["enabled"] is False
    assert action["label"] == "Hired for Data Analyst"

    error = _call_err(
        client,
        hr,
        "INTERVIEW_SCHEDULE",
        {"candidateId": other["candidateId"], "scheduledAt": "2026-11-05T10:00:00Z"},
    )
    assert error["code"] == "PIPELINE_FROZEN"

    rejected = _call(client, hr, "CANDIDATE_REJECT", {"candidateId": other["candidateId"], "reason": "Joined elsewhere"})
    assert rejected["candidate"]["status"] == "REJECTED"


def test_interview_submission_rules(app_client):
    app, client = app_client
    ctx = _setup(app, client)
    hr, mgr, cid = ctx["hr"], ctx["mgr"], ctx["cand"]["candidateId"]

    error = _call_err(
        client,
        hr,
        "INTERVIEW_SCHEDULE",
        {"candidateId": cid, "round": 2, "scheduledAt": "2026-11-02T10:00:00Z"},
    )
    assert error["code"] == "ROUND_LOCKED"

    error = _call_err(
        client,
        hr,
        "INTERVIEW_SCHEDULE",
        {"candidateId": cid, "scheduledAt": "2026-11-02T10:00:00Z", "interviewerId": "USR-MGR"},
        status=200,
    )
    assert error["code"] == "INTERVIEWER_NOT_ELIGIBLE"

    it = _call(
        client,
        hr,
        "INTERVIEW_SCHEDULE",
        {"candidateId": cid, "scheduledAt": "2026-11-02T10:00:00Z", "interviewerId": "USR-HR"},
    )["interview"]
    assert it["interviewId"] == "INT-00001"

    error = _call_err(
        client,
        mgr,
        "INTERVIEW_SUBMIT",
        {"interviewId": it["interviewId"], "recommendation": "PROCEED", "responses": []},
        status=403,
    )
    assert error["code"] == "INTERVIEWER_NOT_ASSIGNED"

    error = _call_err(
        client,
        hr,
        "INTERVIEW_SUBMIT",
        {"interviewId": it["interviewId"], "recommendation": "PROCEED", "responses": [{"questionId": "q1", "answer": ""}]},
        status=200,
    )
    assert error["code"] == "VALIDATION_FAILED"
    assert {e["field"] for e in error["details"]["errors"]} == {"answer", "score"}

    res = client.post(
        f"/api/interviews/{it['interviewId']}/submit",
        json={"recommendation": "HOLD", "responses": [{"questionId": "q1", "answer": "Unsure", "score": "4"}]},
        headers={"Authorization": f"Bearer {hr}"},
    )
    body = res.get_json()
    assert res.status_code == 200, body
    assert body["data"]["status"] == "INTERVIEW_COMPLETED"
    assert body["data"]["interview"]["overallScore"] == 40.0

    action = _call(client, hr, "CANDIDATE_ACTION_GET", {"candidateId": cid})["action"]
    assert (action["type"], action["round"]) == ("SCHEDULE", 1)

    progress = _call(client, hr, "INTERVIEW_PROGRESS_GET", {"candidateId": cid})
    assert [r["locked"] for r in progress["rounds"]] == [False, True]


def test_cancelled_interview_can_be_rescheduled(app_client):
    app, client = app_client
    ctx = _setup(app, client)
    hr, cid = ctx["hr"], ctx["cand"]["candidateId"]
    it = _call(client, hr, "INTERVIEW_SCHEDULE", {"candidateId": cid, "scheduledAt": "2026-11-02"})["interview"]

    error = _call_err(client, hr, "INTERVIEW_CANCEL", {"interviewId": it["interviewId"]}, status=200)
    assert error["code"] == "REASON_REQUIRED"
    out = _call(client, hr, "INTERVIEW_CANCEL", {"interviewId": it["interviewId"], "reason": "Candidate unwell"})
    assert out["interview"]["status"] == "CANCELLED"
    assert out["candidate"]["status"] == "INTERVIEW_SCHEDULED"

    action = _call(client, hr, "CANDIDATE_ACTION_GET", {"candidateId": cid})["action"]
    assert (action["type"], action["round"]) == ("SCHEDULE", 1)

    again = _call(client, hr, "INTERVIEW_SCHEDULE", {"candidateId": cid, "scheduledAt": "2026-11-04T09:30:00+05:30"})
    assert again["interview"]["round"] == 1
    assert again["interview"]["scheduledAt"].startswith("2026-11-04T04:00:00")


def test_stale_version_is_refused(app_client):
    app, client = app_client
    ctx = _setup(app, client)
    hr, cid = ctx["hr"], ctx["cand"]["candidateId"]

    res = client.post(
        f"/api/candidates/{cid}/reject",
        json={"reason": "Not a fit", "version": 5},
        headers={"Authorization": f"Bearer {hr}"},
    )
    body = res.get_json()
    assert res.status_code == 409
    assert body["error"]["code"] == "STALE_STATE"
    assert body["error"]["details"] == {"expectedVersion": 5, "currentVersion": 1}

    res = client.post(
        f"/api/candidates/{cid}/reject",
        json={"reason": "Not a fit", "version": 1},
        headers={"Authorization": f"Bearer {hr}"},
    )
    assert res.status_code == 200
    assert res.get_json()["data"]["candidate"]["status"] == "REJECTED"

    error = _call_err(client, hr, "CANDIDATE_REJECT", {"candidateId": cid, "reason": "again"})
    assert error["code"] == "INVALID_TRANSITION"


def test_candidate_list_and_board(app_client):
    app, client = app_client
    ctx = _setup(app, client)
    hr, job_id = ctx["hr"], ctx["job"]["jobId"]
    _call(client, hr, "CANDIDATE_ADD", {"jobId": job_id, "name": "Ravi K", "email": "ravi@example.com", "source": "REFERRAL"})

    error = _call_err(client, hr, "CANDIDATE_ADD", {"jobId": job_id, "name": "Ravi", "email": "RAVI@example.com"})
    assert error["code"] == "CONFLICT"

    error = _call_err(
        client,
        ctx["mgr"],
        "CANDIDATE_ADD",
        {"jobId": job_id, "name": "Meera", "email": "meera@example.com", "source": "MANUAL"},
        status=403,
    )
    assert error["code"] == "FORBIDDEN"

    res = client.get("/api/candidates?status=applied&limit=1&search=example", headers={"Authorization": f"Bearer {hr}"})
    body = res.get_json()
    assert res.status_code == 200, body
    assert body["data"]["total"] == 2
    assert len(body["data"]["items"]) == 1
    assert body["data"]["params"] == {"search": "example", "limit": "1", "status": "APPLIED"}

    res = client.get("/api/candidates?source=REFERRAL", headers={"Authorization": f"Bearer {hr}"})
    assert [c["name"] for c in res.get_json()["data"]["items"]] == ["Ravi K"]

    res = client.get(f"/api/candidates/board?jobId={job_id}", headers={"Authorization": f"Bearer {hr}"})
    columns = {c["key"]: c["count"] for c in res.get_json()["data"]["columns"]}
    assert columns["applied"] == 2
    assert sum(columns.values()) == 2

    res = client.get("/api/candidates")
    assert res.status_code == 401
    assert res.get_json()["error"]["code"] == "AUTH_INVALID"


def test_cleared_round_cannot_be_scheduled_again(app_client):
    app, client = app_client
    ctx = _setup(app, client)
    hr, cid = ctx["hr"], ctx["cand"]["candidateId"]

    it = _call(
        client,
        hr,
        "INTERVIEW_SCHEDULE",
        {"candidateId": cid, "scheduledAt": "2026-11-02T10:00:00Z", "interviewerId": "USR-HR"},
    )["interview"]
    _call(
        client,
        hr,
        "INTERVIEW_SUBMIT",
        {
            "interviewId": it["interviewId"],
            "recommendation": "PROCEED",
            "responses": [{"questionId": "q1", "answer": "Growth", "score": 8}],
        },
    )

    err = _call_err(
        client,
        hr,
        "INTERVIEW_SCHEDULE",
        {"candidateId": cid, "round": 1, "scheduledAt": "2026-11-03T10:00:00Z", "interviewerId": "USR-HR"},
    )
    assert err["code"] == "INVALID_TRANSITION"

    cand = _call(client, hr, "CANDIDATE_GET", {"candidateId": cid})["candidate"]
    assert cand["status"] == "INTERVIEW_COMPLETED"
    assert cand["currentRound"] == 1

    nxt = _call(
        client,
        hr,
        "INTERVIEW_SCHEDULE",
        {"candidateId": cid, "scheduledAt": "2026-11-03T10:00:00Z", "interviewerId": "USR-MGR"},
    )["interview"]
    assert nxt["round"] == 2


def test_list_date_range_includes_whole_end_day(app_client):
    app, client = app_client
    ctx = _setup(app, client)
    hr, cid = ctx["hr"], ctx["cand"]["candidateId"]
    with SessionLocal() as db:
        db.get(Candidate, cid).createdAt = "2026-03-31T23:59:59.999Z"
        db.commit()

    def _ids(**params):
        return [c["candidateId"] for c in _call(client, hr, "CANDIDATE_LIST", params)["items"]]

    assert _ids(**{"from": "2026-03-01", "to": "2026-03-31"}) == [cid]
    assert _ids(to="2026-03-30") == []
    assert _ids(**{"from": "2026-04-01"}) == []


def test_board_reports_when_it_is_cut_short(app_client, monkeypatch):
    app, client = app_client
    ctx = _setup(app, client)
    hr, job_id = ctx["hr"], ctx["job"]["jobId"]
    _call(client, hr, "CANDIDATE_ADD", {"jobId": job_id, "name": "Ravi K", "email": "ravi@example.com"})

    board = _call(client, hr, "CANDIDATE_BOARD_GET", {"jobId": job_id})
    assert (board["total"], board["shown"], board["truncated"]) == (2, 2, False)

    monkeypatch.setattr("actions.candidates._BOARD_LIMIT", 1)
    board = _call(client, hr, "CANDIDATE_BOARD_GET", {"jobId": job_id})
    assert (board["total"], board["shown"], board["truncated"]) == (2, 1, True)
    assert sum(c["count"] for c in board["columns"]) == 1
