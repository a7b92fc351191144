from __future__ import annotations

import json
from datetime import date

from sqlalchemy import select

from db import SessionLocal
from models import Candidate, Offer, User
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


def _selected_candidate(app, client) -> tuple[str, str]:
    _seed_user(app, user_id="USR-HR", email="hr@example.com", role="HR")
    hr = _login(client, "hr@example.com")
    job = _call(client, hr, "JOB_OPENING_UPSERT", {"title": "Accountant"})["job"]
    _call(client, hr, "INTERVIEW_FLOW_UPSERT", {"jobId": job["jobId"], "rounds": [{"roundName": "Panel", "assignedRole": "HR"}]})
    cid = _call(client, hr, "CANDIDATE_ADD", {"jobId": job["jobId"], "name": "Kiran", "email": "kiran@example.com"})["candidate"][
        "candidateId"
    ]
    it = _call(client, hr, "INTERVIEW_SCHEDULE", {"candidateId": cid, "scheduledAt": "2026-11-02T10:00:00Z"})["interview"]
    assert _call(client, hr, "INTERVIEW_SUBMIT", {"interviewId": it["interviewId"], "recommendation": "PROCEED"})["status"] == "SELECTED"
    return hr, cid


def _sent_offer(client, hr: str, cid: str, **terms) -> str:
    offer = _call(client, hr, "OFFER_CREATE", {"candidateId": cid, "designation": "Accountant", "ctc": 800000, **terms})["offer"]
    _call(client, hr, "OFFER_SEND", {"offerId": offer["offerId"]})
    return offer["offerId"]


def test_revision_supersedes_previous_offer(app_client):
    app, client = app_client
    hr, cid = _selected_candidate(app, client)
    first = _sent_offer(client, hr, cid, expiryDate="2099-01-01")

    error = _call(client, hr, "OFFER_CREATE", {"candidateId": cid, "designation": "Accountant"}, ok=False, status=409)
    assert error["code"] == "INVALID_TRANSITION"

    error = _call(client, hr, "OFFER_REVISE", {"offerId": first, "designation": "Accountant"}, ok=False)
    assert error["code"] == "BAD_REQUEST"

    revised = _call(client, hr, "OFFER_REVISE", {"offerId": first, "ctc": 900000, "reason": "Counter offer"})["offer"]
    assert revised["status"] == "DRAFT"
    assert revised["previousOfferId"] == first
    assert revised["revisionNumber"] == 1
    assert revised["revisionChanges"] == {"ctc": {"from": 800000.0, "to": 900000.0}}
    assert revised["expiryDate"] == "2099-01-01"

    error = _call(client, hr, "OFFER_ACCEPT", {"offerId": first}, ok=False, status=409)
    assert error["code"] == "OFFER_SUPERSEDED"
    assert error["details"] == {"latestOfferId": revised["offerId"]}

    _call(client, hr, "OFFER_SEND", {"offerId": revised["offerId"]})
    out = _call(client, hr, "OFFER_ACCEPT", {"offerId": revised["offerId"]})
    assert out["candidate"]["status"] == "OFFER_ACCEPTED"

    with SessionLocal() as db:
        old = db.execute(select(Offer).where(Offer.offerId == first)).scalar_one()
        assert old.ctc == 800000.0
        assert old.status == "SENT"

    offers = _call(client, hr, "OFFER_LIST", {"candidateId": cid})["items"]
    assert [o["revisionNumber"] for o in offers] == [0, 1]


def test_declined_offer_returns_candidate_to_selected(app_client):
    app, client = app_client
    hr, cid = _selected_candidate(app, client)
    offer_id = _sent_offer(client, hr, cid)

    out = _call(client, hr, "OFFER_REJECT", {"offerId": offer_id, "reason": "Relocation"})
    assert out["offer"]["status"] == "REJECTED"
    assert out["offer"]["rejectionReason"] == "Relocation"
    assert out["candidate"]["status"] == "SELECTED"

    action = _call(client, hr, "CANDIDATE_ACTION_GET", {"candidateId": cid})["action"]
    assert action["type"] == "GENERATE_OFFER"


def test_candidate_can_only_answer_own_offer(app_client):
    app, client = app_client
    hr, cid = _selected_candidate(app, client)
    offer_id = _sent_offer(client, hr, cid, expiryDate="2099-01-01")
    _seed_user(app, user_id="USR-C1", email="someone@example.com", role="CANDIDATE")
    _seed_user(app, user_id="USR-C2", email="kiran@example.com", role="CANDIDATE")

    stranger = _login(client, "someone@example.com")
    error = _call(client, stranger, "OFFER_ACCEPT", {"offerId": offer_id}, ok=False, status=403)
    assert error["code"] == "FORBIDDEN"
    assert _call(client, stranger, "OFFER_LIST", {})["items"] == []

    error = _call(client, stranger, "OFFER_CREATE", {"candidateId": cid, "designation": "x"}, ok=False, status=403)
    assert error["code"] == "FORBIDDEN"

    owner = _login(client, "kiran@example.com")
    assert [o["offerId"] for o in _call(client, owner, "OFFER_LIST", {})["items"]] == [offer_id]
    out = _call(client, owner, "OFFER_ACCEPT", {"offerId": offer_id})
    assert out["candidate"]["status"] == "OFFER_ACCEPTED"


def test_lapsed_offer_expires_through_internal_trigger(app_client):
    app, client = app_client
    hr, cid = _selected_candidate(app, client)
    offer_id = _sent_offer(client, hr, cid, expiryDate="2020-01-01")

    error = _call(client, hr, "OFFER_ACCEPT", {"offerId": offer_id}, ok=False, status=409)
    assert error["code"] == "OFFER_EXPIRED"

    res = client.post("/api/jobs/expire-offers", json={})
    assert res.status_code == 401

    res = client.post("/api/jobs/expire-offers", json={}, headers={"X-Internal-Token": "wrong"})
    assert res.status_code == 401

    res = client.post("/api/jobs/expire-offers", json={}, headers={"X-Internal-Token": "cron-secret"})
    body = res.get_json()
    assert res.status_code == 200, body
    assert body["data"]["expired"] == [offer_id]
    assert body["data"]["skipped"] == []

    cand = _call(client, hr, "CANDIDATE_GET", {"candidateId": cid})
    assert cand["candidate"]["status"] == "SELECTED"
    assert cand["offers"] == [{"offerId": offer_id, "status": "EXPIRED", "revisionNumber": 0}]

    res = client.post("/api/jobs/expire-offers", json={}, headers={"X-Internal-Token": "cron-secret"})
    assert res.get_json()["data"]["expired"] == []


def test_scheduled_sweep_respects_expiry_day(app_client):
    app, client = app_client
    hr, cid = _selected_candidate(app, client)
    offer_id = _sent_offer(client, hr, cid, expiryDate="2026-11-10")

    from jobs.offer_expiry import run_offer_expiry

    cfg = app.config["CFG"]
    with SessionLocal() as db:
        res = run_offer_expiry(db, cfg, today=date(2026, 11, 10))
        assert res == {"today": "2026-11-10", "expired": [], "skipped": []}

        res = run_offer_expiry(db, cfg, today=date(2026, 11, 11))
        assert res["expired"] == [offer_id]
        db.commit()

    with SessionLocal() as db:
        cand = db.execute(select(Candidate).where(Candidate.candidateId == cid)).scalar_one()
        assert cand.status == "SELECTED"
        assert db.execute(select(Offer.status).where(Offer.offerId == offer_id)).scalar_one() == "EXPIRED"
