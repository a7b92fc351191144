from __future__ import annotations

import json

from db import SessionLocal
from models import User
from utils import iso_utc_now


def _seed_user(app, *, user_id: str, email: str, role: str, employee_id: str = "", status: str = "ACTIVE") -> None:
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
                status=status,
                lastLoginAt="",
                createdAt=now,
                createdBy="TEST",
                updatedAt=now,
                updatedBy="TEST",
            )
        )
        db.commit()


def _api(client, payload, headers=None):
    raw = payload if isinstance(payload, str) else json.dumps(payload)
    return client.post("/api", data=raw, content_type="text/plain; charset=utf-8", headers=headers or {})


def _login(client, email: str) -> str:
    res = _api(client, {"action": "LOGIN_EXCHANGE", "token": None, "data": {"idToken": f"TEST:{email}"}})
    assert res.status_code == 200
    body = res.get_json()
    assert body["ok"] is True
    return body["data"]["sessionToken"]


def test_login_requires_known_active_user(app_client):
    app, client = app_client
    _seed_user(app, user_id="USR-OFF", email="gone@example.com", role="HR", status="DISABLED")

    body = _api(client, {"action": "LOGIN_EXCHANGE", "data": {"idToken": "TEST:nobody@example.com"}}).get_json()
    assert body["error"]["code"] == "AUTH_INVALID"

    body = _api(client, {"action": "LOGIN_EXCHANGE", "data": {"idToken": "TEST:gone@example.com"}}).get_json()
    assert body["error"] == {"code": "AUTH_INVALID", "message": "User is disabled"}

    body = _api(client, {"action": "LOGIN_EXCHANGE", "data": {}}).get_json()
    assert body["error"]["code"] == "BAD_REQUEST"


def test_session_lifecycle(app_client):
    app, client = app_client
    _seed_user(app, user_id="USR-HR", email="hr@example.com", role="HR")
    token = _login(client, "HR@example.com")

    me = _api(client, {"action": "GET_ME", "token": token}).get_json()
    assert me["data"]["me"]["userId"] == "USR-HR"
    assert me["data"]["me"]["fullName"] == "Test User"

    # Header tokens are accepted when the body carries none.
    res = _api(client, {"action": "SESSION_VALIDATE"}, headers={"Authorization": f"Bearer {token}"})
    assert res.get_json()["data"]["valid"] is True
    res = _api(client, {"action": "SESSION_VALIDATE"}, headers={"X-Session-Token": token})
    assert res.get_json()["data"]["role"] == "HR"

    perms = _api(client, {"action": "MY_PERMISSIONS_GET", "token": token}).get_json()["data"]
    assert "OFFER_CREATE" in perms["actionKeys"]
    assert "USERS_UPSERT" not in perms["actionKeys"]
    modules = {c["module"] for c in perms["capabilities"]}
    assert "offer_letter" in modules
    assert "staff" not in modules

    out = _api(client, {"action": "LOGOUT", "token": token}).get_json()
    assert out["data"] == {"loggedOut": True, "revoked": True}

    body = _api(client, {"action": "GET_ME", "token": token}).get_json()
    assert body["ok"] is False
    assert body["error"]["code"] == "AUTH_INVALID"


def test_role_checks_and_bad_requests(app_client):
    app, client = app_client
    _seed_user(app, user_id="USR-EMP", email="emp@example.com", role="EMPLOYEE")
    token = _login(client, "emp@example.com")

    res = _api(client, {"action": "OFFER_CREATE", "token": token, "data": {"candidateId": "CAND-00001"}})
    assert res.status_code == 403
    assert res.get_json()["error"]["code"] == "FORBIDDEN"

    body = _api(client, {"action": "NOT_A_THING", "token": token}).get_json()
    assert body["error"]["code"] == "BAD_REQUEST"

    body = _api(client, {"token": token}).get_json()
    assert body["error"] == {"code": "BAD_REQUEST", "message": "Missing action"}

    body = _api(client, "{not json").get_json()
    assert body["error"]["code"] == "BAD_REQUEST"

    body = _api(client, {"action": "GET_ME", "token": token, "data": [1, 2]}).get_json()
    assert body["error"]["message"] == "data must be an object"


def test_admin_role_change_revokes_sessions(app_client):
    app, client = app_client
    _seed_user(app, user_id="USR-ADMIN", email="admin@example.com", role="ADMIN")
    _seed_user(app, user_id="USR-REC", email="rec@example.com", role="RECRUITER")
    admin = _login(client, "admin@example.com")
    rec = _login(client, "rec@example.com")

    out = _api(
        client,
        {"action": "USERS_UPSERT", "token": admin, "data": {"email": "rec@example.com", "role": "HR", "permissions": ["candidates.view"]}},
    ).get_json()
    assert out["ok"] is True, out
    assert out["data"]["revokedSessions"] == 1
    assert out["data"]["user"]["permissions"] == [{"module": "candidates", "actions": ["view"]}]

    body = _api(client, {"action": "GET_ME", "token": rec}).get_json()
    assert body["error"]["code"] == "AUTH_INVALID"

    rec = _login(client, "rec@example.com")
    perms = _api(client, {"action": "MY_PERMISSIONS_GET", "token": rec}).get_json()["data"]
    assert perms["role"] == "HR"
    assert perms["capabilities"] == [{"module": "candidates", "actions": ["view"]}]

    listed = _api(client, {"action": "USERS_LIST", "token": admin, "data": {"role": "HR"}}).get_json()["data"]
    assert [u["email"] for u in listed["items"]] == ["rec@example.com"]
