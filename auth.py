from __future__ import annotations

import os
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from google.auth.transport import requests as google_requests
from google.oauth2 import id_token as google_id_token
from sqlalchemy import select

from cache_layer import MISSING, cache_get, cache_get_or_set, cache_invalidate_prefix, cache_set
from models import Permission, Role, Session as DbSession, User
from recruitment.capabilities import Permissions, resolve_permissions
from utils import ApiError, AuthContext, iso_utc_now, new_uuid, normalize_role, parse_datetime_maybe, parse_roles_csv, safe_json_load, sha256_hex, to_iso_utc


ROLES = [
    "SUPER_ADMIN",
    "ADMIN",
    "SENIOR_HR",
    "HR",
    "RECRUITER",
    "MANAGER",
    "TEAM_LEADER",
    "EMPLOYEE",
    "CANDIDATE",
]

ROLE_NAMES = {
    "SUPER_ADMIN": "Super Admin",
    "ADMIN": "Admin",
    "SENIOR_HR": "Senior HR",
    "HR": "HR",
    "RECRUITER": "Recruiter",
    "MANAGER": "Manager",
    "TEAM_LEADER": "Team Leader",
    "EMPLOYEE": "Employee",
    "CANDIDATE": "Candidate",
}

PUBLIC_ACTIONS = {"LOGIN_EXCHANGE"}

# Core session actions every ACTIVE role may call.
SESSION_ACTIONS = {"SESSION_VALIDATE", "GET_ME", "MY_PERMISSIONS_GET", "LOGOUT"}

_ADMINS = ["SUPER_ADMIN", "ADMIN"]
_HR_OPS = _ADMINS + ["SENIOR_HR", "HR"]
_RECRUITING = _HR_OPS + ["RECRUITER"]
_INTERVIEWERS = _RECRUITING + ["MANAGER", "TEAM_LEADER"]
_STAFF = _INTERVIEWERS + ["EMPLOYEE"]
_ALL = _STAFF + ["CANDIDATE"]


STATIC_RBAC_PERMISSIONS: dict[str, list[str]] = {
    "LOGIN_EXCHANGE": ["PUBLIC"],
    "SESSION_VALIDATE": _ALL,
    "GET_ME": _ALL,
    "MY_PERMISSIONS_GET": _ALL,
    "LOGOUT": _ALL,
    "USERS_LIST": _ADMINS,
    "USERS_UPSERT": _ADMINS,
    # Jobs and interview flows
    "JOB_OPENING_UPSERT": _HR_OPS,
    "JOB_OPENING_LIST": _STAFF,
    "INTERVIEW_FLOW_UPSERT": _HR_OPS,
    "INTERVIEW_FLOW_GET": _INTERVIEWERS,
    # Candidates
    "CANDIDATE_ADD": _STAFF,
    "CANDIDATE_GET": _INTERVIEWERS,
    "CANDIDATE_LIST": _INTERVIEWERS,
    "CANDIDATE_STATUS_UPDATE": _RECRUITING,
    "CANDIDATE_REJECT": _RECRUITING,
    "CANDIDATE_ACTION_GET": _INTERVIEWERS,
    "CANDIDATE_LOGS": _INTERVIEWERS,
    "CANDIDATE_BOARD_GET": _INTERVIEWERS,
    # Interviews (submission is further restricted to the round's interviewers)
    "INTERVIEW_SCHEDULE": _RECRUITING,
    "INTERVIEW_RESCHEDULE": _RECRUITING,
    "INTERVIEW_CANCEL": _RECRUITING,
    "INTERVIEW_SUBMIT": _STAFF,
    "INTERVIEW_LIST": _STAFF,
    "INTERVIEW_PROGRESS_GET": _STAFF,
    # Offers
    "OFFER_CREATE": _HR_OPS,
    "OFFER_SEND": _HR_OPS,
    "OFFER_REVISE": _HR_OPS,
    "OFFER_ACCEPT": _HR_OPS + ["CANDIDATE"],
    "OFFER_REJECT": _HR_OPS + ["CANDIDATE"],
    "OFFER_LIST": _RECRUITING + ["CANDIDATE"],
    "OFFER_EXPIRE_SWEEP": _ADMINS,
    # Onboarding
    "MOVE_TO_ONBOARDING": _HR_OPS,
    "CANDIDATE_CONVERT_TO_STAFF": _HR_OPS,
    # Background verification
    "BGV_START": _HR_OPS,
    "BGV_GET": _HR_OPS,
    "BGV_CONTACT_UPSERT": _HR_OPS + ["CANDIDATE"],
    "BGV_ADDRESS_UPDATE": _HR_OPS + ["CANDIDATE"],
    "BGV_ITEM_VERIFY": _HR_OPS,
    "BGV_STATUS_SET": _HR_OPS,
    "DOCUMENT_ADD": _HR_OPS + ["CANDIDATE"],
    "DOCUMENT_LIST": _HR_OPS + ["CANDIDATE"],
    # Goals / PMS
    "GOAL_CREATE": _STAFF,
    "GOAL_SUBMIT": _STAFF,
    "GOAL_DECIDE": _HR_OPS + ["MANAGER"],
    "GOAL_PROGRESS_UPDATE": _STAFF,
    "GOAL_COMPLETE": _STAFF,
    "GOAL_LIST": _STAFF,
    "KRA_SUMMARY_GET": _STAFF,
}


_RBAC_CACHE_PREFIX = "RBAC:"
_RBAC_ROLES_INDEX_KEY = f"{_RBAC_CACHE_PREFIX}ROLES_INDEX"
_RBAC_RULE_PREFIX = f"{_RBAC_CACHE_PREFIX}RULE:"
_RBAC_PERMS_FOR_ROLE_PREFIX = f"{_RBAC_CACHE_PREFIX}PERMS_FOR_ROLE:"
_CAPABILITIES_PREFIX = f"{_RBAC_CACHE_PREFIX}CAPS:"


def is_public_action(action: str) -> bool:
    return str(action or "").upper() in PUBLIC_ACTIONS


def invalidate_rbac_cache() -> int:
    return cache_invalidate_prefix(_RBAC_CACHE_PREFIX)


def verify_google_id_token(id_token: str, google_client_id: str, allow_test_tokens: bool = False) -> dict[str, Any]:
    if not google_client_id:
        raise ApiError("INTERNAL", "Missing GOOGLE_CLIENT_ID")
    if not id_token or not isinstance(id_token, str):
        raise ApiError("BAD_REQUEST", "Missing idToken")

    if allow_test_tokens and id_token.startswith("TEST:"):
        email = id_token.split(":", 1)[1].strip().lower()
        if not email:
            raise ApiError("AUTH_INVALID", "Invalid test token")
        return {"email": email, "fullName": "Test User", "sub": "TEST"}

    try:
        payload = google_id_token.verify_oauth2_token(id_token, google_requests.Request(), audience=google_client_id)
    except ValueError:
        raise ApiError("AUTH_INVALID", "Invalid Google ID token")

    if payload.get("aud") != google_client_id:
        raise ApiError("AUTH_INVALID", "Google token audience mismatch")
    if str(payload.get("email_verified", "")).lower() != "true":
        raise ApiError("AUTH_INVALID", "Google email not verified")

    return {
        "email": str(payload.get("email", "")).lower(),
        "fullName": payload.get("name", "") or "",
        "sub": payload.get("sub", "") or "",
    }


def issue_session_token(db, *, user_id: str, email: str, role: str, session_ttl_minutes: int) -> dict[str, str]:
    token = "ST-" + new_uuid().replace("-", "") + new_uuid().replace("-", "")
    now = datetime.now(timezone.utc)
    issued_at = to_iso_utc(now)
    expires_at = to_iso_utc(now + timedelta(minutes=session_ttl_minutes))

    db.add(
        DbSession(
            sessionId="SES-" + new_uuid(),
            tokenHash=sha256_hex(token),
            userId=str(user_id or ""),
            email=str(email or ""),
            role=normalize_role(role),
            issuedAt=issued_at,
            expiresAt=expires_at,
            lastSeenAt=issued_at,
            revokedAt="",
            revokedBy="",
        )
    )
    return {"sessionToken": token, "expiresAt": expires_at}


def revoke_session_token(db, token: Any, *, revoked_by: str) -> bool:
    if not token or not isinstance(token, str):
        return False
    ses = db.execute(select(DbSession).where(DbSession.tokenHash == sha256_hex(token))).scalar_one_or_none()
    if not ses or ses.revokedAt:
        return False
    ses.revokedAt = iso_utc_now()
    ses.revokedBy = str(revoked_by or "")
    return True


def revoke_user_sessions(db, *, user_id: str, revoked_by: str) -> int:
    """Revoke every active session of a user (role change, deactivation)."""

    uid = str(user_id or "").strip()
    if not uid:
        return 0
    now = iso_utc_now()
    rows = db.execute(select(DbSession).where(DbSession.userId == uid).where(DbSession.revokedAt == "")).scalars().all()
    for s in rows:
        s.revokedAt = now
        s.revokedBy = str(revoked_by or "")
    return len(rows)


_INVALID = AuthContext(valid=False, userId="", email="", role="", expiresAt="")


def validate_session_token(db, token: Any) -> AuthContext:
    if not token or not isinstance(token, str):
        return _INVALID

    ses = db.execute(select(DbSession).where(DbSession.tokenHash == sha256_hex(token))).scalar_one_or_none()
    if not ses or ses.revokedAt:
        return _INVALID

    now = datetime.now(timezone.utc)
    exp_dt = parse_datetime_maybe(ses.expiresAt)
    if exp_dt and exp_dt < now:
        return _INVALID

    user = db.execute(select(User).where(User.userId == ses.userId)).scalar_one_or_none()
    if not user:
        return _INVALID
    if str(user.status or "").upper().strip() != "ACTIVE":
        raise ApiError("FORBIDDEN", "User is disabled", http_status=403)

    # Update lastSeenAt at most once per interval.
    try:
        interval_s = int(str(os.getenv("SESSION_LAST_SEEN_UPDATE_SECONDS", "300") or "300"))
    except ValueError:
        interval_s = 300
    last_dt = parse_datetime_maybe(ses.lastSeenAt)
    if interval_s <= 0 or not last_dt or (now - last_dt).total_seconds() >= interval_s:
        ses.lastSeenAt = iso_utc_now()

    return AuthContext(
        valid=True,
        userId=str(ses.userId or ""),
        email=str(ses.email or ""),
        role=normalize_role(ses.role),
        expiresAt=str(ses.expiresAt or ""),
    )


def get_permission_rule(db, perm_type: str, perm_key: str) -> Optional[dict[str, Any]]:
    perm_type_u = str(perm_type or "").upper().strip()
    perm_key_u = str(perm_key or "").upper().strip()
    if not perm_type_u or not perm_key_u:
        return None

    cache_key = f"{_RBAC_RULE_PREFIX}{perm_type_u}:{perm_key_u}"
    cached = cache_get(cache_key)
    if cached is not MISSING:
        return cached

    row = (
        db.execute(select(Permission).where(Permission.permType == perm_type_u).where(Permission.permKey == perm_key_u))
        .scalars()
        .first()
    )
    out = None
    if row:
        out = {"enabled": bool(row.enabled), "roles": parse_roles_csv(row.rolesCsv or "")}
    cache_set(cache_key, out)
    return out


def _roles_index(db) -> dict[str, dict[str, Any]]:
    def _load() -> dict[str, dict[str, Any]]:
        rows = db.execute(select(Role)).scalars().all()
        if not rows:
            return {rc: {"roleCode": rc, "status": "ACTIVE", "permissions": None} for rc in ROLES}
        out: dict[str, dict[str, Any]] = {}
        for r in rows:
            code = normalize_role(r.roleCode)
            if code:
                out[code] = {
                    "roleCode": code,
                    "status": str(r.status or "ACTIVE").upper(),
                    "permissions": safe_json_load(r.permissionsJson, None),
                }
        return out

    return cache_get_or_set(_RBAC_ROLES_INDEX_KEY, _load)


def is_role_active(db, role: str) -> bool:
    it = _roles_index(db).get(normalize_role(role))
    return bool(it) and str(it.get("status", "")).upper() == "ACTIVE"


def assert_permission(db, role: str, action: str) -> None:
    role_u = normalize_role(role)
    action_u = str(action or "").upper().strip()

    if is_public_action(action_u):
        return

    allowed_static = STATIC_RBAC_PERMISSIONS.get(action_u)
    rule = get_permission_rule(db, "ACTION", action_u)
    has_dyn = bool(rule and rule.get("enabled") is True)

    if not allowed_static and not has_dyn:
        raise ApiError("BAD_REQUEST", f"Unknown action: {action_u}")

    if not role_u or role_u == "PUBLIC":
        raise ApiError("AUTH_INVALID", "Login required")
    if not is_role_active(db, role_u):
        raise ApiError("FORBIDDEN", f"Inactive or unknown role: {role_u}", http_status=403)

    if action_u in SESSION_ACTIONS:
        return

    if has_dyn:
        roles = rule.get("roles") or []
        allowed = "PUBLIC" in roles or role_u in roles
    else:
        allowed = role_u in (allowed_static or [])

    if not allowed:
        raise ApiError("FORBIDDEN", f"Not allowed for role: {role_u}", http_status=403)


def permissions_for_role(db, role: str) -> dict[str, Any]:
    """Action keys the role may call (dynamic rules first, static map as fallback)."""

    role_u = normalize_role(role)
    if not role_u:
        raise ApiError("AUTH_INVALID", "Login required")

    def _load() -> dict[str, Any]:
        action_keys: set[str] = set()
        overridden: set[str] = set()
        rows = db.execute(select(Permission).where(Permission.permType == "ACTION")).scalars().all()
        for row in rows:
            key = str(row.permKey or "").upper().strip()
            if not key or not row.enabled:
                continue
            overridden.add(key)
            roles = parse_roles_csv(row.rolesCsv or "")
            if role_u in roles or "PUBLIC" in roles:
                action_keys.add(key)

        for key, roles in STATIC_RBAC_PERMISSIONS.items():
            if key not in overridden and ("PUBLIC" in roles or role_u in roles):
                action_keys.add(key)

        return {"role": role_u, "actionKeys": sorted(action_keys)}

    return cache_get_or_set(f"{_RBAC_PERMS_FOR_ROLE_PREFIX}{role_u}", _load)


def capabilities_for_user(db, auth: AuthContext) -> Permissions:
    """Module/action capabilities: user override, then role permissions, then role defaults."""

    role_u = normalize_role(auth.role)

    def _load() -> Permissions:
        role_info = _roles_index(db).get(role_u) or {}
        user = db.execute(select(User).where(User.userId == auth.userId)).scalar_one_or_none()
        explicit = safe_json_load(user.permissionsJson, None) if user else None
        return resolve_permissions(role_u, role_info.get("permissions"), explicit)

    return cache_get_or_set(f"{_CAPABILITIES_PREFIX}{auth.userId}:{role_u}", _load)


def role_or_public(auth: Optional[AuthContext]) -> str:
    if not auth or not auth.valid:
        return "PUBLIC"
    return normalize_role(auth.role) or "PUBLIC"
