from __future__ import annotations

from sqlalchemy import func, select

from actions.helpers import append_audit
from auth import (
    capabilities_for_user,
    issue_session_token,
    permissions_for_role,
    revoke_session_token,
    verify_google_id_token,
)
from models import User
from recruitment.capabilities import serialize_permissions
from utils import ApiError, AuthContext, iso_utc_now, normalize_role


def _find_user_by_email(db, email: str):
    e = str(email or "").strip().lower()
    if not e:
        return None
    return db.execute(select(User).where(func.lower(User.email) == e)).scalars().first()


def _me(user: User) -> dict:
    return {
        "userId": user.userId,
        "email": user.email,
        "fullName": user.fullName or "",
        "role": normalize_role(user.role),
        "employeeId": user.employeeId or "",
    }


def login_exchange(data, auth: AuthContext | None, db, cfg):
    id_token = (data or {}).get("idToken")
    google_user = verify_google_id_token(
        id_token,
        google_client_id=cfg.GOOGLE_CLIENT_ID,
        allow_test_tokens=bool(cfg.AUTH_ALLOW_TEST_TOKENS),
    )

    email = str(google_user.get("email") or "").strip().lower()
    user = _find_user_by_email(db, email)
    if not user:
        raise ApiError("AUTH_INVALID", "User not found in Users")
    if str(user.status or "").upper() != "ACTIVE":
        raise ApiError("AUTH_INVALID", "User is disabled")

    if not user.fullName and google_user.get("fullName"):
        user.fullName = str(google_user.get("fullName") or "")
    user.lastLoginAt = iso_utc_now()

    ses = issue_session_token(
        db,
        user_id=user.userId,
        email=user.email,
        role=user.role,
        session_ttl_minutes=cfg.SESSION_TTL_MINUTES,
    )

    append_audit(
        db,
        entityType="AUTH",
        entityId=str(user.userId),
        action="LOGIN_EXCHANGE",
        stageTag="AUTH_LOGIN",
        actor=AuthContext(valid=True, userId=user.userId, email=user.email, role=normalize_role(user.role), expiresAt=ses["expiresAt"]),
    )

    return {"sessionToken": ses["sessionToken"], "expiresAt": ses["expiresAt"], "me": _me(user)}


def session_validate(data, auth: AuthContext | None, db, cfg):
    if not auth or not auth.valid:
        raise ApiError("AUTH_INVALID", "Invalid or expired session")
    return {"valid": True, "userId": auth.userId, "email": auth.email, "role": auth.role, "expiresAt": auth.expiresAt}


def get_me(data, auth: AuthContext | None, db, cfg):
    if not auth or not auth.valid:
        raise ApiError("AUTH_INVALID", "Login required")
    user = db.execute(select(User).where(User.userId == auth.userId)).scalar_one_or_none()
    if not user:
        raise ApiError("NOT_FOUND", "User not found")
    return {"me": _me(user), "expiresAt": auth.expiresAt}


def my_permissions_get(data, auth: AuthContext | None, db, cfg):
    if not auth or not auth.valid:
        raise ApiError("AUTH_INVALID", "Login required")
    out = dict(permissions_for_role(db, auth.role))
    out["capabilities"] = serialize_permissions(capabilities_for_user(db, auth))
    return out


def logout(data, auth: AuthContext | None, db, cfg):
    if not auth or not auth.valid:
        raise ApiError("AUTH_INVALID", "Login required")
    token = (data or {}).get("_sessionToken")
    revoked = revoke_session_token(db, token, revoked_by=auth.userId)
    append_audit(db, entityType="AUTH", entityId=auth.userId, action="LOGOUT", stageTag="AUTH_LOGOUT", actor=auth)
    return {"loggedOut": True, "revoked": revoked}
