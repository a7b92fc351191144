from __future__ import annotations

from sqlalchemy import func, select

from actions.helpers import actor_id, append_audit, next_prefixed_id
from auth import ROLES, invalidate_rbac_cache, revoke_user_sessions
from models import User
from recruitment.capabilities import normalize_permissions, serialize_permissions
from utils import ApiError, AuthContext, iso_utc_now, normalize_role, safe_json_load, safe_json_string


_USER_STATUSES = {"ACTIVE", "DISABLED"}


def _serialize_user(u: User) -> dict:
    explicit = normalize_permissions(safe_json_load(u.permissionsJson, None))
    return {
        "userId": u.userId,
        "email": u.email,
        "fullName": u.fullName or "",
        "role": normalize_role(u.role),
        "status": str(u.status or "").upper(),
        "employeeId": u.employeeId or "",
        "permissions": serialize_permissions(explicit) if explicit else None,
        "lastLoginAt": u.lastLoginAt or "",
        "updatedAt": u.updatedAt or "",
    }


def users_list(data, auth: AuthContext | None, db, cfg):
    role = normalize_role((data or {}).get("role"))
    status = str((data or {}).get("status") or "").upper().strip()

    q = select(User)
    if role:
        q = q.where(User.role == role)
    if status:
        q = q.where(User.status == status)
    rows = db.execute(q.order_by(User.email)).scalars().all()
    return {"items": [_serialize_user(u) for u in rows], "total": len(rows)}


def users_upsert(data, auth: AuthContext | None, db, cfg):
    data = data or {}
    email = str(data.get("email") or "").strip().lower()
    if not email or "@" not in email:
        raise ApiError("BAD_REQUEST", "Valid email is required")

    role = normalize_role(data.get("role"))
    if role not in ROLES:
        raise ApiError("BAD_REQUEST", f"Invalid role: {data.get('role')!r}")

    status = str(data.get("status") or "ACTIVE").upper().strip()
    if status not in _USER_STATUSES:
        raise ApiError("BAD_REQUEST", f"Invalid status: {status}")

    now = iso_utc_now()
    user = db.execute(select(User).where(func.lower(User.email) == email)).scalars().first()
    created = user is None
    before_role = ""
    before_status = ""
    if created:
        user = User(
            userId=next_prefixed_id(db, "USER", "USR-"),
            email=email,
            createdAt=now,
            createdBy=actor_id(auth),
        )
        db.add(user)
    else:
        before_role = normalize_role(user.role)
        before_status = str(user.status or "").upper()

    user.fullName = str(data.get("fullName") or user.fullName or "")
    user.role = role
    user.status = status
    user.employeeId = str(data.get("employeeId") or user.employeeId or "")
    if "permissions" in data:
        perms = data.get("permissions")
        user.permissionsJson = safe_json_string(perms, "") if perms else ""
    user.updatedAt = now
    user.updatedBy = actor_id(auth)

    revoked = 0
    if not created and (before_role != role or (before_status == "ACTIVE" and status != "ACTIVE")):
        revoked = revoke_user_sessions(db, user_id=user.userId, revoked_by=actor_id(auth))

    invalidate_rbac_cache()

    append_audit(
        db,
        entityType="USER",
        entityId=user.userId,
        action="USERS_UPSERT",
        fromState=before_role,
        toState=role,
        stageTag="USER_CREATE" if created else "USER_UPDATE",
        actor=auth,
        at=now,
        meta={"status": status, "revokedSessions": revoked},
    )
    return {"user": _serialize_user(user), "created": created, "revokedSessions": revoked}
