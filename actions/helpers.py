from __future__ import annotations

from typing import Any, Optional

from flask import g, has_request_context
from sqlalchemy import select

from models import AuditLog, IdCounter, Setting
from recruitment.rounds import Actor
from utils import ApiError, AuthContext, iso_utc_now, new_uuid, safe_json_string


def current_request_id() -> str:
    if has_request_context():
        return str(getattr(g, "request_id", "") or "")
    return ""


def append_audit(
    db,
    *,
    entityType: str,
    entityId: str,
    action: str,
    fromState: str = "",
    toState: str = "",
    stageTag: str = "",
    remark: str = "",
    actor: Optional[AuthContext] = None,
    at: str = "",
    meta: Any = None,
) -> AuditLog:
    row = AuditLog(
        logId="LOG-" + new_uuid(),
        entityType=str(entityType or ""),
        entityId=str(entityId or ""),
        action=str(action or ""),
        fromState=str(fromState or ""),
        toState=str(toState or ""),
        stageTag=str(stageTag or ""),
        remark=str(remark or ""),
        actorUserId=str(actor.userId if actor else ""),
        actorRole=str(actor.role if actor else ""),
        actorEmail=str(actor.email if actor else ""),
        at=at or iso_utc_now(),
        correlationId=current_request_id(),
        metaJson=safe_json_string(meta, "{}") if meta is not None else "",
    )
    db.add(row)
    return row


def next_prefixed_id(db, key: str, prefix: str, *, width: int = 4) -> str:
    """Sequential human-readable ids (`EMP-0001`) backed by the id_counters table."""

    counter = db.execute(select(IdCounter).where(IdCounter.key == key).with_for_update(of=IdCounter)).scalar_one_or_none()
    if not counter:
        counter = IdCounter(key=key, nextValue=1)
        db.add(counter)
        db.flush()
    n = int(counter.nextValue or 1)
    counter.nextValue = n + 1
    return f"{prefix}{str(n).zfill(width)}"


def get_setting(db, key: str, default: str = "") -> str:
    row = db.execute(select(Setting).where(Setting.key == key)).scalar_one_or_none()
    if not row:
        return default
    return str(row.value or "")


def setting_bool(db, key: str, default: bool) -> bool:
    raw = get_setting(db, key, "").strip().lower()
    if not raw:
        return default
    return raw in {"1", "true", "yes", "y", "on"}


def setting_int(db, key: str, default: int) -> int:
    raw = get_setting(db, key, "").strip()
    try:
        return int(raw) if raw else default
    except ValueError:
        return default


def clamp_int(value: Any, default: int, *, lo: int, hi: int) -> int:
    try:
        n = int(value)
    except (TypeError, ValueError):
        n = default
    return max(lo, min(hi, n))


def require_str(data: dict, key: str, *, label: str = "") -> str:
    s = str((data or {}).get(key) or "").strip()
    if not s:
        raise ApiError("BAD_REQUEST", f"Missing {label or key}")
    return s


def parse_version(data: dict) -> Optional[int]:
    raw = (data or {}).get("version")
    if raw is None or raw == "":
        return None
    try:
        return int(raw)
    except (TypeError, ValueError):
        raise ApiError("BAD_REQUEST", "version must be an integer")


def actor_from_auth(auth: Optional[AuthContext]) -> Actor:
    if not auth or not auth.valid:
        raise ApiError("AUTH_INVALID", "Login required")
    return Actor(user_id=str(auth.userId or ""), role=str(auth.role or ""), email=str(auth.email or ""))


def actor_id(auth: Optional[AuthContext]) -> str:
    if not auth:
        return ""
    return str(auth.userId or auth.email or "")
