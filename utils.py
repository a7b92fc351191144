from __future__ import annotations

import hashlib
import json
import re
import threading
import time
import uuid
from collections import deque
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any, Optional
from zoneinfo import ZoneInfo

from flask import jsonify


class ApiError(Exception):
    def __init__(self, code: str, message: str, http_status: int = 200, details: Any = None):
        super().__init__(message)
        self.code = str(code or "INTERNAL")
        self.message = str(message or "")
        self.http_status = int(http_status or 200)
        self.details = details


@dataclass
class AuthContext:
    valid: bool
    userId: str
    email: str
    role: str
    expiresAt: str


SYSTEM_AUTH = AuthContext(valid=True, userId="SYSTEM", email="SYSTEM", role="ADMIN", expiresAt="")


def ok(data: Any, http_status: int = 200):
    return jsonify({"ok": True, "data": data}), http_status


def err(code: str, message: str, http_status: int = 200, details: Any = None):
    body: dict[str, Any] = {"ok": False, "error": {"code": code, "message": message}}
    if details is not None:
        body["error"]["details"] = details
    return jsonify(body), http_status


def iso_utc_now() -> str:
    return to_iso_utc(datetime.now(timezone.utc))


def to_iso_utc(dt: datetime) -> str:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    dt = dt.astimezone(timezone.utc)
    dt = dt.replace(microsecond=(dt.microsecond // 1000) * 1000)
    return dt.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_datetime_maybe(value: Any, *, app_timezone: str = "UTC") -> Optional[datetime]:
    """
    Accepts ISO timestamps (with or without offset) and plain YYYY-MM-DD dates.
    Naive values are interpreted in `app_timezone`.
    """

    s = str(value or "").strip()
    if not s:
        return None
    try:
        tz = ZoneInfo(app_timezone)
    except Exception:
        tz = timezone.utc

    try:
        if re.fullmatch(r"\d{4}-\d{2}-\d{2}", s):
            d = date.fromisoformat(s)
            return datetime(d.year, d.month, d.day, tzinfo=tz)
        dt = datetime.fromisoformat(s.replace("Z", "+00:00"))
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=tz)
    return dt


def parse_ymd(value: Any) -> Optional[date]:
    s = str(value or "").strip()[:10]
    if not s:
        return None
    try:
        return date.fromisoformat(s)
    except ValueError:
        return None


def new_uuid() -> str:
    return str(uuid.uuid4())


def sha256_hex(value: str) -> str:
    return hashlib.sha256(str(value or "").encode("utf-8")).hexdigest()


def now_monotonic() -> float:
    return time.monotonic()


def normalize_role(role: Any) -> str:
    """`"Senior HR"` -> `SENIOR_HR`, `"super-admin"` -> `SUPER_ADMIN`."""
    s = str(role or "").strip().upper()
    if not s:
        return ""
    return re.sub(r"[\s\-]+", "_", s)


def parse_roles_csv(value: Any) -> list[str]:
    out: list[str] = []
    for part in str(value or "").split(","):
        r = normalize_role(part)
        if r and r not in out:
            out.append(r)
    return out


def parse_json_body(raw: str) -> dict[str, Any]:
    s = str(raw or "").strip()
    if not s:
        raise ApiError("BAD_REQUEST", "Empty body")
    try:
        body = json.loads(s)
    except json.JSONDecodeError:
        raise ApiError("BAD_REQUEST", "Invalid JSON body")
    if not isinstance(body, dict):
        raise ApiError("BAD_REQUEST", "JSON body must be an object")
    return body


def safe_json_string(value: Any, default: str = "{}") -> str:
    try:
        return json.dumps(value, ensure_ascii=False, separators=(",", ":"))
    except (TypeError, ValueError):
        return default


def safe_json_load(raw: Any, default: Any) -> Any:
    s = str(raw or "").strip()
    if not s:
        return default
    try:
        val = json.loads(s)
    except json.JSONDecodeError:
        return default
    if default is not None and not isinstance(val, type(default)):
        return default
    return val


_REDACT_KEYS = {"token", "idtoken", "sessiontoken", "password", "authorization", "secret"}


def redact_for_audit(data: Any, _depth: int = 0) -> Any:
    if _depth > 6:
        return "[...]"
    if isinstance(data, dict):
        out = {}
        for k, v in data.items():
            if str(k).lower().replace("_", "") in _REDACT_KEYS:
                out[k] = "[REDACTED]"
            else:
                out[k] = redact_for_audit(v, _depth + 1)
        return out
    if isinstance(data, list):
        return [redact_for_audit(v, _depth + 1) for v in data[:50]]
    if isinstance(data, str) and len(data) > 500:
        return data[:500] + "..."
    return data


_RATE_UNITS = {"second": 1, "minute": 60, "hour": 3600, "day": 86400}


def _parse_rate(spec: str) -> tuple[int, int]:
    m = re.fullmatch(r"\s*(\d+)\s*(?:per|/)\s*(second|minute|hour|day)s?\s*", str(spec or "").lower())
    if not m:
        return 300, 60
    return int(m.group(1)), _RATE_UNITS[m.group(2)]


class SimpleRateLimiter:
    """Sliding-window limiter keyed by caller; in-process only."""

    def __init__(self):
        self._hits: dict[str, deque] = {}
        self._lock = threading.Lock()

    def check(self, key: str, spec: str) -> None:
        limit, window = _parse_rate(spec)
        now = now_monotonic()
        with self._lock:
            q = self._hits.setdefault(key, deque())
            while q and now - q[0] >= window:
                q.popleft()
            if len(q) >= limit:
                raise ApiError("RATE_LIMITED", "Too many requests", http_status=429)
            q.append(now)
