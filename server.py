from __future__ import annotations

import json
import logging
import os
import re
import threading
import time
from datetime import datetime, timedelta, timezone
from typing import Any

from dotenv import load_dotenv
from flask import Blueprint, Flask, current_app, g, request
from flask_cors import CORS
from sqlalchemy import select
from sqlalchemy.exc import DBAPIError
from zoneinfo import ZoneInfo

from actions import dispatch
from auth import ROLE_NAMES, ROLES, STATIC_RBAC_PERMISSIONS, assert_permission, is_public_action, role_or_public, validate_session_token
from config import Config
from db import SessionLocal, init_engine, ping_db
from models import AuditLog, Permission, Role, Setting
from utils import SYSTEM_AUTH, ApiError, SimpleRateLimiter, err, iso_utc_now, now_monotonic, ok, parse_json_body, redact_for_audit


rest_api = Blueprint("rest_api", __name__)

_DEFAULT_SETTINGS = {
    "ONBOARDING_REQUIRES_BGV_CLEARED": ("true", "bool"),
    "OFFER_DEFAULT_VALIDITY_DAYS": ("7", "int"),
}


def _configure_logging(level: str):
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )


def _ping_redis() -> bool:
    redis_url = os.getenv("REDIS_URL", "")
    if not redis_url:
        return True  # Redis not configured, skip check
    try:
        import redis

        r = redis.from_url(redis_url, socket_connect_timeout=2)
        r.ping()
        return True
    except Exception:
        return False


def _bearer_token() -> str:
    authz = str(request.headers.get("Authorization") or "").strip()
    if authz.lower().startswith("bearer "):
        return authz.split(" ", 1)[1].strip()
    return str(request.headers.get("X-Session-Token") or "").strip()


def _rest_token() -> str:
    return (
        _bearer_token()
        or str(request.args.get("token") or "").strip()
        or str((request.get_json(silent=True) or {}).get("token") or "").strip()
    )


def _audit_call(db, action: str, auth_ctx, data: Any, stage_tag: str) -> None:
    db.add(
        AuditLog(
            logId=f"LOG-{os.urandom(16).hex()}",
            entityType="API",
            entityId=str(auth_ctx.userId or auth_ctx.email or "") if auth_ctx else "PUBLIC",
            action=action,
            fromState="",
            toState="",
            stageTag=stage_tag,
            remark="",
            actorUserId=str(auth_ctx.userId) if auth_ctx else "PUBLIC",
            actorRole=str(auth_ctx.role) if auth_ctx else "PUBLIC",
            actorEmail=str(getattr(auth_ctx, "email", "") or "") if auth_ctx else "",
            at=iso_utc_now(),
            correlationId=str(getattr(g, "request_id", "") or ""),
            metaJson=json.dumps({"data": redact_for_audit(data or {})}),
        )
    )


def _error_response(e: ApiError):
    return err(e.code, e.message, http_status=e.http_status, details=e.details)[0], e.http_status


def _write_error_audit(cfg: Config, action: str, auth_ctx, data: Any, err_obj: ApiError):
    db2 = None
    try:
        db2 = SessionLocal()
        db2.add(
            AuditLog(
                logId=f"LOG-{os.urandom(16).hex()}",
                entityType="API",
                entityId=str(auth_ctx.userId or auth_ctx.email or "") if auth_ctx else "PUBLIC",
                action=str(action or "").upper() or "UNKNOWN",
                fromState="",
                toState="",
                stageTag="API_ERROR",
                remark=f"{err_obj.code}: {err_obj.message}",
                actorUserId=str(auth_ctx.userId) if auth_ctx else "PUBLIC",
                actorRole=str(auth_ctx.role) if auth_ctx else "PUBLIC",
                actorEmail=str(getattr(auth_ctx, "email", "") or "") if auth_ctx else "",
                at=iso_utc_now(),
                correlationId=str(getattr(g, "request_id", "") or ""),
                metaJson=json.dumps(
                    {
                        "data": redact_for_audit(data or {}),
                        "error": {"code": err_obj.code, "message": err_obj.message},
                    }
                ),
            )
        )
        db2.commit()
    except Exception:
        logging.getLogger("api").warning("error audit write failed action=%s", action)
    finally:
        if db2 is not None:
            db2.close()


def _internal_error(cfg: Config, exc: Exception) -> ApiError:
    request_id = str(getattr(g, "request_id", "") or "").strip()
    if isinstance(exc, DBAPIError):
        orig = getattr(exc, "orig", None)
        detail = re.sub(r"\s+", " ", str(orig) if orig else "").strip()[:300]
        label = "Database error"
    else:
        detail = type(exc).__name__
        label = "Unexpected error"

    msg = label if cfg.IS_PRODUCTION or not detail else f"{label}: {detail}"
    if request_id:
        msg = f"{msg} (requestId: {request_id})"
    return ApiError("INTERNAL", msg, http_status=500)


def _rest_handle(action: str, data: dict, *, allow_internal: bool = False):
    cfg = current_app.config["CFG"]
    token = _rest_token()
    action_u = str(action or "").upper().strip()

    db = None
    auth_ctx = None
    try:
        db = SessionLocal()

        internal = str(request.headers.get("X-Internal-Token") or "").strip()
        if allow_internal and cfg.INTERNAL_CRON_TOKEN and internal == cfg.INTERNAL_CRON_TOKEN:
            auth_ctx = SYSTEM_AUTH
        else:
            auth_ctx = validate_session_token(db, token)

        if not auth_ctx or not auth_ctx.valid:
            raise ApiError("AUTH_INVALID", "Invalid or expired session", http_status=401)

        assert_permission(db, role_or_public(auth_ctx), action_u)
        out = dispatch(action_u, data or {}, auth_ctx, db, cfg)
        _audit_call(db, action_u, auth_ctx, data, "API_CALL_REST")
        db.commit()
        return ok(out)[0]
    except ApiError as e:
        if db is not None:
            db.rollback()
        _write_error_audit(cfg, action_u, auth_ctx, data, e)
        return _error_response(e)
    except Exception as e:
        if db is not None:
            db.rollback()
        api_err = _internal_error(cfg, e)
        _write_error_audit(cfg, action_u, auth_ctx, data, api_err)
        logging.getLogger("api").exception("rest action=%s", action_u)
        return _error_response(api_err)
    finally:
        if db is not None:
            db.close()


@rest_api.get("/api/candidates")
def rest_candidate_list():
    return _rest_handle("CANDIDATE_LIST", request.args.to_dict())


@rest_api.get("/api/candidates/board")
def rest_candidate_board():
    return _rest_handle("CANDIDATE_BOARD_GET", {"jobId": request.args.get("jobId") or ""})


@rest_api.get("/api/candidates/<candidate_id>")
def rest_candidate_get(candidate_id: str):
    return _rest_handle("CANDIDATE_GET", {"candidateId": candidate_id})


@rest_api.get("/api/candidates/<candidate_id>/action")
def rest_candidate_action(candidate_id: str):
    flags = {k: str(request.args.get(k) or "").lower() in {"1", "true", "yes"} for k in ("readOnly", "convertToStaff")}
    return _rest_handle("CANDIDATE_ACTION_GET", {"candidateId": candidate_id, **flags})


@rest_api.post("/api/candidates/<candidate_id>/reject")
def rest_candidate_reject(candidate_id: str):
    body = request.get_json(silent=True) or {}
    return _rest_handle(
        "CANDIDATE_REJECT",
        {"candidateId": candidate_id, "reason": body.get("reason") or "", "version": body.get("version")},
    )


@rest_api.post("/api/interviews/<interview_id>/submit")
def rest_interview_submit(interview_id: str):
    body = request.get_json(silent=True) or {}
    data = {k: v for k, v in body.items() if k != "token"}
    data["interviewId"] = interview_id
    return _rest_handle("INTERVIEW_SUBMIT", data)


@rest_api.post("/api/offers/<offer_id>/move-to-onboarding")
def rest_move_to_onboarding(offer_id: str):
    body = request.get_json(silent=True) or {}
    return _rest_handle("MOVE_TO_ONBOARDING", {"offerId": offer_id, "version": body.get("version")})


@rest_api.post("/api/jobs/expire-offers")
def rest_expire_offers():
    body = request.get_json(silent=True) or {}
    return _rest_handle("OFFER_EXPIRE_SWEEP", {"today": body.get("today") or ""}, allow_internal=True)


def _maybe_start_internal_scheduler(cfg: Config):
    """
    Daily offer-expiry sweep in APP_TIMEZONE.

    Production recommendation: run the Celery beat task `jobs.offer_expiry.expire_offers_task`,
    or call `POST /api/jobs/expire-offers` with `X-Internal-Token` = `INTERNAL_CRON_TOKEN`.

    For simple deployments you can enable the in-process scheduler:
    - ENABLE_SCHEDULER=1
    - SCHEDULER_OFFER_EXPIRY_HOUR=0
    - SCHEDULER_OFFER_EXPIRY_MINUTE=5
    """

    if str(os.getenv("ENABLE_SCHEDULER", "0") or "").strip() != "1":
        return

    try:
        hour = int(os.getenv("SCHEDULER_OFFER_EXPIRY_HOUR", "0"))
        minute = int(os.getenv("SCHEDULER_OFFER_EXPIRY_MINUTE", "5"))
    except ValueError:
        hour, minute = 0, 5

    hour = max(0, min(23, hour))
    minute = max(0, min(59, minute))

    try:
        tz = ZoneInfo(cfg.APP_TIMEZONE)
    except Exception:
        tz = timezone.utc

    def _loop():
        log = logging.getLogger("scheduler")
        while True:
            now_local = datetime.now(tz)
            next_run = datetime(now_local.year, now_local.month, now_local.day, hour, minute, 0, tzinfo=tz)
            if next_run <= now_local:
                next_run = next_run + timedelta(days=1)
            time.sleep(max(1.0, (next_run - now_local).total_seconds()))

            db = None
            try:
                db = SessionLocal()
                res = dispatch("OFFER_EXPIRE_SWEEP", {}, SYSTEM_AUTH, db, cfg)
                db.commit()
                log.info("OFFER_EXPIRE_SWEEP expired=%s skipped=%s", len(res["expired"]), len(res["skipped"]))
            except Exception:
                if db is not None:
                    db.rollback()
                log.exception("OFFER_EXPIRE_SWEEP failed")
            finally:
                if db is not None:
                    db.close()

    t = threading.Thread(target=_loop, name="scheduler", daemon=True)
    t.start()


def _seed_roles_and_permissions(db):
    now = iso_utc_now()
    actor = "SYSTEM_INIT"

    existing_roles = {str(r.roleCode or "").upper().strip() for r in db.execute(select(Role)).scalars().all()}
    for code in ROLES:
        if code in existing_roles:
            continue
        db.add(
            Role(
                roleCode=code,
                roleName=ROLE_NAMES.get(code, code),
                permissionsJson="",
                status="ACTIVE",
                createdAt=now,
                createdBy=actor,
                updatedAt=now,
                updatedBy=actor,
            )
        )

    # Only missing keys are inserted so admin-edited rules survive restarts.
    existing_perm = {
        (str(p.permType or "").upper().strip(), str(p.permKey or "").upper().strip())
        for p in db.execute(select(Permission)).scalars().all()
    }
    for action, roles in STATIC_RBAC_PERMISSIONS.items():
        key = action.upper()
        if ("ACTION", key) in existing_perm:
            continue
        db.add(
            Permission(
                permType="ACTION",
                permKey=key,
                rolesCsv=",".join(roles),
                enabled=True,
                updatedAt=now,
                updatedBy=actor,
            )
        )


def _seed_settings(db):
    now = iso_utc_now()
    existing = {str(s.key) for s in db.execute(select(Setting)).scalars().all()}
    for key, (value, typ) in _DEFAULT_SETTINGS.items():
        if key in existing:
            continue
        db.add(Setting(key=key, value=value, type=typ, scope="GLOBAL", updatedAt=now, updatedBy="SYSTEM_INIT"))


def create_app() -> Flask:
    load_dotenv()
    cfg = Config()
    cfg.validate()
    _configure_logging(cfg.LOG_LEVEL)

    engine = init_engine(cfg.DATABASE_URL)

    from models import Base  # imported after engine init

    Base.metadata.create_all(bind=engine)

    app = Flask(__name__)
    app.config["CFG"] = cfg

    CORS(app, origins=cfg.ALLOWED_ORIGINS, supports_credentials=False)
    app.register_blueprint(rest_api)

    limiter = SimpleRateLimiter()

    # Seed roles/permissions/settings at startup (idempotent).
    db0 = SessionLocal()
    try:
        _seed_roles_and_permissions(db0)
        _seed_settings(db0)
        db0.commit()
    finally:
        db0.close()

    @app.before_request
    def _before():
        g.request_id = os.urandom(8).hex()
        g.start_ts = now_monotonic()

    @app.after_request
    def _after(resp):
        resp.headers["X-Request-ID"] = str(getattr(g, "request_id", "") or "")
        resp.headers.setdefault("X-Content-Type-Options", "nosniff")
        resp.headers.setdefault("X-Frame-Options", "DENY")
        resp.headers.setdefault("Referrer-Policy", "no-referrer")
        resp.headers.setdefault("Cache-Control", "no-store")
        return resp

    @app.get("/health")
    def health():
        from cache_layer import cache_stats
        from db import get_pool_stats

        return ok({"status": "ok", "version": cfg.APP_VERSION, "db_pool": get_pool_stats(), "cache": cache_stats()})[0]

    @app.get("/ready")
    def ready():
        """Readiness check for load balancers: database and Redis connectivity."""
        db_ok = ping_db()
        redis_ok = _ping_redis()
        all_ok = db_ok and redis_ok
        body = {
            "status": "ok" if all_ok else "degraded",
            "time": iso_utc_now(),
            "version": cfg.APP_VERSION,
            "checks": {
                "db": "ok" if db_ok else "error",
                "redis": "ok" if redis_ok else "error",
            },
        }
        return body, 200 if all_ok else 503

    @app.errorhandler(404)
    def not_found(_e):
        return err("NOT_FOUND", f"Unknown endpoint: {request.path}. Use POST /api for actions.", http_status=404)

    @app.errorhandler(405)
    def method_not_allowed(_e):
        return err("BAD_REQUEST", "Method not allowed. Use POST /api for actions.", http_status=405)

    @app.post("/api")
    def api_route():
        cfg2: Config = app.config["CFG"]
        raw = request.get_data(as_text=True)
        db = None
        auth_ctx = None
        action_u = ""
        data: Any = {}

        try:
            body = parse_json_body(raw)
            action_u = str(body.get("action") or "").upper().strip()
            token = body.get("token") or _bearer_token()
            data = body.get("data") or {}
            if not isinstance(data, dict):
                raise ApiError("BAD_REQUEST", "data must be an object")

            if not action_u:
                raise ApiError("BAD_REQUEST", "Missing action")

            ip = request.headers.get("X-Forwarded-For", request.remote_addr or "")
            if action_u == "LOGIN_EXCHANGE":
                limiter.check(f"{ip}:LOGIN", cfg2.RATE_LIMIT_LOGIN)
            else:
                # Generous global limit plus a per-action limit so normal SPA usage is not blocked.
                limiter.check(f"{ip}:GLOBAL", cfg2.RATE_LIMIT_GLOBAL)
                limiter.check(f"{ip}:API:{action_u}", cfg2.RATE_LIMIT_DEFAULT)

            db = SessionLocal()

            if not is_public_action(action_u):
                auth_ctx = validate_session_token(db, token)
                if not auth_ctx.valid:
                    raise ApiError("AUTH_INVALID", "Invalid or expired session")
            elif token:
                maybe = validate_session_token(db, token)
                auth_ctx = maybe if maybe.valid else None

            role = role_or_public(auth_ctx)
            assert_permission(db, role, action_u)

            if action_u == "LOGOUT":
                data = {**data, "_sessionToken": token}

            out = dispatch(action_u, data, auth_ctx, db, cfg2)
            _audit_call(db, action_u, auth_ctx, data, "API_CALL")
            db.commit()

            latency_ms = int((now_monotonic() - g.start_ts) * 1000)
            logging.getLogger("api").info(
                "request_id=%s action=%s user=%s role=%s latency_ms=%s",
                g.request_id,
                action_u,
                (auth_ctx.userId if auth_ctx else "PUBLIC"),
                (auth_ctx.role if auth_ctx else "PUBLIC"),
                latency_ms,
            )

            return ok(out)[0]
        except ApiError as e:
            if db is not None:
                db.rollback()
            _write_error_audit(cfg2, action_u, auth_ctx, data, e)
            return _error_response(e)
        except Exception as e:
            if db is not None:
                db.rollback()
            api_err = _internal_error(cfg2, e)
            _write_error_audit(cfg2, action_u, auth_ctx, data, api_err)
            logging.getLogger("api").exception("request_id=%s action=%s", getattr(g, "request_id", ""), action_u)
            return _error_response(api_err)
        finally:
            if db is not None:
                db.close()

    _maybe_start_internal_scheduler(cfg)
    return app


if __name__ == "__main__":
    app = create_app()
    cfg = app.config["CFG"]
    app.run(host=cfg.HOST, port=cfg.PORT)
