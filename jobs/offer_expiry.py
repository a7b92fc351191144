"""
Daily sweep that moves lapsed SENT offers to EXPIRED.
"""
from __future__ import annotations

import logging
from datetime import date
from typing import Any, Optional

from dotenv import load_dotenv

import db as db_module
from actions.offers import expire_due_offers
from config import Config
from jobs import celery_app
from utils import SYSTEM_AUTH, parse_ymd

log = logging.getLogger("jobs")


def run_offer_expiry(db, cfg: Config, *, today: Optional[date] = None) -> dict[str, Any]:
    """Expire due offers as SYSTEM; the caller owns commit/rollback."""
    res = expire_due_offers(db, cfg, auth=SYSTEM_AUTH, today=today)
    log.info("offer expiry today=%s expired=%s skipped=%s", res["today"], len(res["expired"]), len(res["skipped"]))
    return res


def _worker_config() -> Config:
    load_dotenv()
    cfg = Config()
    if db_module.engine is None:
        db_module.init_engine(cfg.DATABASE_URL)
    return cfg


@celery_app.task(bind=True, max_retries=3, default_retry_delay=30)
def expire_offers_task(self, today: str | None = None):
    """
    Celery entry point for the offer expiry sweep.

    Args:
        today: Optional YYYY-MM-DD override (defaults to today in APP_TIMEZONE)

    Returns:
        dict with the sweep date, expired offer ids and skipped offers
    """
    cfg = _worker_config()
    db = db_module.SessionLocal()
    try:
        res = run_offer_expiry(db, cfg, today=parse_ymd(today))
        db.commit()
        return {"task_id": self.request.id, **res}
    except Exception as exc:
        db.rollback()
        log.exception("offer expiry failed task_id=%s", self.request.id)
        raise self.retry(exc=exc)
    finally:
        db.close()
