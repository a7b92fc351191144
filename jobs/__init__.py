"""
Celery configuration for background jobs.

Usage:
    celery -A jobs.celery_app worker --loglevel=INFO
    celery -A jobs.celery_app beat --loglevel=INFO
"""
from __future__ import annotations

import os

from celery import Celery
from celery.schedules import crontab


def make_celery() -> Celery:
    """
    Create and configure the Celery app with a Redis broker.

    Environment variables:
        REDIS_URL: Redis connection URL (default: redis://localhost:6379/0)
        CELERY_RESULT_BACKEND: Optional separate result backend
        OFFER_EXPIRY_CRON_HOUR / OFFER_EXPIRY_CRON_MINUTE: daily sweep time in APP_TIMEZONE
    """
    redis_url = os.getenv("REDIS_URL", "") or "redis://localhost:6379/0"
    result_backend = os.getenv("CELERY_RESULT_BACKEND", redis_url)

    app = Celery(
        "recruitment",
        broker=redis_url,
        backend=result_backend,
        include=["jobs.offer_expiry"],
    )

    app.conf.update(
        task_serializer="json",
        accept_content=["json"],
        result_serializer="json",
        timezone=os.getenv("APP_TIMEZONE", "Asia/Kolkata"),
        enable_utc=True,
        # Result expiration (24 hours)
        result_expires=86400,
        task_acks_late=True,
        task_reject_on_worker_lost=True,
        worker_prefetch_multiplier=1,
        worker_concurrency=int(os.getenv("CELERY_CONCURRENCY", "2")),
        beat_schedule={
            "offer-expiry-daily": {
                "task": "jobs.offer_expiry.expire_offers_task",
                "schedule": crontab(
                    hour=os.getenv("OFFER_EXPIRY_CRON_HOUR", "0"),
                    minute=os.getenv("OFFER_EXPIRY_CRON_MINUTE", "5"),
                ),
            },
        },
    )

    return app


celery_app = make_celery()
