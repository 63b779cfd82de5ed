# gallery_backend/scheduler.py
"""
Scheduler (optional, SCHEDULER_ENABLED=true):
  - session_sweep_job: delete sessions whose refresh token has expired
  - subscription_sweep_job: mark lapsed active subscriptions as expired

Lazy checks on read already enforce both rules; the sweeps only keep the
tables tidy.

Config via .env:
  SESSION_SWEEP_INTERVAL_MIN (default 60)
  SUBSCRIPTION_SWEEP_INTERVAL_MIN (default 15)
"""

import os
import logging

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from gallery_backend import config
from gallery_backend.db import SessionLocal, utcnow
from gallery_backend.services.session_service import SessionStore
from gallery_backend.services.subscription_service import SubscriptionEngine
from gallery_backend.services.payment_service import PaymentVerifier

log = logging.getLogger("gallery_backend.scheduler")
log.setLevel(os.getenv("SCHEDULER_LOG_LEVEL", "INFO"))

_scheduler = None
_SESSION_JOB_ID = "session_sweep_job_v1"
_SUBSCRIPTION_JOB_ID = "subscription_sweep_job_v1"


# -------------------------
# Jobs
# -------------------------
def session_sweep_job(session_factory=SessionLocal):
    db = session_factory()
    try:
        removed = SessionStore().purge_expired(db, now=utcnow())
        return {"success": True, "removed": removed}
    except Exception as e:
        db.rollback()
        log.exception("session_sweep_job failed: %s", e)
        return {"success": False, "error": str(e)}
    finally:
        db.close()


def subscription_sweep_job(session_factory=SessionLocal):
    db = session_factory()
    try:
        engine = SubscriptionEngine(verifier=PaymentVerifier())
        expired = engine.expire_lapsed(db, now=utcnow())
        return {"success": True, "expired": expired}
    except Exception as e:
        db.rollback()
        log.exception("subscription_sweep_job failed: %s", e)
        return {"success": False, "error": str(e)}
    finally:
        db.close()


# -------------------------
# Scheduler lifecycle
# -------------------------
def start_scheduler():
    global _scheduler
    if _scheduler is not None:
        log.info("Scheduler already running.")
        return _scheduler

    _scheduler = BackgroundScheduler(timezone="UTC")

    _scheduler.add_job(
        func=session_sweep_job,
        trigger=IntervalTrigger(minutes=config.SESSION_SWEEP_INTERVAL_MIN),
        id=_SESSION_JOB_ID,
        name="purge expired sessions",
        replace_existing=True,
        max_instances=1,
    )

    _scheduler.add_job(
        func=subscription_sweep_job,
        trigger=IntervalTrigger(minutes=config.SUBSCRIPTION_SWEEP_INTERVAL_MIN),
        id=_SUBSCRIPTION_JOB_ID,
        name="expire lapsed subscriptions",
        replace_existing=True,
        max_instances=1,
    )

    _scheduler.start()
    log.info(
        "Scheduler started: sessions every %d min, subscriptions every %d min",
        config.SESSION_SWEEP_INTERVAL_MIN, config.SUBSCRIPTION_SWEEP_INTERVAL_MIN,
    )
    return _scheduler


def stop_scheduler():
    global _scheduler
    if _scheduler:
        _scheduler.shutdown(wait=False)
        _scheduler = None
        log.info("Scheduler stopped.")


def get_scheduler_status():
    status = {"running": False, "jobs": []}
    if _scheduler is None:
        return status
    status["running"] = True
    for job in _scheduler.get_jobs():
        status["jobs"].append({
            "id": job.id,
            "name": job.name,
            "next_run_time": job.next_run_time.isoformat() if job.next_run_time else None,
        })
    return status
