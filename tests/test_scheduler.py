"""
Sweep job tests. The jobs are run directly; the BackgroundScheduler itself
is not started.
"""

from datetime import timedelta

from gallery_backend.db import utcnow
from gallery_backend.models import AuthToken, Subscription
from gallery_backend.scheduler import session_sweep_job, subscription_sweep_job, get_scheduler_status


def test_session_sweep_purges_expired(db, session_factory, make_user):
    user = make_user()
    now = utcnow()
    db.add(AuthToken(user_id=user.id, access_token="a", refresh_token="r",
                     expires_at=now - timedelta(days=2), refresh_expires_at=now - timedelta(days=1)))
    db.commit()

    result = session_sweep_job(session_factory)
    assert result == {"success": True, "removed": 1}
    assert db.query(AuthToken).count() == 0


def test_subscription_sweep_expires_lapsed(db, session_factory, make_user):
    user = make_user()
    now = utcnow()
    db.add(Subscription(user_id=user.id, tier="max", billing_period="monthly", status="active",
                        payment_method="alipay", expiry_date=now - timedelta(minutes=5)))
    db.commit()

    result = subscription_sweep_job(session_factory)
    assert result == {"success": True, "expired": 1}
    db.expire_all()
    assert db.query(Subscription).one().status == "expired"


def test_status_when_not_started():
    assert get_scheduler_status() == {"running": False, "jobs": []}
