"""
Pytest Configuration and Shared Fixtures

Every test gets its own SQLite file database; provider HTTP is always a
MagicMock so nothing reaches the network.
"""

import os
import sys
import tempfile
from datetime import datetime, timedelta
from unittest.mock import MagicMock

import pytest

# Environment must be in place before gallery_backend.config is imported
os.environ.setdefault("JWT_SECRET", "test-secret-key")
os.environ.setdefault("DATABASE_URL", f"sqlite:///{os.path.join(tempfile.gettempdir(), 'gallery_backend_test.db')}")
os.environ.setdefault("PAYMENT_STRICT_MODE", "true")
os.environ.setdefault("SCHEDULER_ENABLED", "false")

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from gallery_backend.db import init_db
from gallery_backend.models import User
from gallery_backend.services.audit_service import AuditSink
from gallery_backend.services.payment_service import PaymentVerifier, check_compliance


# ============================================================================
# CLOCK
# ============================================================================

class FrozenClock:
    """Callable clock that only moves when told to"""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def clock():
    return FrozenClock(datetime(2026, 1, 15, 12, 0, 0))


# ============================================================================
# DATABASE
# ============================================================================

@pytest.fixture
def engine(tmp_path):
    eng = create_engine(f"sqlite:///{tmp_path / 'gallery.db'}", future=True,
                        connect_args={"check_same_thread": False})
    init_db(bind=eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, future=True, expire_on_commit=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def make_user(db):
    def _make(provider="apple", provider_user_id="apple-user-0001", **fields):
        user = User(auth_provider=provider, provider_user_id=provider_user_id, **fields)
        db.add(user)
        db.commit()
        return user
    return _make


# ============================================================================
# HTTP / PROVIDER FIXTURES
# ============================================================================

def http_response(status_code=200, payload=None):
    resp = MagicMock()
    resp.status_code = status_code
    resp.json.return_value = payload if payload is not None else {}
    return resp


@pytest.fixture
def http():
    """Stand-in for requests.Session"""
    return MagicMock()


@pytest.fixture
def audit():
    return AuditSink(persist=False)


@pytest.fixture
def accepting_verifier():
    """Payment verifier that confirms every transaction but keeps the real compliance rule"""
    verifier = MagicMock(spec=PaymentVerifier)
    verifier.check_compliance.side_effect = check_compliance

    def _verify(method, platform, transaction_id, receipt=None):
        check_compliance(method, platform)
        return True

    verifier.verify.side_effect = _verify
    return verifier


@pytest.fixture
def make_response():
    return http_response
