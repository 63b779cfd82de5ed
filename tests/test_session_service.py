"""
Session store tests: single live session, rotation, replay and revocation.
"""

from datetime import timedelta

import pytest

from gallery_backend.db import utcnow
from gallery_backend.errors import RefreshTokenInvalid
from gallery_backend.models import AuthToken
from gallery_backend.security import TokenCodec
from gallery_backend.services.session_service import SessionStore, DeviceMeta


@pytest.fixture
def store():
    return SessionStore(codec=TokenCodec(secret="session-secret", algorithm="HS256"))


@pytest.fixture
def user(make_user):
    return make_user()


class TestIssue:

    def test_issue_replaces_previous_session(self, db, store, user):
        first = store.issue_for(db, user.id, DeviceMeta(device_info="iPhone15", ip_address="10.0.0.1"))
        second = store.issue_for(db, user.id)

        rows = db.query(AuthToken).filter(AuthToken.user_id == user.id).all()
        assert len(rows) == 1
        assert rows[0].refresh_token == second.refresh_token
        assert first.refresh_token != second.refresh_token

        with pytest.raises(RefreshTokenInvalid):
            store.rotate(db, first.refresh_token)

    def test_access_token_is_live_until_revoked(self, db, store, user):
        tokens = store.issue_for(db, user.id)
        assert store.is_access_token_live(db, user.id, tokens.access_token)

        assert store.revoke_all(db, user.id) == 1
        assert not store.is_access_token_live(db, user.id, tokens.access_token)


class TestRotate:

    def test_rotate_returns_new_pair(self, db, store, user):
        tokens = store.issue_for(db, user.id)
        rotated = store.rotate(db, tokens.refresh_token)

        assert rotated.user_id == user.id
        assert rotated.refresh_token != tokens.refresh_token
        assert rotated.access_token != tokens.access_token
        assert store.is_access_token_live(db, user.id, rotated.access_token)
        assert not store.is_access_token_live(db, user.id, tokens.access_token)

    def test_used_refresh_token_cannot_be_replayed(self, db, store, user):
        tokens = store.issue_for(db, user.id)
        store.rotate(db, tokens.refresh_token)

        with pytest.raises(RefreshTokenInvalid):
            store.rotate(db, tokens.refresh_token)

    def test_access_token_is_not_a_refresh_token(self, db, store, user):
        tokens = store.issue_for(db, user.id)
        with pytest.raises(RefreshTokenInvalid):
            store.rotate(db, tokens.access_token)

    def test_rotate_after_logout_fails(self, db, store, user):
        tokens = store.issue_for(db, user.id)
        store.revoke_all(db, user.id)
        with pytest.raises(RefreshTokenInvalid):
            store.rotate(db, tokens.refresh_token)

    def test_rotate_for_deleted_user_fails(self, db, store, user):
        tokens = store.issue_for(db, user.id)
        user.deleted_at = utcnow()
        db.commit()
        with pytest.raises(RefreshTokenInvalid):
            store.rotate(db, tokens.refresh_token)

    def test_stored_refresh_expiry_is_enforced(self, db, store, user):
        tokens = store.issue_for(db, user.id)
        row = db.query(AuthToken).filter(AuthToken.user_id == user.id).one()
        row.refresh_expires_at = utcnow() - timedelta(minutes=1)
        db.commit()
        with pytest.raises(RefreshTokenInvalid):
            store.rotate(db, tokens.refresh_token)

    def test_interleaved_rotations_only_one_wins(self, session_factory, store, user):
        """Both requests read the live row before either writes; the second swap must lose."""
        setup = session_factory()
        tokens = store.issue_for(setup, user.id)
        setup.close()

        db_a, db_b = session_factory(), session_factory()
        try:
            row_a = store._load_live(db_a, tokens.refresh_token)
            row_b = store._load_live(db_b, tokens.refresh_token)
            assert row_a is not None and row_b is not None

            winner = store._mint(user.id)
            store._swap(db_a, row_a.id, tokens.refresh_token, winner)
            db_a.commit()

            with pytest.raises(RefreshTokenInvalid):
                store._swap(db_b, row_b.id, tokens.refresh_token, store._mint(user.id))
        finally:
            db_a.close()
            db_b.close()

        check = session_factory()
        try:
            stored = check.query(AuthToken).filter(AuthToken.user_id == user.id).one()
            assert stored.refresh_token == winner.refresh_token
        finally:
            check.close()


class TestPurge:

    def test_purge_removes_only_expired_sessions(self, db, store, make_user):
        alive = make_user(provider_user_id="alive-user")
        stale = make_user(provider_user_id="stale-user")
        store.issue_for(db, alive.id)
        store.issue_for(db, stale.id)

        row = db.query(AuthToken).filter(AuthToken.user_id == stale.id).one()
        row.refresh_expires_at = utcnow() - timedelta(days=1)
        db.commit()

        assert store.purge_expired(db) == 1
        remaining = [r.user_id for r in db.query(AuthToken).all()]
        assert remaining == [alive.id]
