# -----------------------------------------------------------
# gallery_backend/services/session_service.py
# One live session (access + refresh pair) per user
# -----------------------------------------------------------
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Callable

from sqlalchemy.orm import Session

from gallery_backend.db import utcnow
from gallery_backend.errors import TokenInvalid, RefreshTokenInvalid
from gallery_backend.models import AuthToken, User
from gallery_backend.security import TokenCodec, ACCESS, REFRESH, get_token_codec

log = logging.getLogger("gallery_backend.sessions")

TOKEN_TYPE = "Bearer"


@dataclass(frozen=True)
class DeviceMeta:
    device_info: Optional[str] = None
    ip_address: Optional[str] = None


@dataclass(frozen=True)
class SessionTokens:
    user_id: int
    access_token: str
    refresh_token: str
    token_type: str
    expires_at: datetime
    refresh_expires_at: datetime


class SessionStore:
    def __init__(self, codec: Optional[TokenCodec] = None, clock: Callable[[], datetime] = utcnow):
        self.codec = codec or get_token_codec()
        self.clock = clock

    def _mint(self, user_id: int) -> SessionTokens:
        now = self.clock()
        access = self.codec.issue(user_id, ACCESS, now=now)
        refresh = self.codec.issue(user_id, REFRESH, now=now)
        return SessionTokens(
            user_id=user_id,
            access_token=access.token,
            refresh_token=refresh.token,
            token_type=TOKEN_TYPE,
            expires_at=access.expires_at,
            refresh_expires_at=refresh.expires_at,
        )

    # --------------------------------------------------
    # ISSUE
    # --------------------------------------------------
    def issue_for(self, db: Session, user_id: int, device_meta: Optional[DeviceMeta] = None,
                  commit: bool = True) -> SessionTokens:
        """Replace whatever session the user had with a fresh pair."""
        meta = device_meta or DeviceMeta()
        tokens = self._mint(user_id)

        db.query(AuthToken).filter(AuthToken.user_id == user_id).delete(synchronize_session=False)
        db.flush()
        db.add(AuthToken(
            user_id=user_id,
            access_token=tokens.access_token,
            refresh_token=tokens.refresh_token,
            token_type=tokens.token_type,
            expires_at=tokens.expires_at,
            refresh_expires_at=tokens.refresh_expires_at,
            device_info=meta.device_info,
            ip_address=meta.ip_address,
        ))
        if commit:
            db.commit()
        else:
            db.flush()
        log.info("Issued session for user %s", user_id)
        return tokens

    # --------------------------------------------------
    # ROTATE
    # --------------------------------------------------
    def rotate(self, db: Session, refresh_token: str) -> SessionTokens:
        """
        Exchange a live refresh token for a new pair.

        The old pair is replaced with a compare-and-swap on the stored refresh
        token, so of two concurrent rotations of the same token exactly one
        succeeds and a used refresh token never rotates again.
        """
        try:
            claims = self.codec.verify(refresh_token, expected_class=REFRESH)
        except TokenInvalid as e:
            raise RefreshTokenInvalid(e.message)

        row = self._load_live(db, refresh_token)
        if row is None or row.user_id != claims.user_id:
            raise RefreshTokenInvalid()
        if row.refresh_expires_at <= self.clock():
            raise RefreshTokenInvalid("Refresh token has expired")

        user = db.get(User, row.user_id)
        if user is None or user.is_deleted:
            raise RefreshTokenInvalid()

        tokens = self._mint(row.user_id)
        self._swap(db, row.id, refresh_token, tokens)
        db.commit()
        log.info("Rotated session for user %s", row.user_id)
        return tokens

    def _load_live(self, db: Session, refresh_token: str) -> Optional[AuthToken]:
        return db.query(AuthToken).filter(AuthToken.refresh_token == refresh_token).first()

    def _swap(self, db: Session, row_id: int, old_refresh_token: str, tokens: SessionTokens) -> None:
        updated = (
            db.query(AuthToken)
            .filter(AuthToken.id == row_id, AuthToken.refresh_token == old_refresh_token)
            .update(
                {
                    AuthToken.access_token: tokens.access_token,
                    AuthToken.refresh_token: tokens.refresh_token,
                    AuthToken.expires_at: tokens.expires_at,
                    AuthToken.refresh_expires_at: tokens.refresh_expires_at,
                    AuthToken.updated_at: self.clock(),
                },
                synchronize_session=False,
            )
        )
        if updated != 1:
            db.rollback()
            log.warning("Refresh token for session %s was already rotated", row_id)
            raise RefreshTokenInvalid()

    # --------------------------------------------------
    # REVOKE / LOOKUP
    # --------------------------------------------------
    def revoke_all(self, db: Session, user_id: int, commit: bool = True) -> int:
        removed = db.query(AuthToken).filter(AuthToken.user_id == user_id).delete(synchronize_session=False)
        if commit:
            db.commit()
        log.info("Revoked %d session(s) for user %s", removed, user_id)
        return removed

    def is_access_token_live(self, db: Session, user_id: int, access_token: str) -> bool:
        row = (
            db.query(AuthToken.id)
            .filter(
                AuthToken.user_id == user_id,
                AuthToken.access_token == access_token,
                AuthToken.expires_at > self.clock(),
            )
            .first()
        )
        return row is not None

    def purge_expired(self, db: Session, now: Optional[datetime] = None) -> int:
        cutoff = now or self.clock()
        removed = (
            db.query(AuthToken)
            .filter(AuthToken.refresh_expires_at <= cutoff)
            .delete(synchronize_session=False)
        )
        db.commit()
        if removed:
            log.info("Purged %d expired session(s)", removed)
        return removed
