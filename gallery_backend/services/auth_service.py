# -----------------------------------------------------------
# gallery_backend/services/auth_service.py
# OAuth exchange, token refresh, logout and account deletion
# -----------------------------------------------------------
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Callable

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from gallery_backend.db import utcnow
from gallery_backend.errors import IdentityRejected, RefreshTokenInvalid, UserNotFound
from gallery_backend.models import User
from gallery_backend.services.audit_service import AuditSink, sanitize_identifier
from gallery_backend.services.identity_service import IdentityVerifier, OAuthProvider
from gallery_backend.services.session_service import SessionStore, SessionTokens, DeviceMeta

log = logging.getLogger("gallery_backend.auth")


@dataclass(frozen=True)
class OAuthExchange:
    provider: str
    authorization_code: str
    provider_user_id: str
    display_name: Optional[str] = None
    email: Optional[str] = None
    avatar_url: Optional[str] = None
    device_info: Optional[str] = None
    ip_address: Optional[str] = None


@dataclass(frozen=True)
class UserProfile:
    id: int
    display_name: Optional[str]
    email: Optional[str]
    avatar_url: Optional[str]
    auth_provider: str
    provider_user_id: str
    last_login_at: Optional[datetime]
    created_at: Optional[datetime]


@dataclass(frozen=True)
class AuthResult:
    tokens: SessionTokens
    user: UserProfile
    is_new_user: bool = False


def profile_of(user: User) -> UserProfile:
    return UserProfile(
        id=user.id,
        display_name=user.display_name,
        email=user.email,
        avatar_url=user.avatar_url,
        auth_provider=user.auth_provider,
        provider_user_id=user.provider_user_id,
        last_login_at=user.last_login_at,
        created_at=user.created_at,
    )


class AuthService:
    def __init__(
        self,
        identity: IdentityVerifier,
        sessions: SessionStore,
        audit: Optional[AuditSink] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.identity = identity
        self.sessions = sessions
        self.audit = audit or AuditSink()
        self.clock = clock

    def _find_live_user(self, db: Session, provider: str, provider_user_id: str) -> Optional[User]:
        return (
            db.query(User)
            .filter(
                User.auth_provider == provider,
                User.provider_user_id == provider_user_id,
                User.deleted_at.is_(None),
            )
            .first()
        )

    def _get_live_user(self, db: Session, user_id: int) -> User:
        user = db.get(User, user_id)
        if user is None or user.is_deleted:
            raise UserNotFound()
        return user

    # --------------------------------------------------
    # EXCHANGE
    # --------------------------------------------------
    def exchange(self, db: Session, req: OAuthExchange) -> AuthResult:
        provider = OAuthProvider.parse(req.provider)
        if provider is None or not self.identity.verify(provider, req.authorization_code, req.provider_user_id):
            self.audit.authentication(None, req.provider, False, "OAuth verification failed", req.ip_address)
            raise IdentityRejected()

        try:
            user, created = self._upsert_user(db, provider.value, req)
        except IntegrityError:
            # a concurrent first login created the row; use it
            db.rollback()
            user, created = self._upsert_user(db, provider.value, req)

        tokens = self.sessions.issue_for(
            db, user.id, DeviceMeta(device_info=req.device_info, ip_address=req.ip_address), commit=False
        )
        profile = profile_of(user)
        db.commit()

        self.audit.authentication(user.id, provider.value, True, ip_address=req.ip_address)
        log.info("User %s authenticated via %s (new=%s, provider id %s)",
                 user.id, provider.value, created, sanitize_identifier(req.provider_user_id))
        return AuthResult(tokens=tokens, user=profile, is_new_user=created)

    def _upsert_user(self, db: Session, provider: str, req: OAuthExchange):
        now = self.clock()
        user = self._find_live_user(db, provider, req.provider_user_id)
        created = user is None
        if created:
            user = User(
                auth_provider=provider,
                provider_user_id=req.provider_user_id,
                display_name=req.display_name,
                email=req.email,
                avatar_url=req.avatar_url,
                created_at=now,
            )
            db.add(user)
        else:
            for field in ("display_name", "email", "avatar_url"):
                value = getattr(req, field)
                if value is not None and value != getattr(user, field):
                    setattr(user, field, value)

        user.last_login_at = now
        user.updated_at = now
        db.flush()
        return user, created

    # --------------------------------------------------
    # REFRESH / LOGOUT / DELETE
    # --------------------------------------------------
    def refresh(self, db: Session, refresh_token: str) -> AuthResult:
        try:
            tokens = self.sessions.rotate(db, refresh_token)
        except RefreshTokenInvalid as e:
            self.audit.token_refresh_rejected(e.message)
            raise
        user = self._get_live_user(db, tokens.user_id)
        return AuthResult(tokens=tokens, user=profile_of(user))

    def logout(self, db: Session, user_id: int) -> int:
        removed = self.sessions.revoke_all(db, user_id)
        log.info("User %s logged out", user_id)
        return removed

    def delete_account(self, db: Session, user_id: int) -> None:
        user = self._get_live_user(db, user_id)
        self.sessions.revoke_all(db, user_id, commit=False)

        now = self.clock()
        user.deleted_at = now
        user.display_name = None
        user.email = None
        user.avatar_url = None
        user.updated_at = now
        db.commit()

        self.audit.account_deletion(user_id)
        log.info("User %s account deleted", user_id)

    def get_profile(self, db: Session, user_id: int) -> UserProfile:
        return profile_of(self._get_live_user(db, user_id))
