# gallery_backend/deps.py
from functools import lru_cache

import requests
from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.orm import Session

from gallery_backend.db import SessionLocal, get_db  # noqa: F401
from gallery_backend.errors import TokenInvalid
from gallery_backend.security import ACCESS, get_token_codec
from gallery_backend.services.audit_service import AuditSink
from gallery_backend.services.auth_service import AuthService
from gallery_backend.services.identity_service import IdentityVerifier
from gallery_backend.services.payment_service import PaymentVerifier
from gallery_backend.services.session_service import SessionStore
from gallery_backend.services.subscription_service import SubscriptionEngine

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="api/auth/oauth/exchange")


# ======================================================
# SERVICES
# ======================================================
@lru_cache()
def get_http_session() -> requests.Session:
    return requests.Session()


def get_audit_sink() -> AuditSink:
    return AuditSink(session_factory=SessionLocal)


def get_session_store() -> SessionStore:
    return SessionStore()


def get_identity_verifier() -> IdentityVerifier:
    return IdentityVerifier(http=get_http_session())


def get_payment_verifier() -> PaymentVerifier:
    return PaymentVerifier(http=get_http_session())


def get_auth_service(
    identity: IdentityVerifier = Depends(get_identity_verifier),
    sessions: SessionStore = Depends(get_session_store),
    audit: AuditSink = Depends(get_audit_sink),
) -> AuthService:
    return AuthService(identity=identity, sessions=sessions, audit=audit)


def get_subscription_engine(
    verifier: PaymentVerifier = Depends(get_payment_verifier),
    audit: AuditSink = Depends(get_audit_sink),
) -> SubscriptionEngine:
    return SubscriptionEngine(verifier=verifier, audit=audit)


# ======================================================
# CURRENT USER
# ======================================================
def get_current_user_id(
    token: str = Depends(oauth2_scheme),
    db: Session = Depends(get_db),
    sessions: SessionStore = Depends(get_session_store),
) -> int:
    """
    Bearer access token that verifies AND is still the user's stored session.
    """
    try:
        claims = get_token_codec().verify(token, expected_class=ACCESS)
    except TokenInvalid as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=e.message,
            headers={"WWW-Authenticate": "Bearer"},
        )

    if not sessions.is_access_token_live(db, claims.user_id, token):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Session has been revoked",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return claims.user_id
