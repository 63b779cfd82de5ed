# gallery_backend/security.py
import uuid
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any

from jose import jwt, JWTError, ExpiredSignatureError

from gallery_backend import config
from gallery_backend.errors import (
    MalformedToken,
    InvalidSignature,
    TokenExpired,
    TokenClassMismatch,
)

log = logging.getLogger("gallery_backend.security")

ACCESS = "access"
REFRESH = "refresh"
TOKEN_CLASSES = (ACCESS, REFRESH)


@dataclass(frozen=True)
class IssuedToken:
    token: str
    expires_at: datetime


@dataclass(frozen=True)
class TokenClaims:
    user_id: int
    token_class: str
    expires_at: datetime


class TokenCodec:
    """
    Signs and verifies HMAC bearer tokens.

    Claims: sub (user id), typ (access | refresh), iat, exp and a random jti
    so two tokens minted in the same second are never equal.
    """

    def __init__(
        self,
        secret: Optional[str] = None,
        algorithm: Optional[str] = None,
        access_ttl: Optional[timedelta] = None,
        refresh_ttl: Optional[timedelta] = None,
    ):
        self.secret = secret or config.JWT_SECRET
        self.algorithm = algorithm or config.JWT_ALGORITHM
        self.ttls = {
            ACCESS: access_ttl or timedelta(minutes=config.ACCESS_TOKEN_EXPIRE_MINUTES),
            REFRESH: refresh_ttl or timedelta(days=config.REFRESH_TOKEN_EXPIRE_DAYS),
        }

    # --------------------------------------------------
    # ISSUE
    # --------------------------------------------------
    def issue(self, user_id: int, token_class: str, now: Optional[datetime] = None) -> IssuedToken:
        if token_class not in TOKEN_CLASSES:
            raise ValueError(f"unknown token class: {token_class}")

        issued_at = now or datetime.now(timezone.utc).replace(tzinfo=None)
        expires_at = issued_at + self.ttls[token_class]

        payload: Dict[str, Any] = {
            "sub": str(user_id),
            "typ": token_class,
            "iat": int(issued_at.replace(tzinfo=timezone.utc).timestamp()),
            "exp": int(expires_at.replace(tzinfo=timezone.utc).timestamp()),
            "jti": uuid.uuid4().hex,
        }
        token = jwt.encode(payload, self.secret, algorithm=self.algorithm)
        return IssuedToken(token=token, expires_at=expires_at.replace(microsecond=0))

    # --------------------------------------------------
    # VERIFY
    # --------------------------------------------------
    def verify(self, token: str, expected_class: Optional[str] = None) -> TokenClaims:
        if not token or not isinstance(token, str):
            raise MalformedToken()

        try:
            jwt.get_unverified_claims(token)
        except JWTError:
            raise MalformedToken()

        try:
            payload = jwt.decode(token, self.secret, algorithms=[self.algorithm])
        except ExpiredSignatureError:
            raise TokenExpired()
        except JWTError:
            raise InvalidSignature()

        sub = payload.get("sub")
        token_class = payload.get("typ")
        exp = payload.get("exp")
        if sub is None or token_class not in TOKEN_CLASSES or exp is None:
            raise MalformedToken()
        try:
            user_id = int(sub)
        except (TypeError, ValueError):
            raise MalformedToken()

        if expected_class is not None and token_class != expected_class:
            log.info("Token class mismatch: expected=%s got=%s", expected_class, token_class)
            raise TokenClassMismatch()

        expires_at = datetime.fromtimestamp(int(exp), tz=timezone.utc).replace(tzinfo=None)
        return TokenClaims(user_id=user_id, token_class=token_class, expires_at=expires_at)


_codec: Optional[TokenCodec] = None


def get_token_codec() -> TokenCodec:
    global _codec
    if _codec is None:
        _codec = TokenCodec()
    return _codec
