# -----------------------------------------------------------
# gallery_backend/api/auth_routes.py
# -----------------------------------------------------------
import os
import logging

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from gallery_backend.deps import get_db, get_auth_service, get_current_user_id
from gallery_backend.schemas import OAuthExchangeRequest, RefreshTokenRequest, AuthOut
from gallery_backend.services.auth_service import AuthService, OAuthExchange

logger = logging.getLogger("gallery_backend.auth_routes")
logger.setLevel(os.getenv("LOG_LEVEL", "INFO").upper())

router = APIRouter(prefix="/auth", tags=["auth"])


def _client_ip(request: Request):
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


@router.post("/oauth/exchange")
def oauth_exchange(
    payload: OAuthExchangeRequest,
    request: Request,
    db: Session = Depends(get_db),
    auth: AuthService = Depends(get_auth_service),
):
    result = auth.exchange(db, OAuthExchange(
        provider=payload.provider,
        authorization_code=payload.authorization_code,
        provider_user_id=payload.provider_user_id,
        display_name=payload.display_name,
        email=payload.email,
        avatar_url=payload.avatar_url,
        device_info=payload.device_info or request.headers.get("user-agent"),
        ip_address=_client_ip(request),
    ))
    return {"ok": True, "data": AuthOut.model_validate(result)}


@router.post("/token/refresh")
def refresh_token(
    payload: RefreshTokenRequest,
    db: Session = Depends(get_db),
    auth: AuthService = Depends(get_auth_service),
):
    result = auth.refresh(db, payload.refresh_token)
    return {"ok": True, "data": AuthOut.model_validate(result)}


@router.post("/logout")
def logout(
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    auth: AuthService = Depends(get_auth_service),
):
    auth.logout(db, user_id)
    return {"ok": True, "message": "Logged out"}


@router.delete("/account")
def delete_account(
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    auth: AuthService = Depends(get_auth_service),
):
    auth.delete_account(db, user_id)
    return {"ok": True, "message": "Account deleted"}
