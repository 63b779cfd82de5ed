# -----------------------------------------------------------
# gallery_backend/services/identity_service.py
# Proves a client-supplied OAuth artifact belongs to the claimed
# provider account (Apple, WeChat, Alipay)
# -----------------------------------------------------------
import logging
from enum import Enum
from typing import Optional, Callable, Dict

import requests
from jose import jwt, JWTError

from gallery_backend import config
from gallery_backend.services.audit_service import sanitize_identifier

log = logging.getLogger("gallery_backend.identity")


class OAuthProvider(str, Enum):
    APPLE = "apple"
    WECHAT = "wechat"
    ALIPAY = "alipay"

    @classmethod
    def parse(cls, value: Optional[str]) -> Optional["OAuthProvider"]:
        if not value:
            return None
        try:
            return cls(value.strip().lower())
        except ValueError:
            return None


class IdentityVerifier:
    """
    Dispatches to one verifier per provider.

    Every verifier fails closed: network errors, timeouts, provider error
    codes, missing configuration and identity mismatches all return False.
    """

    def __init__(
        self,
        http: Optional[requests.Session] = None,
        timeout: Optional[float] = None,
        apple_client_id: Optional[str] = None,
        wechat_app_id: Optional[str] = None,
        wechat_app_secret: Optional[str] = None,
        alipay_app_id: Optional[str] = None,
    ):
        self.http = http or requests.Session()
        self.timeout = timeout if timeout is not None else config.PROVIDER_HTTP_TIMEOUT
        self.apple_client_id = apple_client_id or config.APPLE_CLIENT_ID
        self.wechat_app_id = wechat_app_id or config.WECHAT_APP_ID
        self.wechat_app_secret = wechat_app_secret or config.WECHAT_APP_SECRET
        self.alipay_app_id = alipay_app_id or config.ALIPAY_APP_ID

        self._verifiers: Dict[OAuthProvider, Callable[[str, str], bool]] = {
            OAuthProvider.APPLE: self._verify_apple,
            OAuthProvider.WECHAT: self._verify_wechat,
            OAuthProvider.ALIPAY: self._verify_alipay,
        }
        missing = set(OAuthProvider) - set(self._verifiers)
        if missing:
            raise RuntimeError(f"No identity verifier registered for: {sorted(p.value for p in missing)}")

    def verify(self, provider, authorization_artifact: Optional[str],
               claimed_provider_user_id: Optional[str]) -> bool:
        parsed = provider if isinstance(provider, OAuthProvider) else OAuthProvider.parse(provider)
        if parsed is None:
            log.warning("Unsupported OAuth provider: %s", provider)
            return False
        if not authorization_artifact or not claimed_provider_user_id:
            log.warning("%s identity rejected: missing artifact or provider user id", parsed.value)
            return False

        try:
            ok = self._verifiers[parsed](authorization_artifact, claimed_provider_user_id)
        except Exception:
            log.exception("%s identity verification errored", parsed.value)
            return False

        if ok:
            log.info("✅ %s identity verified for %s", parsed.value,
                     sanitize_identifier(claimed_provider_user_id))
        return bool(ok)

    # --------------------------------------------------
    # APPLE
    # --------------------------------------------------
    def _verify_apple(self, identity_token: str, claimed_id: str) -> bool:
        if not self.apple_client_id:
            log.error("Apple sign-in rejected: APPLE_CLIENT_ID not configured")
            return False

        try:
            header = jwt.get_unverified_header(identity_token)
        except JWTError:
            log.warning("Apple identity token is not a JWT")
            return False

        resp = self.http.get(config.APPLE_KEYS_URL, timeout=self.timeout)
        if resp.status_code != 200:
            log.warning("Apple keys endpoint returned %s", resp.status_code)
            return False

        keys = (resp.json() or {}).get("keys") or []
        key = next((k for k in keys if k.get("kid") == header.get("kid")), None)
        if key is None:
            log.warning("Apple signing key %s not found", header.get("kid"))
            return False

        try:
            claims = jwt.decode(
                identity_token,
                key,
                algorithms=[key.get("alg", "RS256")],
                audience=self.apple_client_id,
                issuer=config.APPLE_ISSUER,
            )
        except JWTError as e:
            log.warning("Apple identity token rejected: %s", e)
            return False

        if claims.get("sub") != claimed_id:
            log.warning("Apple user id mismatch for %s", sanitize_identifier(claimed_id))
            return False
        return True

    # --------------------------------------------------
    # WECHAT
    # --------------------------------------------------
    def _verify_wechat(self, code: str, claimed_id: str) -> bool:
        if not self.wechat_app_id or not self.wechat_app_secret:
            log.error("WeChat sign-in rejected: WECHAT_APP_ID / WECHAT_APP_SECRET not configured")
            return False

        params = {
            "appid": self.wechat_app_id,
            "secret": self.wechat_app_secret,
            "code": code,
            "grant_type": "authorization_code",
        }
        resp = self.http.get(config.WECHAT_OAUTH_URL, params=params, timeout=self.timeout)
        if resp.status_code != 200:
            log.warning("WeChat OAuth returned %s", resp.status_code)
            return False

        data = resp.json() or {}
        if "errcode" in data:
            log.warning("WeChat OAuth token exchange failed: errcode=%s", data.get("errcode"))
            return False

        if data.get("openid") != claimed_id:
            log.warning("WeChat openid mismatch for %s", sanitize_identifier(claimed_id))
            return False
        return True

    # --------------------------------------------------
    # ALIPAY
    # --------------------------------------------------
    def _verify_alipay(self, code: str, claimed_id: str) -> bool:
        if not self.alipay_app_id:
            log.error("Alipay sign-in rejected: ALIPAY_APP_ID not configured")
            return False

        params = {
            "app_id": self.alipay_app_id,
            "method": "alipay.system.oauth.token",
            "grant_type": "authorization_code",
            "code": code,
        }
        resp = self.http.post(config.ALIPAY_GATEWAY_URL, params=params, timeout=self.timeout)
        if resp.status_code != 200:
            log.warning("Alipay OAuth returned %s", resp.status_code)
            return False

        block = (resp.json() or {}).get("alipay_system_oauth_token_response")
        if not block:
            log.warning("Alipay OAuth token exchange failed: empty response")
            return False
        if "code" in block and str(block.get("code")) != "10000":
            log.warning("Alipay OAuth token exchange failed: code=%s", block.get("code"))
            return False

        if str(block.get("user_id") or "") != claimed_id:
            log.warning("Alipay user id mismatch for %s", sanitize_identifier(claimed_id))
            return False
        return True
