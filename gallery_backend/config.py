# gallery_backend/config.py
import os
import logging

from dotenv import load_dotenv

# --------------------------------------------------
# ENV
# --------------------------------------------------
load_dotenv()

log = logging.getLogger("gallery_backend.config")
log.setLevel(os.getenv("LOG_LEVEL", "INFO").upper())


def _flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes")


def _int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except (TypeError, ValueError):
        log.warning("Invalid integer for %s, using %s", name, default)
        return default


# --------------------------------------------------
# JWT
# --------------------------------------------------
JWT_SECRET = os.getenv("JWT_SECRET", "change_this_gallery_secret")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
ACCESS_TOKEN_EXPIRE_MINUTES = _int("ACCESS_TOKEN_EXPIRE_MINUTES", 60 * 24)
REFRESH_TOKEN_EXPIRE_DAYS = _int("REFRESH_TOKEN_EXPIRE_DAYS", 30)

# --------------------------------------------------
# OAUTH PROVIDERS
# --------------------------------------------------
APPLE_CLIENT_ID = os.getenv("APPLE_CLIENT_ID")
APPLE_KEYS_URL = os.getenv("APPLE_KEYS_URL", "https://appleid.apple.com/auth/keys")
APPLE_ISSUER = "https://appleid.apple.com"

WECHAT_APP_ID = os.getenv("WECHAT_APP_ID")
WECHAT_APP_SECRET = os.getenv("WECHAT_APP_SECRET")
WECHAT_OAUTH_URL = os.getenv(
    "WECHAT_OAUTH_URL", "https://api.weixin.qq.com/sns/oauth2/access_token"
)

ALIPAY_APP_ID = os.getenv("ALIPAY_APP_ID")
ALIPAY_GATEWAY_URL = os.getenv("ALIPAY_GATEWAY_URL", "https://openapi.alipay.com/gateway.do")

# --------------------------------------------------
# PAYMENT PLATFORMS
# --------------------------------------------------
APPLE_IAP_SHARED_SECRET = os.getenv("APPLE_IAP_SHARED_SECRET")
APPLE_IAP_PRODUCTION_URL = os.getenv(
    "APPLE_IAP_PRODUCTION_URL", "https://buy.itunes.apple.com/verifyReceipt"
)
APPLE_IAP_SANDBOX_URL = os.getenv(
    "APPLE_IAP_SANDBOX_URL", "https://sandbox.itunes.apple.com/verifyReceipt"
)
WECHAT_PAY_MCH_ID = os.getenv("WECHAT_PAY_MCH_ID")
WECHAT_PAY_VERIFY_URL = os.getenv(
    "WECHAT_PAY_VERIFY_URL", "https://api.mch.weixin.qq.com/v3/pay/transactions/id"
)

# Unconfigured wallet credentials fail closed unless strict mode is switched off.
PAYMENT_STRICT_MODE = _flag("PAYMENT_STRICT_MODE", "true")
PROVIDER_HTTP_TIMEOUT = float(os.getenv("PROVIDER_HTTP_TIMEOUT", "10"))
# SQLite writers wait this long for the lock; must outlast a sandbox-retried Apple call.
SQLITE_BUSY_TIMEOUT = float(os.getenv("SQLITE_BUSY_TIMEOUT", str(PROVIDER_HTTP_TIMEOUT * 2 + 10)))

# --------------------------------------------------
# SUBSCRIPTIONS / AUDIT / SCHEDULER
# --------------------------------------------------
SYNC_STALENESS_MINUTES = _int("SYNC_STALENESS_MINUTES", 60)
AUDIT_PERSIST = _flag("AUDIT_PERSIST")
SCHEDULER_ENABLED = _flag("SCHEDULER_ENABLED")
SESSION_SWEEP_INTERVAL_MIN = _int("SESSION_SWEEP_INTERVAL_MIN", 60)
SUBSCRIPTION_SWEEP_INTERVAL_MIN = _int("SUBSCRIPTION_SWEEP_INTERVAL_MIN", 15)

if JWT_SECRET == "change_this_gallery_secret":
    log.warning("⚠️ JWT_SECRET not set; using development default")
if not PAYMENT_STRICT_MODE:
    log.warning("⚠️ PAYMENT_STRICT_MODE disabled: unconfigured wallet payments will be accepted")
