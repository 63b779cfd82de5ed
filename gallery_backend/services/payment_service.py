# -----------------------------------------------------------
# gallery_backend/services/payment_service.py
# Platform compliance + receipt/transaction verification for
# Apple IAP, WeChat Pay and Alipay
# -----------------------------------------------------------
import json
import logging
from enum import Enum
from typing import Optional, Callable, Dict

import requests

from gallery_backend import config
from gallery_backend.errors import PaymentPolicyViolation
from gallery_backend.services.audit_service import sanitize_identifier

log = logging.getLogger("gallery_backend.payments")

# Platforms where App Store rules require Apple In-App Purchase.
IOS_PLATFORMS = frozenset({"ios", "iphone", "ipad"})

APPLE_STATUS_OK = 0
APPLE_STATUS_SANDBOX_RECEIPT = 21007


class PaymentMethod(str, Enum):
    APPLE_IAP = "apple_iap"
    WECHAT_PAY = "wechat_pay"
    ALIPAY = "alipay"

    @classmethod
    def parse(cls, value: Optional[str]) -> Optional["PaymentMethod"]:
        if not value:
            return None
        try:
            return cls(value.strip().lower())
        except ValueError:
            return None


def check_compliance(payment_method, platform: Optional[str]) -> None:
    """iOS devices may only pay through Apple IAP; raises before any network call."""
    method = payment_method.value if isinstance(payment_method, PaymentMethod) else (payment_method or "")
    if platform and platform.strip().lower() in IOS_PLATFORMS and method.lower() != PaymentMethod.APPLE_IAP.value:
        log.warning("Policy violation: %s used on %s", method or "<none>", platform)
        raise PaymentPolicyViolation()


class PaymentVerifier:
    """
    Verifies a purchase against the payment platform.

    Apple receipts go to production first and are retried once against the
    sandbox only when Apple answers 21007. Wallet methods with unconfigured
    credentials fail closed in strict mode; with credentials configured any
    transport error fails closed.
    """

    def __init__(
        self,
        http: Optional[requests.Session] = None,
        timeout: Optional[float] = None,
        strict: Optional[bool] = None,
        apple_shared_secret: Optional[str] = None,
        wechat_mch_id: Optional[str] = None,
        alipay_app_id: Optional[str] = None,
    ):
        self.http = http or requests.Session()
        self.timeout = timeout if timeout is not None else config.PROVIDER_HTTP_TIMEOUT
        self.strict = config.PAYMENT_STRICT_MODE if strict is None else strict
        self.apple_shared_secret = apple_shared_secret or config.APPLE_IAP_SHARED_SECRET
        self.wechat_mch_id = wechat_mch_id or config.WECHAT_PAY_MCH_ID
        self.alipay_app_id = alipay_app_id or config.ALIPAY_APP_ID

        self._verifiers: Dict[PaymentMethod, Callable[[str, Optional[str]], bool]] = {
            PaymentMethod.APPLE_IAP: self._verify_apple_iap,
            PaymentMethod.WECHAT_PAY: self._verify_wechat_pay,
            PaymentMethod.ALIPAY: self._verify_alipay,
        }
        missing = set(PaymentMethod) - set(self._verifiers)
        if missing:
            raise RuntimeError(f"No payment verifier registered for: {sorted(m.value for m in missing)}")

    def check_compliance(self, payment_method, platform: Optional[str]) -> None:
        check_compliance(payment_method, platform)

    def verify(self, payment_method, platform: Optional[str], transaction_id: str,
               receipt: Optional[str] = None) -> bool:
        check_compliance(payment_method, platform)

        method = payment_method if isinstance(payment_method, PaymentMethod) else PaymentMethod.parse(payment_method)
        if method is None:
            log.warning("Unsupported payment method: %s", payment_method)
            return False

        log.info("Verifying %s payment: transaction=%s", method.value, sanitize_identifier(transaction_id))
        try:
            return bool(self._verifiers[method](transaction_id, receipt))
        except requests.RequestException as e:
            log.error("%s verification transport error: %s", method.value, e)
            return False
        except Exception:
            log.exception("%s verification errored", method.value)
            return False

    def _unconfigured(self, method: PaymentMethod) -> bool:
        if self.strict:
            log.error("%s credentials not configured; rejecting payment (strict mode)", method.value)
            return False
        log.warning("⚠️ %s credentials not configured; ACCEPTING UNVERIFIED PAYMENT (strict mode off)",
                    method.value)
        return True

    # --------------------------------------------------
    # APPLE IAP
    # --------------------------------------------------
    def _verify_apple_iap(self, transaction_id: str, receipt: Optional[str]) -> bool:
        if not receipt:
            log.error("Apple IAP receipt data is missing")
            return False

        status = self._post_apple_receipt(config.APPLE_IAP_PRODUCTION_URL, receipt)
        if status == APPLE_STATUS_SANDBOX_RECEIPT:
            log.info("Sandbox receipt detected, retrying with sandbox environment")
            status = self._post_apple_receipt(config.APPLE_IAP_SANDBOX_URL, receipt)

        if status == APPLE_STATUS_OK:
            return True
        log.error("Apple receipt verification failed with status %s", status)
        return False

    def _post_apple_receipt(self, url: str, receipt: str) -> Optional[int]:
        body = {
            "receipt-data": receipt,
            "password": self.apple_shared_secret or "",
            "exclude-old-transactions": True,
        }
        resp = self.http.post(url, json=body, timeout=self.timeout)
        if resp.status_code != 200:
            log.error("Apple verifyReceipt returned HTTP %s", resp.status_code)
            return None
        status = (resp.json() or {}).get("status")
        try:
            return int(status)
        except (TypeError, ValueError):
            return None

    # --------------------------------------------------
    # WECHAT PAY
    # --------------------------------------------------
    def _verify_wechat_pay(self, transaction_id: str, receipt: Optional[str]) -> bool:
        if not self.wechat_mch_id:
            return self._unconfigured(PaymentMethod.WECHAT_PAY)

        url = f"{config.WECHAT_PAY_VERIFY_URL.rstrip('/')}/{transaction_id}"
        resp = self.http.get(url, params={"mchid": self.wechat_mch_id}, timeout=self.timeout)
        if resp.status_code != 200:
            log.error("WeChat Pay query returned HTTP %s", resp.status_code)
            return False

        trade_state = (resp.json() or {}).get("trade_state")
        if trade_state == "SUCCESS":
            return True
        log.error("WeChat payment verification failed: trade_state=%s", trade_state)
        return False

    # --------------------------------------------------
    # ALIPAY
    # --------------------------------------------------
    def _verify_alipay(self, transaction_id: str, receipt: Optional[str]) -> bool:
        if not self.alipay_app_id:
            return self._unconfigured(PaymentMethod.ALIPAY)

        params = {
            "app_id": self.alipay_app_id,
            "method": "alipay.trade.query",
            "format": "JSON",
            "charset": "utf-8",
            "version": "1.0",
            "biz_content": json.dumps({"out_trade_no": transaction_id}),
        }
        resp = self.http.get(config.ALIPAY_GATEWAY_URL, params=params, timeout=self.timeout)
        if resp.status_code != 200:
            log.error("Alipay trade query returned HTTP %s", resp.status_code)
            return False

        block = (resp.json() or {}).get("alipay_trade_query_response") or {}
        code = str(block.get("code") or "")
        trade_status = block.get("trade_status")
        if code == "10000" and trade_status == "TRADE_SUCCESS":
            return True
        log.error("Alipay payment verification failed: code=%s trade_status=%s", code, trade_status)
        return False
