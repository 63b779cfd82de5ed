# -----------------------------------------------------------
# gallery_backend/services/audit_service.py
# Security audit trail: auth, payment and subscription events
# -----------------------------------------------------------
import re
import logging
from typing import Optional, Dict, Any, Callable

from gallery_backend import config
from gallery_backend.db import utcnow

log = logging.getLogger("gallery_backend.audit")

MAX_MESSAGE_LENGTH = 500

# Applied in order.
_REDACTIONS = (
    (re.compile(r"\b[A-Za-z0-9]{32,}\b"), "[TOKEN_REDACTED]"),
    (re.compile(r"\b\d{13,19}\b"), "[CARD_REDACTED]"),
    (re.compile(r"(password|pwd)=[^&\s]+", re.IGNORECASE), r"\1=[REDACTED]"),
    (re.compile(r"(key|apikey|api_key)=[^&\s]+", re.IGNORECASE), r"\1=[REDACTED]"),
)

# Event types
AUTHENTICATION = "AUTHENTICATION"
TOKEN_REFRESH_REJECTED = "TOKEN_REFRESH_REJECTED"
PAYMENT_VERIFICATION = "PAYMENT_VERIFICATION"
PAYMENT_VERIFICATION_FAILURE = "PAYMENT_VERIFICATION_FAILURE"
PAYMENT_POLICY_VIOLATION = "PAYMENT_POLICY_VIOLATION"
SUBSCRIPTION_UPDATE = "SUBSCRIPTION_UPDATE"
SUBSCRIPTION_RENEWAL = "SUBSCRIPTION_RENEWAL"
SUBSCRIPTION_CANCELLATION = "SUBSCRIPTION_CANCELLATION"
ACCOUNT_DELETION = "ACCOUNT_DELETION"


def sanitize_identifier(value: Optional[Any]) -> str:
    """Mask an identifier: keep the first/last 4 chars, or only the first 2 when short."""
    if value is None:
        return "N/A"
    value = str(value)
    if not value:
        return "N/A"
    if len(value) <= 8:
        return value[:2] + "****"
    return value[:4] + "****" + value[-4:]


def sanitize_message(message: Optional[str]) -> str:
    """Redact token-, card- and secret-shaped substrings and cap the length."""
    if not message:
        return "N/A"
    cleaned = str(message)
    for pattern, replacement in _REDACTIONS:
        cleaned = pattern.sub(replacement, cleaned)
    if len(cleaned) > MAX_MESSAGE_LENGTH:
        cleaned = cleaned[: MAX_MESSAGE_LENGTH - 3] + "..."
    return cleaned


class AuditSink:
    """
    Emits structured audit records.

    Every record goes to the `gallery_backend.audit` logger; with persistence
    enabled it is also written to `audit_logs` through its own session so a
    rollback of the business transaction does not drop the record. Emitting
    never raises into the caller.
    """

    def __init__(self, session_factory: Optional[Callable] = None, persist: Optional[bool] = None):
        self.session_factory = session_factory
        self.persist = config.AUDIT_PERSIST if persist is None else persist

    # --------------------------------------------------
    # AUTH
    # --------------------------------------------------
    def authentication(self, user_id: Optional[int], provider: str, success: bool,
                       reason: Optional[str] = None, ip_address: Optional[str] = None):
        self._emit(
            AUTHENTICATION,
            user_id,
            {
                "provider": provider,
                "success": success,
                "reason": sanitize_message(reason) if reason else None,
                "ip": sanitize_identifier(ip_address) if ip_address else None,
            },
            level=logging.INFO if success else logging.WARNING,
        )

    def token_refresh_rejected(self, reason: str):
        self._emit(TOKEN_REFRESH_REJECTED, None, {"reason": sanitize_message(reason)},
                   level=logging.WARNING)

    def account_deletion(self, user_id: int):
        self._emit(ACCOUNT_DELETION, user_id, {})

    # --------------------------------------------------
    # PAYMENTS
    # --------------------------------------------------
    def payment_verification(self, user_id: int, transaction_id: str, payment_method: str,
                             product_id: Optional[str] = None):
        self._emit(
            PAYMENT_VERIFICATION,
            user_id,
            {
                "transaction_id": sanitize_identifier(transaction_id),
                "payment_method": payment_method,
                "product_id": product_id,
            },
        )

    def payment_verification_failure(self, user_id: int, transaction_id: str,
                                     payment_method: str, reason: Optional[str] = None):
        self._emit(
            PAYMENT_VERIFICATION_FAILURE,
            user_id,
            {
                "transaction_id": sanitize_identifier(transaction_id),
                "payment_method": payment_method,
                "reason": sanitize_message(reason),
            },
            level=logging.WARNING,
        )

    def policy_violation(self, user_id: int, transaction_id: str, payment_method: str,
                         platform: Optional[str]):
        self._emit(
            PAYMENT_POLICY_VIOLATION,
            user_id,
            {
                "transaction_id": sanitize_identifier(transaction_id),
                "payment_method": payment_method,
                "platform": platform,
            },
            level=logging.WARNING,
        )

    # --------------------------------------------------
    # SUBSCRIPTIONS
    # --------------------------------------------------
    def subscription_update(self, user_id: int, subscription_id: int, tier: str,
                            billing_period: str, status: str):
        self._emit(
            SUBSCRIPTION_UPDATE,
            user_id,
            {"subscription_id": subscription_id, "tier": tier,
             "billing_period": billing_period, "status": status},
        )

    def subscription_renewal(self, user_id: int, subscription_id: int,
                             original_transaction_id: Optional[str]):
        self._emit(
            SUBSCRIPTION_RENEWAL,
            user_id,
            {"subscription_id": subscription_id,
             "original_transaction_id": sanitize_identifier(original_transaction_id)},
        )

    def subscription_cancellation(self, user_id: int, subscription_id: int, tier: str):
        self._emit(SUBSCRIPTION_CANCELLATION, user_id,
                   {"subscription_id": subscription_id, "tier": tier})

    # --------------------------------------------------
    # EMIT
    # --------------------------------------------------
    def _emit(self, event_type: str, user_id: Optional[int], payload: Dict[str, Any],
              level: int = logging.INFO):
        try:
            fields = {k: v for k, v in payload.items() if v is not None}
            log.log(level, "AUDIT: %s user=%s %s", event_type, user_id, fields)
            if self.persist and self.session_factory is not None:
                self._persist(event_type, user_id, fields)
        except Exception:
            log.exception("Audit emission failed for %s", event_type)

    def _persist(self, event_type: str, user_id: Optional[int], fields: Dict[str, Any]):
        from gallery_backend.models import AuditLog

        session = self.session_factory()
        try:
            session.add(AuditLog(event_type=event_type, user_id=user_id,
                                 payload=fields, created_at=utcnow()))
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()
