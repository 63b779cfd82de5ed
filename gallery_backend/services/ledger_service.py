# -----------------------------------------------------------
# gallery_backend/services/ledger_service.py
# Idempotency ledger keyed by platform transaction id
# -----------------------------------------------------------
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from sqlalchemy.orm import Session

from gallery_backend.db import utcnow
from gallery_backend.errors import TransactionInProgress
from gallery_backend.models import Transaction
from gallery_backend.models.transactions_model import (
    TYPE_PURCHASE,
    VERIFICATION_PENDING,
    VERIFICATION_VERIFIED,
    VERIFICATION_FAILED,
)
from gallery_backend.services.audit_service import sanitize_identifier, sanitize_message
from gallery_backend.services.catalog import CURRENCY

log = logging.getLogger("gallery_backend.ledger")


@dataclass
class PaymentAttempt:
    user_id: int
    payment_method: str
    platform_transaction_id: str
    platform: Optional[str] = None
    receipt_data: Optional[str] = None
    amount: Decimal = Decimal("0.00")
    tier: Optional[str] = None
    billing_period: Optional[str] = None
    transaction_type: str = TYPE_PURCHASE
    product_id: Optional[str] = None


class TransactionLedger:
    def find_by_platform_id(self, db: Session, platform_transaction_id: str,
                            for_update: bool = False) -> Optional[Transaction]:
        q = db.query(Transaction).filter(Transaction.platform_transaction_id == platform_transaction_id)
        if for_update:
            q = q.with_for_update()
        return q.first()

    def claim(self, db: Session, attempt: PaymentAttempt) -> Transaction:
        """
        Reserve the platform transaction id with a pending row.

        A previously failed row is reused (attempts + 1). A verified row is
        never claimed again. The flush makes a concurrent insert of the same
        id fail on the unique constraint.
        """
        txn = self.find_by_platform_id(db, attempt.platform_transaction_id, for_update=True)
        if txn is not None:
            if txn.verification_status != VERIFICATION_FAILED:
                raise TransactionInProgress()
            txn.attempts = (txn.attempts or 1) + 1
            txn.verification_status = VERIFICATION_PENDING
            txn.verification_message = None
        else:
            txn = Transaction(platform_transaction_id=attempt.platform_transaction_id, attempts=1,
                              verification_status=VERIFICATION_PENDING, currency=CURRENCY)
            db.add(txn)

        txn.user_id = attempt.user_id
        txn.payment_method = attempt.payment_method
        txn.platform = attempt.platform
        txn.receipt_data = attempt.receipt_data
        txn.amount = attempt.amount
        txn.tier = attempt.tier
        txn.billing_period = attempt.billing_period
        txn.transaction_type = attempt.transaction_type
        txn.extra = {"product_id": attempt.product_id} if attempt.product_id else None
        txn.updated_at = utcnow()
        db.flush()
        return txn

    def record_outcome(self, db: Session, txn: Transaction, status: str,
                       message: Optional[str] = None, subscription_id: Optional[int] = None,
                       transaction_type: Optional[str] = None) -> Transaction:
        txn.verification_status = status
        txn.verification_message = sanitize_message(message) if message else None
        if subscription_id is not None:
            txn.subscription_id = subscription_id
        if transaction_type is not None:
            txn.transaction_type = transaction_type
        txn.updated_at = utcnow()
        db.flush()
        log.info("Transaction %s -> %s (attempt %s)",
                 sanitize_identifier(txn.platform_transaction_id), status, txn.attempts)
        return txn

    def record_attempt(self, db: Session, attempt: PaymentAttempt, status: str,
                       message: Optional[str] = None) -> Transaction:
        txn = self.claim(db, attempt)
        return self.record_outcome(db, txn, status, message)

    @staticmethod
    def is_verified(txn: Optional[Transaction]) -> bool:
        return txn is not None and txn.verification_status == VERIFICATION_VERIFIED
