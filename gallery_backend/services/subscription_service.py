# -----------------------------------------------------------
# gallery_backend/services/subscription_service.py
# Subscription state machine: activation, lazy expiry, sync,
# cancellation and prorated upgrade quotes
# -----------------------------------------------------------
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional, Callable, List, Tuple

from dateutil.relativedelta import relativedelta
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from gallery_backend import config
from gallery_backend.db import utcnow
from gallery_backend.errors import (
    PaymentPolicyViolation,
    PaymentVerificationFailed,
    TransactionInProgress,
    InvalidUpgradeDirection,
    NoActiveSubscription,
)
from gallery_backend.models import Subscription, Transaction
from gallery_backend.models.subscriptions_model import (
    TIER_FREE, PERIOD_MONTHLY, PERIOD_YEARLY,
    STATUS_ACTIVE, STATUS_EXPIRED, STATUS_CANCELLED,
)
from gallery_backend.models.transactions_model import (
    TYPE_PURCHASE, TYPE_RENEWAL, VERIFICATION_VERIFIED, VERIFICATION_FAILED,
)
from gallery_backend.services import catalog
from gallery_backend.services.audit_service import AuditSink, sanitize_identifier
from gallery_backend.services.ledger_service import TransactionLedger, PaymentAttempt
from gallery_backend.services.payment_service import PaymentVerifier

log = logging.getLogger("gallery_backend.subscriptions")

FREE_TIER_LIFETIME = relativedelta(years=100)
TWO_PLACES = Decimal("0.01")


# --------------------------------------------------
# VALUE OBJECTS
# --------------------------------------------------
@dataclass(frozen=True)
class PaymentSubmission:
    payment_method: str
    transaction_id: str
    product_id: str
    platform: Optional[str] = None
    receipt_data: Optional[str] = None
    original_transaction_id: Optional[str] = None


@dataclass(frozen=True)
class SubscriptionSnapshot:
    id: int
    user_id: int
    tier: str
    billing_period: str
    status: str
    payment_method: str
    start_date: Optional[datetime]
    expiry_date: datetime
    auto_renew: bool
    product_id: Optional[str]
    original_transaction_id: Optional[str]
    last_synced_at: Optional[datetime]
    has_access: bool

    @property
    def effective_tier(self) -> str:
        return self.tier if self.has_access else TIER_FREE


@dataclass(frozen=True)
class UpgradeQuote:
    current_tier: str
    target_tier: str
    billing_period: str
    remaining_days: int
    prorated_amount: Decimal
    currency: str = catalog.CURRENCY


def snapshot_of(sub: Subscription, now: datetime) -> SubscriptionSnapshot:
    """Paid access survives cancellation until the expiry date."""
    return SubscriptionSnapshot(
        id=sub.id,
        user_id=sub.user_id,
        tier=sub.tier,
        billing_period=sub.billing_period,
        status=sub.status,
        payment_method=sub.payment_method,
        start_date=sub.start_date,
        expiry_date=sub.expiry_date,
        auto_renew=bool(sub.auto_renew),
        product_id=sub.product_id,
        original_transaction_id=sub.original_transaction_id,
        last_synced_at=sub.last_synced_at,
        has_access=sub.status in (STATUS_ACTIVE, STATUS_CANCELLED) and sub.expiry_date > now,
    )


def expiry_after(start: datetime, billing_period: str) -> datetime:
    if billing_period == PERIOD_MONTHLY:
        return start + relativedelta(months=1)
    if billing_period == PERIOD_YEARLY:
        return start + relativedelta(years=1)
    raise ValueError(f"Invalid billing period: {billing_period}")


def prorated_amount(current_price: Decimal, target_price: Decimal,
                    remaining_days: int, period_days: int) -> Decimal:
    """
    (target - current) * remaining / period, half-up to 2 places, never negative.
    """
    if remaining_days <= 0 or period_days <= 0:
        return Decimal("0.00")
    amount = (Decimal(target_price) - Decimal(current_price)) * Decimal(remaining_days) / Decimal(period_days)
    amount = amount.quantize(TWO_PLACES, rounding=ROUND_HALF_UP)
    return max(amount, Decimal("0.00"))


# --------------------------------------------------
# ENGINE
# --------------------------------------------------
class SubscriptionEngine:
    def __init__(
        self,
        verifier: PaymentVerifier,
        ledger: Optional[TransactionLedger] = None,
        audit: Optional[AuditSink] = None,
        clock: Callable[[], datetime] = utcnow,
        sync_staleness: Optional[timedelta] = None,
    ):
        self.verifier = verifier
        self.ledger = ledger or TransactionLedger()
        self.audit = audit or AuditSink()
        self.clock = clock
        self.sync_staleness = sync_staleness or timedelta(minutes=config.SYNC_STALENESS_MINUTES)

    # ---------------- products ----------------
    def list_products(self) -> List[catalog.Product]:
        return catalog.list_products()

    # ---------------- reads ----------------
    def _current(self, db: Session, user_id: int) -> Optional[Subscription]:
        return (
            db.query(Subscription)
            .filter(Subscription.user_id == user_id)
            .order_by(Subscription.created_at.desc(), Subscription.id.desc())
            .first()
        )

    def _create_free(self, db: Session, user_id: int) -> Subscription:
        now = self.clock()
        sub = Subscription(
            user_id=user_id,
            tier=TIER_FREE,
            billing_period=PERIOD_MONTHLY,
            status=STATUS_ACTIVE,
            payment_method="none",
            start_date=now,
            expiry_date=now + FREE_TIER_LIFETIME,
            auto_renew=False,
            product_id=catalog.FREE_PRODUCT_ID,
            last_synced_at=now,
            created_at=now,
            updated_at=now,
        )
        db.add(sub)
        db.flush()
        log.info("Created free subscription for user %s", user_id)
        return sub

    def _resolve_current(self, db: Session, user_id: int) -> Subscription:
        sub = self._current(db, user_id)
        if sub is None:
            sub = self._create_free(db, user_id)
        return sub

    def _lazy_expire(self, sub: Subscription) -> bool:
        now = self.clock()
        if sub.status == STATUS_ACTIVE and sub.expiry_date is not None and sub.expiry_date < now:
            log.info("Subscription %s expired at %s", sub.id, sub.expiry_date)
            sub.status = STATUS_EXPIRED
            sub.updated_at = now
            return True
        return False

    def get_current(self, db: Session, user_id: int) -> SubscriptionSnapshot:
        sub = self._resolve_current(db, user_id)
        self._lazy_expire(sub)
        snap = snapshot_of(sub, self.clock())
        db.commit()
        return snap

    # ---------------- verify & activate ----------------
    def verify_and_activate(self, db: Session, user_id: int,
                            submission: PaymentSubmission) -> SubscriptionSnapshot:
        tid = submission.transaction_id
        method = (submission.payment_method or "").strip().lower()
        log.info("Verifying payment for user %s: method=%s product=%s txn=%s",
                 user_id, method, submission.product_id, sanitize_identifier(tid))

        product = catalog.parse_product_id(submission.product_id)
        attempt = PaymentAttempt(
            user_id=user_id,
            payment_method=method,
            platform_transaction_id=tid,
            platform=submission.platform,
            receipt_data=submission.receipt_data,
            amount=product.price,
            tier=product.tier,
            billing_period=product.billing_period,
            product_id=product.product_id,
        )

        try:
            self.verifier.check_compliance(method, submission.platform)
        except PaymentPolicyViolation:
            try:
                self.ledger.record_attempt(db, attempt, VERIFICATION_FAILED, "Platform payment policy violation")
                db.commit()
            except (IntegrityError, TransactionInProgress):
                db.rollback()
            self.audit.policy_violation(user_id, tid, method, submission.platform)
            raise

        existing = self.ledger.find_by_platform_id(db, tid, for_update=True)
        if self.ledger.is_verified(existing):
            return self._replay(db, user_id, existing)

        try:
            txn = self.ledger.claim(db, attempt)
        except IntegrityError:
            db.rollback()
            existing = self.ledger.find_by_platform_id(db, tid)
            if self.ledger.is_verified(existing):
                return self._replay(db, user_id, existing)
            raise TransactionInProgress()

        try:
            verified = self.verifier.verify(method, submission.platform,
                                            tid, submission.receipt_data)
        except Exception:
            log.exception("Payment verifier raised for txn %s", sanitize_identifier(tid))
            verified = False

        if not verified:
            self.ledger.record_outcome(db, txn, VERIFICATION_FAILED, "Payment platform did not confirm the transaction")
            db.commit()
            self.audit.payment_verification_failure(user_id, tid, method,
                                                    "Payment verification failed")
            raise PaymentVerificationFailed()

        sub, renewal = self._resolve_target(db, user_id, submission.original_transaction_id)
        now = self.clock()
        sub.tier = product.tier
        sub.billing_period = product.billing_period
        sub.status = STATUS_ACTIVE
        sub.payment_method = method
        sub.product_id = product.product_id
        sub.auto_renew = True
        if sub.start_date is None:
            sub.start_date = now
        sub.expiry_date = expiry_after(now, product.billing_period)
        sub.original_transaction_id = submission.original_transaction_id or tid
        sub.last_synced_at = now
        sub.updated_at = now
        db.flush()

        self.ledger.record_outcome(db, txn, VERIFICATION_VERIFIED, "Verified",
                                   subscription_id=sub.id,
                                   transaction_type=TYPE_RENEWAL if renewal else TYPE_PURCHASE)
        snap = snapshot_of(sub, self.clock())
        db.commit()

        self.audit.payment_verification(user_id, tid, method, product.product_id)
        self.audit.subscription_update(user_id, sub.id, sub.tier, sub.billing_period, sub.status)
        if renewal:
            self.audit.subscription_renewal(user_id, sub.id, sub.original_transaction_id)

        log.info("Subscription %s updated for user %s: tier=%s expiry=%s",
                 sub.id, user_id, sub.tier, sub.expiry_date)
        return snap

    def _replay(self, db: Session, user_id: int, txn: Transaction) -> SubscriptionSnapshot:
        if txn.user_id != user_id:
            tid, method = txn.platform_transaction_id, txn.payment_method
            log.warning("Transaction %s already verified for a different user", sanitize_identifier(tid))
            db.rollback()
            self.audit.payment_verification_failure(user_id, tid, method,
                                                    "Transaction already used by another account")
            raise PaymentVerificationFailed("Transaction already used by another account")

        sub = db.get(Subscription, txn.subscription_id) if txn.subscription_id else None
        if sub is None:
            sub = self._resolve_current(db, user_id)
        snap = snapshot_of(sub, self.clock())
        db.commit()
        log.info("Transaction %s already processed; returning subscription %s",
                 sanitize_identifier(txn.platform_transaction_id), snap.id)
        return snap

    def _resolve_target(self, db: Session, user_id: int,
                        original_transaction_id: Optional[str]) -> Tuple[Subscription, bool]:
        if original_transaction_id:
            sub = (
                db.query(Subscription)
                .filter(Subscription.user_id == user_id,
                        Subscription.original_transaction_id == original_transaction_id)
                .order_by(Subscription.created_at.desc(), Subscription.id.desc())
                .first()
            )
            if sub is not None:
                return sub, True

        current = self._current(db, user_id)
        if current is not None:
            self._lazy_expire(current)
            if current.status == STATUS_ACTIVE:
                return current, False

        now = self.clock()
        sub = Subscription(user_id=user_id, created_at=now, updated_at=now)
        db.add(sub)
        return sub, False

    # ---------------- sync ----------------
    def sync(self, db: Session, user_id: int, platform: Optional[str] = None,
             force_refresh: bool = False, last_known_status: Optional[str] = None) -> SubscriptionSnapshot:
        sub = self._resolve_current(db, user_id)
        now = self.clock()
        if last_known_status and last_known_status != sub.status:
            log.info("Client status %s differs from stored %s for subscription %s",
                     last_known_status, sub.status, sub.id)

        needs_sync = force_refresh or sub.last_synced_at is None \
            or sub.last_synced_at < now - self.sync_staleness
        if needs_sync:
            log.info("Syncing subscription %s (platform=%s)", sub.id, platform)
            sub.last_synced_at = now
            sub.updated_at = now

        self._lazy_expire(sub)
        snap = snapshot_of(sub, self.clock())
        db.commit()
        return snap

    # ---------------- cancel ----------------
    def cancel(self, db: Session, user_id: int) -> SubscriptionSnapshot:
        sub = self._current(db, user_id)
        if sub is not None:
            self._lazy_expire(sub)
        if sub is None or sub.status != STATUS_ACTIVE or sub.tier == TIER_FREE:
            db.commit()
            raise NoActiveSubscription()

        sub.status = STATUS_CANCELLED
        sub.auto_renew = False
        sub.updated_at = self.clock()
        snap = snapshot_of(sub, self.clock())
        db.commit()

        self.audit.subscription_cancellation(user_id, sub.id, sub.tier)
        log.info("Subscription %s cancelled; access until %s", sub.id, sub.expiry_date)
        return snap

    # ---------------- upgrade quote ----------------
    def calculate_upgrade(self, db: Session, user_id: int, target_tier: str) -> UpgradeQuote:
        target = (target_tier or "").strip().lower()
        if target not in catalog.TIER_RANK:
            raise InvalidUpgradeDirection(f"Unknown tier: {target_tier}")

        sub = self._current(db, user_id)
        if sub is None:
            # never materialised: quote from the implicit free tier
            current_tier, period = TIER_FREE, PERIOD_MONTHLY
        elif sub.status != STATUS_ACTIVE or sub.expiry_date < self.clock():
            raise NoActiveSubscription()
        else:
            current_tier, period = sub.tier, sub.billing_period

        if catalog.TIER_RANK[target] <= catalog.TIER_RANK.get(current_tier, 0):
            raise InvalidUpgradeDirection()

        period_days = catalog.PERIOD_DAYS[period]
        if current_tier == TIER_FREE:
            remaining = period_days
        else:
            remaining = max(0, (sub.expiry_date - self.clock()).days)

        amount = prorated_amount(
            catalog.price_for(current_tier, period),
            catalog.price_for(target, period),
            remaining,
            period_days,
        )
        log.info("Prorated upgrade for user %s: %s -> %s = ¥%s", user_id, current_tier, target, amount)
        return UpgradeQuote(current_tier=current_tier, target_tier=target, billing_period=period,
                            remaining_days=remaining, prorated_amount=amount)

    # ---------------- sweep ----------------
    def expire_lapsed(self, db: Session, now: Optional[datetime] = None) -> int:
        cutoff = now or self.clock()
        changed = (
            db.query(Subscription)
            .filter(Subscription.status == STATUS_ACTIVE, Subscription.expiry_date < cutoff)
            .update({Subscription.status: STATUS_EXPIRED, Subscription.updated_at: cutoff},
                    synchronize_session=False)
        )
        db.commit()
        if changed:
            log.info("Expired %d lapsed subscription(s)", changed)
        return changed
