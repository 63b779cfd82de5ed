from sqlalchemy import Column, Integer, String, Text, Numeric, DateTime, ForeignKey, JSON

from gallery_backend.db import Base, utcnow

TYPE_PURCHASE = "purchase"
TYPE_RENEWAL = "renewal"

VERIFICATION_PENDING = "pending"
VERIFICATION_VERIFIED = "verified"
VERIFICATION_FAILED = "failed"


class Transaction(Base):
    """
    One row per platform transaction id. Rows are never deleted; retries
    after a failed verification reuse the row and bump `attempts`.
    """
    __tablename__ = "transactions"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    subscription_id = Column(Integer, ForeignKey("subscriptions.id"), nullable=True)

    transaction_type = Column(String(16), nullable=False, default=TYPE_PURCHASE)
    payment_method = Column(String(32), nullable=False)
    platform = Column(String(32), nullable=True)
    amount = Column(Numeric(12, 2), nullable=False, default=0)
    currency = Column(String(8), nullable=False, default="CNY")

    platform_transaction_id = Column(String(255), nullable=False, unique=True)
    receipt_data = Column(Text, nullable=True)

    verification_status = Column(String(16), nullable=False, default=VERIFICATION_PENDING)
    verification_message = Column(String(512), nullable=True)
    attempts = Column(Integer, nullable=False, default=1)

    tier = Column(String(16), nullable=True)
    billing_period = Column(String(16), nullable=True)
    extra = Column("metadata", JSON, nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)
