from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey

from gallery_backend.db import Base, utcnow

TIER_FREE = "free"
TIER_PRO = "pro"
TIER_MAX = "max"
TIERS = (TIER_FREE, TIER_PRO, TIER_MAX)

PERIOD_MONTHLY = "monthly"
PERIOD_YEARLY = "yearly"

STATUS_ACTIVE = "active"
STATUS_EXPIRED = "expired"
STATUS_CANCELLED = "cancelled"
STATUS_PENDING = "pending"


class Subscription(Base):
    __tablename__ = "subscriptions"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    tier = Column(String(16), nullable=False, default=TIER_FREE)
    billing_period = Column(String(16), nullable=False, default=PERIOD_MONTHLY)
    status = Column(String(16), nullable=False, default=STATUS_ACTIVE)
    payment_method = Column(String(32), nullable=False, default="none")

    start_date = Column(DateTime, nullable=True)
    expiry_date = Column(DateTime, nullable=False)
    auto_renew = Column(Boolean, nullable=False, default=False)

    product_id = Column(String(128), nullable=True)
    original_transaction_id = Column(String(255), nullable=True, index=True)
    last_synced_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)
