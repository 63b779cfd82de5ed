# gallery_backend/schemas.py

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, EmailStr, Field

# =====================================================
# AUTH / USER
# =====================================================

class OAuthExchangeRequest(BaseModel):
    provider: str = Field(..., max_length=32, description="apple | wechat | alipay")
    authorization_code: str = Field(..., min_length=1)
    provider_user_id: str = Field(..., min_length=1, max_length=255)
    display_name: Optional[str] = Field(None, max_length=255)
    email: Optional[EmailStr] = None
    avatar_url: Optional[str] = Field(None, max_length=1024)
    device_info: Optional[str] = Field(None, max_length=512)


class RefreshTokenRequest(BaseModel):
    refresh_token: str = Field(..., min_length=1)


class UserOut(BaseModel):
    id: int
    display_name: Optional[str] = None
    email: Optional[str] = None
    avatar_url: Optional[str] = None
    auth_provider: str
    provider_user_id: str
    last_login_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class TokenOut(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "Bearer"
    expires_at: datetime
    refresh_expires_at: datetime

    class Config:
        from_attributes = True


class AuthOut(BaseModel):
    tokens: TokenOut
    user: UserOut
    is_new_user: bool = False

    class Config:
        from_attributes = True


# =====================================================
# SUBSCRIPTIONS
# =====================================================

class ProductOut(BaseModel):
    product_id: str
    tier: str
    billing_period: str
    price: Decimal
    currency: str

    class Config:
        from_attributes = True


class SubscriptionOut(BaseModel):
    id: int
    user_id: int
    tier: str
    effective_tier: str
    billing_period: str
    status: str
    payment_method: str
    start_date: Optional[datetime] = None
    expiry_date: datetime
    auto_renew: bool
    product_id: Optional[str] = None
    has_access: bool
    last_synced_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class PaymentVerificationRequest(BaseModel):
    payment_method: str = Field(..., description="apple_iap | wechat_pay | alipay")
    transaction_id: str = Field(..., min_length=1, max_length=255)
    product_id: str = Field(..., min_length=1, max_length=128)
    platform: Optional[str] = Field(None, max_length=32)
    receipt_data: Optional[str] = None
    original_transaction_id: Optional[str] = Field(None, max_length=255)


class SubscriptionSyncRequest(BaseModel):
    platform: Optional[str] = None
    force_refresh: bool = False
    last_known_status: Optional[str] = None


class UpgradeCalculationRequest(BaseModel):
    target_tier: str


class UpgradeQuoteOut(BaseModel):
    current_tier: str
    target_tier: str
    billing_period: str
    remaining_days: int
    prorated_amount: Decimal
    currency: str

    class Config:
        from_attributes = True
