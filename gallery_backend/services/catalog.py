# gallery_backend/services/catalog.py
from dataclasses import dataclass
from decimal import Decimal
from typing import List

from gallery_backend.errors import InvalidProductIdentifier
from gallery_backend.models.subscriptions_model import (
    TIER_FREE, TIER_PRO, TIER_MAX, PERIOD_MONTHLY, PERIOD_YEARLY,
)

CURRENCY = "CNY"
FREE_PRODUCT_ID = "com.lightgallery.free"
PRODUCT_PREFIX = "joyhisn.LightGallery"

TIER_RANK = {TIER_FREE: 0, TIER_PRO: 1, TIER_MAX: 2}
PERIOD_DAYS = {PERIOD_MONTHLY: 30, PERIOD_YEARLY: 365}

PRICES = {
    (TIER_PRO, PERIOD_MONTHLY): Decimal("10.00"),
    (TIER_PRO, PERIOD_YEARLY): Decimal("100.00"),
    (TIER_MAX, PERIOD_MONTHLY): Decimal("20.00"),
    (TIER_MAX, PERIOD_YEARLY): Decimal("200.00"),
}


@dataclass(frozen=True)
class Product:
    product_id: str
    tier: str
    billing_period: str
    price: Decimal
    currency: str = CURRENCY


def product_id_for(tier: str, billing_period: str) -> str:
    return f"{PRODUCT_PREFIX}.{tier}.{billing_period}"


def parse_product_id(product_id: str) -> Product:
    """
    Map a store product id to (tier, period), e.g.
    joyhisn.LightGallery.max.yearly -> (max, yearly).
    """
    if not product_id:
        raise InvalidProductIdentifier()

    if f".{TIER_PRO}." in product_id:
        tier = TIER_PRO
    elif f".{TIER_MAX}." in product_id:
        tier = TIER_MAX
    else:
        raise InvalidProductIdentifier(f"Unknown product identifier: {product_id}")

    if product_id.endswith(f".{PERIOD_MONTHLY}"):
        period = PERIOD_MONTHLY
    elif product_id.endswith(f".{PERIOD_YEARLY}"):
        period = PERIOD_YEARLY
    else:
        raise InvalidProductIdentifier(f"Unknown billing period in: {product_id}")

    return Product(product_id=product_id, tier=tier, billing_period=period,
                   price=PRICES[(tier, period)])


def price_for(tier: str, billing_period: str) -> Decimal:
    if tier == TIER_FREE:
        return Decimal("0.00")
    return PRICES[(tier, billing_period)]


def list_products() -> List[Product]:
    return [
        Product(product_id=product_id_for(tier, period), tier=tier,
                billing_period=period, price=price)
        for (tier, period), price in PRICES.items()
    ]
