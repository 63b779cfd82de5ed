# -----------------------------------------------------------
# gallery_backend/api/subscription_routes.py
# -----------------------------------------------------------
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from gallery_backend.deps import get_db, get_subscription_engine, get_current_user_id
from gallery_backend.schemas import (
    ProductOut,
    SubscriptionOut,
    PaymentVerificationRequest,
    SubscriptionSyncRequest,
    UpgradeCalculationRequest,
    UpgradeQuoteOut,
)
from gallery_backend.services.subscription_service import SubscriptionEngine, PaymentSubmission

router = APIRouter(prefix="/subscription", tags=["subscription"])


@router.get("/products")
def list_products(engine: SubscriptionEngine = Depends(get_subscription_engine)):
    return {"ok": True, "data": [ProductOut.model_validate(p) for p in engine.list_products()]}


@router.get("/status")
def subscription_status(
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    engine: SubscriptionEngine = Depends(get_subscription_engine),
):
    return {"ok": True, "data": SubscriptionOut.model_validate(engine.get_current(db, user_id))}


@router.post("/verify")
def verify_payment(
    payload: PaymentVerificationRequest,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    engine: SubscriptionEngine = Depends(get_subscription_engine),
):
    snap = engine.verify_and_activate(db, user_id, PaymentSubmission(
        payment_method=payload.payment_method,
        transaction_id=payload.transaction_id,
        product_id=payload.product_id,
        platform=payload.platform,
        receipt_data=payload.receipt_data,
        original_transaction_id=payload.original_transaction_id,
    ))
    return {"ok": True, "data": SubscriptionOut.model_validate(snap)}


@router.post("/sync")
def sync_subscription(
    payload: SubscriptionSyncRequest,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    engine: SubscriptionEngine = Depends(get_subscription_engine),
):
    snap = engine.sync(db, user_id, platform=payload.platform, force_refresh=payload.force_refresh,
                       last_known_status=payload.last_known_status)
    return {"ok": True, "data": SubscriptionOut.model_validate(snap)}


@router.post("/upgrade/calculate")
def calculate_upgrade(
    payload: UpgradeCalculationRequest,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    engine: SubscriptionEngine = Depends(get_subscription_engine),
):
    quote = engine.calculate_upgrade(db, user_id, payload.target_tier)
    return {"ok": True, "data": UpgradeQuoteOut.model_validate(quote)}


@router.post("/cancel")
def cancel_subscription(
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    engine: SubscriptionEngine = Depends(get_subscription_engine),
):
    return {"ok": True, "data": SubscriptionOut.model_validate(engine.cancel(db, user_id))}
