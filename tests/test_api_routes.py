"""
HTTP smoke tests: the thin route layer over the auth and subscription
services, with provider verification stubbed out.
"""

from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from gallery_backend.deps import get_db, get_identity_verifier, get_payment_verifier, get_audit_sink
from gallery_backend.main import app
from gallery_backend.services.audit_service import AuditSink
from gallery_backend.services.identity_service import IdentityVerifier
from gallery_backend.services.payment_service import PaymentVerifier


@pytest.fixture
def client(session_factory, http, make_response):
    def _get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    identity = MagicMock(spec=IdentityVerifier)
    identity.verify.side_effect = lambda provider, code, claimed: code == "good-code"

    http.post.return_value = make_response(200, {"status": 0})
    payments = PaymentVerifier(http=http, strict=True, apple_shared_secret="shh")

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_identity_verifier] = lambda: identity
    app.dependency_overrides[get_payment_verifier] = lambda: payments
    app.dependency_overrides[get_audit_sink] = lambda: AuditSink(persist=False)
    yield TestClient(app)
    app.dependency_overrides.clear()


def login(client, code="good-code", provider_user_id="001234.apple.user"):
    return client.post("/api/auth/oauth/exchange", json={
        "provider": "apple",
        "authorization_code": code,
        "provider_user_id": provider_user_id,
        "display_name": "Test User",
    })


def bearer(tokens):
    return {"Authorization": f"Bearer {tokens['access_token']}"}


# ============================================================================
# PUBLIC ENDPOINTS
# ============================================================================

def test_health(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"


def test_products_listed_without_auth(client):
    resp = client.get("/api/subscription/products")
    assert resp.status_code == 200
    products = resp.json()["data"]
    assert len(products) == 4
    assert {p["currency"] for p in products} == {"CNY"}


# ============================================================================
# AUTH FLOW
# ============================================================================

def test_exchange_and_status(client):
    resp = login(client)
    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["is_new_user"] is True
    assert data["user"]["auth_provider"] == "apple"

    status = client.get("/api/subscription/status", headers=bearer(data["tokens"]))
    assert status.status_code == 200
    assert status.json()["data"]["tier"] == "free"


def test_rejected_identity(client):
    resp = login(client, code="forged")
    assert resp.status_code == 401
    assert resp.json() == {"ok": False, "error": "identity_rejected",
                           "detail": "OAuth authorization could not be verified"}


def test_refresh_replay_is_rejected(client):
    tokens = login(client).json()["data"]["tokens"]

    first = client.post("/api/auth/token/refresh", json={"refresh_token": tokens["refresh_token"]})
    assert first.status_code == 200

    replay = client.post("/api/auth/token/refresh", json={"refresh_token": tokens["refresh_token"]})
    assert replay.status_code == 401
    assert replay.json()["error"] == "refresh_token_invalid"


def test_logout_revokes_access_token(client):
    tokens = login(client).json()["data"]["tokens"]
    assert client.post("/api/auth/logout", headers=bearer(tokens)).status_code == 200
    assert client.get("/api/subscription/status", headers=bearer(tokens)).status_code == 401


def test_missing_bearer(client):
    assert client.get("/api/subscription/status").status_code == 401


def test_delete_account(client):
    tokens = login(client).json()["data"]["tokens"]
    assert client.delete("/api/auth/account", headers=bearer(tokens)).status_code == 200
    assert client.get("/api/subscription/status", headers=bearer(tokens)).status_code == 401


# ============================================================================
# SUBSCRIPTION FLOW
# ============================================================================

def test_purchase_upgrade_quote_and_cancel(client):
    headers = bearer(login(client).json()["data"]["tokens"])

    verify = client.post("/api/subscription/verify", headers=headers, json={
        "payment_method": "apple_iap",
        "platform": "ios",
        "transaction_id": "1000000777",
        "product_id": "joyhisn.LightGallery.pro.monthly",
        "receipt_data": "base64receipt",
    })
    assert verify.status_code == 200
    assert verify.json()["data"]["tier"] == "pro"

    again = client.post("/api/subscription/verify", headers=headers, json={
        "payment_method": "apple_iap",
        "platform": "ios",
        "transaction_id": "1000000777",
        "product_id": "joyhisn.LightGallery.pro.monthly",
        "receipt_data": "base64receipt",
    })
    assert again.json()["data"]["id"] == verify.json()["data"]["id"]

    quote = client.post("/api/subscription/upgrade/calculate", headers=headers, json={"target_tier": "max"})
    assert quote.status_code == 200
    assert quote.json()["data"]["target_tier"] == "max"

    downgrade = client.post("/api/subscription/upgrade/calculate", headers=headers, json={"target_tier": "free"})
    assert downgrade.status_code == 400

    sync = client.post("/api/subscription/sync", headers=headers, json={"platform": "ios", "force_refresh": True})
    assert sync.json()["data"]["status"] == "active"

    cancel = client.post("/api/subscription/cancel", headers=headers)
    assert cancel.status_code == 200
    assert cancel.json()["data"]["status"] == "cancelled"
    assert cancel.json()["data"]["has_access"] is True


def test_wallet_payment_on_ios_is_forbidden(client, http):
    headers = bearer(login(client).json()["data"]["tokens"])
    resp = client.post("/api/subscription/verify", headers=headers, json={
        "payment_method": "alipay",
        "platform": "ipad",
        "transaction_id": "ALI-1",
        "product_id": "joyhisn.LightGallery.max.yearly",
    })
    assert resp.status_code == 403
    assert resp.json()["error"] == "payment_policy_violation"
    http.get.assert_not_called()
