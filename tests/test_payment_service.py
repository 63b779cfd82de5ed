"""
Payment verifier tests: platform compliance, Apple sandbox retry and
wallet fail-closed behaviour.
"""

import pytest
import requests

from gallery_backend import config
from gallery_backend.errors import PaymentPolicyViolation
from gallery_backend.services.payment_service import PaymentVerifier, PaymentMethod, check_compliance


@pytest.fixture
def verifier(http):
    return PaymentVerifier(http=http, timeout=5, strict=True, apple_shared_secret="shh",
                           wechat_mch_id="mch-1", alipay_app_id="ali-app")


# ============================================================================
# COMPLIANCE
# ============================================================================

class TestCompliance:

    @pytest.mark.parametrize("platform", ["ios", "iPhone", "IPAD"])
    @pytest.mark.parametrize("method", ["wechat_pay", "alipay"])
    def test_ios_requires_apple_iap(self, verifier, http, platform, method):
        with pytest.raises(PaymentPolicyViolation):
            verifier.verify(method, platform, "txn-1", "receipt")
        http.get.assert_not_called()
        http.post.assert_not_called()

    def test_apple_iap_allowed_on_ios(self):
        check_compliance(PaymentMethod.APPLE_IAP, "ios")

    def test_wallets_allowed_off_ios(self):
        check_compliance("wechat_pay", "android")
        check_compliance("alipay", None)

    def test_unknown_method_off_ios_is_rejected(self, verifier, http):
        assert verifier.verify("paypal", "android", "txn-1") is False
        http.get.assert_not_called()


# ============================================================================
# APPLE IAP
# ============================================================================

class TestAppleIAP:

    def test_production_success(self, verifier, http, make_response):
        http.post.return_value = make_response(200, {"status": 0})
        assert verifier.verify("apple_iap", "ios", "1000000123", "base64receipt") is True

        assert http.post.call_count == 1
        args, kwargs = http.post.call_args
        assert args[0] == config.APPLE_IAP_PRODUCTION_URL
        assert kwargs["json"] == {
            "receipt-data": "base64receipt",
            "password": "shh",
            "exclude-old-transactions": True,
        }
        assert kwargs["timeout"] == 5

    def test_sandbox_receipt_retried_once(self, verifier, http, make_response):
        http.post.side_effect = [make_response(200, {"status": 21007}),
                                 make_response(200, {"status": 0})]
        assert verifier.verify("apple_iap", "ios", "1000000123", "base64receipt") is True

        urls = [c.args[0] for c in http.post.call_args_list]
        assert urls == [config.APPLE_IAP_PRODUCTION_URL, config.APPLE_IAP_SANDBOX_URL]

    def test_sandbox_failure_is_not_retried_again(self, verifier, http, make_response):
        http.post.side_effect = [make_response(200, {"status": 21007}),
                                 make_response(200, {"status": 21007})]
        assert verifier.verify("apple_iap", "ios", "1000000123", "base64receipt") is False
        assert http.post.call_count == 2

    def test_other_status_is_not_retried(self, verifier, http, make_response):
        http.post.return_value = make_response(200, {"status": 21002})
        assert verifier.verify("apple_iap", "ios", "1000000123", "base64receipt") is False
        assert http.post.call_count == 1

    def test_missing_receipt(self, verifier, http):
        assert verifier.verify("apple_iap", "ios", "1000000123", None) is False
        http.post.assert_not_called()

    def test_network_error(self, verifier, http):
        http.post.side_effect = requests.ConnectionError("down")
        assert verifier.verify("apple_iap", "ios", "1000000123", "base64receipt") is False


# ============================================================================
# WALLETS
# ============================================================================

class TestWeChatPay:

    def test_trade_success(self, verifier, http, make_response):
        http.get.return_value = make_response(200, {"trade_state": "SUCCESS"})
        assert verifier.verify("wechat_pay", "android", "4200001234") is True
        assert http.get.call_args.args[0].endswith("/4200001234")

    def test_trade_not_paid(self, verifier, http, make_response):
        http.get.return_value = make_response(200, {"trade_state": "NOTPAY"})
        assert verifier.verify("wechat_pay", "android", "4200001234") is False

    def test_timeout_with_credentials_fails_closed_even_when_lenient(self, http):
        lenient = PaymentVerifier(http=http, strict=False, wechat_mch_id="mch-1")
        http.get.side_effect = requests.Timeout("slow")
        assert lenient.verify("wechat_pay", "android", "4200001234") is False

    def test_unconfigured_strict_rejects(self, http):
        v = PaymentVerifier(http=http, strict=True)
        v.wechat_mch_id = None
        assert v.verify("wechat_pay", "android", "4200001234") is False
        http.get.assert_not_called()

    def test_unconfigured_lenient_accepts(self, http):
        v = PaymentVerifier(http=http, strict=False)
        v.wechat_mch_id = None
        assert v.verify("wechat_pay", "android", "4200001234") is True
        http.get.assert_not_called()


class TestAlipay:

    def test_trade_success(self, verifier, http, make_response):
        http.get.return_value = make_response(200, {
            "alipay_trade_query_response": {"code": "10000", "trade_status": "TRADE_SUCCESS"}
        })
        assert verifier.verify("alipay", "android", "ORDER-1") is True

    @pytest.mark.parametrize("block", [
        {"code": "10000", "trade_status": "WAIT_BUYER_PAY"},
        {"code": "40004", "trade_status": "TRADE_SUCCESS"},
        {},
    ])
    def test_anything_else_fails(self, verifier, http, make_response, block):
        http.get.return_value = make_response(200, {"alipay_trade_query_response": block})
        assert verifier.verify("alipay", "android", "ORDER-1") is False

    def test_unconfigured_strict_rejects(self, http):
        v = PaymentVerifier(http=http, strict=True)
        v.alipay_app_id = None
        assert v.verify("alipay", "web", "ORDER-1") is False
