# gallery_backend/errors.py
"""
Error taxonomy shared by the services and the HTTP layer.

Every error carries an HTTP status and a short machine code. Messages are
safe to return to clients; provider internals never go into them.
"""
from typing import Optional


class GalleryError(Exception):
    status_code = 400
    code = "error"
    default_message = "Request failed"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


# --------------------------------------------------
# AUTH
# --------------------------------------------------
class IdentityRejected(GalleryError):
    status_code = 401
    code = "identity_rejected"
    default_message = "OAuth authorization could not be verified"


class TokenInvalid(GalleryError):
    status_code = 401
    code = "token_invalid"
    default_message = "Invalid token"


class MalformedToken(TokenInvalid):
    code = "token_malformed"
    default_message = "Malformed token"


class InvalidSignature(TokenInvalid):
    code = "token_bad_signature"
    default_message = "Token signature is invalid"


class TokenExpired(TokenInvalid):
    code = "token_expired"
    default_message = "Token has expired"


class TokenClassMismatch(TokenInvalid):
    code = "token_wrong_class"
    default_message = "Token is not valid for this use"


class RefreshTokenInvalid(TokenInvalid):
    code = "refresh_token_invalid"
    default_message = "Refresh token is invalid or has already been used"


class UserNotFound(GalleryError):
    status_code = 404
    code = "user_not_found"
    default_message = "User not found"


# --------------------------------------------------
# PAYMENTS / SUBSCRIPTIONS
# --------------------------------------------------
class PaymentPolicyViolation(GalleryError):
    status_code = 403
    code = "payment_policy_violation"
    default_message = "iOS purchases must use Apple In-App Purchase"


class PaymentVerificationFailed(GalleryError):
    status_code = 402
    code = "payment_verification_failed"
    default_message = "Payment could not be verified"


class TransactionInProgress(GalleryError):
    status_code = 409
    code = "transaction_in_progress"
    default_message = "Transaction is already being processed"


class InvalidProductIdentifier(GalleryError):
    status_code = 400
    code = "invalid_product"
    default_message = "Unknown product identifier"


class InvalidUpgradeDirection(GalleryError):
    status_code = 400
    code = "invalid_upgrade"
    default_message = "Target tier must be higher than the current tier"


class NoActiveSubscription(GalleryError):
    status_code = 404
    code = "no_active_subscription"
    default_message = "No active paid subscription"
