"""
Models aggregator so callers can `from gallery_backend.models import User, Subscription, ...`.
"""
from .auth_models import User, AuthToken
from .subscriptions_model import Subscription
from .transactions_model import Transaction
from .audit_model import AuditLog

__all__ = ["User", "AuthToken", "Subscription", "Transaction", "AuditLog"]
