"""Convenience imports for Alembic metadata discovery."""

from account_verification.models.account import Account
from account_verification.models.verification_token import VerificationToken
from account_verification.models.delivery_attempt import DeliveryAttempt  # noqa: F401
