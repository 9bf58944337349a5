"""Shared enum values used by the database models and schemas."""

from __future__ import annotations

import enum


class VerificationStatus(str, enum.Enum):
    unverified = "unverified"
    verified = "verified"


class TokenInvalidationReason(str, enum.Enum):
    consumed = "consumed"
    superseded = "superseded"


class DeliveryStatus(str, enum.Enum):
    pending = "pending"
    sent = "sent"
    failed_permanently = "failed_permanently"
    # Worker found the send pointless (account verified or token no longer active).
    cancelled = "cancelled"


class VerificationState(str, enum.Enum):
    unverified = "unverified"
    pending_delivery = "pending_delivery"
    expired = "expired"
    verified = "verified"
