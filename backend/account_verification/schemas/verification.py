"""Verification-related schemas (verify result, re-send, operator views)."""

from __future__ import annotations

import datetime as dt
from uuid import UUID

from pydantic import BaseModel, EmailStr, field_validator

from account_verification.core.logging import mask_token
from account_verification.core.sanitize import clean_email
from account_verification.models.enums import DeliveryStatus, VerificationState
from account_verification.schemas.account import AccountOut
from account_verification.services.delivery_queue import DeliveryRecord
from account_verification.services.verification import VerificationSnapshot


class VerificationResponse(BaseModel):
    message: str
    account: AccountOut


class ResendVerificationRequest(BaseModel):
    email: EmailStr

    @field_validator("email", mode="before")
    @classmethod
    def normalize_email(cls, value: str) -> str:
        return clean_email(value)


class ResendVerificationResponse(BaseModel):
    message: str


class DeliveryOut(BaseModel):
    id: UUID
    account_id: UUID
    token_hint: str
    status: DeliveryStatus
    attempt_count: int
    max_attempts: int
    next_attempt_at: dt.datetime
    last_attempt_at: dt.datetime | None = None
    last_error: str | None = None
    sent_at: dt.datetime | None = None
    dead_lettered_at: dt.datetime | None = None
    created_at: dt.datetime

    @classmethod
    def from_record(cls, record: DeliveryRecord) -> "DeliveryOut":
        return cls(
            id=record.id,
            account_id=record.account_id,
            token_hint=mask_token(record.token),
            status=record.status,
            attempt_count=record.attempt_count,
            max_attempts=record.max_attempts,
            next_attempt_at=record.next_attempt_at,
            last_attempt_at=record.last_attempt_at,
            last_error=record.last_error,
            sent_at=record.sent_at,
            dead_lettered_at=record.dead_lettered_at,
            created_at=record.created_at,
        )


class VerificationStatusOut(BaseModel):
    account_id: UUID
    email: EmailStr
    state: VerificationState
    verified_at: dt.datetime | None = None
    active_token_expires_at: dt.datetime | None = None
    last_delivery: DeliveryOut | None = None

    @classmethod
    def from_snapshot(cls, snapshot: VerificationSnapshot) -> "VerificationStatusOut":
        return cls(
            account_id=snapshot.account_id,
            email=snapshot.email,
            state=snapshot.state,
            verified_at=snapshot.verified_at,
            active_token_expires_at=snapshot.active_token_expires_at,
            last_delivery=DeliveryOut.from_record(snapshot.last_delivery) if snapshot.last_delivery else None,
        )
