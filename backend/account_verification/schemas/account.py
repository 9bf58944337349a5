"""Pydantic schemas for account payloads and responses."""

from __future__ import annotations

import datetime as dt
from uuid import UUID

from pydantic import BaseModel, EmailStr, Field, field_validator

from account_verification.core.sanitize import clean_email, has_control_chars
from account_verification.models.enums import VerificationStatus


class AccountCreate(BaseModel):
    email: EmailStr
    password: str = Field(min_length=8, max_length=128)

    @field_validator("email", mode="before")
    @classmethod
    def normalize_email(cls, value: str) -> str:
        return clean_email(value)

    @field_validator("password")
    @classmethod
    def validate_password(cls, value: str) -> str:
        if has_control_chars(value):
            raise ValueError("password_contains_control_chars")
        if not value.strip():
            raise ValueError("password_required")
        return value


class AccountOut(BaseModel):
    id: UUID
    email: EmailStr
    verification_status: VerificationStatus
    verified_at: dt.datetime | None = None
    created_at: dt.datetime

    class Config:
        from_attributes = True


class AccountCreateResponse(BaseModel):
    message: str
    account: AccountOut
