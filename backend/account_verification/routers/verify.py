"""Verification endpoints (link click, re-send)."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.orm import Session

from account_verification.core.deps import get_dispatcher
from account_verification.core.exceptions import AccountAlreadyVerified, AccountNotFound
from account_verification.core.rate_limit import enforce_limit, rate_limit
from account_verification.db.session import get_db
from account_verification.schemas.account import AccountOut
from account_verification.schemas.verification import (
    ResendVerificationRequest,
    ResendVerificationResponse,
    VerificationResponse,
)
from account_verification.services.dispatcher import DeliveryDispatcher
from account_verification.services.verification import resend_verification, verify_token

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post(
    "/resend",
    response_model=ResendVerificationResponse,
    status_code=status.HTTP_202_ACCEPTED,
    dependencies=[Depends(rate_limit("resend"))],
)
def resend(
    payload: ResendVerificationRequest,
    response: Response,
    db: Session = Depends(get_db),
    dispatcher: DeliveryDispatcher = Depends(get_dispatcher),
) -> ResendVerificationResponse:
    enforce_limit(payload.email, "resend", response)
    try:
        resend_verification(db, payload.email, dispatcher)
    except (AccountNotFound, AccountAlreadyVerified) as exc:
        # Same answer either way so the endpoint cannot be used to enumerate accounts.
        logger.info("Re-send ignored: %s", exc.error_code)
    return ResendVerificationResponse(message="verification_resent")


@router.get(
    "/{token}",
    response_model=VerificationResponse,
    dependencies=[Depends(rate_limit("verify"))],
)
def verify(token: str, db: Session = Depends(get_db)) -> VerificationResponse:
    account = verify_token(db, token)
    return VerificationResponse(message="email_verified", account=AccountOut.model_validate(account))
