"""Account signup endpoint."""

from __future__ import annotations

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from account_verification.core.deps import get_dispatcher
from account_verification.core.rate_limit import rate_limit
from account_verification.db.session import get_db
from account_verification.schemas.account import AccountCreate, AccountCreateResponse, AccountOut
from account_verification.services.dispatcher import DeliveryDispatcher
from account_verification.services.verification import register_account

router = APIRouter(dependencies=[Depends(rate_limit())])


@router.post("", response_model=AccountCreateResponse, status_code=status.HTTP_201_CREATED)
def create_account(
    payload: AccountCreate,
    db: Session = Depends(get_db),
    dispatcher: DeliveryDispatcher = Depends(get_dispatcher),
) -> AccountCreateResponse:
    account = register_account(db, payload.email, payload.password, dispatcher)
    db.refresh(account)
    return AccountCreateResponse(message="verification_sent", account=AccountOut.model_validate(account))
