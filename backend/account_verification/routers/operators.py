"""Operator endpoints for the dead-letter set and per-account verification state."""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from account_verification.core.deps import get_delivery_queue, require_operator
from account_verification.db.session import get_db
from account_verification.schemas.verification import DeliveryOut, VerificationStatusOut
from account_verification.services.delivery_queue import DeliveryQueue
from account_verification.services.verification import verification_status

router = APIRouter(dependencies=[Depends(require_operator)])


@router.get("/dead-letters", response_model=list[DeliveryOut])
def list_dead_letters(
    limit: int = Query(default=100, ge=1, le=500),
    queue: DeliveryQueue = Depends(get_delivery_queue),
) -> list[DeliveryOut]:
    return [DeliveryOut.from_record(record) for record in queue.list_dead_letters(limit)]


@router.post("/dead-letters/{delivery_id}/replay", response_model=DeliveryOut)
def replay_dead_letter(
    delivery_id: UUID,
    queue: DeliveryQueue = Depends(get_delivery_queue),
) -> DeliveryOut:
    return DeliveryOut.from_record(queue.replay(delivery_id))


@router.get("/accounts/{account_id}/verification", response_model=VerificationStatusOut)
def get_verification_status(
    account_id: UUID,
    db: Session = Depends(get_db),
    queue: DeliveryQueue = Depends(get_delivery_queue),
) -> VerificationStatusOut:
    return VerificationStatusOut.from_snapshot(verification_status(db, account_id, queue))
