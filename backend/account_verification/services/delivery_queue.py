"""Durable delivery queue backed by the delivery_attempts table."""

from __future__ import annotations

import datetime as dt
import logging
from dataclasses import dataclass
from typing import Callable, Protocol
from uuid import UUID, uuid4

from sqlalchemy import delete, or_, select, update
from sqlalchemy.orm import Session

from account_verification.core.exceptions import NotFoundError
from account_verification.models.delivery_attempt import DeliveryAttempt
from account_verification.models.enums import DeliveryStatus

logger = logging.getLogger(__name__)

MAX_ERROR_LENGTH = 2000


def _utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


@dataclass(frozen=True)
class DeliveryJob:
    id: UUID
    account_id: UUID
    token: str
    attempt_count: int
    max_attempts: int
    claim_id: UUID | None = None


@dataclass(frozen=True)
class DeliveryRecord:
    id: UUID
    account_id: UUID
    token: str
    status: DeliveryStatus
    attempt_count: int
    max_attempts: int
    next_attempt_at: dt.datetime
    last_attempt_at: dt.datetime | None
    last_error: str | None
    sent_at: dt.datetime | None
    dead_lettered_at: dt.datetime | None
    created_at: dt.datetime


class DeliveryQueue(Protocol):
    """Durable queue of verification emails.

    Jobs handed out by ``dequeue`` carry the claim they were leased under.
    The four finishing calls return ``False`` when that claim is no longer
    current (the lease expired and another worker took the job) and leave
    the row untouched.
    """

    def enqueue(self, account_id: UUID, token: str, *, now: dt.datetime | None = None) -> DeliveryJob:
        ...

    def dequeue(self, limit: int, *, now: dt.datetime | None = None) -> list[DeliveryJob]:
        ...

    def ack(self, job: DeliveryJob, *, now: dt.datetime | None = None) -> bool:
        ...

    def retry(self, job: DeliveryJob, error: str, *, next_attempt_at: dt.datetime, now: dt.datetime | None = None) -> bool:
        ...

    def dead_letter(self, job: DeliveryJob, error: str, *, now: dt.datetime | None = None) -> bool:
        ...

    def cancel(self, job: DeliveryJob, reason: str, *, now: dt.datetime | None = None) -> bool:
        ...

    def replay(self, job_id: UUID, *, now: dt.datetime | None = None) -> DeliveryRecord:
        ...

    def get(self, job_id: UUID) -> DeliveryRecord | None:
        ...

    def list_dead_letters(self, limit: int = 100) -> list[DeliveryRecord]:
        ...

    def latest_for_account(self, account_id: UUID) -> DeliveryRecord | None:
        ...

    def purge_finished(self, *, retention: dt.timedelta, now: dt.datetime | None = None) -> int:
        ...


def _job(row: DeliveryAttempt) -> DeliveryJob:
    return DeliveryJob(
        id=row.id,
        account_id=row.account_id,
        token=row.token,
        attempt_count=row.attempt_count,
        max_attempts=row.max_attempts,
        claim_id=row.claim_id,
    )


def _record(row: DeliveryAttempt) -> DeliveryRecord:
    return DeliveryRecord(
        id=row.id,
        account_id=row.account_id,
        token=row.token,
        status=row.status,
        attempt_count=row.attempt_count,
        max_attempts=row.max_attempts,
        next_attempt_at=row.next_attempt_at,
        last_attempt_at=row.last_attempt_at,
        last_error=row.last_error,
        sent_at=row.sent_at,
        dead_lettered_at=row.dead_lettered_at,
        created_at=row.created_at,
    )


def _trim_error(error: str | None) -> str | None:
    if error is None:
        return None
    return error[:MAX_ERROR_LENGTH]


class SqlDeliveryQueue:
    """Queue whose units of work are rows; workers claim them with a lease."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        *,
        max_attempts: int,
        lease_seconds: int,
    ) -> None:
        self.session_factory = session_factory
        self.max_attempts = max_attempts
        self.lease = dt.timedelta(seconds=lease_seconds)

    def enqueue(self, account_id: UUID, token: str, *, now: dt.datetime | None = None) -> DeliveryJob:
        stamp = now or _utcnow()
        db = self.session_factory()
        try:
            row = DeliveryAttempt(
                id=uuid4(),
                account_id=account_id,
                token=token,
                status=DeliveryStatus.pending,
                attempt_count=0,
                max_attempts=self.max_attempts,
                next_attempt_at=stamp,
                created_at=stamp,
                updated_at=stamp,
            )
            db.add(row)
            db.commit()
            db.refresh(row)
            return _job(row)
        finally:
            db.close()

    def dequeue(self, limit: int, *, now: dt.datetime | None = None) -> list[DeliveryJob]:
        stamp = now or _utcnow()
        claimable = (
            DeliveryAttempt.status == DeliveryStatus.pending,
            DeliveryAttempt.next_attempt_at <= stamp,
            or_(DeliveryAttempt.lease_expires_at.is_(None), DeliveryAttempt.lease_expires_at < stamp),
        )
        db = self.session_factory()
        try:
            candidates = db.execute(
                select(DeliveryAttempt.id)
                .where(*claimable)
                .order_by(DeliveryAttempt.next_attempt_at.asc())
                .limit(limit)
            ).scalars().all()

            claimed: list[UUID] = []
            for job_id in candidates:
                # Re-checking the claim predicates makes the lease a compare-and-swap.
                result = db.execute(
                    update(DeliveryAttempt)
                    .where(DeliveryAttempt.id == job_id, *claimable)
                    .values(lease_expires_at=stamp + self.lease, claim_id=uuid4(), updated_at=stamp)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount == 1:
                    claimed.append(job_id)
            db.commit()

            if not claimed:
                return []
            rows = db.execute(
                select(DeliveryAttempt)
                .where(DeliveryAttempt.id.in_(claimed))
                .order_by(DeliveryAttempt.next_attempt_at.asc())
            ).scalars().all()
            return [_job(row) for row in rows]
        finally:
            db.close()

    def _update(self, values: dict, *criteria) -> int:
        db = self.session_factory()
        try:
            result = db.execute(
                update(DeliveryAttempt)
                .where(*criteria)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            db.commit()
            return result.rowcount or 0
        finally:
            db.close()

    def _finish(self, job: DeliveryJob, values: dict) -> bool:
        """Apply an outcome only while the job's claim is still the current one."""
        if job.claim_id is None:
            logger.warning("Delivery %s was never claimed; outcome dropped", job.id)
            return False
        updated = self._update(
            {**values, "lease_expires_at": None, "claim_id": None},
            DeliveryAttempt.id == job.id,
            DeliveryAttempt.status == DeliveryStatus.pending,
            DeliveryAttempt.claim_id == job.claim_id,
        )
        if not updated:
            logger.warning("Delivery %s lease lost; outcome dropped", job.id)
        return bool(updated)

    def ack(self, job: DeliveryJob, *, now: dt.datetime | None = None) -> bool:
        stamp = now or _utcnow()
        return self._finish(
            job,
            {
                "status": DeliveryStatus.sent,
                "attempt_count": DeliveryAttempt.attempt_count + 1,
                "last_attempt_at": stamp,
                "last_error": None,
                "sent_at": stamp,
                "updated_at": stamp,
            },
        )

    def retry(self, job: DeliveryJob, error: str, *, next_attempt_at: dt.datetime, now: dt.datetime | None = None) -> bool:
        stamp = now or _utcnow()
        return self._finish(
            job,
            {
                "attempt_count": DeliveryAttempt.attempt_count + 1,
                "last_attempt_at": stamp,
                "last_error": _trim_error(error),
                "next_attempt_at": next_attempt_at,
                "updated_at": stamp,
            },
        )

    def dead_letter(self, job: DeliveryJob, error: str, *, now: dt.datetime | None = None) -> bool:
        stamp = now or _utcnow()
        applied = self._finish(
            job,
            {
                "status": DeliveryStatus.failed_permanently,
                "attempt_count": DeliveryAttempt.attempt_count + 1,
                "last_attempt_at": stamp,
                "last_error": _trim_error(error),
                "dead_lettered_at": stamp,
                "updated_at": stamp,
            },
        )
        if applied:
            logger.error("Delivery %s dead-lettered: %s", job.id, error)
        return applied

    def cancel(self, job: DeliveryJob, reason: str, *, now: dt.datetime | None = None) -> bool:
        stamp = now or _utcnow()
        return self._finish(
            job,
            {
                "status": DeliveryStatus.cancelled,
                "last_error": _trim_error(reason),
                "updated_at": stamp,
            },
        )

    def replay(self, job_id: UUID, *, now: dt.datetime | None = None) -> DeliveryRecord:
        """Put a dead-lettered unit of work back on the queue with a fresh attempt budget."""
        stamp = now or _utcnow()
        updated = self._update(
            {
                "status": DeliveryStatus.pending,
                "attempt_count": 0,
                "max_attempts": self.max_attempts,
                "next_attempt_at": stamp,
                "dead_lettered_at": None,
                "lease_expires_at": None,
                "claim_id": None,
                "updated_at": stamp,
            },
            DeliveryAttempt.id == job_id,
            DeliveryAttempt.status == DeliveryStatus.failed_permanently,
        )
        if not updated:
            raise NotFoundError("dead_letter_not_found", details={"delivery_id": str(job_id)})
        logger.info("Delivery %s replayed from dead-letter set", job_id)
        record = self.get(job_id)
        if record is None:
            raise NotFoundError("dead_letter_not_found", details={"delivery_id": str(job_id)})
        return record

    def get(self, job_id: UUID) -> DeliveryRecord | None:
        db = self.session_factory()
        try:
            row = db.get(DeliveryAttempt, job_id)
            return _record(row) if row else None
        finally:
            db.close()

    def list_dead_letters(self, limit: int = 100) -> list[DeliveryRecord]:
        db = self.session_factory()
        try:
            rows = db.execute(
                select(DeliveryAttempt)
                .where(DeliveryAttempt.status == DeliveryStatus.failed_permanently)
                .order_by(DeliveryAttempt.dead_lettered_at.desc())
                .limit(limit)
            ).scalars().all()
            return [_record(row) for row in rows]
        finally:
            db.close()

    def latest_for_account(self, account_id: UUID) -> DeliveryRecord | None:
        db = self.session_factory()
        try:
            row = db.execute(
                select(DeliveryAttempt)
                .where(DeliveryAttempt.account_id == account_id)
                .order_by(DeliveryAttempt.created_at.desc())
                .limit(1)
            ).scalars().first()
            return _record(row) if row else None
        finally:
            db.close()

    def purge_finished(self, *, retention: dt.timedelta, now: dt.datetime | None = None) -> int:
        """Delete sent and cancelled rows past retention. Dead letters are kept."""
        cutoff = (now or _utcnow()) - retention
        db = self.session_factory()
        try:
            result = db.execute(
                delete(DeliveryAttempt)
                .where(
                    DeliveryAttempt.status.in_([DeliveryStatus.sent, DeliveryStatus.cancelled]),
                    DeliveryAttempt.updated_at < cutoff,
                )
                .execution_options(synchronize_session=False)
            )
            db.commit()
            return result.rowcount or 0
        finally:
            db.close()
