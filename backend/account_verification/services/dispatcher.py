"""Delivery dispatcher: queues verification emails and processes them with retries."""

from __future__ import annotations

import datetime as dt
import logging
from dataclasses import dataclass
from typing import Callable
from uuid import UUID

from sqlalchemy.orm import Session

from account_verification.core.config import Settings
from account_verification.core.exceptions import DeliveryPermanentFailure, DeliveryTransientFailure
from account_verification.core.logging import mask_token
from account_verification.models.account import Account
from account_verification.services import verification_store
from account_verification.services.delivery_queue import DeliveryJob, DeliveryQueue
from account_verification.services.mail import MailTransport, build_verification_email

logger = logging.getLogger(__name__)


def _utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


@dataclass
class DrainResult:
    claimed: int = 0
    sent: int = 0
    retried: int = 0
    dead_lettered: int = 0
    cancelled: int = 0
    lost_lease: int = 0


def backoff_delay(attempt: int, *, base_seconds: int, max_seconds: int) -> dt.timedelta:
    """Delay before retry number ``attempt`` (1-based): base * 2**(attempt-1), capped."""
    exponent = max(attempt - 1, 0)
    seconds = min(base_seconds * (2 ** min(exponent, 30)), max_seconds)
    return dt.timedelta(seconds=seconds)


class DeliveryDispatcher:
    def __init__(
        self,
        queue: DeliveryQueue,
        transport: MailTransport,
        session_factory: Callable[[], Session],
        *,
        settings: Settings,
        clock: Callable[[], dt.datetime] = _utcnow,
    ) -> None:
        self.queue = queue
        self.transport = transport
        self.session_factory = session_factory
        self.settings = settings
        self.clock = clock

    def enqueue(self, account_id: UUID, token: str) -> DeliveryJob:
        """Persist a unit of work and return without touching the mail transport."""
        job = self.queue.enqueue(account_id, token, now=self.clock())
        logger.info("Verification email queued: account=%s delivery=%s", account_id, job.id)
        return job

    def _skip_reason(self, db: Session, job: DeliveryJob, now: dt.datetime) -> tuple[str | None, Account | None]:
        account = db.get(Account, job.account_id)
        if account is None:
            return "account_missing", None
        if account.is_verified:
            return "account_already_verified", account
        token = verification_store.lookup(db, job.token)
        if token is None:
            return "token_missing", account
        if token.consumed:
            return "token_superseded", account
        if not verification_store.is_token_active(token, now):
            return "token_expired", account
        return None, account

    def process(self, job: DeliveryJob) -> str:
        """Attempt one delivery. Returns the resulting status name.

        ``lost_lease`` means the lease expired mid-attempt and another worker
        now owns the job, so this outcome was not recorded.
        """
        now = self.clock()
        db = self.session_factory()
        try:
            reason, account = self._skip_reason(db, job, now)
            recipient = account.email if account is not None else None
        finally:
            db.close()

        if reason is not None or recipient is None:
            if not self.queue.cancel(job, reason or "account_missing", now=now):
                return "lost_lease"
            logger.info("Delivery %s cancelled: %s", job.id, reason)
            return "cancelled"

        rendered = build_verification_email(self.settings, email=recipient, token=job.token)
        attempt = job.attempt_count + 1
        try:
            self.transport.send(recipient, rendered.subject, rendered.body, html_body=rendered.html_body)
        except DeliveryPermanentFailure as exc:
            if not self.queue.dead_letter(job, exc.message, now=now):
                return "lost_lease"
            return "dead_lettered"
        except DeliveryTransientFailure as exc:
            return self._handle_transient(job, attempt, exc.message, now)
        except Exception as exc:  # noqa: BLE001
            logger.exception("Unexpected mail transport error for delivery %s", job.id)
            return self._handle_transient(job, attempt, f"unexpected:{exc.__class__.__name__}", now)

        if not self.queue.ack(job, now=now):
            return "lost_lease"
        logger.info(
            "Verification email sent: delivery=%s token=%s attempt=%s",
            job.id,
            mask_token(job.token),
            attempt,
        )
        return "sent"

    def _handle_transient(self, job: DeliveryJob, attempt: int, error: str, now: dt.datetime) -> str:
        if attempt >= job.max_attempts:
            if not self.queue.dead_letter(job, f"attempts_exhausted:{error}", now=now):
                return "lost_lease"
            return "dead_lettered"
        delay = backoff_delay(
            attempt,
            base_seconds=self.settings.DELIVERY_BACKOFF_BASE_SECONDS,
            max_seconds=self.settings.DELIVERY_BACKOFF_MAX_SECONDS,
        )
        if not self.queue.retry(job, error, next_attempt_at=now + delay, now=now):
            return "lost_lease"
        logger.warning(
            "Delivery %s failed (attempt %s/%s): %s; retrying in %ss",
            job.id,
            attempt,
            job.max_attempts,
            error,
            int(delay.total_seconds()),
        )
        return "retried"

    def drain_once(self, limit: int | None = None) -> DrainResult:
        jobs = self.queue.dequeue(limit or self.settings.DELIVERY_WORKER_BATCH_SIZE, now=self.clock())
        result = DrainResult(claimed=len(jobs))
        for job in jobs:
            outcome = self.process(job)
            if outcome == "sent":
                result.sent += 1
            elif outcome == "retried":
                result.retried += 1
            elif outcome == "dead_lettered":
                result.dead_lettered += 1
            elif outcome == "lost_lease":
                result.lost_lease += 1
            else:
                result.cancelled += 1
        return result
