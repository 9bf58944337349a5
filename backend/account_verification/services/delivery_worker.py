"""Background delivery workers and housekeeping loop."""

from __future__ import annotations

import asyncio
import datetime as dt
import logging
from typing import Callable

from sqlalchemy.orm import Session

from account_verification.core.config import Settings
from account_verification.services import verification_store
from account_verification.services.delivery_queue import DeliveryQueue
from account_verification.services.dispatcher import DeliveryDispatcher

logger = logging.getLogger(__name__)

_tasks: list[asyncio.Task] = []


def run_housekeeping(
    session_factory: Callable[[], Session],
    queue: DeliveryQueue,
    settings: Settings,
    *,
    now: dt.datetime | None = None,
) -> tuple[int, int]:
    retention = dt.timedelta(days=settings.TOKEN_RETENTION_DAYS)
    db = session_factory()
    try:
        tokens_purged = verification_store.purge_stale_tokens(db, retention=retention, now=now)
    finally:
        db.close()
    deliveries_purged = queue.purge_finished(retention=retention, now=now)
    return tokens_purged, deliveries_purged


def _drain(dispatcher: DeliveryDispatcher, worker_name: str) -> int:
    try:
        result = dispatcher.drain_once()
    except Exception as exc:  # noqa: BLE001
        logger.warning("Delivery worker %s drain failed: %s", worker_name, exc)
        return 0
    if result.claimed:
        logger.info(
            "Delivery worker %s: claimed=%s sent=%s retried=%s dead_lettered=%s cancelled=%s lost_lease=%s",
            worker_name,
            result.claimed,
            result.sent,
            result.retried,
            result.dead_lettered,
            result.cancelled,
            result.lost_lease,
        )
    return result.claimed


async def _worker_loop(dispatcher: DeliveryDispatcher, worker_name: str) -> None:
    poll = max(1, dispatcher.settings.DELIVERY_WORKER_POLL_SECONDS)
    while True:
        claimed = await asyncio.to_thread(_drain, dispatcher, worker_name)
        # A full batch means more work is likely waiting.
        if claimed < dispatcher.settings.DELIVERY_WORKER_BATCH_SIZE:
            await asyncio.sleep(poll)


def _housekeeping_once(dispatcher: DeliveryDispatcher) -> None:
    try:
        tokens_purged, deliveries_purged = run_housekeeping(
            dispatcher.session_factory,
            dispatcher.queue,
            dispatcher.settings,
        )
        logger.info("Housekeeping completed: tokens=%s deliveries=%s", tokens_purged, deliveries_purged)
    except Exception as exc:  # noqa: BLE001
        logger.warning("Housekeeping failed: %s", exc)


async def _housekeeping_loop(dispatcher: DeliveryDispatcher) -> None:
    interval = max(60, dispatcher.settings.HOUSEKEEPING_INTERVAL_SECONDS)
    while True:
        await asyncio.to_thread(_housekeeping_once, dispatcher)
        await asyncio.sleep(interval)


async def start_delivery_workers(dispatcher: DeliveryDispatcher) -> None:
    if _tasks:
        return
    if not dispatcher.settings.DELIVERY_WORKER_ENABLED:
        logger.info("Delivery workers disabled")
        return
    concurrency = max(1, dispatcher.settings.DELIVERY_WORKER_CONCURRENCY)
    for index in range(concurrency):
        name = f"delivery-worker-{index}"
        _tasks.append(asyncio.create_task(_worker_loop(dispatcher, name), name=name))
    _tasks.append(asyncio.create_task(_housekeeping_loop(dispatcher), name="verification-housekeeping"))
    logger.info("Delivery workers started (%s workers)", concurrency)


async def stop_delivery_workers() -> None:
    tasks = list(_tasks)
    _tasks.clear()
    for task in tasks:
        task.cancel()
    for task in tasks:
        try:
            await task
        except asyncio.CancelledError:
            pass
