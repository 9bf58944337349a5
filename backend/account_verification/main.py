from __future__ import annotations

import datetime as dt
from contextlib import asynccontextmanager
from typing import Callable

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from account_verification.core.config import Settings, settings as default_settings
from account_verification.core.exceptions import VerificationServiceException
from account_verification.core.logging import setup_logging
from account_verification.core.security_headers import install_security_headers_middleware
from account_verification.db.session import SessionLocal
from account_verification.routers import accounts, operators, verify
from account_verification.services.delivery_queue import SqlDeliveryQueue
from account_verification.services.delivery_worker import start_delivery_workers, stop_delivery_workers
from account_verification.services.dispatcher import DeliveryDispatcher
from account_verification.services.mail import MailTransport, build_mail_transport


def build_dispatcher(
    settings: Settings,
    session_factory: Callable[[], Session],
    *,
    transport: MailTransport | None = None,
    clock: Callable[[], dt.datetime] | None = None,
) -> DeliveryDispatcher:
    queue = SqlDeliveryQueue(
        session_factory,
        max_attempts=settings.DELIVERY_MAX_ATTEMPTS,
        lease_seconds=settings.DELIVERY_LEASE_SECONDS,
    )
    kwargs = {"clock": clock} if clock is not None else {}
    return DeliveryDispatcher(
        queue,
        transport or build_mail_transport(settings),
        session_factory,
        settings=settings,
        **kwargs,
    )


def create_app(
    *,
    settings: Settings = default_settings,
    dispatcher: DeliveryDispatcher | None = None,
    run_workers: bool = True,
) -> FastAPI:
    setup_logging(settings.LOG_LEVEL)
    settings.validate_runtime_security()
    dispatcher = dispatcher or build_dispatcher(settings, SessionLocal)

    @asynccontextmanager
    async def lifespan(_: FastAPI):
        if run_workers:
            await start_delivery_workers(dispatcher)
        try:
            yield
        finally:
            if run_workers:
                await stop_delivery_workers()

    app = FastAPI(title=settings.APP_NAME, lifespan=lifespan)
    app.state.settings = settings
    app.state.dispatcher = dispatcher
    app.state.delivery_queue = dispatcher.queue
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(
        TrustedHostMiddleware,
        allowed_hosts=settings.allowed_hosts,
    )
    install_security_headers_middleware(app, settings)

    app.include_router(accounts.router, prefix="/accounts", tags=["accounts"])
    app.include_router(verify.router, prefix="/verify", tags=["verification"])
    app.include_router(operators.router, prefix="/operators", tags=["operators"])

    @app.exception_handler(VerificationServiceException)
    async def handle_service_exception(_: Request, exc: VerificationServiceException) -> JSONResponse:
        headers = exc.headers if getattr(exc, "headers", None) else None
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)

    return app


app = create_app()
