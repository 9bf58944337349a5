"""Common FastAPI dependencies for collaborators and operator access."""

from __future__ import annotations

from fastapi import Request

from account_verification.core.config import Settings
from account_verification.core.exceptions import InvalidAPIKeyError
from account_verification.core.security import operator_key_matches
from account_verification.services.delivery_queue import DeliveryQueue
from account_verification.services.dispatcher import DeliveryDispatcher

OPERATOR_KEY_HEADER = "X-Operator-Key"


def get_dispatcher(request: Request) -> DeliveryDispatcher:
    return request.app.state.dispatcher


def get_delivery_queue(request: Request) -> DeliveryQueue:
    return request.app.state.delivery_queue


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def require_operator(request: Request) -> None:
    provided = request.headers.get(OPERATOR_KEY_HEADER)
    if not operator_key_matches(provided, get_settings(request).OPERATOR_API_KEY):
        raise InvalidAPIKeyError("invalid_operator_key")
