"""Middleware registration."""

from fastapi import FastAPI

from propquest.config import Settings
from propquest.middleware.cors import setup_cors
from propquest.middleware.error_handler import setup_error_handlers
from propquest.middleware.logging import setup_logging
from propquest.middleware.request_id import RequestIdMiddleware


def setup_middleware(app: FastAPI, settings: Settings) -> None:
    """Register all middleware in the correct order.

    Starlette executes middleware in reverse-add order (last added = outermost),
    so CORS is added last to wrap error responses from everything inside it.
    """
    setup_logging(settings)
    setup_error_handlers(app)
    app.add_middleware(RequestIdMiddleware)
    setup_cors(app, settings)
