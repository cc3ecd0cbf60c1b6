"""Middleware registration."""

from fastapi import FastAPI

from wastewise.config import Settings
from wastewise.middleware.error_handler import setup_error_handlers
from wastewise.middleware.logging import setup_logging
from wastewise.middleware.request_id import RequestIdMiddleware


def setup_middleware(app: FastAPI, settings: Settings) -> None:
    """Configure logging, register error handlers and add request-scoped middleware."""
    setup_logging(settings)
    setup_error_handlers(app)
    app.add_middleware(RequestIdMiddleware)
