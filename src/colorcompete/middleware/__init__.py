"""Middleware registration."""

from fastapi import FastAPI

from colorcompete.config import Settings
from colorcompete.middleware.error_handler import setup_error_handlers
from colorcompete.middleware.logging import setup_logging
from colorcompete.middleware.request_id import RequestIdMiddleware


def setup_middleware(app: FastAPI, settings: Settings) -> None:
    """Configure logging, JSON error handlers and request id propagation."""
    setup_logging(settings)
    setup_error_handlers(app)
    app.add_middleware(RequestIdMiddleware)
