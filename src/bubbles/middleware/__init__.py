"""Middleware registration."""

from fastapi import FastAPI

from bubbles.config import Settings
from bubbles.middleware.cors import setup_cors
from bubbles.middleware.error_handler import setup_error_handlers
from bubbles.middleware.logging import setup_logging
from bubbles.middleware.rate_limit import RateLimitMiddleware
from bubbles.middleware.request_id import RequestIdMiddleware


def setup_middleware(app: FastAPI, settings: Settings) -> None:
    """Register logging, error handlers and middleware.

    Starlette runs middleware in reverse-add order, so CORS is added last
    to wrap 429 responses from the rate limiter.
    """
    setup_logging(settings)
    setup_error_handlers(app)
    app.add_middleware(
        RateLimitMiddleware,
        requests_per_window=settings.rate_limit_requests,
        window_seconds=settings.rate_limit_window_seconds,
    )
    app.add_middleware(RequestIdMiddleware)
    setup_cors(app, settings)
