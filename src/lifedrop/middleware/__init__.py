"""HTTP middleware stack for the LifeDrop API."""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from lifedrop.config import Settings
from lifedrop.middleware.error_handler import setup_error_handlers
from lifedrop.middleware.logging import setup_logging
from lifedrop.middleware.rate_limit import RateLimitMiddleware
from lifedrop.middleware.request_id import RequestIdMiddleware


def setup_middleware(app: FastAPI, settings: Settings) -> None:
    """Configure logging and error handlers, then wrap the app in middleware.

    The last middleware added is the outermost. CORS goes on last so browser
    clients can read every response, including the limiter's 429s.
    """
    setup_logging(settings)
    setup_error_handlers(app)
    app.add_middleware(
        RateLimitMiddleware,
        requests_per_window=settings.rate_limit_requests,
        window_seconds=settings.rate_limit_window_seconds,
    )
    app.add_middleware(RequestIdMiddleware)
    # The static frontend sends the bearer token in a header, never a cookie.
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "X-Request-Id"],
        expose_headers=["X-Request-Id", "X-RateLimit-Remaining", "X-RateLimit-Limit"],
    )
