"""
FastAPI application factory.

* Registers routes for ride requests, rides, wallets, notifications,
  drivers and admin.
* Starts / stops the side-effect dispatcher via lifespan events.
* Maps ``RideError`` to ``{"detail": {"code": ..., "message": ...}}``.
* Applies rate-limiting middleware.
* Swagger / OpenAPI UI available at ``/docs``.
"""

from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from ride2school.api.middleware import limiter
from ride2school.api.routes import admin, drivers, inbox, requests, rides, wallet
from ride2school.domain.errors import RideError
from ride2school.workers import dispatcher as _dispatcher

logging.basicConfig(level=logging.INFO)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start the dispatcher on startup; stop on shutdown."""
    await _dispatcher.start_dispatch_loop()
    yield
    await _dispatcher.stop_dispatch_loop()


async def ride_error_handler(request: Request, exc: RideError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.code)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.to_dict()})


def create_app() -> FastAPI:
    app = FastAPI(
        title="Ride2School API",
        description=(
            "Parents request school rides, drivers accept them and start them "
            "with a pickup OTP.  Fares, platform fees and cancellation "
            "penalties settle through per-user wallets."
        ),
        version="1.0.0",
        lifespan=lifespan,
    )

    # Rate limiter
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    # Domain errors
    app.add_exception_handler(RideError, ride_error_handler)

    # Routers
    for module in (requests, rides, wallet, inbox, drivers, admin):
        app.include_router(module.router, prefix="/api/v1")

    return app
