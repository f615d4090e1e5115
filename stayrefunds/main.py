# stayrefunds/main.py
"""
FastAPI application for the refund lifecycle engine.

Run with ``uvicorn stayrefunds.main:app``.
"""

import logging

from fastapi import APIRouter, FastAPI, Request, Response
from fastapi.responses import JSONResponse

from . import __version__
from .core.config import settings
from .core.exceptions import DomainException
from .monitoring.prometheus_metrics import prometheus_metrics
from .routes.v1 import refunds as refunds_v1

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

logger = logging.getLogger(__name__)

app = FastAPI(
    title="StayRefunds API",
    description="Refund lifecycle for cancelled hospitality bookings",
    version=__version__,
)


@app.exception_handler(DomainException)
async def domain_exception_handler(request: Request, exc: DomainException) -> JSONResponse:
    """Fallback for domain errors raised outside a route's own handling."""
    http_exc = exc.to_http_exception()
    logger.warning(
        "Domain error on %s %s: %s", request.method, request.url.path, exc.message
    )
    return JSONResponse(status_code=http_exc.status_code, content={"detail": http_exc.detail})


api_v1 = APIRouter(prefix="/api/v1")

# Mount v1 routes
api_v1.include_router(refunds_v1.router, prefix="/refunds")

app.include_router(api_v1)


@app.get("/health", include_in_schema=False)
def health_check() -> dict[str, str]:
    return {"status": "healthy", "environment": settings.environment}


@app.get("/metrics/prometheus", include_in_schema=False)
def prometheus_endpoint() -> Response:
    return Response(
        content=prometheus_metrics.get_metrics(),
        media_type=prometheus_metrics.get_content_type(),
    )
