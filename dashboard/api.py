"""
Dashboard - API.

============================================================
RESPONSIBILITY
============================================================
REST read API over the aggregation query service.

ENDPOINTS:
- GET /api/health
- GET /api/chart?adnl=..&adnl=..&from=..&to=..
- GET /api/validator-statuses?from=..&to=..&cycle_id=..
- GET /api/status-history?adnl=..

ERRORS:
- Invalid input           -> 400
- Store / cache failures  -> 500
============================================================
"""

import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from core.exceptions import MonitorError
from dashboard.routers import health, validators
from monitoring.aggregation import AggregationQueryService

logger = logging.getLogger(__name__)


async def monitor_error_handler(request: Request, exc: MonitorError) -> JSONResponse:
    if exc.is_client_error:
        logger.info(f"Rejected {request.url.path}: {exc.message}")
        return JSONResponse(status_code=400, content={"error": exc.message})

    logger.error(f"Request {request.url.path} failed: {exc.to_dict()}")
    return JSONResponse(
        status_code=500,
        content={"error": "Internal server error", "detail": exc.message},
    )


def create_app(query_service: AggregationQueryService) -> FastAPI:
    """Build the read API bound to a shared query service."""
    app = FastAPI(
        title="Validators Health API",
        description="Validator efficiency charts, status grid and status history",
        version="1.0.0",
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.query_service = query_service
    app.add_exception_handler(MonitorError, monitor_error_handler)

    app.include_router(health.router)
    app.include_router(validators.router)

    return app
