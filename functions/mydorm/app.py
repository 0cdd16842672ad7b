"""
FastAPI application entry point for the MyDorm BFF.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from mydorm.config import Settings, get_settings
from mydorm.dependencies import Services, build_services
from mydorm.errors import (
    ConfigurationError,
    DecodeError,
    MyDormError,
    PaymentError,
    RecordStoreError,
)
from mydorm.routes import router
from mydorm.schemas import ErrorResponse

logger = logging.getLogger(__name__)


def _status_for(exc: MyDormError) -> int:
    if isinstance(exc, ConfigurationError):
        return 503
    if isinstance(exc, DecodeError):
        return 502
    if isinstance(exc, PaymentError):
        return 504 if exc.timed_out else 502
    if isinstance(exc, RecordStoreError):
        return 502
    return 500


async def _handle_mydorm_error(request: Request, exc: MyDormError) -> JSONResponse:
    status_code = _status_for(exc)
    logger.warning("%s %s -> %s: %s", request.method, request.url.path, status_code, exc)
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(
            error=exc.__class__.__name__, detail=str(exc)
        ).model_dump(),
    )


def _start_catalog_sync(services: Services) -> list:
    """Keeps the catalog collections cached for the lifetime of the app."""
    records = services.records
    return [
        records.fetch_storable_objects(
            lambda objects: logger.info("Loaded %d storable objects", len(objects))
        ),
        records.fetch_companies(
            lambda companies: logger.info("Loaded %d storage companies", len(companies))
        ),
    ]


def create_app(
    settings: Optional[Settings] = None, services: Optional[Services] = None
) -> FastAPI:
    settings = settings or (services.settings if services else get_settings())
    logging.basicConfig(level=settings.log_level.upper())

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = services is None
        app.state.services = services or build_services(settings)
        subscriptions = _start_catalog_sync(app.state.services)
        try:
            yield
        finally:
            for subscription in subscriptions:
                subscription.cancel()
            if owned:
                app.state.services.close()

    app = FastAPI(title="MyDorm BFF", version="0.1.0", lifespan=lifespan)
    app.include_router(router, prefix=settings.api_prefix)
    app.add_exception_handler(MyDormError, _handle_mydorm_error)
    return app


app = create_app()
