"""
Module: main.py
Description: FastAPI application entry point for Hook Relay.

Initializes the FastAPI application with all routes and error handlers,
and opens the delivery engine for the lifetime of the application.
"""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from mangum import Mangum

from hookrelay.config.settings import Settings, settings
from hookrelay.delivery.engine import DeliveryEngine
from hookrelay.delivery.worker import get_engine
from hookrelay.handlers.deliveries import router as deliveries_router
from hookrelay.handlers.events import router as events_router
from hookrelay.utils.logger import get_logger

logger = get_logger(__name__)


def create_app(app_settings: Optional[Settings] = None, engine: Optional[DeliveryEngine] = None) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        app_settings: Settings to use (defaults to the global settings)
        engine: Pre-built engine; one is built from settings at startup otherwise

    Returns:
        Configured FastAPI application
    """
    app_settings = app_settings or settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.engine = engine or DeliveryEngine(app_settings)
        logger.info(
            "Starting Hook Relay",
            version=app_settings.app_version,
            stage=app_settings.stage,
            region=app_settings.aws_region
        )
        await app.state.engine.start()
        try:
            yield
        finally:
            logger.info("Shutting down Hook Relay")
            await app.state.engine.stop()

    app = FastAPI(
        title=app_settings.app_name,
        description="Event ingestion and signed webhook delivery",
        version=app_settings.app_version,
        lifespan=lifespan
    )

    app.include_router(events_router)
    app.include_router(deliveries_router)

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {
            "status": "ok",
            "message": "Hook Relay is healthy",
            "version": app_settings.app_version,
            "environment": app_settings.stage
        }

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        """Log HTTP exceptions and return structured error responses."""
        logger.warning(
            "HTTP exception occurred",
            status_code=exc.status_code,
            detail=exc.detail,
            path=request.url.path,
            method=request.method
        )
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "error": {
                    "code": exc.status_code,
                    "message": exc.detail,
                    "type": "http_exception"
                }
            }
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """Report request body validation failures as 400."""
        logger.warning(
            "Request validation failed",
            errors=jsonable_errors(exc),
            path=request.url.path
        )
        return JSONResponse(
            status_code=400,
            content={
                "error": {
                    "code": 400,
                    "message": "Invalid request",
                    "type": "validation_error",
                    "details": jsonable_errors(exc)
                }
            }
        )

    return app


def jsonable_errors(exc: RequestValidationError) -> list:
    """Validation errors without non-serializable context objects."""
    return [
        {"loc": list(error.get("loc", ())), "msg": error.get("msg"), "type": error.get("type")}
        for error in exc.errors()
    ]


app = create_app()

# Lifespan stays off under Lambda: the engine lives for the container, not the request
_mangum = Mangum(app, lifespan="off")


def handler(event, context):
    """
    Lambda entry point for the HTTP API.

    Attaches the per-container engine (the one the SQS and sweep handlers
    use) instead of the lifespan engine. It is never started: work items
    go to SQS when a queue is configured and run inline otherwise.
    """
    app.state.engine = get_engine()
    return _mangum(event, context)
