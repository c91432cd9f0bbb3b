"""
FastAPI Main Application
Entry point for the revenue cycle API server
Source: https://fastapi.tiangolo.com/
"""

from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from revcycle.api.config import settings
from revcycle.api.routes import claims, health, invoices, payments, risk
from revcycle.api.websocket import get_risk_event_manager
from revcycle.services.engine import get_engine
from revcycle.utils.errors import RevenueCycleError
from revcycle.utils.logging import get_logger, setup_logging

# Setup logging
setup_logging(
    level=settings.LOG_LEVEL,
    log_file=settings.LOG_FILE,
    json_logs=settings.is_production,
)

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):  # type: ignore[no-untyped-def]  # noqa: ARG001
    """
    Application lifespan manager.

    Source: https://fastapi.tiangolo.com/advanced/events/
    """
    # Startup
    engine = get_engine()
    get_risk_event_manager().attach(engine.events)
    logger.info(f"Starting application in {settings.ENVIRONMENT} mode")
    logger.info(
        f"Risk scoring: {engine.settings.RISK_SCORING_PRIMARY_PROVIDER.value}, "
        f"payment gateway: {engine.settings.PAYMENT_GATEWAY_MODE.value}"
    )

    yield

    # Shutdown
    logger.info("Shutting down application")
    await engine.close()


app = FastAPI(
    title="Revenue Cycle API",
    description="Claims and billing lifecycle engine: claims, invoices, payments and risk sync",
    version="1.0.0",
    docs_url="/docs" if not settings.is_production else None,  # Disable docs in production
    redoc_url="/redoc" if not settings.is_production else None,
    openapi_url="/openapi.json" if not settings.is_production else None,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=settings.CORS_CREDENTIALS,
    allow_methods=settings.CORS_METHODS,
    allow_headers=settings.CORS_HEADERS,
)


@app.exception_handler(RevenueCycleError)
async def revenue_cycle_error_handler(request: Request, exc: RevenueCycleError) -> JSONResponse:
    """Render domain errors with the invariant that was violated."""
    logger.info(f"{request.method} {request.url.path} -> {exc.status_code} {exc.code}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


# Include routers
app.include_router(health.router)
app.include_router(claims.router)
app.include_router(invoices.router)
app.include_router(invoices.recommendations_router)
app.include_router(payments.router)
app.include_router(risk.router)


@app.get("/")
async def root() -> dict[str, Any]:
    """Root endpoint with API information."""
    return {
        "name": "Revenue Cycle API",
        "version": "1.0.0",
        "environment": settings.ENVIRONMENT,
        "docs": "/docs" if not settings.is_production else "disabled",
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "revcycle.api.main:app",
        host=settings.API_HOST,
        port=settings.API_PORT,
        reload=settings.DEBUG,
    )
