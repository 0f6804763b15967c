"""FastAPI application factory"""

from fastapi import FastAPI
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
from starlette.responses import Response

from moony_analytics.api.middleware import RequestIDMiddleware, MetricsMiddleware
from moony_analytics.api.v1 import reconciliation, statistics, webhooks
from moony_analytics.infrastructure.observability.logging import setup_logging
from moony_analytics.config import settings

# Setup structured logging
setup_logging(settings.log_level)


def create_app() -> FastAPI:
    """Create and configure FastAPI application"""
    app = FastAPI(
        title="Moony Spending Analytics",
        description="Plaid webhook intake, spending statistics and reconciliation service",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
    )

    # Add middleware (order matters: last added = first executed)
    app.add_middleware(MetricsMiddleware)
    app.add_middleware(RequestIDMiddleware)

    # Health check endpoint
    @app.get("/health")
    def health_check():
        return {"status": "ok", "service": settings.service_name}

    # Prometheus metrics endpoint
    @app.get("/metrics")
    def metrics():
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    # Register API routers
    app.include_router(webhooks.router, prefix="/v1", tags=["webhooks"])
    app.include_router(reconciliation.router, prefix="/v1", tags=["reconciliation"])
    app.include_router(statistics.router, prefix="/v1", tags=["statistics"])

    return app


app = create_app()
