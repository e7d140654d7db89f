"""
FastAPI application entry point for the equipment tracking API.

Every authenticated route resolves the caller's organization from the
bearer token; entitlement gates run per route through dependencies.
"""

import os
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware

from src.api.routes import billing
from src.api.routes import features
from src.api.routes import health
from src.api.routes import webhooks_stripe
from src.config.stripe_prices import get_price_table
from src.entitlements.catalog import get_plan_catalog
from src.entitlements.errors import OrganizationNotFoundError
from src.services.billing_errors import BillingError

# Configure structured logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    logger.info("Starting equipment tracking API")

    # Optional at startup; the affected endpoints answer 503 until set
    required_vars = ["AUTH_JWT_SECRET", "STRIPE_SECRET_KEY", "STRIPE_WEBHOOK_SECRET"]
    missing_vars = [var for var in required_vars if not os.getenv(var)]
    if missing_vars:
        logger.warning("Configuration incomplete", extra={"missing": missing_vars})

    database_url = os.getenv("DATABASE_URL")
    if not database_url:
        logger.error("DATABASE_URL is not set. Authenticated endpoints will return 503.")
        app.state.database_configured = False
    else:
        # Mask credentials for safe logging
        masked = database_url.split("@")[-1] if "@" in database_url else "(local)"
        logger.info("DATABASE_URL configured", extra={"host_db": masked})
        app.state.database_configured = True

    catalog = get_plan_catalog()
    prices = get_price_table()
    logger.info("Billing configuration loaded", extra={
        "catalog_version": catalog.version,
        "price_table_version": prices.version,
        "plans": [plan.slug for plan in catalog.get_all_plans()],
    })

    yield

    logger.info("Shutting down equipment tracking API")


app = FastAPI(
    title="Equipment Tracking API",
    description="Multi-tenant equipment tracking with plan entitlements",
    version="1.0.0",
    lifespan=lifespan
)

cors_origins = os.getenv("CORS_ORIGINS", "http://localhost:3000").split(",")

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Health route (no authentication)
app.include_router(health.router)

# Billing routes (bearer token; /plans is public)
app.include_router(billing.router)

# Feature checks (bearer token)
app.include_router(features.router)

# Stripe webhooks (signature verification, not bearer token)
app.include_router(webhooks_stripe.router)

app.add_exception_handler(BillingError, billing.billing_error_handler)


@app.exception_handler(OrganizationNotFoundError)
async def organization_not_found_handler(request: Request, exc: OrganizationNotFoundError):
    return JSONResponse(
        status_code=status.HTTP_403_FORBIDDEN,
        content={"error": str(exc)},
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Handle unhandled exceptions with proper logging."""
    logger.error(
        "Unhandled exception",
        extra={
            "error": str(exc),
            "error_type": type(exc).__name__,
            "path": request.url.path
        },
        exc_info=True
    )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": "Internal server error",
            "detail": "An unexpected error occurred"
        }
    )


if __name__ == "__main__":
    import uvicorn

    port = int(os.getenv("PORT", 8000))
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=port,
        reload=os.getenv("ENV") == "development"
    )
