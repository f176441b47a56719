"""FastAPI application setup and configuration."""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from yogaswiss.config import settings
from yogaswiss.api import api_router
from yogaswiss.database import init_database, close_database
from yogaswiss.middleware import (
    ErrorHandlerMiddleware,
    ValidationMiddleware,
    RateLimiterMiddleware,
    LoggingMiddleware
)
from yogaswiss.utils.logging_config import setup_logging

APP_VERSION = "1.0.0"

# Set up logging
setup_logging(
    log_level="DEBUG" if settings.debug else "INFO",
    log_file="logs/yogaswiss.log" if settings.environment == "production" else None,
    enable_json_logging=settings.environment == "production",
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup and shutdown events."""
    logger.info("Starting YogaSwiss studio backend")
    await init_database()
    logger.info("Database initialized successfully")
    yield
    logger.info("Shutting down YogaSwiss studio backend")
    await close_database()
    logger.info("Database connections closed")

app = FastAPI(
    title="YogaSwiss Studio API",
    description="""
    ## YogaSwiss Studio API

    Multi-tenant backend for Swiss yoga and fitness studios.

    ### Key Features

    * **Scheduling**: Class templates, dated occurrences and weekly series
    * **Bookings**: Registrations with waitlists and automatic promotion
    * **Wallets**: Customer balances and class credits with a full ledger
    * **Payments**: Cash, card (Stripe), TWINT, QR-bill, wallet and gift cards
    * **Finance**: Orders with Swiss VAT, invoices, refunds, cash drawers and reports

    ### Authentication and tenancy

    1. Register or log in to obtain a bearer token
    2. Send it as `Authorization: Bearer <token>`
    3. Select the studio with the `X-Org-ID` header

    ### Error Handling

    Errors are returned as:

    ```json
    {
      "error": {
        "error_code": "CLASS_FULL",
        "message": "Human readable error message",
        "details": {},
        "suggestions": []
      },
      "error_id": "...",
      "timestamp": "..."
    }
    ```
    """,
    version=APP_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_tags=[
        {"name": "authentication", "description": "Staff accounts and tokens"},
        {"name": "organizations", "description": "Studios and their members"},
        {"name": "customers", "description": "Studio customers"},
        {"name": "locations", "description": "Rooms, studios and outdoor spots"},
        {"name": "classes", "description": "Templates, occurrences and recurring series"},
        {"name": "registrations", "description": "Bookings, check-in and waitlists"},
        {"name": "wallets", "description": "Customer wallets, ledger and packages"},
        {"name": "orders", "description": "Orders with VAT"},
        {"name": "payments", "description": "Payments and provider webhooks"},
        {"name": "refunds", "description": "Refunds through the original method"},
        {"name": "gift-cards", "description": "Gift card issue and redemption"},
        {"name": "invoices", "description": "Invoices and Swiss QR-bills"},
        {"name": "earnings", "description": "Instructor pay"},
        {"name": "cash-drawers", "description": "Front desk till and Z reports"},
        {"name": "reports", "description": "Financial summary and booking analytics"},
        {"name": "health", "description": "System health and monitoring endpoints"},
    ],
    lifespan=lifespan,
)

# Middleware runs in reverse order of registration

# 1. Logging middleware (first to capture all requests)
app.add_middleware(
    LoggingMiddleware,
    log_requests=True,
    log_responses=True,
)

# 2. Error handling middleware (catch all errors)
app.add_middleware(
    ErrorHandlerMiddleware,
    debug=settings.debug
)

# 3. Rate limiting middleware
if settings.enable_rate_limiting:
    app.add_middleware(
        RateLimiterMiddleware,
        default_limit=settings.default_rate_limit,
        default_window=settings.default_rate_window,
        burst_limit=settings.burst_rate_limit,
        burst_window=settings.burst_rate_window
    )

# 4. Request validation middleware
app.add_middleware(
    ValidationMiddleware,
    max_request_size=10 * 1024 * 1024  # 10MB
)

# 5. CORS middleware
if settings.debug:
    # Credentials cannot be combined with wildcard origins
    cors_origins = ["*"]
    cors_allow_credentials = False
else:
    cors_origins = settings.cors_origins
    cors_allow_credentials = settings.cors_allow_credentials

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=cors_allow_credentials,
    allow_methods=settings.cors_allow_methods,
    allow_headers=settings.cors_allow_headers,
    expose_headers=settings.cors_expose_headers
)

app.include_router(api_router)


@app.get("/", tags=["health"])
async def root():
    """Basic information about the API."""
    return {
        "message": "YogaSwiss Studio API",
        "version": APP_VERSION,
        "docs_url": "/docs",
        "redoc_url": "/redoc",
        "status": "operational"
    }


@app.get("/health", tags=["health"])
async def health_check():
    """Liveness probe for uptime monitoring."""
    return {"status": "healthy", "service": "yogaswiss"}


@app.get("/health/detailed", tags=["health"])
async def detailed_health_check():
    """
    Health of the service dependencies.

    The database is critical; an unavailable Redis only degrades the
    service because caching and rate limiting fail open.
    """
    from yogaswiss.utils.health_check import get_health_status
    return await get_health_status()


@app.get("/metrics", tags=["health"])
async def get_metrics():
    """Circuit breaker statistics for the payment providers."""
    from yogaswiss.utils.circuit_breaker import get_registry

    return {
        "circuit_breakers": get_registry().get_all_stats(),
        "timestamp": datetime.now(timezone.utc).isoformat()
    }
