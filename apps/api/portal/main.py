"""FastAPI application entry point."""
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text

from portal.core.config import settings
from portal.core.errors import PluginAPIError, plugin_api_error_handler, unhandled_exception_handler
from portal.db.session import engine

# ============================================================================
# Sentry Integration (optional, for production error tracking)
# ============================================================================

if settings.SENTRY_DSN and settings.ENV != "dev":
    import sentry_sdk
    from sentry_sdk.integrations.fastapi import FastApiIntegration
    from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

    sentry_sdk.init(
        dsn=settings.SENTRY_DSN,
        environment=settings.ENV,
        integrations=[
            FastApiIntegration(transaction_style="endpoint"),
            SqlalchemyIntegration(),
        ],
        traces_sample_rate=0.1,
        send_default_pii=False,
    )
    logging.info("Sentry initialized for error tracking")

# ============================================================================
# Rate Limiting
# ============================================================================

from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from portal.core.rate_limit import limiter


# ============================================================================
# FastAPI App
# ============================================================================

app = FastAPI(
    title="Portal API",
    description="Licensing, payment proxy and support API for the payment-plans plugin",
    version=settings.VERSION,
    docs_url="/docs" if settings.ENV == "dev" else None,
    redoc_url="/redoc" if settings.ENV == "dev" else None,
)

# Add rate limiter
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# Plugin endpoints answer {"error": ...}
app.add_exception_handler(PluginAPIError, plugin_api_error_handler)
app.add_exception_handler(Exception, unhandled_exception_handler)

# CORS middleware - must be added before routers
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,  # Required for cookies
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=[
        "Content-Type",
        "Authorization",
        "X-Requested-With",
        "X-Plugin-Signature",
        "X-Timestamp",
        "X-Site-URL",
    ],
    expose_headers=["Content-Disposition"],
)

# ============================================================================
# Routers
# ============================================================================

from portal.routers import (
    auth,
    licenses,
    plugin_credentials,
    plugin_license,
    plugin_payments,
    support,
    ticket_attachments,
    webhooks,
)

# Session API
app.include_router(auth.router, prefix="/auth", tags=["auth"])
app.include_router(licenses.router, prefix="/api")
app.include_router(support.router, prefix="/api")
app.include_router(ticket_attachments.router, prefix="/api")

# WordPress plugin API (HMAC-signed)
app.include_router(plugin_license.router, prefix="/api/v1", tags=["plugin"])
app.include_router(plugin_payments.router, prefix="/api/v1", tags=["plugin"])
app.include_router(plugin_credentials.router, prefix="/api/v1", tags=["plugin"])

# Webhooks (paths are absolute in the router)
app.include_router(webhooks.router)


# ============================================================================
# Health Check
# ============================================================================

@app.get("/health")
def health():
    """
    Health check endpoint.

    Verifies database connectivity and returns environment info.
    """
    with engine.connect() as conn:
        conn.execute(text("SELECT 1"))
    return {"status": "ok", "env": settings.ENV, "version": settings.VERSION}
