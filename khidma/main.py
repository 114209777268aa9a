"""
Khidma Backend - Main Application Entry Point
Application Factory Pattern with ORJSONResponse for maximum performance.
"""
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.openapi.utils import get_openapi
from fastapi.responses import ORJSONResponse

from khidma.core.config import settings
from khidma.core.database import close_db, init_db
from khidma.core.exceptions import (
    KhidmaException,
    generic_exception_handler,
    http_exception_handler,
    khidma_exception_handler,
    validation_exception_handler,
)
from khidma.core.logging import configure_logging, get_logger
from khidma.core.metrics import MetricsMiddleware
from khidma.core.sentry import init_sentry

# Configure logging on module load
configure_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan manager.
    Handles startup and shutdown events.
    """
    logger.info(
        "Starting Khidma Backend",
        environment=settings.environment,
        debug=settings.debug,
    )

    if settings.run_db_init:
        await init_db()
        logger.info("Database initialized")

    yield

    logger.info("Shutting down Khidma Backend")
    await close_db()


TAGS_METADATA = [
    {
        "name": "Auth",
        "description": """
**Phone authentication**

Mauritanian numbers only (`+222` followed by 8 digits starting with 2, 3, 4 or 6).

## Flow
1. `POST /auth/otp/send` sends a 6-digit code by SMS
2. `POST /auth/otp/verify` checks it
3. `POST /auth/register` or `POST /auth/login` returns a session token and a refresh token
        """,
    },
    {
        "name": "Categories",
        "description": "Service catalogue: categories, subcategories and pricing baselines.",
    },
    {
        "name": "Onboarding",
        "description": """
**Worker verification**

| Step | Status |
|------|--------|
| 1 | `selfie_completed` |
| 2 | `documents_completed` |
| 3 | `categories_completed` |
| 4 | `additional_files_completed` |
| 5 | `completed` (awaiting approval) |
        """,
    },
    {
        "name": "Uploads",
        "description": "Voice notes, photos and documents stored in object storage.",
    },
    {
        "name": "Chats",
        "description": """
**Chats and bubbles**

| Chat | Participants |
|------|--------------|
| Service chat | customer + category |
| Notification chat | worker + category |
| Conversation | customer + worker + job |

Typing `*1#` in a conversation starts the completion flow.
        """,
    },
    {
        "name": "Jobs",
        "description": """
**Job lifecycle**

```
posted -> matched -> in_progress -> completed
   \\________\\____________\\-> cancelled
```

A 4-digit start code moves a matched job to `in_progress`;
a 6-digit completion code closes it.
        """,
    },
    {
        "name": "Worker Jobs",
        "description": """
**Categorization and bidding**

| Phase | Meaning |
|-------|---------|
| `0` | New |
| `1` | Categorizer group voting on the subcategory |
| `2` | Open for bids |
        """,
    },
    {
        "name": "Bids",
        "description": "Customer decisions on bids. Accepting a bid matches the job.",
    },
    {
        "name": "Ratings",
        "description": "Private 1-5 ratings exchanged after completion.",
    },
    {
        "name": "Health",
        "description": """
## Endpoints
- `GET /health` - Liveness check
- `GET /metrics` - Prometheus metrics
        """,
    },
]


API_DESCRIPTION = """
# Khidma - Home Services Marketplace

Customers describe a job by voice note and photos in a category chat.
Workers categorize it, bid on it, and the accepted worker carries it
through to completion.

---

## API Versioning

All endpoints live under `/api/v1/`.

---

## Authentication

Every endpoint except OTP, register, login and refresh needs a session token:

```bash
curl -X GET "https://api.khidma.mr/api/v1/auth/me" \\
  -H "Authorization: Bearer <session token>"
```

| Code | Meaning |
|------|---------|
| `401` | Token missing, invalid or expired |
| `403` | Wrong user type or not a participant |
| `409` | Operation not allowed in the current state |
| `422` | Validation error |

---

## Error Format

```json
{
  "error": {
    "code": "INVALID_STATE",
    "message": "Job not in categorization phase",
    "details": {},
    "request_id": "req_abc123xyz",
    "timestamp": "2025-01-15T10:30:00Z",
    "path": "/api/v1/worker-jobs/.../categorization",
    "method": "POST"
  }
}
```
"""


def create_application() -> FastAPI:
    """
    Application factory function.
    Creates and configures the FastAPI application.
    """
    app = FastAPI(
        title="Khidma API",
        summary="Home services marketplace for Mauritania",
        description=API_DESCRIPTION,
        version=settings.app_version,
        openapi_url="/openapi.json",
        openapi_tags=TAGS_METADATA,
        docs_url="/docs",
        redoc_url="/redoc",
        swagger_ui_parameters={
            "defaultModelsExpandDepth": -1,
            "docExpansion": "list",
            "filter": True,
            "persistAuthorization": True,
        },
        default_response_class=ORJSONResponse,
        debug=settings.debug,
        lifespan=lifespan,
    )

    def custom_openapi():
        if app.openapi_schema:
            return app.openapi_schema

        openapi_schema = get_openapi(
            title=app.title,
            version=app.version,
            summary=app.summary,
            description=app.description,
            routes=app.routes,
            tags=TAGS_METADATA,
        )
        openapi_schema.setdefault("components", {})["securitySchemes"] = {
            "BearerAuth": {
                "type": "http",
                "scheme": "bearer",
                "description": "Session token returned by login, register or refresh",
            },
        }
        openapi_schema["security"] = [{"BearerAuth": []}]

        if settings.debug:
            openapi_schema["servers"] = [
                {"url": "/", "description": "Current Server (Relative)"},
                {"url": "http://localhost:8000", "description": "Local Development"},
            ]

        app.openapi_schema = openapi_schema
        return app.openapi_schema

    app.openapi = custom_openapi

    init_sentry()

    if settings.prometheus_enabled:
        app.add_middleware(MetricsMiddleware)

    app.add_exception_handler(KhidmaException, khidma_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)

    cors_origins = settings.cors_origins_list
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    logger.info("CORS configured", origins=cors_origins)

    _include_routers(app)

    @app.get("/health", tags=["Health"], response_class=ORJSONResponse)
    async def health_check() -> dict[str, str]:
        """Health check endpoint."""
        return {"status": "healthy", "service": "khidma-backend"}

    @app.get("/", tags=["Health"], response_class=ORJSONResponse)
    async def root() -> dict[str, str]:
        """Root endpoint."""
        return {
            "service": "Khidma Backend",
            "version": settings.app_version,
            "docs": "/docs" if settings.debug else "disabled",
        }

    return app


def _include_routers(app: FastAPI) -> None:
    """
    Include all module routers under /api/v1.
    Each module has its own router with its own prefix.
    """
    from khidma.core.metrics import router as metrics_router
    from khidma.modules.auth.router import router as auth_router
    from khidma.modules.bids.router import router as bids_router
    from khidma.modules.categories.router import router as categories_router
    from khidma.modules.chats.router import router as chats_router
    from khidma.modules.jobs.router import router as jobs_router
    from khidma.modules.onboarding.router import router as onboarding_router
    from khidma.modules.ratings.router import router as ratings_router
    from khidma.modules.uploads.router import router as uploads_router
    from khidma.modules.worker_jobs.router import router as worker_jobs_router

    api_v1_prefix = settings.api_v1_str

    routers = [
        (auth_router, "auth"),
        (categories_router, "categories"),
        (onboarding_router, "onboarding"),
        (uploads_router, "uploads"),
        (chats_router, "chats"),
        (jobs_router, "jobs"),
        (worker_jobs_router, "worker-jobs"),
        (bids_router, "bids"),
        (ratings_router, "ratings"),
    ]
    for router, _ in routers:
        app.include_router(router, prefix=api_v1_prefix)

    # Metrics router at root level (no prefix)
    if settings.prometheus_enabled:
        app.include_router(metrics_router)

    logger.info(
        "Routers registered",
        modules=[name for _, name in routers],
        api_prefix=api_v1_prefix,
    )


app = create_application()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "khidma.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug,
        log_level="debug" if settings.debug else "info",
    )
