"""Main FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded

from src.api import admin, auth, health, university_admin, verification
from src.config import get_settings
from src.db.session import init_db
from src.errors import error_body, register_exception_handlers
from src.middleware.rate_limit import limiter
from src.services.identity import identity_provider
from src.services.storage import storage_service

settings = get_settings()

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

REFRESHED_TOKEN_HEADER = "X-Refreshed-Token"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown."""
    # Startup
    logger.info("Starting Credential Verification Service...")

    # Initialize database
    try:
        await init_db()
        logger.info("Database initialized successfully")
    except Exception as e:
        logger.error(f"Database initialization failed: {e}")
        raise

    # Storage problems only degrade uploads and previews
    if await run_in_threadpool(storage_service.health_check):
        logger.info(f"Storage bucket '{storage_service.bucket}' is reachable")
    else:
        logger.warning(f"Storage bucket '{storage_service.bucket}' is not reachable")

    logger.info("Credential Verification Service started successfully")

    yield

    # Shutdown
    logger.info("Shutting down Credential Verification Service...")
    await identity_provider.aclose()


# Create FastAPI app
app = FastAPI(
    title="Credential Verification Service",
    description="""
## Academic Credential Verification API

Universities publish graduate records; anyone can check them.

- **Platform admins** onboard universities and their administrators
- **University admins** maintain academic programs and graduate records,
  with certificate and transcript files
- **Verifiers** look up a graduate by registration number, no sign-in needed

### Authentication
Administrative endpoints require a session token from `/api/auth/login`.
Include it in the `Authorization` header:
```
Authorization: Bearer <token>
```
Tokens close to expiry are renewed automatically; the replacement is returned
in the `X-Refreshed-Token` response header.

### Rate Limiting
Public verification and sign-in endpoints are rate-limited per client IP.
    """,
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    lifespan=lifespan,
)

# Add rate limiter
app.state.limiter = limiter


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
    return JSONResponse(
        status_code=429,
        content=error_body(f"Too many requests: {exc.detail}", "RATE_LIMITED"),
    )


# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=[REFRESHED_TOKEN_HEADER],
)


@app.middleware("http")
async def refreshed_token_header(request: Request, call_next):
    """Hand a renewed session token back to the client."""
    response = await call_next(request)
    token = getattr(request.state, "refreshed_token", None)
    if token:
        response.headers[REFRESHED_TOKEN_HEADER] = token
    return response


register_exception_handlers(app, settings.debug)

# Include routers
app.include_router(health.router)
app.include_router(auth.router)
app.include_router(admin.router)
app.include_router(university_admin.router)
app.include_router(verification.router)


# Root endpoint
@app.get("/", tags=["Root"])
async def root():
    """Root endpoint with service info."""
    return {
        "service": "Credential Verification Service",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/health",
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "src.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug,
    )
