from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager

from portal.core.config import settings
from portal.core.database import init_db, close_db
from portal.core.exceptions import PortalError, error_response
from portal.core.logging_config import logger
from portal.core.middleware import (
    RequestLoggingMiddleware,
    SecurityHeadersMiddleware,
    RequestSizeLimitMiddleware,
)
from portal.core.rate_limiter import limiter, rate_limit_exceeded_handler
from portal.core.redis_client import redis_client
from portal.api.v1.router import api_router
from portal.middleware.access_guard import AccessGuardMiddleware
from portal.services.document_store import document_store
from portal.services.guard import (
    GuardCache,
    GuardSessionRegistry,
    MemoryGuardCache,
    RedisGuardCache,
    StorePolicyProvider,
)
from slowapi.errors import RateLimitExceeded


async def build_guard_cache() -> GuardCache:
    """Redis-backed guard cache when configured, process memory otherwise"""
    if settings.guard_uses_redis:
        try:
            await redis_client.connect()
            return RedisGuardCache(redis_client, ttl_seconds=settings.GUARD_CACHE_TTL_SECONDS)
        except Exception as e:
            logger.warning(f"[Startup] Redis unavailable ({e}) - guard state kept in memory")
    return MemoryGuardCache(ttl_seconds=settings.GUARD_CACHE_TTL_SECONDS)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan event handler for startup and shutdown"""
    # Startup
    logger.info("=" * 60)
    logger.info(f"Starting {settings.APP_NAME} portal backend...")
    logger.info(f"Environment: {settings.ENVIRONMENT}")
    logger.info(f"API Version: {settings.API_VERSION}")
    logger.info("=" * 60)

    # Step 1: Ensure the documents table exists
    await init_db()
    app.state.document_store = document_store

    # Step 2: Security policy (subscribed to settings/security)
    cache = await build_guard_cache()
    policy_provider = StorePolicyProvider(document_store, cache=cache)
    await policy_provider.start()
    app.state.policy_provider = policy_provider

    # Step 3: Per-session access guards
    registry = None
    if settings.GUARD_ENABLED:
        registry = GuardSessionRegistry(policy_provider, cache)
        await registry.start()
    else:
        logger.info("[Startup] Access guard disabled")
    app.state.guard_registry = registry

    yield

    # Shutdown (reverse order)
    logger.info("Shutting down portal backend...")

    if registry is not None:
        await registry.stop()
    await policy_provider.stop()

    if redis_client.connected:
        await redis_client.disconnect()

    await close_db()


# Create FastAPI app
app = FastAPI(
    title=settings.APP_NAME,
    description="Institute website backend: access guard and backup/restore",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    lifespan=lifespan,
    redirect_slashes=False
)

# Add rate limiter state and exception handler
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)

# Add middleware (order matters - last added runs first)
# 1. Access guard (closest to the routes)
app.add_middleware(AccessGuardMiddleware)

# 2. Request logging
app.add_middleware(RequestLoggingMiddleware)

# 3. Security headers
app.add_middleware(SecurityHeadersMiddleware)

# 4. Request size limit (backup uploads)
app.add_middleware(RequestSizeLimitMiddleware, max_size=settings.MAX_UPLOAD_SIZE)

# 5. CORS - Origins from CORS_ORIGINS_STR in .env
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Request-ID", "X-Response-Time", "X-Backup-Stats", "Content-Disposition"],
)


# Exception handlers
@app.exception_handler(PortalError)
async def portal_exception_handler(request: Request, exc: PortalError):
    if exc.status_code >= 500:
        logger.error(f"[{exc.code}] {exc.message}", extra={"error_details": exc.details})
    else:
        logger.warning(f"[{exc.code}] {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=error_response(exc))


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Global exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={
            "detail": "Internal server error",
            "message": str(exc) if settings.DEBUG else "An error occurred"
        }
    )


# Health check endpoint
@app.get("/health", tags=["Health"])
async def health_check():
    """Health check endpoint"""
    registry = getattr(app.state, "guard_registry", None)
    return {
        "status": "healthy",
        "app_name": settings.APP_NAME,
        "version": "1.0.0",
        "environment": settings.ENVIRONMENT,
        "guard_sessions": len(registry) if registry is not None else 0,
    }


# Root endpoint
@app.get("/", tags=["Root"])
async def root():
    """Root endpoint"""
    return {
        "message": f"Welcome to {settings.APP_NAME}",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/health"
    }


# Include API router
app.include_router(api_router, prefix=f"/api/{settings.API_VERSION}")


def run():
    """Console entry point: ``portal-server``"""
    import uvicorn
    uvicorn.run(
        "portal.main:app",
        host=settings.SERVER_HOST,
        port=settings.SERVER_PORT,
        reload=settings.DEBUG
    )


if __name__ == "__main__":
    run()
