# ============================================================================
# FastAPI Application Entry Point
# ============================================================================
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
import logging

from app.config import get_settings
from app.core.exceptions import EduConnectException

settings = get_settings()

# Configure logging
logging.basicConfig(level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))
logger = logging.getLogger(__name__)

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan - startup and shutdown"""
    logger.info("🚀 Starting EduConnect Platform Analytics...")

    from app.core.cache import create_cache_layer
    from app.core.database import engine, async_session_maker
    from app.services.analytics import PlatformAnalyticsService, create_sql_sources

    cache = create_cache_layer(settings)
    app.state.platform_service = PlatformAnalyticsService(
        sources=create_sql_sources(async_session_maker),
        cache=cache,
        settings=settings,
    )
    logger.info(f"✅ Platform analytics ready (cache backend: {settings.CACHE_BACKEND})")

    yield

    # Shutdown
    logger.info("👋 Shutting down...")
    await engine.dispose()
    redis_client = getattr(cache, "_redis", None)
    if redis_client is not None:
        await redis_client.aclose()

app = FastAPI(
    title=settings.APP_NAME,
    description="Cross-school analytics for the EduConnect system admin dashboard",
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json"
)

# CORS Middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Exception Handler
@app.exception_handler(EduConnectException)
async def educonnect_exception_handler(request: Request, exc: EduConnectException):
    if exc.status_code >= 500:
        logger.error(f"❌ {request.url.path}: {exc.detail}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail, "error_code": exc.error_code}
    )

# Health Check - Root level
@app.get("/")
async def root():
    return {
        "app": settings.APP_NAME,
        "status": "running",
        "docs": "/docs",
        "health": "/health"
    }

@app.get("/health")
async def health_check():
    return {
        "status": "healthy",
        "app": settings.APP_NAME,
        "cache_backend": settings.CACHE_BACKEND,
    }

from app.api.v1.router import api_router

app.include_router(api_router, prefix=settings.API_V1_PREFIX)
