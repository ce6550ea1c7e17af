"""
Settlement Pipeline API
FastAPI Backend Entry Point
"""

import io
import logging
import mimetypes
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import StreamingResponse

from app.core.config import settings
from app.core.database import init_db
from app.api import admin, jobs, payments, webhooks

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S"
)
logger = logging.getLogger(__name__)

VERSION = "0.1.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    logger.info(f"Starting {settings.APP_NAME}...")
    if not settings.GENERATION_WEBHOOK_SECRET or not settings.PAYMENT_WEBHOOK_SECRET:
        logger.warning("A webhook secret is unset; deliveries for that provider will be rejected")
    init_db()
    logger.info("Database tables created")
    yield
    logger.info(f"Shutting down {settings.APP_NAME}...")


app = FastAPI(
    title=settings.APP_NAME,
    description="Webhook-driven job completion and payment settlement",
    version=VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(webhooks.router, prefix="/api/v1/webhooks", tags=["Webhooks"])
app.include_router(jobs.router, prefix="/api/v1/jobs", tags=["Jobs"])
app.include_router(payments.router, prefix="/api/v1/payments", tags=["Payments"])
app.include_router(admin.router, prefix="/api/v1/admin", tags=["Admin"])


@app.get("/health", tags=["Health"])
async def health_check():
    """
    Health check endpoint for load balancers and monitoring.
    Returns detailed status of critical services.
    """
    status = {
        "status": "healthy",
        "version": VERSION,
        "environment": {
            "storage": "gcs" if settings.USE_GCS else ("local" if settings.USE_LOCAL_STORAGE else "s3"),
            "database": "sqlite" if settings.DATABASE_URL.startswith("sqlite") else "postgresql",
            "idempotency": settings.IDEMPOTENCY_BACKEND,
        },
        "services": {}
    }

    # Check database connection
    try:
        from app.core.database import SessionLocal
        from sqlalchemy import text
        db = SessionLocal()
        try:
            db.execute(text("SELECT 1"))
        finally:
            db.close()
        status["services"]["database"] = "ok"
    except Exception as e:
        status["services"]["database"] = f"error: {str(e)}"
        status["status"] = "degraded"

    # Check Redis connection (persistence queue)
    try:
        from app.core.redis import redis_health_check
        redis_status = redis_health_check()
        if redis_status.get("connected"):
            status["services"]["redis"] = "ok"
            status["services"]["redis_version"] = redis_status.get("redis_version")
            from app.workers.queue import get_queue_manager
            status["services"]["queues"] = get_queue_manager().get_queue_stats()
        else:
            status["services"]["redis"] = f"error: {redis_status.get('error', 'not connected')}"
            status["status"] = "degraded"
    except Exception as e:
        status["services"]["redis"] = f"error: {str(e)}"
        status["status"] = "degraded"

    return status


@app.get("/files/{file_path:path}", tags=["Files"])
async def serve_file(file_path: str):
    """Serve persisted assets from storage."""
    from app.services.storage import StorageService

    try:
        file_bytes = await StorageService().get_file(file_path)
    except Exception as e:
        raise HTTPException(status_code=404, detail=f"File not found: {str(e)}")

    content_type = mimetypes.guess_type(file_path)[0] or "application/octet-stream"
    return StreamingResponse(
        io.BytesIO(file_bytes),
        media_type=content_type,
        # Keys are content-addressed, so the bytes never change
        headers={"Cache-Control": "public, max-age=31536000, immutable"}
    )


@app.get("/", tags=["Root"])
async def root():
    """Root endpoint."""
    return {
        "message": settings.APP_NAME,
        "docs": "/docs",
        "health": "/health",
    }
