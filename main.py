from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import logging
import sys
import os
import io
import asyncio
from contextlib import asynccontextmanager
from datetime import datetime

from app.core.config import settings
from app.api.routes import router
from app.services.mongodb_service import mongodb_service
from app.services.progress_tracker import start_cleanup_task


# ============================================================================
# LOGGING CONFIGURATION
# ============================================================================

class UTF8StreamHandler(logging.StreamHandler):
    """Stream handler that keeps emoji log lines readable on Windows consoles."""
    def __init__(self):
        if sys.platform == 'win32':
            sys.stdout = io.TextIOWrapper(
                sys.stdout.buffer,
                encoding='utf-8',
                errors='replace',
                line_buffering=True
            )
        super().__init__(sys.stdout)

logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        UTF8StreamHandler(),
        logging.FileHandler('app.log', encoding='utf-8')
    ]
)

# httpx logs every signed URL at INFO
logging.getLogger("httpx").setLevel(logging.WARNING)

logger = logging.getLogger(__name__)


# ============================================================================
# STARTUP/SHUTDOWN LIFECYCLE
# ============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifecycle manager.
    Connects storage and starts the progress cleanup loop.
    """
    logger.info("")
    logger.info("=" * 80)
    logger.info(f"  {settings.APP_NAME} v{settings.APP_VERSION}")
    logger.info("=" * 80)
    logger.info(f"  AI Model Chain: {' -> '.join(settings.model_chain)}")
    logger.info(f"  AI Timeout: {settings.AI_TIMEOUT_SECONDS}s, retries: {settings.AI_MAX_RETRIES}")
    logger.info(f"  Max File Size: {settings.MAX_FILE_SIZE_MB}MB")
    logger.info(f"  Storage Bucket: {settings.STORAGE_BUCKET}")
    logger.info(f"  Extraction Schema: {settings.EXTRACTION_SCHEMA_VERSION}")
    logger.info("=" * 80)

    if settings.ENABLE_STORAGE:
        try:
            await mongodb_service.connect()
            logger.info(f"  ✅ MongoDB connected: {settings.MONGODB_DATABASE}")
        except Exception as e:
            logger.error(f"  ❌ MongoDB connection failed: {e}")
            logger.warning("  ⚠️  Continuing with in-memory cache and comparison store")
    else:
        logger.info("  ℹ️  Storage disabled, using in-memory cache and comparison store")

    cleanup_task = asyncio.create_task(start_cleanup_task())
    logger.info("  ✅ Progress tracker cleanup task started")

    logger.info("")
    logger.info("  📡 AVAILABLE ENDPOINTS:")
    logger.info("       POST /api/compare                                   Start a comparison job")
    logger.info("       GET  /api/progress/{job_id}                         Job progress and events")
    logger.info("       GET  /api/jobs/{job_id}/result                      Finished report")
    logger.info("       POST /api/jobs/{job_id}/cancel                      Stop a job")
    logger.info("       GET  /api/comparisons/{id}                          Stored comparison")
    logger.info("       POST /api/comparisons/{id}/documents/{doc}/retry    Retry a failed document")
    logger.info("       POST /api/rankings                                  Score quotes")
    logger.info("       GET  /api/cache/stats                               Extraction cache usage")
    logger.info("       GET  /api/health                                    System health")
    logger.info("")
    logger.info("=" * 80)
    logger.info("  ✅ Application started successfully!")
    logger.info(f"  📚 API Docs: http://localhost:{os.getenv('PORT', '8000')}/docs")
    logger.info("=" * 80)
    logger.info("")

    yield

    logger.info("")
    logger.info("=" * 80)
    logger.info("  🛑 Shutting down application...")

    cleanup_task.cancel()
    try:
        await cleanup_task
    except asyncio.CancelledError:
        pass

    if mongodb_service.is_connected:
        try:
            await mongodb_service.disconnect()
            logger.info("  ✅ MongoDB connection closed")
        except Exception as e:
            logger.warning(f"  ⚠️  MongoDB disconnect: {str(e)}")

    logger.info("  ✅ Application stopped successfully")
    logger.info("=" * 80)
    logger.info("")


# ============================================================================
# APPLICATION INITIALIZATION
# ============================================================================

app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description=f"""{settings.APP_DESCRIPTION}

## 📖 Documentation

- **Interactive API Docs**: `/docs` (Swagger UI)
- **Alternative Docs**: `/redoc` (ReDoc)
- **Health Check**: `/api/health`
""",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan
)


# ============================================================================
# MIDDLEWARE CONFIGURATION
# ============================================================================

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log all incoming requests with timing."""
    start_time = datetime.now()

    logger.info(f"📥 {request.method} {request.url.path}")

    try:
        response = await call_next(request)

        duration = (datetime.now() - start_time).total_seconds()
        logger.info(f"📤 {request.method} {request.url.path} - {response.status_code} - {duration:.2f}s")

        return response
    except Exception as e:
        duration = (datetime.now() - start_time).total_seconds()
        logger.error(f"❌ {request.method} {request.url.path} - Error: {str(e)} - {duration:.2f}s")
        raise


# ============================================================================
# ROUTE INCLUSION
# ============================================================================

app.include_router(router)


# ============================================================================
# ERROR HANDLERS
# ============================================================================

@app.exception_handler(404)
async def not_found_handler(request: Request, exc):
    """Handle 404 errors."""
    detail = getattr(exc, "detail", None)
    return JSONResponse(
        status_code=404,
        content={
            "error": "Not Found",
            "detail": detail or f"Resource not found: {request.url.path}",
            "documentation": "/docs",
        }
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Catch-all exception handler."""
    logger.error(f"Unhandled exception on {request.url.path}: {str(exc)}", exc_info=True)

    detail = str(exc) if settings.DEBUG else "An error occurred"

    return JSONResponse(
        status_code=500,
        content={
            "error": "Internal server error",
            "detail": detail,
            "type": type(exc).__name__,
            "path": str(request.url.path)
        }
    )


# ============================================================================
# ROOT ENDPOINTS
# ============================================================================

@app.get("/")
async def read_root():
    """Root endpoint - API welcome and overview."""
    return {
        "message": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "status": "operational",
        "documentation": "/docs",
        "redoc": "/redoc",
        "timestamp": datetime.now().isoformat(),
        "workflow": {
            "step_1": "Start a comparison → POST /api/compare",
            "step_2": "Poll GET /api/progress/{job_id}",
            "step_3": "Collect the report → GET /api/jobs/{job_id}/result",
            "step_4": "Retry failed documents without re-running the rest",
        },
        "coverage_sections": [
            "Professional Indemnity",
            "Public & Products Liability",
            "Employers' Liability",
            "Cyber & Data",
            "Crime",
            "Property",
            "Directors & Officers (D&O)",
        ],
    }


# ============================================================================
# RUN APPLICATION
# ============================================================================

if __name__ == "__main__":
    import uvicorn

    port = int(os.getenv("PORT", 8000))
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=port,
        reload=settings.DEBUG,
        log_level="info"
    )
