"""
Annota - Client Feedback & Approval API
FastAPI service behind the review web app: projects, feedback links,
comment pins and the PIN-confirmed approval flow.

Install dependencies:
pip install -e .

Run server:
uvicorn main:app --host 0.0.0.0 --port 8000
"""

import contextvars
import logging
import os
import time
import uuid

from fastapi import Depends, FastAPI, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from adapters.base import StorageAdapter
from core.deps import get_storage
from routers import approval as approval_router
from routers import comments as comments_router
from routers import projects as projects_router
from routers import public as public_router
from settings import get_settings

# ========== Request Context for Tracing ==========
request_id_var = contextvars.ContextVar("request_id", default=None)

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

settings = get_settings()
ALLOWED_ORIGINS = settings.get_origins_list()
VERSION = "1.0"

# ============================================================================
# FASTAPI APP
# ============================================================================

app = FastAPI(
    title="Annota API",
    description="Client feedback pins and project approval",
    version=VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
)


# ========== Request Tracing Middleware ==========
@app.middleware("http")
async def request_tracing_middleware(request, call_next):
    """Add request_id and timing to all requests."""
    request_id = str(uuid.uuid4())[:8]
    request_id_var.set(request_id)
    started = time.time()

    response = await call_next(request)

    latency_ms = round((time.time() - started) * 1000, 2)
    logger.info(f"[{request_id}] {request.method} {request.url.path} -> {response.status_code} ({latency_ms}ms)")

    response.headers["X-Request-ID"] = request_id
    return response


app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request, exc: RequestValidationError):
    errors = exc.errors()
    first = errors[0] if errors else {}
    field = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
    message = first.get("msg", "Invalid request")
    detail = f"{field}: {message}" if field else message
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"detail": detail})


@app.exception_handler(Exception)
async def global_exception_handler(request, exc):
    logger.error(f"Unhandled exception: {str(exc)}", exc_info=True)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Internal server error"},
    )


# ============================================================================
# ENDPOINTS
# ============================================================================
@app.get("/health")
async def health_check(storage: StorageAdapter = Depends(get_storage)):
    """Health check endpoint"""
    try:
        storage.ping()
        return {"status": "healthy", "version": VERSION}
    except Exception as e:
        logger.error(f"Health check failed: {str(e)}")
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"status": "unhealthy", "error": str(e)},
        )


@app.get("/healthz")
async def healthz():
    """
    Liveness probe: the process is up and answering.
    """
    return {"status": "ok", "timestamp": time.time(), "version": VERSION}


@app.get("/readyz")
async def readyz(storage: StorageAdapter = Depends(get_storage)):
    """
    Readiness probe: storage answers a trivial query.
    Returns 200 if ready, 503 if not ready.
    """
    try:
        storage.ping()
        return {
            "status": "ready",
            "email_transport": settings.has_email_transport(),
            "timestamp": time.time(),
        }
    except Exception as e:
        logger.error(f"Readiness check failed: {str(e)}")
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"status": "not_ready", "error": str(e), "timestamp": time.time()},
        )


@app.get("/")
async def root():
    """API root endpoint"""
    return {"message": "Annota API", "version": VERSION, "status": "running", "docs": "/docs"}


app.include_router(projects_router.router)
app.include_router(comments_router.router)
app.include_router(public_router.router)
app.include_router(approval_router.router)


@app.on_event("startup")
async def startup_event():
    logger.info("Annota API starting up...")
    logger.info(f"Environment: {settings.environment}")
    logger.info(f"Database: {settings.db_url.split('://')[0]}")
    if not settings.has_email_transport():
        if settings.is_development:
            logger.warning("No SMTP configured: approval PINs are returned in responses (development only)")
        else:
            logger.warning("No SMTP configured: approval requests will fail")
    logger.info(f"Allowed origins: {ALLOWED_ORIGINS}")


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port, log_level="info")
