from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from fastapi.responses import JSONResponse
import logging
import os
import time

from .core.config import settings
from .core.database import create_db_and_tables
from .core.exceptions import ExamServiceError
from .api.v1.api import api_router
from .middleware.performance import PerformanceMiddleware
from .middleware.rate_limiting import RateLimitMiddleware
from .middleware.timezone import TimezoneMiddleware
from .services.attempt_service import AttemptLocks
from .services.live_notifications import ConnectionRegistry
from .utils.file_paths import UPLOADS_URL_PREFIX, FileTypes, ensure_upload_directory, get_upload_root

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def create_app(rate_limit_redis=None) -> FastAPI:
    app = FastAPI(
        title="Secure Exam API",
        description="Online exams with auto-grading, violation tracking and live proctoring",
        version="1.0.0",
        docs_url="/docs" if settings.environment == "development" else None,
        redoc_url="/redoc" if settings.environment == "development" else None
    )

    # Owned by the application for its whole lifetime
    app.state.live_registry = ConnectionRegistry()
    app.state.attempt_locks = AttemptLocks()
    app.state.started_at = time.time()

    app.add_middleware(TimezoneMiddleware)
    app.add_middleware(
        PerformanceMiddleware,
        slow_request_threshold=settings.slow_request_threshold
    )
    app.add_middleware(
        RateLimitMiddleware,
        requests_per_window=settings.default_rate_limit,
        window_seconds=settings.rate_limit_window_seconds,
        redis_client=rate_limit_redis
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    os.makedirs(get_upload_root(), exist_ok=True)
    app.mount(UPLOADS_URL_PREFIX, StaticFiles(directory=get_upload_root()), name="uploads")

    @app.exception_handler(ExamServiceError)
    async def exam_service_exception_handler(request: Request, exc: ExamServiceError):
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.error(f"Global exception: {exc}", exc_info=True)
        return JSONResponse(
            status_code=500,
            content={
                "error": "Internal server error",
                "status": "error",
                "request_id": getattr(request.state, 'request_id', 'unknown')
            }
        )

    @app.on_event("startup")
    async def startup_event():
        logger.info("Starting Secure Exam API...")
        ensure_upload_directory(FileTypes.SNAPSHOTS)
        await create_db_and_tables()
        logger.info("Secure Exam API startup completed")

    @app.on_event("shutdown")
    async def shutdown_event():
        logger.info(
            f"Shutting down Secure Exam API with {app.state.live_registry.connection_count} live connections"
        )

    app.include_router(api_router, prefix="/api/v1")

    @app.get("/")
    async def read_root():
        return {"message": "Secure Exam API", "version": "1.0.0"}

    return app


app = create_app()
