# FILE: exam_engine/app.py
"""
FastAPI application entry point for the exam engine
"""
import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from exam_engine import __version__
from exam_engine.config import get_settings
from exam_engine.db import get_engine, init_db
from exam_engine.errors import ExamError
from exam_engine.jobs.timer_sweep import build_timer_sweeper
from exam_engine.routes import exam, health, metrics, students
from exam_engine.services.telemetry import init_telemetry

logger = logging.getLogger(__name__)
settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup/shutdown"""
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )
    logger.info(f"Starting exam engine v{__version__} ({settings.environment})")

    init_db(get_engine())
    init_telemetry()

    sweep_task = None
    if settings.sweep_enabled:
        sweep_task = build_timer_sweeper().start()
    else:
        logger.warning("Timer sweep disabled; expired attempts will not be auto-submitted")

    yield

    # Shutdown
    if sweep_task is not None:
        sweep_task.cancel()
        try:
            await sweep_task
        except asyncio.CancelledError:
            pass
    logger.info("Shutting down exam engine")


app = FastAPI(
    title="Exam Engine API",
    description="Exam attempts, answer grading and timed auto-submission",
    version=__version__,
    lifespan=lifespan
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ExamError)
async def exam_error_handler(request: Request, exc: ExamError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"status": "error", "error": type(exc).__name__, "detail": exc.message}
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"error": "Internal server error", "detail": str(exc)}
    )

# Include routers
app.include_router(health.router, prefix="/health", tags=["health"])
app.include_router(exam.router, prefix="/exam", tags=["exam"])
app.include_router(students.router, prefix="/students", tags=["students"])
app.include_router(metrics.router, prefix="/metrics", tags=["metrics"])


@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "service": "Exam Engine",
        "version": __version__,
        "status": "active"
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "exam_engine.app:app",
        host=settings.backend_host,
        port=settings.backend_port,
        reload=settings.environment == "development"
    )
