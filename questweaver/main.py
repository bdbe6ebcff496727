"""
FastAPI application for the QuestWeaver narrative engine
"""

import os
import time
import uuid
from typing import Callable

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware

from questweaver import __version__
from questweaver.api.quests import router as quests_router
from questweaver.config import settings
from questweaver.utils.logger import LogLevel, get_logger, setup_logging

# Get log level from environment variable, falling back to settings
log_level_raw = os.getenv("LOG_LEVEL", settings.log_level).upper()
log_level: LogLevel = log_level_raw if log_level_raw in ["DEBUG", "VERBOSE", "INFO", "WARNING", "ERROR", "CRITICAL"] else "INFO"  # type: ignore
log_file = os.getenv("LOG_FILE")  # Optional log file

enable_console_logging = os.getenv("ENABLE_CONSOLE_LOGS", "true").lower() == "true"
enable_colors = enable_console_logging  # Only colorize if console logging is enabled

setup_logging(
    level=log_level,
    log_file=log_file,
    enable_colors=enable_colors,
    include_timestamp=True,
    enable_file_logging=log_file is not None,
    enable_console_logging=enable_console_logging,
)

logger = get_logger(__name__)

app = FastAPI(
    title="QuestWeaver",
    description="Narrative state and turn orchestration for LLM-driven quests",
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
)

logger.info("FastAPI application initialized")
logger.info(f"Log level: {log_level}")
logger.info(f"Model provider: {settings.model_provider}")
logger.info(f"Model name: {settings.model_name}")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def log_requests(request: Request, call_next: Callable) -> Response:
    """Log all HTTP requests and responses"""
    request_id = str(uuid.uuid4())[:8]
    start_time = time.time()
    client_ip = request.client.host if request.client else "unknown"

    logger.info(
        f"[API] Request started: {request.method} {request.url.path}",
        extra={
            "component": "API",
            "request_id": request_id,
            "method": request.method,
            "path": request.url.path,
            "client_ip": client_ip,
        },
    )
    request.state.request_id = request_id

    try:
        response = await call_next(request)
        duration_ms = (time.time() - start_time) * 1000
        logger.info(
            f"[API] Request completed: {request.method} {request.url.path} -> {response.status_code} ({duration_ms:.2f}ms)",
            extra={
                "component": "API",
                "request_id": request_id,
                "status_code": response.status_code,
                "duration_ms": duration_ms,
            },
        )
        return response

    except Exception as e:
        duration_ms = (time.time() - start_time) * 1000
        logger.error(
            f"[API] Request failed: {request.method} {request.url.path} -> ERROR ({duration_ms:.2f}ms): {str(e)}",
            extra={
                "component": "API",
                "request_id": request_id,
                "duration_ms": duration_ms,
                "error": str(e),
                "error_type": type(e).__name__,
            },
            exc_info=True,
        )
        raise


app.include_router(quests_router, prefix="/quests", tags=["quests"])


@app.get("/")
async def root():
    """Root endpoint"""
    logger.debug("Root endpoint called")
    return {
        "message": "QuestWeaver",
        "version": __version__,
        "status": "running",
        "log_level": log_level,
        "context_window": settings.context_window,
    }


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    logger.debug("Health check endpoint called")
    return {"status": "healthy"}


if __name__ == "__main__":
    import uvicorn

    logger.info(f"Starting server on {settings.host}:{settings.port}")
    logger.info(f"Debug mode: {settings.debug}")
    uvicorn.run(
        "questweaver.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level="info" if log_level == "VERBOSE" else log_level.lower(),
    )
