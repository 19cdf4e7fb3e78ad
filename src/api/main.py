"""
FastAPI Application.

Main entry point of the matching service: starts the scheduler and the
worker loops, and exposes health and matching status routes.
"""

import logging
import sys
from contextlib import asynccontextmanager

from dotenv import load_dotenv

# Load .env file at startup
load_dotenv()

from fastapi import FastAPI  # noqa: E402
from loguru import logger  # noqa: E402

from config.settings import get_settings  # noqa: E402


class InterceptHandler(logging.Handler):
    """Intercept standard logging and redirect to loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        # Get corresponding loguru level
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # Find caller from where originated the logged message
        frame, depth = logging.currentframe(), 2
        while frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(
            level, record.getMessage()
        )


# Configure loguru format with default module
logger.configure(extra={"module": "Server"})
logger.remove()
logger.add(
    sys.stderr,
    format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{extra[module]: <14}</cyan> | <level>{message}</level>",
    level=get_settings().log_level,
)

# Intercept uvicorn, apscheduler and asyncpg logs
for name in ("uvicorn", "uvicorn.access", "uvicorn.error", "apscheduler", "asyncpg"):
    std_logger = logging.getLogger(name)
    std_logger.handlers = [InterceptHandler()]
    std_logger.propagate = False

log = logger.bind(module="App")

from src.api.routes import health_router, matching_router  # noqa: E402
from src.connections.postgres import close_postgres  # noqa: E402
from src.connections.redis import close_redis  # noqa: E402
from src.jobs import scheduler  # noqa: E402


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifespan events."""
    settings = get_settings().matching
    log.info(f"Starting matching service (instance={settings.instance_id})")

    # Start scheduler and workers
    scheduler.start()

    yield

    # Shutdown
    await scheduler.shutdown()
    await close_redis()
    await close_postgres()
    log.info("Server stopped")


app = FastAPI(
    title="Homeswap Matching",
    description="Housing exchange matching engine",
    version="0.1.0",
    lifespan=lifespan,
)

# Register routes
app.include_router(health_router)
app.include_router(matching_router)
