"""
Main Application Entry Point.

This module initializes the FastAPI application, configures middleware (CORS),
registers exception handlers and includes all API routers.
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from questforge_ai.core.logging_config import get_logger, setup_logging
from questforge_ai.core.monitoring import initialize_logfire

from .api.v1 import activity, executions, health, maintenance, results
from .core import constant
from .core.config import settings
from .core.database import init_db
from .exception_handlers import setup_exception_handlers

setup_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Manage application lifespan events.

    Creates the database tables on startup. A failed initialization is logged
    and the server still starts, so ``/health`` can report the problem.
    """
    try:
        logger.info("Starting up QuestForge-AI Server...")
        await init_db()
        logger.info("Database initialized successfully")
    except Exception as e:
        logger.error(f"Database initialization failed: {e}", exc_info=True)

    yield

    logger.info("Shutting down QuestForge-AI Server...")


app = FastAPI(
    title=constant.PROJECT_NAME,
    description="""
    QuestForge-AI Server API

    Runs long, tool-using agent tasks, streams their progress as Server-Sent Events,
    checkpoints every completed step and resumes interrupted work.
    """,
    version="0.1.0",
    openapi_url=f"{constant.API_V1_STR}/openapi.json",
    docs_url=f"{constant.API_V1_STR}/docs",
    redoc_url=f"{constant.API_V1_STR}/redoc",
    lifespan=lifespan,
)

cors = settings.cors
app.add_middleware(
    CORSMiddleware,
    allow_origins=cors.origins,
    allow_credentials=cors.allow_credentials,
    allow_methods=cors.allow_methods,
    allow_headers=cors.allow_headers,
)

setup_exception_handlers(app)
initialize_logfire(app)

app.include_router(health.router, tags=["health"])
app.include_router(executions.router, prefix=f"{constant.API_V1_STR}/agents", tags=["executions"])
app.include_router(results.router, prefix=f"{constant.API_V1_STR}/agents", tags=["results"])
app.include_router(activity.router, prefix=f"{constant.API_V1_STR}/agents", tags=["activity"])
app.include_router(maintenance.router, prefix=f"{constant.API_V1_STR}/maintenance", tags=["maintenance"])
