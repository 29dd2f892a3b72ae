"""
Main Application Entry Point.

This module initializes the FastAPI application, configures middleware (CORS),
and includes all API routers. It serves as the root of the web server.
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from serverpilot_ai import __version__
from serverpilot_ai.core.logging_config import get_logger, setup_logging

from .api.v1 import chat, health, plans, session
from .core import constant
from .core.config import settings
from .exception_handlers import setup_exception_handlers
from .services.workspace import get_workspace, shutdown_workspace

# Initialize logging
setup_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Manage application lifespan events.

    Handles startup and shutdown events for the FastAPI application.
    """
    # Startup
    logger.info("Starting up ServerPilot-AI Server...")
    workspace = get_workspace()
    logger.info(
        f"Chat provider {workspace.chat.provider.name} (model {workspace.chat.provider.model}) "
        f"initialized={workspace.chat.provider.is_initialized()}"
    )

    yield

    # Shutdown
    logger.info("Shutting down ServerPilot-AI Server...")
    await shutdown_workspace()


app = FastAPI(
    title=constant.PROJECT_NAME,
    description="""
    ServerPilot-AI Server API

    This API turns natural-language goals into risk-assessed plans of shell commands
    and executes them on a connected server under human oversight.
    It supports session passthrough, streaming chat, step approvals and real-time plan events.
    """,
    version=__version__,
    openapi_url=f"{constant.API_V1_STR}/openapi.json",
    docs_url=f"{constant.API_V1_STR}/docs",
    redoc_url=f"{constant.API_V1_STR}/redoc",
    lifespan=lifespan,
)

# Set all CORS enabled origins
cors = settings.cors
app.add_middleware(
    CORSMiddleware,
    allow_origins=cors.origins,
    allow_credentials=cors.allow_credentials,
    allow_methods=cors.allow_methods,
    allow_headers=cors.allow_headers,
)

setup_exception_handlers(app)

app.include_router(health.router, tags=["health"])
app.include_router(session.router, prefix=f"{constant.API_V1_STR}/session", tags=["session"])
app.include_router(chat.router, prefix=f"{constant.API_V1_STR}/chat", tags=["chat"])
app.include_router(plans.router, prefix=f"{constant.API_V1_STR}/plans", tags=["plans"])


def run() -> None:
    """Console entry point: serve the app with uvicorn."""
    import uvicorn

    uvicorn.run(
        "serverpilot_ai.server.main:app",
        host=settings.server_host,
        port=settings.server_port,
        log_level=settings.log_level.lower(),
    )
