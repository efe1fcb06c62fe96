"""
FastAPI application for the PR monitor.

Exposes the poller's inbound commands over HTTP for a presentation
collaborator (browser extension popup, desktop tray app, dashboard).
The poll timer runs in the same process while the app is up.
"""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from poller.engine import PollerEngine, build_engine
from poller.scheduler import PollScheduler
from utils.config_loader import load_config
from utils.logger import setup_logger

logger = setup_logger(__name__)


def create_app(engine: Optional[PollerEngine] = None, start_scheduler: bool = True) -> FastAPI:
    """
    Build the API app.

    Args:
        engine: Engine to serve (built from .env configuration when omitted)
        start_scheduler: Run the poll timer for the lifetime of the app

    Returns:
        Configured FastAPI application
    """
    if engine is None:
        engine = build_engine(load_config)
        setup_logger(engine.config.log_level)

    scheduler = PollScheduler(engine)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if start_scheduler:
            scheduler.start()
        yield
        if start_scheduler:
            scheduler.stop(timeout=5)

    app = FastAPI(
        title="PR Monitor API",
        description="Commands and snapshot access for the pull request poller",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.engine = engine
    app.state.scheduler = scheduler

    # Enable CORS for local UIs
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:5173"],  # Vite dev server
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    from backend.routes import router
    app.include_router(router)

    logger.info("FastAPI app initialized")
    return app


def run_server(host: str = "127.0.0.1", port: int = 8000, reload: bool = False) -> None:
    """Serve the app factory with uvicorn (the poll timer runs in-process)."""
    import uvicorn
    uvicorn.run(
        "backend.app:create_app",
        factory=True,
        host=host,
        port=port,
        reload=reload,
        log_level="info"
    )
