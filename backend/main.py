"""
doloop — tool-use orchestration service.
FastAPI app that owns one Orchestrator and exposes chat, streaming,
and results endpoints.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from config import (
    API_HOST, API_PORT, APP_TITLE, APP_VERSION, CORS_ORIGINS,
    LOG_DATEFMT, LOG_FORMAT, LOG_LEVEL,
)
from core import Orchestrator, build_orchestrator
from routes import register_routes
from settings import get_profile

logger = logging.getLogger(__name__)


def create_app(orchestrator: Optional[Orchestrator] = None) -> FastAPI:
    """Build the app. Without ``orchestrator`` one is built from the profile at startup."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logging.basicConfig(
            level=LOG_LEVEL,
            format=LOG_FORMAT,
            datefmt=LOG_DATEFMT,
        )
        app.state.turn_lock = asyncio.Lock()
        if orchestrator is None:
            app.state.orchestrator = build_orchestrator(get_profile())
        else:
            app.state.orchestrator = orchestrator
        logger.info("%s ready (engines: %s)", APP_TITLE,
                    ", ".join(f.value for f in app.state.orchestrator.engines))
        yield
        app.state.orchestrator = None
        logger.info("%s shut down", APP_TITLE)

    app = FastAPI(
        title=APP_TITLE,
        description="Tool-use orchestration engine: runs code embedded in model output",
        version=APP_VERSION,
        lifespan=lifespan,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    register_routes(app)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=API_HOST, port=API_PORT)
