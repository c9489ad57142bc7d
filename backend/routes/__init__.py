"""
Route registration — includes all API routers into the FastAPI app.
"""

from fastapi import FastAPI

from routes.health import router as health_router
from routes.chat import router as chat_router
from routes.results import router as results_router


def register_routes(app: FastAPI):
    """Mount all API routers onto the app."""
    app.include_router(health_router)
    app.include_router(chat_router)
    app.include_router(results_router)
