"""Shared route dependencies — access to the app-owned orchestrator."""

import asyncio

from fastapi import HTTPException, Request

from core import Orchestrator


def get_orchestrator(request: Request) -> Orchestrator:
    """Return the orchestrator from app state, 503 while starting up."""
    orchestrator = getattr(request.app.state, "orchestrator", None)
    if orchestrator is None:
        raise HTTPException(status_code=503, detail="Orchestrator is still initializing")
    return orchestrator


def get_turn_lock(request: Request) -> asyncio.Lock:
    """Lock serializing conversation turns on the single orchestrator."""
    return request.app.state.turn_lock
