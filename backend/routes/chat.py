"""Chat endpoints — one-shot and streaming conversation turns."""

import asyncio
import json
import logging

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import StreamingResponse

from config import STREAM_MEDIA_TYPE
from core import Orchestrator
from inference import ProviderError
from invocation.models import Message, Role
from models import ChatRequest, ChatResponse
from routes.deps import get_orchestrator, get_turn_lock

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Chat"])


def _to_messages(req: ChatRequest) -> list[Message]:
    messages = [Message(Role(m.role), m.content) for m in req.history or []]
    messages.append(Message.user(req.message))
    return messages


@router.post("/chat", response_model=ChatResponse)
async def chat(req: ChatRequest,
               orchestrator: Orchestrator = Depends(get_orchestrator),
               lock: asyncio.Lock = Depends(get_turn_lock)):
    async with lock:
        try:
            response = await orchestrator.run(_to_messages(req))
        except ProviderError as e:
            logger.error("Chat failed: %s", e)
            raise HTTPException(status_code=502, detail=str(e))
    return ChatResponse(response=response)


@router.post("/chat/stream")
async def chat_stream(req: ChatRequest,
                      orchestrator: Orchestrator = Depends(get_orchestrator),
                      lock: asyncio.Lock = Depends(get_turn_lock)):
    messages = _to_messages(req)

    async def event_stream():
        async with lock:
            stream = orchestrator.run_stream(messages)
            try:
                async for event in stream:
                    yield json.dumps(event.to_dict(), default=str) + "\n"
            finally:
                await stream.aclose()

    return StreamingResponse(event_stream(), media_type=STREAM_MEDIA_TYPE)


@router.post("/reset")
async def reset(orchestrator: Orchestrator = Depends(get_orchestrator),
                lock: asyncio.Lock = Depends(get_turn_lock)):
    async with lock:
        orchestrator.reset()
    return {"status": "ok"}
