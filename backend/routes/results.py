"""Results endpoints — stored invocation values and execution history."""

from fastapi import APIRouter, Depends, HTTPException

from core import Orchestrator
from models import HistoryEntry, ResultResponse
from routes.deps import get_orchestrator

router = APIRouter(prefix="/api", tags=["Results"])


@router.get("/results/{invocation_id}", response_model=ResultResponse)
def get_result(invocation_id: str, orchestrator: Orchestrator = Depends(get_orchestrator)):
    if not orchestrator.has_result(invocation_id):
        raise HTTPException(status_code=404, detail=f"No result for '{invocation_id}'")
    return ResultResponse(id=invocation_id, value=orchestrator.get_result(invocation_id))


@router.get("/history", response_model=list[HistoryEntry])
def get_history(orchestrator: Orchestrator = Depends(get_orchestrator)):
    return [HistoryEntry(**entry.to_dict()) for entry in orchestrator.history()]
