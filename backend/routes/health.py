"""Health endpoint."""

from fastapi import APIRouter, Request

from models import HealthResponse

router = APIRouter()


@router.get("/health", response_model=HealthResponse)
def health(request: Request):
    orchestrator = getattr(request.app.state, "orchestrator", None)
    if orchestrator is None:
        return HealthResponse(status="starting", ready=False)
    return HealthResponse(
        status="ok",
        ready=True,
        backend=type(orchestrator.provider).__name__,
        engines=[fmt.value for fmt in orchestrator.engines],
    )
