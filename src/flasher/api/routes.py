"""API route handlers for the flashing session."""

from fastapi import APIRouter, BackgroundTasks, Depends, Request
from fastapi.responses import JSONResponse

from flasher.api.models import ErrorResponse, ProgressResponse, SuccessResponse
from flasher.models.status import ERROR_DESCRIPTIONS, ErrorEnum
from flasher.services.orchestrator import FlashOrchestrator

router = APIRouter(prefix="/api/v1.0")


def get_orchestrator(request: Request) -> FlashOrchestrator:
    """Orchestrator created by the application lifespan."""
    return request.app.state.orchestrator


@router.get("/progress", response_model=ProgressResponse)
async def get_progress(orchestrator: FlashOrchestrator = Depends(get_orchestrator)):
    """GET /api/v1.0/progress - Query the current session snapshot.

    Response format (success):
        {
            "code": 200,
            "msg": "success",
            "data": {
                "step": 2,
                "error": 0,
                "message": "Downloading boot",
                "progress": 0.45,
                "connected": true,
                "serial": "abc123",
                "destructive_in_flight": true
            }
        }
    """
    status = orchestrator.snapshot()

    if status.error != ErrorEnum.NONE:
        return ProgressResponse(
            code=500,
            msg=f"Flashing failed: {status.error.name}",
            data=status,
            description=ERROR_DESCRIPTIONS.get(status.error),
        )
    return ProgressResponse(code=200, msg="success", data=status)


@router.post("/continue", response_model=SuccessResponse)
async def post_continue(
    background_tasks: BackgroundTasks,
    orchestrator: FlashOrchestrator = Depends(get_orchestrator),
):
    """POST /api/v1.0/continue - User go-ahead to connect and flash.

    Returns:
        SuccessResponse once the request is accepted; poll /progress for the outcome
    """
    background_tasks.add_task(orchestrator.on_continue)
    return SuccessResponse()


@router.post("/retry", response_model=SuccessResponse)
async def post_retry(
    background_tasks: BackgroundTasks,
    orchestrator: FlashOrchestrator = Depends(get_orchestrator),
):
    """POST /api/v1.0/retry - Restart the service for a clean session.

    Only available while an error is set; returns code 409 otherwise.
    """
    status = orchestrator.snapshot()
    if not status.can_retry:
        return JSONResponse(
            status_code=200,
            content=ErrorResponse(
                code=409, msg="Retry is only available after an error"
            ).model_dump(),
        )

    # Restart after the response has been sent
    background_tasks.add_task(orchestrator.on_retry)
    return SuccessResponse()
