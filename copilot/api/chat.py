"""Chat API endpoints: thread creation, send, respond."""

from fastapi import APIRouter, Header, HTTPException
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from copilot.core.logging import get_logger
from copilot.core.schemas_chat import TurnFailure, TurnResult
from copilot.services.turn_orchestrator import (
    create_thread_for_user,
    failure_payload,
    respond,
    send_message,
)

logger = get_logger(__name__)

router = APIRouter()

_FAILURE_STATUS = {
    "not_found": 404,
    "timeout": 504,
    "synthesis_failed": 502,
    "empty_response": 502,
    "persist_failed": 500,
}


class SendMessageRequest(BaseModel):
    """User message for a new or existing thread."""

    thread_id: str | None = None
    message: str = Field(..., min_length=1)


class RespondRequest(BaseModel):
    """Run a turn over a thread's stored history."""

    thread_id: str


def _turn_response(outcome: TurnResult | TurnFailure) -> JSONResponse:
    if isinstance(outcome, TurnFailure):
        return JSONResponse(
            content=failure_payload(outcome),
            status_code=_FAILURE_STATUS.get(outcome.kind, 500),
        )
    return JSONResponse(content=outcome.model_dump(mode="json"), status_code=200)


@router.post("/threads")
async def create_thread_endpoint(
    x_tenant_id: str = Header(...),
    x_user_id: str | None = Header(None),
) -> JSONResponse:
    """Create an empty thread."""
    try:
        thread = await create_thread_for_user(x_tenant_id, x_user_id)
    except Exception as e:
        logger.error(f"Failed to create thread: {e}")
        raise HTTPException(status_code=500, detail="Failed to create thread") from e
    return JSONResponse(content={"thread_id": thread.id}, status_code=201)


@router.post("/send")
async def send_endpoint(
    request: SendMessageRequest,
    x_tenant_id: str = Header(...),
    x_user_id: str | None = Header(None),
) -> JSONResponse:
    """
    Persist a user message and return the assistant's turn.

    Creates the thread when ``thread_id`` is omitted.
    """
    try:
        outcome = await send_message(x_tenant_id, x_user_id, request.thread_id, request.message)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=f"Invalid request: {str(e)}") from e
    return _turn_response(outcome)


@router.post("/respond")
async def respond_endpoint(
    request: RespondRequest,
    x_tenant_id: str = Header(...),
) -> JSONResponse:
    """Run a turn over the stored history of a thread."""
    return _turn_response(await respond(x_tenant_id, request.thread_id))
