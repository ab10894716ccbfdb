"""
API routes for orchestrated conversation turns.
"""

import json
from functools import lru_cache
from typing import Any, AsyncIterator

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import StreamingResponse

from agent import Orchestrator
from agent.events import event_to_json
from models.schemas import HealthResponse, OrchestratorInput
from observability import trace_logger


router = APIRouter()

NDJSON = "application/x-ndjson"


@lru_cache(maxsize=1)
def get_orchestrator() -> Orchestrator:
    """Process-wide orchestrator sharing the prompt and model caches."""
    return Orchestrator.from_settings()


async def ndjson_events(events: AsyncIterator[Any], first: Any, message_count: int) -> AsyncIterator[str]:
    """One JSON event per line; a failed turn ends with an error line."""
    try:
        yield event_to_json(first) + "\n"
        async for event in events:
            yield event_to_json(event) + "\n"
    except Exception as e:
        trace_logger.error_occurred(
            error_type="orchestrate_stream_error",
            error_message=str(e),
            context={"message_count": message_count}
        )
        yield json.dumps({"type": "error", "message": str(e)}) + "\n"


@router.post("/orchestrate")
async def orchestrate(
    request: OrchestratorInput,
    orchestrator: Orchestrator = Depends(get_orchestrator)
) -> StreamingResponse:
    """
    Run one conversational turn.

    The response streams every event as newline-delimited JSON and ends
    with the final event carrying the end-of-turn state. The first event
    is produced before the response starts, so a turn that fails before
    emitting anything is reported as a 500.
    """
    events = orchestrator.run(request)
    try:
        first = await events.__anext__()
    except Exception as e:
        trace_logger.error_occurred(
            error_type="orchestrate_setup_error",
            error_message=str(e),
            context={"message_count": len(request.messages)}
        )
        raise HTTPException(status_code=500, detail=str(e) or type(e).__name__)

    return StreamingResponse(
        ndjson_events(events, first, len(request.messages)),
        media_type=NDJSON
    )


@router.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """Health check endpoint."""
    return HealthResponse(
        status="healthy",
        version="1.0.0"
    )
