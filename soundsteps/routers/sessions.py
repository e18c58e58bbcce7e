"""
Session reporting and outbound calls for the teacher dashboard.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from soundsteps.errors import ProviderError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/sessions")


class OutboundCallRequest(BaseModel):
    phoneNumber: Optional[str] = None
    lessonId: Optional[str] = None


@router.get("")
async def list_sessions(request: Request, limit: int = 50):
    """Recent sessions, newest first."""
    sessions = await request.app.state.store.list_recent(limit)
    return {"sessions": [s.model_dump(mode="json") for s in sessions]}


@router.get("/stats")
async def session_stats(request: Request):
    return {"stats": await request.app.state.store.stats()}


@router.post("/outbound-call")
async def outbound_call(request: Request, body: OutboundCallRequest):
    """Call a learner; the lesson runs through the voice webhooks once they answer."""
    if not body.phoneNumber:
        return JSONResponse(status_code=400, content={"error": "Phone number is required"})

    settings = request.app.state.settings
    try:
        result = await request.app.state.provider.place_call(
            body.phoneNumber, settings.at_voice_number or None
        )
    except ProviderError as e:
        logger.error("[Voice] Outbound call to %s failed: %s", body.phoneNumber, e)
        return JSONResponse(status_code=502, content={"error": "Failed to initiate call"})

    return {
        "success": True,
        "message": "Outbound call initiated",
        "lessonId": body.lessonId or settings.voice_lesson_id,
        "callResponse": result.model_dump(),
    }
