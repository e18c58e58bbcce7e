"""
Voice Webhooks - Africa's Talking IVR callbacks

Africa's Talking sends POST requests (form-encoded) with:
- sessionId: Unique call session ID (our channel id)
- callerNumber: The learner's phone number
- isActive: "1" while the call is up, "0" once it has ended
- dtmfDigits: Keys pressed (only on the GetDigits callback)

Responses are voice XML (<Response>...</Response>).
"""

import logging
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Form, Request
from fastapi.responses import Response

from soundsteps.voice import markup
from soundsteps.voice.engine import VoiceFlowEngine, VoiceTurn

logger = logging.getLogger(__name__)

router = APIRouter()


def xml_response(body: str) -> Response:
    return Response(content=body, media_type="application/xml")


def schedule_completion(request: Request, background_tasks: BackgroundTasks, turn: VoiceTurn) -> None:
    """Queue the completion pipeline once a call reaches the end of the script."""
    if turn.completed and turn.session is not None:
        background_tasks.add_task(
            request.app.state.completion.run,
            turn.session,
            turn.lesson_title or turn.session.lesson_id,
        )


# =============================================================================
# CALL EVENTS
# =============================================================================

@router.post("/webhooks/voice")
async def voice_callback(
    request: Request,
    background_tasks: BackgroundTasks,
    sessionId: str = Form(...),
    callerNumber: Optional[str] = Form(None),
    phoneNumber: Optional[str] = Form(None),
    isActive: str = Form("1"),
    direction: Optional[str] = Form(None),
    status: Optional[str] = Form(None)
):
    """
    Main voice callback: call start, redirects, and the final hang-up
    notification (isActive=0).
    """
    engine: VoiceFlowEngine = request.app.state.voice_engine
    phone = callerNumber or phoneNumber or ""
    logger.info(
        "[Voice] Webhook: session=%s phone=%s active=%s direction=%s",
        sessionId, phone, isActive, direction
    )

    if isActive == "0":
        await engine.handle_call_ended(sessionId, phone, status)
        return xml_response(markup.build_response())

    turn = await engine.handle_call(sessionId, phone)
    schedule_completion(request, background_tasks, turn)
    return xml_response(turn.xml)


@router.post("/webhooks/voice/dtmf")
async def voice_dtmf(
    request: Request,
    background_tasks: BackgroundTasks,
    sessionId: str = Form(...),
    callerNumber: Optional[str] = Form(None),
    phoneNumber: Optional[str] = Form(None),
    dtmfDigits: Optional[str] = Form(None)
):
    """Keypad input collected by a GetDigits directive."""
    engine: VoiceFlowEngine = request.app.state.voice_engine
    phone = callerNumber or phoneNumber or ""
    turn = await engine.handle_digits(sessionId, phone, dtmfDigits)
    schedule_completion(request, background_tasks, turn)
    return xml_response(turn.xml)


@router.post("/webhooks/voice/status")
async def voice_status(
    request: Request,
    sessionId: str = Form(...),
    callerNumber: Optional[str] = Form(None),
    status: Optional[str] = Form(None)
):
    """Call status notification. Fire-and-forget."""
    engine: VoiceFlowEngine = request.app.state.voice_engine
    session = await engine.handle_call_ended(sessionId, callerNumber, status)
    return {
        "success": True,
        "status": session.status.value if session else None
    }
