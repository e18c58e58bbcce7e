"""
SMS Lessons

- POST /sms/start-lesson   teacher app starts a lesson for a learner
- POST /sms/webhook        Africa's Talking inbound SMS (form-encoded)
- GET  /sms/progress/...   latest SMS lesson for a phone
"""

import logging
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Form, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from soundsteps.errors import ConfigurationError, LessonNotFoundError
from soundsteps.models.session import Channel
from soundsteps.services.sms_flow import SmsFlowEngine

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/sms")


class StartLessonRequest(BaseModel):
    studentPhone: Optional[str] = None
    lessonId: Optional[str] = None
    studentName: Optional[str] = None
    caregiverPhone: Optional[str] = None
    language: Optional[str] = None


@router.post("/start-lesson")
async def start_lesson(request: Request, body: StartLessonRequest):
    """Start an SMS lesson. Replaces any lesson already running for the phone."""
    if not body.studentPhone or not body.lessonId:
        return JSONResponse(
            status_code=400,
            content={"success": False, "message": "Student phone and lesson ID required"}
        )

    engine: SmsFlowEngine = request.app.state.sms_engine
    try:
        turn = await engine.start_lesson(
            body.studentPhone,
            body.lessonId,
            learner_name=body.studentName,
            caregiver_phone=body.caregiverPhone,
            language=body.language,
        )
    except LessonNotFoundError:
        return JSONResponse(
            status_code=404,
            content={"success": False, "message": "Lesson not found"}
        )
    except ConfigurationError as e:
        return JSONResponse(
            status_code=400,
            content={"success": False, "message": e.message}
        )

    return {
        "success": True,
        "message": "SMS lesson started successfully",
        "sessionId": turn.session.id,
        "totalQuestions": turn.session.total_questions,
    }


@router.post("/webhook")
async def sms_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    from_: str = Form(..., alias="from"),
    text: str = Form(""),
    to: Optional[str] = Form(None),
    message_id: Optional[str] = Form(None, alias="id")
):
    """Inbound SMS. Replies go out as a side effect; the response is an ack."""
    logger.info("[SMS] Webhook: from=%s id=%s", from_, message_id)
    engine: SmsFlowEngine = request.app.state.sms_engine
    turn = await engine.handle_reply(from_, text)

    if turn.completed and turn.session is not None:
        background_tasks.add_task(
            request.app.state.completion.run,
            turn.session,
            turn.lesson_title or turn.session.lesson_id,
        )

    return {"success": True, "messages": len(turn.messages)}


@router.get("/progress/{phone}")
async def sms_progress(request: Request, phone: str):
    """Latest SMS lesson for a phone, for the teacher dashboard."""
    store = request.app.state.store
    session = await store.latest_for_phone(phone, Channel.SMS)
    if session is None:
        return {"success": False, "message": "No SMS session found"}

    lesson = request.app.state.lessons.get_lesson_by_id(session.lesson_id)
    return {
        "success": True,
        "progress": {
            "phone": phone,
            "lessonTitle": lesson.title if lesson else None,
            "currentQuestion": session.question_index + 1,
            "totalQuestions": session.total_questions,
            "score": session.score,
            "status": session.status.value,
            "answers": session.answers,
            "startTime": session.started_at.isoformat(),
            "endTime": session.ended_at.isoformat() if session.ended_at else None,
        }
    }
