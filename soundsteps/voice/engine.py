"""
Voice Flow Engine

Drives the IVR script one webhook at a time. Each inbound event gets
exactly one response turn:

- call event:  render the current state. Non-gather states move the
               session on to `next` and redirect the provider back here.
- digit event: run the gather state's transition, apply it, then render
               the state it leads to (feedback first).
- call ended:  in-progress sessions become abandoned (or failed).

Reaching `end` completes the session exactly once; the returned turn is
flagged so the caller can schedule the completion pipeline.

Any exception stops at this boundary: the caller hears an apology and the
call hangs up, other calls carry on.
"""

import logging
from typing import Mapping, Optional

from pydantic import BaseModel

from soundsteps.config import Settings
from soundsteps.data.content import LessonCatalog
from soundsteps.errors import ConfigurationError, LessonNotFoundError
from soundsteps.models.lesson import Lesson
from soundsteps.models.session import Channel, Session, SessionStatus
from soundsteps.services.locks import KeyedLocks
from soundsteps.services.session import SessionStore
from soundsteps.voice import markup
from soundsteps.voice.flow import (
    INITIAL_STATE,
    LESSON_FLOW,
    TERMINAL_STATE,
    FlowState,
    StateKind,
    Transition,
    quiz_length,
    render_prompt,
    transition,
)

logger = logging.getLogger(__name__)


class VoiceTurn(BaseModel):
    """One outbound voice response."""
    xml: str
    session: Optional[Session] = None
    lesson_title: Optional[str] = None
    completed: bool = False       # session reached `end` during this turn


class VoiceFlowEngine:

    def __init__(
        self,
        store: SessionStore,
        lessons: LessonCatalog,
        settings: Settings,
        locks: Optional[KeyedLocks] = None,
        flow: Mapping[str, FlowState] = LESSON_FLOW
    ):
        self.store = store
        self.lessons = lessons
        self.settings = settings
        self.locks = locks or KeyedLocks()
        self.flow = flow
        base = settings.base_url.rstrip("/")
        self.voice_url = f"{base}/webhooks/voice"
        self.dtmf_url = f"{base}/webhooks/voice/dtmf"

    # =========================================================================
    # INBOUND EVENTS
    # =========================================================================

    async def handle_call(self, call_id: str, phone: str) -> VoiceTurn:
        """Call started, or the provider followed a redirect."""
        async with self.locks.hold(f"voice:{call_id}"):
            try:
                session = await self.store.get_by_channel_id(Channel.VOICE, call_id)
                if session is None:
                    finished = await self.store.latest_for_channel_id(Channel.VOICE, call_id)
                    if finished is not None and finished.is_terminal:
                        logger.info("[Voice] Call event for finished call %s", call_id)
                        return self._render_goodbye(finished)
                    session = await self._create_session(call_id, phone)
                lesson = self._lesson_for(session)
                return await self._render_current(session, lesson)
            except Exception:
                logger.exception("[Voice] Call event failed for %s", call_id)
                return VoiceTurn(xml=markup.apology())

    async def handle_digits(self, call_id: str, phone: str, digits: Optional[str]) -> VoiceTurn:
        """Keypad input for the current gather state."""
        async with self.locks.hold(f"voice:{call_id}"):
            try:
                session = await self.store.get_by_channel_id(Channel.VOICE, call_id)
                if session is None:
                    logger.warning("[Voice] Digits for unknown call %s", call_id)
                    return VoiceTurn(xml=markup.build_response(
                        markup.say("Thank you for calling SoundSteps. Goodbye!") + markup.hangup()
                    ))
                lesson = self._lesson_for(session)
                state = self._state(session.current_state)

                if session.is_terminal or not state.gather:
                    logger.info(
                        "[Voice] Ignoring digits %r at %s for %s",
                        digits, state.name, call_id
                    )
                    return await self._render_current(session, lesson)

                result = transition(state, digits, session, lesson)
                completed = self._apply(session, result)
                await self.store.save(session)
                logger.info(
                    "[Voice] %s: %s --%r--> %s (score %s)",
                    call_id, state.name, digits, result.state, session.score
                )

                feedback = markup.say(result.feedback) if result.feedback else ""
                turn = await self._render_current(session, lesson, prefix=feedback)
                turn.completed = turn.completed or completed
                return turn
            except Exception:
                logger.exception("[Voice] Digit event failed for %s", call_id)
                return VoiceTurn(xml=markup.apology())

    async def handle_call_ended(
        self,
        call_id: str,
        phone: Optional[str] = None,
        provider_status: Optional[str] = None
    ) -> Optional[Session]:
        """Hang-up notification. Fire-and-forget, never raises."""
        async with self.locks.hold(f"voice:{call_id}"):
            try:
                session = await self.store.get_by_channel_id(Channel.VOICE, call_id)
                if session is None or session.is_terminal:
                    return session
                failed = (provider_status or "").lower() in ("failed", "failure", "error")
                session.finish(SessionStatus.FAILED if failed else SessionStatus.ABANDONED)
                await self.store.finalize(session)
                logger.info(
                    "[Voice] Call %s ended at %s, session %s",
                    call_id, session.current_state, session.status.value
                )
                return session
            except Exception:
                logger.exception("[Voice] Call-ended event failed for %s", call_id)
                return None

    # =========================================================================
    # STATE MACHINE
    # =========================================================================

    def _state(self, name: Optional[str]) -> FlowState:
        state = self.flow.get(name) if name else None
        if state is None:
            raise ConfigurationError(f"Unknown flow state: {name}")
        return state

    def _apply(self, session: Session, result: Transition) -> bool:
        """Apply a transition to the session. True when it just completed."""
        if result.answer is not None:
            session.record_answer(result.answer, result.correct)
        if result.caregiver_phone:
            session.caregiver_phone = result.caregiver_phone
        return self._enter(session, result.state)

    def _enter(self, session: Session, name: str) -> bool:
        self._state(name)
        session.current_state = name
        if name == TERMINAL_STATE and not session.is_terminal:
            session.finish(SessionStatus.COMPLETED)
            logger.info(
                "[Voice] Session %s completed: %s/%s",
                session.id, session.score, session.total_questions
            )
            return True
        return False

    async def _render_current(self, session: Session, lesson: Lesson, prefix: str = "") -> VoiceTurn:
        """
        Render the session's current state. Non-gather states advance the
        session to `next` and persist it; only this one node is spoken.
        A narration leading into `end` hangs up instead of redirecting.
        """
        state = self._state(session.current_state)
        text = render_prompt(state, session, lesson)
        completed = False

        if state.kind == StateKind.TERMINAL:
            completed = self._enter(session, state.name)
            if completed:
                await self.store.save(session)
            inner = markup.say(text) + markup.hangup()
        elif state.gather:
            timeout = (
                self.settings.caregiver_entry_timeout
                if state.kind == StateKind.PHONE_ENTRY
                else self.settings.gather_timeout
            )
            inner = markup.get_digits(
                text,
                self.dtmf_url,
                timeout=timeout,
                num_digits=state.num_digits,
                finish_on_key=state.finish_on_key,
            )
        else:
            completed = self._enter(session, state.next)
            await self.store.save(session)
            if self._state(state.next).kind == StateKind.TERMINAL:
                inner = markup.say(text) + markup.hangup()
            else:
                inner = markup.say(text) + markup.redirect(self.voice_url)

        return VoiceTurn(
            xml=markup.build_response(prefix + inner),
            session=session,
            lesson_title=lesson.title,
            completed=completed,
        )

    def _render_goodbye(self, session: Session) -> VoiceTurn:
        """Late call event for a call that already ended: hang up, change nothing."""
        state = self._state(TERMINAL_STATE)
        return VoiceTurn(
            xml=markup.build_response(markup.say(state.prompt) + markup.hangup()),
            session=session,
        )

    # =========================================================================
    # SESSIONS
    # =========================================================================

    def _lesson_for(self, session: Session) -> Lesson:
        lesson = self.lessons.get_lesson_by_id(session.lesson_id)
        if lesson is None:
            raise LessonNotFoundError(session.lesson_id)
        return lesson

    async def _create_session(self, call_id: str, phone: str) -> Session:
        lesson_id = self.settings.voice_lesson_id
        lesson = self.lessons.get_lesson_by_id(lesson_id)
        if lesson is None:
            raise LessonNotFoundError(lesson_id)
        total = quiz_length(self.flow)
        if len(lesson.questions) < total:
            raise ConfigurationError(
                f"Lesson {lesson_id} has {len(lesson.questions)} questions, "
                f"the call script asks {total}"
            )
        session = Session(
            channel=Channel.VOICE,
            channel_id=call_id,
            learner_phone=phone,
            learner_name=self.settings.default_learner_name,
            lesson_id=lesson_id,
            current_state=INITIAL_STATE,
            total_questions=total,
            language=self.settings.default_language,
        )
        return await self.store.create(session)

