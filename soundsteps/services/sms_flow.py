"""
SMS Flow Engine

One active lesson per phone number. The learner replies with a letter
(A-D) or a digit (1-4) for each question:

1. No active lesson -> "no active lesson" reply, nothing else happens
2. Unreadable reply -> format correction, the question is NOT consumed
3. Otherwise record the answer, send feedback, then the next question
   or the completion message

Starting a lesson sends the intro right away and the first question a
couple of seconds later, through DeferredTasks. The two messages may
still reach the handset out of order; the engine doesn't depend on it.
"""

import logging
from typing import List, Optional

from pydantic import BaseModel, Field

from soundsteps.config import Settings
from soundsteps.data.content import LessonCatalog
from soundsteps.errors import ConfigurationError, LessonNotFoundError, ProviderError
from soundsteps.models.lesson import Lesson
from soundsteps.models.session import Channel, Session, SessionStatus
from soundsteps.services import messages
from soundsteps.services.locks import KeyedLocks
from soundsteps.services.provider import ProviderAdapter
from soundsteps.services.quiz import is_correct, normalize_sms_answer
from soundsteps.services.scheduler import DeferredTasks
from soundsteps.services.session import SessionStore

logger = logging.getLogger(__name__)


class SmsTurn(BaseModel):
    """Messages produced by one inbound SMS (or start command)."""
    messages: List[str] = Field(default_factory=list)
    session: Optional[Session] = None
    lesson_title: Optional[str] = None
    completed: bool = False


class SmsFlowEngine:

    def __init__(
        self,
        store: SessionStore,
        lessons: LessonCatalog,
        provider: ProviderAdapter,
        scheduler: DeferredTasks,
        settings: Settings,
        locks: Optional[KeyedLocks] = None
    ):
        self.store = store
        self.lessons = lessons
        self.provider = provider
        self.scheduler = scheduler
        self.settings = settings
        self.locks = locks or KeyedLocks()

    def _first_question_key(self, phone: str) -> str:
        return f"sms-first-question:{phone}"

    # =========================================================================
    # START
    # =========================================================================

    async def start_lesson(
        self,
        phone: str,
        lesson_id: str,
        learner_name: Optional[str] = None,
        caregiver_phone: Optional[str] = None,
        language: Optional[str] = None
    ) -> SmsTurn:
        """
        Start (or restart) a lesson for a phone.

        Raises LessonNotFoundError / ConfigurationError before anything is
        stored or sent.
        """
        lesson = self.lessons.get_lesson_by_id(lesson_id)
        if lesson is None:
            raise LessonNotFoundError(lesson_id)
        if not lesson.questions:
            raise ConfigurationError(f"Lesson {lesson_id} has no quiz questions")

        async with self.locks.hold(f"sms:{phone}"):
            existing = await self.store.get_by_channel_id(Channel.SMS, phone)
            if existing is not None:
                self.scheduler.cancel(self._first_question_key(phone))
                if not existing.is_terminal:
                    existing.finish(SessionStatus.ABANDONED)
                    await self.store.finalize(existing)
                    logger.info("[SMS] Replaced lesson %s for %s", existing.id, phone)
                else:
                    await self.store.release(existing)

            session = Session(
                channel=Channel.SMS,
                channel_id=phone,
                learner_phone=phone,
                learner_name=learner_name or self.settings.default_learner_name,
                lesson_id=lesson.id,
                total_questions=len(lesson.questions),
                caregiver_phone=caregiver_phone or None,
                language=messages.resolve_language(language, self.settings.default_language),
            )
            session.question_index = 0
            await self.store.create(session)

            intro = messages.lesson_intro(lesson)
            await self._deliver(phone, [intro])

        self.scheduler.schedule(
            self._first_question_key(phone),
            self.settings.sms_question_delay,
            lambda: self._send_first_question(phone, session.id)
        )
        logger.info("[SMS] Lesson %s started for %s (%s)", lesson.title, phone, session.id)
        return SmsTurn(messages=[intro], session=session, lesson_title=lesson.title)

    async def _send_first_question(self, phone: str, session_id: str) -> None:
        """Deferred half of start_lesson. Skipped if the lesson moved on."""
        async with self.locks.hold(f"sms:{phone}"):
            session = await self.store.get_by_channel_id(Channel.SMS, phone)
            if (
                session is None
                or session.id != session_id
                or session.is_terminal
                or session.question_index != 0
                or session.answers
            ):
                logger.info("[SMS] First question for %s no longer needed", session_id)
                return
            lesson = self._lesson_for(session)
            await self._deliver(phone, [
                messages.question_message(lesson.questions[0], 1, len(lesson.questions))
            ])

    # =========================================================================
    # REPLIES
    # =========================================================================

    async def handle_reply(self, phone: str, text: Optional[str]) -> SmsTurn:
        """Process an inbound SMS and send whatever it produces."""
        async with self.locks.hold(f"sms:{phone}"):
            try:
                turn = await self._process(phone, text)
            except Exception:
                logger.exception("[SMS] Reply from %s failed", phone)
                turn = SmsTurn(messages=[messages.APOLOGY])
            await self._deliver(phone, turn.messages)
            return turn

    async def _process(self, phone: str, text: Optional[str]) -> SmsTurn:
        session = await self.store.get_by_channel_id(Channel.SMS, phone)
        if session is None or session.is_terminal:
            return SmsTurn(messages=[messages.NO_ACTIVE_LESSON])
        try:
            return await self._answer(session, text)
        except ConfigurationError:
            logger.exception("[SMS] Lesson %s unusable for %s", session.lesson_id, phone)
            session.finish(SessionStatus.FAILED)
            await self.store.finalize(session)
            return SmsTurn(messages=[messages.APOLOGY], session=session)

    async def _answer(self, session: Session, text: Optional[str]) -> SmsTurn:
        lesson = self._lesson_for(session)
        index = session.question_index
        if index < 0 or index >= len(lesson.questions):
            raise ConfigurationError(
                f"Session {session.id} is at question {index} of {len(lesson.questions)}"
            )

        token = normalize_sms_answer(text)
        if token is None:
            logger.info("[SMS] Unreadable answer %r from %s", text, session.learner_phone)
            return SmsTurn(
                messages=[messages.FORMAT_CORRECTION],
                session=session,
                lesson_title=lesson.title
            )

        question = lesson.questions[index]
        correct = is_correct(token, question)
        session.record_answer(token, correct)
        outbound = [messages.answer_feedback(correct, question.correct_answer)]

        session.question_index = index + 1
        completed = session.question_index >= len(lesson.questions)
        if completed:
            session.finish(SessionStatus.COMPLETED)
            outbound.append(messages.lesson_complete(
                lesson.title, session.score, session.total_questions,
                self.settings.pass_threshold
            ))
            logger.info(
                "[SMS] Lesson completed for %s: %s/%s",
                session.learner_phone, session.score, session.total_questions
            )
        else:
            outbound.append(messages.question_message(
                lesson.questions[session.question_index],
                session.question_index + 1,
                len(lesson.questions)
            ))
        await self.store.save(session)

        return SmsTurn(
            messages=outbound,
            session=session,
            lesson_title=lesson.title,
            completed=completed
        )

    # =========================================================================
    # HELPERS
    # =========================================================================

    def _lesson_for(self, session: Session) -> Lesson:
        lesson = self.lessons.get_lesson_by_id(session.lesson_id)
        if lesson is None:
            raise LessonNotFoundError(session.lesson_id)
        return lesson

    async def _deliver(self, phone: str, bodies: List[str]) -> int:
        """Send in order. A failed send is logged and skipped."""
        sent = 0
        for body in bodies:
            try:
                await self.provider.send_text(phone, body)
                sent += 1
            except ProviderError as e:
                logger.error("[SMS] Send to %s failed: %s", phone, e)
        return sent
