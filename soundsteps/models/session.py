"""
Session model shared by the voice and SMS channels.

A single record type with a `channel` discriminant. Voice sessions resume
from `current_state` (a flow state name), SMS sessions from
`question_index`. Both carry the same answers/score bookkeeping.
"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field

from soundsteps.errors import InvalidTransitionError
from soundsteps.services.quiz import score_percentage


class Channel(str, Enum):
    VOICE = "voice"
    SMS = "sms"


class SessionStatus(str, Enum):
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    ABANDONED = "abandoned"


TERMINAL_STATUSES = {
    SessionStatus.COMPLETED,
    SessionStatus.FAILED,
    SessionStatus.ABANDONED,
}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_session_id() -> str:
    return f"session_{uuid.uuid4().hex[:16]}"


class Session(BaseModel):
    """One learner's pass through a lesson over either channel."""

    id: str = Field(default_factory=new_session_id)
    channel: Channel
    channel_id: str                          # call id (voice) or phone (SMS)
    learner_phone: str
    learner_name: Optional[str] = None
    lesson_id: str
    current_state: Optional[str] = None      # voice only
    question_index: int = -1                 # SMS only, -1 = not started
    total_questions: int
    answers: List[str] = Field(default_factory=list)
    score: int = 0
    caregiver_phone: Optional[str] = None
    language: str = "en"
    status: SessionStatus = SessionStatus.IN_PROGRESS
    started_at: datetime = Field(default_factory=utcnow)
    ended_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def percentage(self) -> int:
        return score_percentage(self.score, self.total_questions)

    def record_answer(self, token: str, correct: bool) -> None:
        """Append an answer token, bumping the score when correct."""
        if self.is_terminal:
            raise InvalidTransitionError(
                f"Session {self.id} is {self.status.value}, cannot record answers"
            )
        if len(self.answers) >= self.total_questions:
            raise InvalidTransitionError(
                f"Session {self.id} already has {self.total_questions} answers"
            )
        self.answers.append(token)
        if correct:
            self.score += 1

    def finish(self, status: SessionStatus) -> None:
        """Move to a terminal status. Allowed exactly once."""
        if status not in TERMINAL_STATUSES:
            raise InvalidTransitionError(f"{status.value} is not a terminal status")
        if self.is_terminal:
            raise InvalidTransitionError(
                f"Session {self.id} already {self.status.value}"
            )
        self.status = status
        self.ended_at = utcnow()
