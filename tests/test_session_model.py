import pytest

from soundsteps.errors import InvalidTransitionError
from soundsteps.models.session import Channel, Session, SessionStatus
from soundsteps.services.messages import caregiver_summary, has_passed
from soundsteps.services.rewards import reward_amount
from soundsteps.config import DEFAULT_REWARD_TIERS

from tests.conftest import LEARNER_PHONE


def make_session(**overrides):
    fields = dict(
        channel=Channel.SMS,
        channel_id=LEARNER_PHONE,
        learner_phone=LEARNER_PHONE,
        lesson_id="demo-math-001",
        total_questions=3,
    )
    fields.update(overrides)
    return Session(**fields)


def test_new_session_defaults():
    session = make_session()
    assert session.status == SessionStatus.IN_PROGRESS
    assert session.question_index == -1
    assert session.answers == []
    assert session.score == 0
    assert session.ended_at is None
    assert session.id.startswith("session_")


def test_record_answer_keeps_score_within_answers():
    session = make_session()
    session.record_answer("B", True)
    session.record_answer("A", False)
    assert session.answers == ["B", "A"]
    assert session.score == 1
    assert session.score <= len(session.answers) <= session.total_questions


def test_cannot_answer_more_than_total():
    session = make_session(total_questions=1)
    session.record_answer("B", True)
    with pytest.raises(InvalidTransitionError):
        session.record_answer("C", True)
    assert session.answers == ["B"]


def test_finish_only_once():
    session = make_session()
    session.finish(SessionStatus.COMPLETED)
    ended_at = session.ended_at
    assert ended_at is not None

    with pytest.raises(InvalidTransitionError):
        session.finish(SessionStatus.ABANDONED)
    assert session.status == SessionStatus.COMPLETED
    assert session.ended_at == ended_at


def test_finish_rejects_in_progress():
    with pytest.raises(InvalidTransitionError):
        make_session().finish(SessionStatus.IN_PROGRESS)


def test_no_answers_after_finish():
    session = make_session()
    session.finish(SessionStatus.ABANDONED)
    with pytest.raises(InvalidTransitionError):
        session.record_answer("A", True)


def test_percentage():
    session = make_session(total_questions=3, score=2, answers=["B", "C", "A"])
    assert session.percentage == 67
    assert make_session(total_questions=0).percentage == 0


@pytest.mark.parametrize("score,total,shown,learner_amount", [
    (179, 200, 90, 10),
    (139, 200, 70, 5),
    (99, 200, 50, 2),
    (97, 200, 49, 0),
])
def test_shown_percentage_matches_reward_tier(score, total, shown, learner_amount):
    session = make_session(total_questions=total, score=score)
    assert session.percentage == shown
    assert f"({shown}%)" in caregiver_summary("Amina", "Basic Mathematics", score, total)
    assert reward_amount(score, total, DEFAULT_REWARD_TIERS) == learner_amount


def test_pass_verdict_follows_shown_percentage():
    assert has_passed(139, 200, 0.7) is True
    assert has_passed(7, 10, 0.7) is True
    assert has_passed(137, 200, 0.7) is False
    assert "Your student passed" in caregiver_summary("Amina", "Basic Mathematics", 139, 200)
