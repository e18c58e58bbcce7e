import pytest
from pydantic import ValidationError

from soundsteps.data.content import LESSONS
from soundsteps.errors import ConfigurationError
from soundsteps.models.session import Channel, Session
from soundsteps.voice.flow import (
    LESSON_FLOW,
    FlowState,
    StateKind,
    build_flow,
    quiz_length,
    render_prompt,
    transition,
    validate_flow,
)

LESSON = LESSONS["basic-addition-001"]


@pytest.fixture
def session():
    return Session(
        channel=Channel.VOICE,
        channel_id="ATVId_flow",
        learner_phone="+254711000001",
        lesson_id=LESSON.id,
        current_state="intro",
        total_questions=2,
    )


class TestFlowDefinition:

    def test_shipped_flow_is_valid(self):
        validate_flow(LESSON_FLOW)
        assert quiz_length(LESSON_FLOW) == 2

    def test_dangling_pointer_rejected(self):
        flow = build_flow()
        flow["q2"] = FlowState(name="q2", kind=StateKind.QUESTION, question_index=1, default="outro")
        with pytest.raises(ConfigurationError, match="outro"):
            validate_flow(flow)

    def test_missing_terminal_rejected(self):
        flow = build_flow()
        del flow["end"]
        with pytest.raises(ConfigurationError):
            validate_flow(flow)

    def test_narration_without_next_rejected(self):
        flow = build_flow()
        flow["concept"] = FlowState(name="concept", kind=StateKind.NARRATION, prompt="Hi")
        with pytest.raises(ConfigurationError):
            validate_flow(flow)

    def test_states_are_immutable(self):
        with pytest.raises(ValidationError):
            LESSON_FLOW["q1"].default = "end"

    def test_flow_table_is_read_only(self):
        with pytest.raises(TypeError):
            LESSON_FLOW["extra"] = LESSON_FLOW["end"]


class TestTransitions:

    @pytest.mark.parametrize("state_name", ["example1", "q1", "q2", "wrap", "caregiverCollect"])
    def test_nine_repeats_every_gather_state(self, session, state_name):
        result = transition(LESSON_FLOW[state_name], "9", session, LESSON)
        assert result.state == state_name
        assert result.answer is None
        assert result.feedback

    def test_practice_is_not_scored(self, session):
        result = transition(LESSON_FLOW["example1"], "2", session, LESSON)
        assert result.state == "practice"
        assert result.answer is None
        assert result.feedback.startswith("Correct!")

        wrong = transition(LESSON_FLOW["example1"], "4", session, LESSON)
        assert wrong.state == "practice"
        assert wrong.feedback.startswith("The correct answer is five")

    def test_question_records_raw_digit(self, session):
        right = transition(LESSON_FLOW["q1"], "2", session, LESSON)
        assert (right.state, right.answer, right.correct) == ("q2", "2", True)

        wrong = transition(LESSON_FLOW["q2"], "3", session, LESSON)
        assert (wrong.state, wrong.answer, wrong.correct) == ("wrap", "3", False)

    @pytest.mark.parametrize("digits", ["7", "", None, "12"])
    def test_unreadable_question_input_counts_as_wrong(self, session, digits):
        result = transition(LESSON_FLOW["q1"], digits, session, LESSON)
        assert result.state == "q2"
        assert result.correct is False
        assert result.answer == (digits or "")

    def test_transition_leaves_session_untouched(self, session):
        before = session.model_dump()
        transition(LESSON_FLOW["q1"], "2", session, LESSON)
        assert session.model_dump() == before

    def test_wrap_menu(self, session):
        assert transition(LESSON_FLOW["wrap"], "8", session, LESSON).state == "caregiverCollect"
        assert transition(LESSON_FLOW["wrap"], "0", session, LESSON).state == "end"
        assert transition(LESSON_FLOW["wrap"], "5", session, LESSON).state == "end"

    def test_caregiver_number_accepted(self, session):
        result = transition(LESSON_FLOW["caregiverCollect"], "254712345678#", session, LESSON)
        assert result.state == "caregiverConfirm"
        assert result.caregiver_phone == "+254712345678"

    @pytest.mark.parametrize("digits", ["12#", "#", "2547abc#", "1234567890123456#"])
    def test_bad_caregiver_number_ends_call(self, session, digits):
        result = transition(LESSON_FLOW["caregiverCollect"], digits, session, LESSON)
        assert result.state == "end"
        assert result.caregiver_phone is None
        assert "no caregiver number" in result.feedback

    def test_non_gather_state_rejects_digits(self, session):
        with pytest.raises(ConfigurationError):
            transition(LESSON_FLOW["intro"], "1", session, LESSON)


class TestPrompts:

    def test_question_prompt_lists_options(self, session):
        text = render_prompt(LESSON_FLOW["q1"], session, LESSON)
        assert text.startswith("Q1: What is 1 plus 2?")
        assert "Press 1 for 2, press 2 for 3, press 3 for 4, press 4 for 5." in text

    def test_wrap_prompt_shows_score(self, session):
        session.answers = ["2", "3"]
        session.score = 1
        text = render_prompt(LESSON_FLOW["wrap"], session, LESSON)
        assert "You answered 1 out of 2" in text

    def test_question_beyond_lesson_is_configuration_error(self, session):
        short = LESSON.model_copy(update={"questions": LESSON.questions[:1]})
        with pytest.raises(ConfigurationError):
            render_prompt(LESSON_FLOW["q2"], session, short)
