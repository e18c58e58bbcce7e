"""
IVR lesson script.

The call follows a fixed graph of states:

    intro -> concept -> example1* -> practice -> quizSetup -> q1* -> q2* -> wrap*
    wrap* --8--> caregiverCollect* -> caregiverConfirm -> end
    wrap* --other--> end

(* = gather state, waits for keypad input)

Each state is plain data tagged with a StateKind. What a digit does is
decided by the transition function registered for that kind; it returns a
Transition and never touches the session, the engine applies it.
"""

from enum import Enum
from types import MappingProxyType
from typing import Callable, Dict, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field

from soundsteps.errors import ConfigurationError
from soundsteps.models.lesson import Lesson
from soundsteps.models.session import Session
from soundsteps.services.quiz import digit_to_token, is_correct


INITIAL_STATE = "intro"
TERMINAL_STATE = "end"
REPEAT_DIGIT = "9"


class StateKind(str, Enum):
    NARRATION = "narration"        # speak, then auto-advance to `next`
    PRACTICE = "practice"          # unscored warm-up question
    QUESTION = "question"          # scored quiz question
    MENU = "menu"                  # digit picks a branch
    PHONE_ENTRY = "phone_entry"    # variable-length number ended by '#'
    TERMINAL = "terminal"


GATHER_KINDS = {
    StateKind.PRACTICE,
    StateKind.QUESTION,
    StateKind.MENU,
    StateKind.PHONE_ENTRY,
}


class FlowState(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    kind: StateKind
    prompt: str = ""                     # may use {score} and {total}
    next: Optional[str] = None           # narration only
    default: Optional[str] = None        # where a digit leads
    fallback: Optional[str] = None       # phone entry: unreadable number
    branches: Dict[str, str] = Field(default_factory=dict)
    question_index: Optional[int] = None
    correct_digit: Optional[str] = None
    correct_feedback: Optional[str] = None
    incorrect_feedback: Optional[str] = None
    repeat_feedback: str = "Repeating the question."
    num_digits: Optional[int] = 1
    finish_on_key: Optional[str] = None

    @property
    def gather(self) -> bool:
        return self.kind in GATHER_KINDS


class Transition(BaseModel):
    """What a digit does: where to go, what to say first, what to record."""
    state: str
    feedback: Optional[str] = None
    answer: Optional[str] = None
    correct: bool = False
    caregiver_phone: Optional[str] = None


# =============================================================================
# TRANSITION FUNCTIONS (by state kind)
# =============================================================================

def _practice(state: FlowState, digits: str, session: Session, lesson: Lesson) -> Transition:
    feedback = state.correct_feedback if digits == state.correct_digit else state.incorrect_feedback
    return Transition(state=state.default, feedback=feedback)


def _question(state: FlowState, digits: str, session: Session, lesson: Lesson) -> Transition:
    """
    Record the raw digit and advance. Anything that isn't the right
    option (including out-of-range or empty input) counts as wrong.
    """
    question = lesson_question(state, lesson)
    correct = is_correct(digit_to_token(digits), question)
    return Transition(state=state.default, answer=digits, correct=correct)


def _menu(state: FlowState, digits: str, session: Session, lesson: Lesson) -> Transition:
    return Transition(state=state.branches.get(digits, state.default))


def _phone_entry(state: FlowState, digits: str, session: Session, lesson: Lesson) -> Transition:
    number = digits.replace("#", "").strip()
    if number.isdigit() and 9 <= len(number) <= 15:
        return Transition(
            state=state.default,
            feedback="Thanks, we will send a short summary now.",
            caregiver_phone=f"+{number}",
        )
    return Transition(state=state.fallback, feedback="Sorry, no caregiver number was saved.")


TransitionFn = Callable[[FlowState, str, Session, Lesson], Transition]

TRANSITIONS: Mapping[StateKind, TransitionFn] = MappingProxyType({
    StateKind.PRACTICE: _practice,
    StateKind.QUESTION: _question,
    StateKind.MENU: _menu,
    StateKind.PHONE_ENTRY: _phone_entry,
})


def transition(state: FlowState, digits: Optional[str], session: Session, lesson: Lesson) -> Transition:
    """Resolve a digit event at a gather state."""
    if not state.gather:
        raise ConfigurationError(f"State {state.name} does not collect digits")
    digits = (digits or "").strip()
    if digits == REPEAT_DIGIT:
        return Transition(state=state.name, feedback=state.repeat_feedback)
    return TRANSITIONS[state.kind](state, digits, session, lesson)


# =============================================================================
# PROMPTS
# =============================================================================

def lesson_question(state: FlowState, lesson: Lesson):
    index = state.question_index
    if index is None or index >= len(lesson.questions):
        raise ConfigurationError(
            f"State {state.name} needs question {index} but lesson {lesson.id} "
            f"has {len(lesson.questions)}"
        )
    return lesson.questions[index]


def render_prompt(state: FlowState, session: Session, lesson: Lesson) -> str:
    """Spoken text for a state, filled in from the session and lesson."""
    if state.kind == StateKind.QUESTION:
        question = lesson_question(state, lesson)
        choices = ", ".join(
            f"press {i} for {option}" for i, option in enumerate(question.options, 1)
        )
        return f"Q{state.question_index + 1}: {question.question_text} {choices[0].upper()}{choices[1:]}."
    return state.prompt.format(score=session.score, total=session.total_questions)


# =============================================================================
# FLOW DEFINITION
# =============================================================================

def build_flow() -> Dict[str, FlowState]:
    states = [
        FlowState(
            name="intro",
            kind=StateKind.NARRATION,
            prompt=(
                "Hello! Welcome to SoundSteps. This is a short lesson on Basic Addition. "
                "The lesson will take about three minutes. "
                "To hear a question again at any time, press 9."
            ),
            next="concept",
        ),
        FlowState(
            name="concept",
            kind=StateKind.NARRATION,
            prompt=(
                "Addition means putting groups together. If you have two apples, "
                "and someone gives you three more, you count them together to get five."
            ),
            next="example1",
        ),
        FlowState(
            name="example1",
            kind=StateKind.PRACTICE,
            prompt=(
                "Listen: Two apples, then three apples. How many apples do we have in total? "
                "Press 1 for Four, press 2 for Five, press 3 for Six, press 4 for I don't know."
            ),
            default="practice",
            correct_digit="2",
            correct_feedback="Correct! Two plus three equals five.",
            incorrect_feedback="The correct answer is five. Two plus three equals five.",
        ),
        FlowState(
            name="practice",
            kind=StateKind.NARRATION,
            prompt=(
                "Now practice: hold up two fingers, then three more fingers. "
                "Count them slowly... one... two... three... four... five. Great job."
            ),
            next="quizSetup",
        ),
        FlowState(
            name="quizSetup",
            kind=StateKind.NARRATION,
            prompt=(
                "Now a quick quiz with two questions. For each question press the number "
                "that matches the answer. If you want me to repeat the question, press 9."
            ),
            next="q1",
        ),
        FlowState(name="q1", kind=StateKind.QUESTION, question_index=0, default="q2"),
        FlowState(name="q2", kind=StateKind.QUESTION, question_index=1, default="wrap"),
        FlowState(
            name="wrap",
            kind=StateKind.MENU,
            prompt=(
                "Thanks! You finished the lesson. You answered {score} out of {total} "
                "questions correctly. If you would like a caregiver to receive a short "
                "SMS summary, press 8 now. To hear these options again, press 9. "
                "To end the call, press 0."
            ),
            branches={"8": "caregiverCollect"},
            default="end",
            repeat_feedback="Repeating the options.",
        ),
        FlowState(
            name="caregiverCollect",
            kind=StateKind.PHONE_ENTRY,
            prompt=(
                "Please enter the caregiver phone number starting with country code. "
                "For example, 2547 followed by digits. Then press the hash key."
            ),
            default="caregiverConfirm",
            fallback="end",
            num_digits=None,
            finish_on_key="#",
            repeat_feedback="Repeating the instructions.",
        ),
        FlowState(
            name="caregiverConfirm",
            kind=StateKind.NARRATION,
            prompt="You can now end the call. Goodbye and keep practicing!",
            next="end",
        ),
        FlowState(
            name="end",
            kind=StateKind.TERMINAL,
            prompt="Goodbye and keep practicing!",
        ),
    ]
    return {state.name: state for state in states}


def validate_flow(flow: Mapping[str, FlowState]) -> None:
    """Every pointer must name a defined state. Raises ConfigurationError."""
    if INITIAL_STATE not in flow or TERMINAL_STATE not in flow:
        raise ConfigurationError("Flow needs both an initial and a terminal state")
    for name, state in flow.items():
        if state.kind == StateKind.NARRATION and not state.next:
            raise ConfigurationError(f"Narration state {name} has no next state")
        if state.gather and not state.default:
            raise ConfigurationError(f"Gather state {name} has no default target")
        if state.kind == StateKind.QUESTION and state.question_index is None:
            raise ConfigurationError(f"Question state {name} has no question index")
        targets = [state.next, state.default, state.fallback, *state.branches.values()]
        for target in targets:
            if target is not None and target not in flow:
                raise ConfigurationError(f"State {name} points at undefined state {target}")


def quiz_length(flow: Mapping[str, FlowState]) -> int:
    return sum(1 for state in flow.values() if state.kind == StateKind.QUESTION)


_flow = build_flow()
validate_flow(_flow)
LESSON_FLOW: Mapping[str, FlowState] = MappingProxyType(_flow)
