"""
Quiz answer handling shared by both channels.

Voice answers arrive as keypad digits, SMS answers as free text. Both are
reduced to the same letter tokens (A-D) before comparing against the
lesson's declared correct answer, so scoring is identical per channel.
"""

from typing import Optional

from soundsteps.models.lesson import Question


ANSWER_LETTERS = ["A", "B", "C", "D"]


def digit_to_token(digit: str) -> Optional[str]:
    """Map a keypad digit 1-4 to its letter token, positionally."""
    digit = str(digit).strip()
    if digit in ("1", "2", "3", "4"):
        return ANSWER_LETTERS[int(digit) - 1]
    return None


def normalize_sms_answer(text: str) -> Optional[str]:
    """
    Normalize an SMS reply to a letter token.

    Accepts "a".."d" in any case or "1".."4". Returns None for anything
    else so the caller can re-prompt.
    """
    answer = str(text or "").strip().upper()
    if answer in ANSWER_LETTERS:
        return answer
    return digit_to_token(answer)


def is_correct(token: Optional[str], question: Question) -> bool:
    """Exact match on the normalized letter."""
    if not token:
        return False
    return token.strip().upper() == question.correct_answer


def score_percentage(score: int, total: int) -> int:
    """Whole-number percentage, the figure learners see and rewards are tiered on."""
    if total <= 0:
        return 0
    # half-up on integers, so 179/200 is 90 everywhere
    return (score * 200 + total) // (2 * total)
