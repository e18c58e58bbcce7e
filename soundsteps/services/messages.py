"""
SMS message templates.

Optimized for cost savings:
- No emojis (stays in GSM-7 encoding: 160 chars/SMS vs 70 chars/SMS)
- Compact format to minimize SMS count

Caregiver summaries and reward confirmations come in English ("en") and
Swahili ("sw"); anything else falls back to English.
"""

from typing import Optional

from soundsteps.models.lesson import Lesson, Question
from soundsteps.services.quiz import ANSWER_LETTERS, score_percentage


SUPPORTED_LANGUAGES = ("en", "sw")

NO_ACTIVE_LESSON = "No active lesson found. Contact your teacher to start a lesson."
FORMAT_CORRECTION = "Please reply with A, B, C, D or 1, 2, 3, 4"
APOLOGY = "Sorry, there was a problem with your lesson. Please contact your teacher."


def resolve_language(language: Optional[str], default: str = "en") -> str:
    language = (language or default).strip().lower()
    return language if language in SUPPORTED_LANGUAGES else "en"


def has_passed(score: int, total: int, threshold: float = 0.7) -> bool:
    return total > 0 and score_percentage(score, total) >= round(threshold * 100)


# =============================================================================
# LEARNER MESSAGES (SMS lesson)
# =============================================================================

def lesson_intro(lesson: Lesson) -> str:
    body = (lesson.content or "")[:160] or "Welcome to your lesson!"
    return f"{lesson.title}\n\n{body}\n\nStarting quiz now..."


def question_message(question: Question, number: int, total: int) -> str:
    lines = [f"Question {number}/{total}", "", question.question_text, ""]
    for letter, option in zip(ANSWER_LETTERS, question.options):
        lines.append(f"{letter}) {option}")
    lines.append("")
    lines.append("Reply A, B, C or D")
    return "\n".join(lines)


def answer_feedback(correct: bool, correct_answer: str) -> str:
    if correct:
        return "Correct!"
    return f"Wrong. Answer: {correct_answer}"


def lesson_complete(lesson_title: str, score: int, total: int, threshold: float = 0.7) -> str:
    pct = score_percentage(score, total)
    verdict = (
        "Excellent work! You passed!" if has_passed(score, total, threshold)
        else "Keep studying and try again!"
    )
    return "\n".join([
        "Lesson Complete!",
        "",
        lesson_title,
        f"Final Score: {score}/{total} ({pct}%)",
        "",
        verdict,
        "",
        "Thank you for using SoundSteps!",
    ])


# =============================================================================
# CAREGIVER & REWARD MESSAGES (bilingual)
# =============================================================================

def caregiver_summary(
    learner_name: str,
    lesson_title: str,
    score: int,
    total: int,
    language: str = "en",
    threshold: float = 0.7
) -> str:
    """Lesson report for the learner's caregiver."""
    pct = score_percentage(score, total)
    passed = has_passed(score, total, threshold)

    if resolve_language(language) == "sw":
        verdict = (
            "Vizuri sana! Mwanafunzi wako amefaulu!" if passed
            else "Himiza mwanafunzi wako ajaribu tena."
        )
        lines = [
            "SoundSteps Ripoti ya Somo",
            "",
            f"Mwanafunzi: {learner_name}",
            f"Somo: {lesson_title}",
            f"Alama: {score}/{total} ({pct}%)",
            "",
            verdict,
        ]
    else:
        verdict = (
            "Great job! Your student passed!" if passed
            else "Encourage your student to try again."
        )
        lines = [
            "SoundSteps Lesson Update",
            "",
            f"Student: {learner_name}",
            f"Lesson: {lesson_title}",
            f"Quiz Score: {score}/{total} ({pct}%)",
            "",
            verdict,
        ]
    return "\n".join(lines)


def reward_confirmation(
    amount: int,
    currency: str,
    recipient: str = "learner",
    language: str = "en"
) -> str:
    if resolve_language(language) == "sw":
        action = "kukamilisha" if recipient == "learner" else "kusaidia"
        return (
            f"Hongera! Umepata {currency} {amount} za muda wa maongezi kwa "
            f"{action} somo la SoundSteps. Endelea kujifunza!"
        )
    action = "completing" if recipient == "learner" else "supporting"
    return (
        f"Congratulations! You've earned {currency} {amount} airtime for "
        f"{action} your SoundSteps lesson. Keep learning!"
    )
