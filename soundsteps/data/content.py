"""
Pre-stored lesson content.

Lesson and question authoring happens in the teacher app; the delivery
core only reads lessons by id. This catalogue holds the lessons the
service ships with.

Structure:
- LESSONS: lesson id -> Lesson with ordered quiz questions
"""

from typing import Dict, Iterable, Optional

from soundsteps.models.lesson import Lesson, Question


# =============================================================================
# LESSON CONTENT
# =============================================================================

LESSONS: Dict[str, Lesson] = {
    "basic-addition-001": Lesson(
        id="basic-addition-001",
        title="Basic Addition",
        description="Putting groups together to find a total.",
        content=(
            "Addition means putting groups together. If you have two apples "
            "and someone gives you three more, count them together to get five."
        ),
        questions=[
            Question(
                question_text="What is 1 plus 2?",
                options=["2", "3", "4", "5"],
                correct_answer="B",
            ),
            Question(
                question_text=(
                    "If you have three bananas and get two more, "
                    "how many bananas do you have?"
                ),
                options=["4", "5", "6", "3"],
                correct_answer="B",
            ),
        ],
    ),

    "demo-math-001": Lesson(
        id="demo-math-001",
        title="Basic Mathematics",
        description=(
            "Learn basic addition, subtraction, and multiplication "
            "through interactive questions"
        ),
        content=(
            "We use numbers to count money, measure food and tell the time. "
            "Today we practice adding, taking away and multiplying."
        ),
        questions=[
            Question(
                question_text="What is 2 plus 2?",
                options=["3", "4", "5", "6"],
                correct_answer="B",
            ),
            Question(
                question_text="What is 10 minus 5?",
                options=["3", "4", "5", "6"],
                correct_answer="C",
            ),
            Question(
                question_text="What is 3 times 3?",
                options=["6", "8", "9", "12"],
                correct_answer="C",
            ),
        ],
    ),
}


class LessonCatalog:
    """Read-only lesson lookup used by the flow engines."""

    def __init__(self, lessons: Optional[Iterable[Lesson]] = None):
        source = LESSONS.values() if lessons is None else lessons
        self._lessons = {lesson.id: lesson for lesson in source}

    def get_lesson_by_id(self, lesson_id: str) -> Optional[Lesson]:
        """Get a lesson by id, or None when it doesn't exist."""
        return self._lessons.get(lesson_id)
