from typing import List, Optional

from pydantic import BaseModel, Field, field_validator


class Question(BaseModel):
    """Single multiple-choice quiz question."""
    question_text: str
    options: List[str]
    correct_answer: str  # letter token, A-D

    @field_validator('correct_answer')
    @classmethod
    def normalize_correct_answer(cls, v):
        """Store the answer token upper-cased."""
        return str(v).strip().upper()


class Lesson(BaseModel):
    id: str
    title: str
    description: Optional[str] = None
    content: Optional[str] = None
    questions: List[Question] = Field(default_factory=list)
