"""
learnchat/models/quiz.py

Quiz and artifact models for quiz-gated unlocking.
"""

from datetime import datetime
from typing import List, Literal, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator

QuizStatus = Literal["pending", "answered"]
ANSWER_LABELS = "ABCDEF"


class QuizOption(BaseModel):
    model_config = ConfigDict(frozen=True)

    label: str
    text: str
    explanation: Optional[str] = None

    @field_validator("label")
    @classmethod
    def _label_upper(cls, value: str) -> str:
        value = value.strip().upper()
        if len(value) != 1 or value not in ANSWER_LABELS:
            raise ValueError(f"invalid option label: {value!r}")
        return value


class GeneratedQuiz(BaseModel):
    """A quiz as produced by the generator, before it is persisted."""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    level: int = 1
    question: str
    options: List[QuizOption]
    correct_label: str = Field(alias="correctLabel")
    hint: Optional[str] = None
    code_snippet: Optional[str] = Field(default=None, alias="codeSnippet")
    code_language: Optional[str] = Field(default=None, alias="codeLanguage")

    @field_validator("correct_label")
    @classmethod
    def _correct_upper(cls, value: str) -> str:
        return value.strip().upper()


class Quiz(BaseModel):
    model_config = ConfigDict(frozen=True)

    quiz_id: str
    artifact_id: str
    level: int
    question: str
    options: List[QuizOption]
    correct_label: str
    hint: Optional[str] = None
    code_snippet: Optional[str] = None
    code_language: Optional[str] = None
    status: QuizStatus = "pending"
    user_answer: Optional[str] = None
    is_correct: Optional[bool] = None
    answered_at: Optional[datetime] = None


class Artifact(BaseModel):
    model_config = ConfigDict(frozen=True)

    artifact_id: str
    conversation_id: str
    user_id: str
    title: Optional[str] = None
    language: Optional[str] = None
    content: str
    unlock_level: int = 0
    total_questions: int = 0

    @property
    def is_unlocked(self) -> bool:
        return is_unlocked(self.unlock_level, self.total_questions)


def is_unlocked(unlock_level: int, total_questions: int) -> bool:
    return total_questions == 0 or unlock_level >= total_questions


class AnswerResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    quiz: Quiz
    is_correct: bool
    current_level: int
    total_questions: int
    is_unlocked: bool
    next_quiz: Optional[Quiz] = None
