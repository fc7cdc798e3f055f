"""
Artifact quiz routes.

- GET    /v1/artifacts/{id}/quizzes            list + unlock state
- POST   /v1/artifacts/{id}/quizzes            lazy generation
- DELETE /v1/artifacts/{id}/quizzes            reset for regeneration
- PATCH  /v1/artifacts/{id}/quizzes/{quiz_id}  submit the single answer
"""
from typing import Dict

from fastapi import APIRouter, Depends, Path
from pydantic import BaseModel, field_validator

from learnchat.core.auth import get_current_user_id
from learnchat.features.quizzes.service import (
    QuizList,
    ensure_quizzes,
    list_quizzes,
    reset_quizzes,
    submit_answer,
)
from learnchat.models.quiz import Quiz

router = APIRouter(prefix="/v1/artifacts", tags=["quizzes"])


class AnswerRequest(BaseModel):
    answer: str

    @field_validator("answer")
    @classmethod
    def _trim(cls, value: str) -> str:
        return value.strip().upper()


def _quiz_out(quiz: Quiz) -> Dict:
    return {
        "id": quiz.quiz_id,
        "artifactId": quiz.artifact_id,
        "level": quiz.level,
        "question": quiz.question,
        "options": [opt.model_dump(exclude_none=True) for opt in quiz.options],
        # Revealed once answered
        "correctLabel": quiz.correct_label if quiz.status == "answered" else None,
        "hint": quiz.hint,
        "codeSnippet": quiz.code_snippet,
        "codeLanguage": quiz.code_language,
        "status": quiz.status,
        "userAnswer": quiz.user_answer,
        "isCorrect": quiz.is_correct,
        "answeredAt": quiz.answered_at.isoformat() if quiz.answered_at else None,
    }


def _list_out(result: QuizList) -> Dict:
    return {
        "items": [_quiz_out(q) for q in result.quizzes],
        "total": result.total,
        "currentLevel": result.current_level,
        "isUnlocked": result.is_unlocked,
        "nextQuizId": result.next_quiz_id,
    }


@router.get("/{artifact_id}/quizzes")
def list_quizzes_endpoint(
    artifact_id: str = Path(..., description="Artifact ID"),
    user_id: str = Depends(get_current_user_id),
) -> Dict:
    return _list_out(list_quizzes(artifact_id, user_id))


@router.post("/{artifact_id}/quizzes")
def generate_quizzes_endpoint(
    artifact_id: str = Path(..., description="Artifact ID"),
    user_id: str = Depends(get_current_user_id),
) -> Dict:
    result = ensure_quizzes(artifact_id, user_id)
    return {**_list_out(result), "generated": result.generated}


@router.delete("/{artifact_id}/quizzes")
def reset_quizzes_endpoint(
    artifact_id: str = Path(..., description="Artifact ID"),
    user_id: str = Depends(get_current_user_id),
) -> Dict:
    reset_quizzes(artifact_id, user_id)
    return {"reset": True}


@router.patch("/{artifact_id}/quizzes/{quiz_id}")
def submit_answer_endpoint(
    body: AnswerRequest,
    artifact_id: str = Path(..., description="Artifact ID"),
    quiz_id: str = Path(..., description="Quiz ID"),
    user_id: str = Depends(get_current_user_id),
) -> Dict:
    result = submit_answer(artifact_id, quiz_id, body.answer, user_id)
    return {
        "quiz": _quiz_out(result.quiz),
        "isCorrect": result.is_correct,
        "currentLevel": result.current_level,
        "totalQuestions": result.total_questions,
        "isUnlocked": result.is_unlocked,
        "nextQuiz": _quiz_out(result.next_quiz) if result.next_quiz else None,
    }
