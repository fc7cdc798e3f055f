"""
learnchat/features/quizzes/service.py

Quiz unlock tracker.

An artifact is unlocked once every one of its quizzes has been answered
correctly (or immediately when it has none). Quizzes are generated lazily
on first request and each quiz accepts exactly one answer.

unlock_level is never incremented in place: it is recomputed from all
sibling quizzes in the same transaction as the answer.
"""

import logging
import random
import re
import uuid
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import and_, delete, func, insert, select, update
from sqlalchemy.exc import IntegrityError

from learnchat.core.database import artifacts, get_db_session, quizzes
from learnchat.core.errors import AlreadyAnsweredError, NotFoundError, ValidationError
from learnchat.core.metrics import quiz_answers_total
from learnchat.features.credits.ledger import as_utc
from learnchat.features.llm.client import TextGenerator
from learnchat.features.quizzes.generator import fallback_quizzes, generate_quizzes
from learnchat.models.quiz import AnswerResult, Artifact, GeneratedQuiz, Quiz, QuizOption, is_unlocked

logger = logging.getLogger(__name__)

ANSWER_RE = re.compile(r"^[A-F]$")


@dataclass(frozen=True)
class QuizList:
    artifact_id: str
    quizzes: List[Quiz]
    total: int
    unlock_level: int
    is_unlocked: bool
    next_quiz_id: Optional[str]
    generated: bool = False

    @property
    def current_level(self) -> int:
        return self.unlock_level + 1


def _row_to_artifact(row) -> Artifact:
    return Artifact(
        artifact_id=row.artifact_id,
        conversation_id=row.conversation_id,
        user_id=row.user_id,
        title=row.title,
        language=row.language,
        content=row.content,
        unlock_level=row.unlock_level,
        total_questions=row.total_questions,
    )


def _row_to_quiz(row) -> Quiz:
    return Quiz(
        quiz_id=row.quiz_id,
        artifact_id=row.artifact_id,
        level=row.level,
        question=row.question,
        options=[QuizOption.model_validate(opt) for opt in row.options],
        correct_label=row.correct_label,
        hint=row.hint,
        code_snippet=row.code_snippet,
        code_language=row.code_language,
        status=row.status,
        user_answer=row.user_answer,
        is_correct=row.is_correct,
        answered_at=as_utc(row.answered_at) if row.answered_at else None,
    )


def create_artifact(
    conversation_id: str,
    user_id: str,
    content: str,
    title: Optional[str] = None,
    language: Optional[str] = None,
) -> Artifact:
    artifact_id = uuid.uuid4().hex
    with get_db_session() as session:
        session.execute(
            insert(artifacts).values(
                artifact_id=artifact_id,
                conversation_id=conversation_id,
                user_id=user_id,
                title=title,
                language=language,
                content=content,
                unlock_level=0,
                total_questions=0,
            )
        )
    return get_artifact(artifact_id, user_id)


def _owned_artifact_row(session, artifact_id: str, user_id: str):
    row = session.execute(
        select(artifacts).where(artifacts.c.artifact_id == artifact_id, artifacts.c.user_id == user_id)
    ).first()
    if row is None:
        raise NotFoundError("Artifact not found")
    return row


def get_artifact(artifact_id: str, user_id: str) -> Artifact:
    with get_db_session() as session:
        return _row_to_artifact(_owned_artifact_row(session, artifact_id, user_id))


def _load_quizzes(session, artifact_id: str) -> List[Quiz]:
    rows = session.execute(
        select(quizzes).where(quizzes.c.artifact_id == artifact_id).order_by(quizzes.c.level)
    ).all()
    return [_row_to_quiz(row) for row in rows]


def _summarize(artifact_id: str, items: List[Quiz], generated: bool = False) -> QuizList:
    correct = sum(1 for q in items if q.status == "answered" and q.is_correct)
    next_quiz = next((q for q in items if q.status == "pending"), None)
    return QuizList(
        artifact_id=artifact_id,
        quizzes=items,
        total=len(items),
        unlock_level=correct,
        is_unlocked=is_unlocked(correct, len(items)),
        next_quiz_id=next_quiz.quiz_id if next_quiz else None,
        generated=generated,
    )


def list_quizzes(artifact_id: str, user_id: str) -> QuizList:
    with get_db_session() as session:
        _owned_artifact_row(session, artifact_id, user_id)
        items = _load_quizzes(session, artifact_id)
    return _summarize(artifact_id, items)


def _persist_generated(artifact_id: str, generated: List[GeneratedQuiz]) -> None:
    with get_db_session() as session:
        existing = session.execute(
            select(func.count()).select_from(quizzes).where(quizzes.c.artifact_id == artifact_id)
        ).scalar_one()
        if existing:
            return
        for quiz in generated:
            session.execute(
                insert(quizzes).values(
                    quiz_id=uuid.uuid4().hex,
                    artifact_id=artifact_id,
                    level=quiz.level,
                    question=quiz.question,
                    options=[opt.model_dump(exclude_none=True) for opt in quiz.options],
                    correct_label=quiz.correct_label,
                    hint=quiz.hint,
                    code_snippet=quiz.code_snippet,
                    code_language=quiz.code_language,
                    status="pending",
                )
            )
        session.execute(
            update(artifacts)
            .where(artifacts.c.artifact_id == artifact_id)
            .values(total_questions=len(generated), unlock_level=0)
        )


def ensure_quizzes(
    artifact_id: str,
    user_id: str,
    generator: Optional[TextGenerator] = None,
    rng: Optional[random.Random] = None,
) -> QuizList:
    """
    Return the artifact's quizzes, generating them on first request.

    Generation falls back to pattern quizzes; when both yield nothing the
    artifact is left with total_questions = 0 and is therefore unlocked.
    """
    artifact = get_artifact(artifact_id, user_id)
    current = list_quizzes(artifact_id, user_id)
    if current.total > 0:
        return current

    generated = generate_quizzes(
        artifact.content,
        artifact.language,
        estimated_count=artifact.total_questions or None,
        title=artifact.title,
        generator=generator,
        rng=rng,
    )
    if not generated:
        generated = fallback_quizzes(artifact.content, artifact.language, rng=rng)

    try:
        _persist_generated(artifact_id, generated)
    except IntegrityError:
        # A concurrent request stored its quizzes first
        logger.info("quiz.generation_raced", extra={"artifact_id": artifact_id})
        return list_quizzes(artifact_id, user_id)

    logger.info("quiz.generated", extra={"artifact_id": artifact_id, "count": len(generated)})
    result = list_quizzes(artifact_id, user_id)
    return replace(result, generated=True)


def reset_quizzes(artifact_id: str, user_id: str) -> None:
    """Delete all quizzes so the next request regenerates them."""
    with get_db_session() as session:
        _owned_artifact_row(session, artifact_id, user_id)
        session.execute(delete(quizzes).where(quizzes.c.artifact_id == artifact_id))
        session.execute(
            update(artifacts)
            .where(artifacts.c.artifact_id == artifact_id)
            .values(total_questions=0, unlock_level=0)
        )


def submit_answer(artifact_id: str, quiz_id: str, answer: str, user_id: str, now: Optional[datetime] = None) -> AnswerResult:
    """
    Record the single answer for a quiz and recompute the artifact's level.

    Raises ValidationError for a malformed answer, NotFoundError when the
    artifact or quiz is missing or not owned, AlreadyAnsweredError when the
    quiz was answered before (nothing is changed in that case).
    """
    normalized = (answer or "").strip().upper()
    if not ANSWER_RE.match(normalized):
        raise ValidationError("Answer must be a single label between A and F")
    answered_at = now or datetime.now(timezone.utc)

    with get_db_session() as session:
        _owned_artifact_row(session, artifact_id, user_id)
        quiz_row = session.execute(
            select(quizzes).where(quizzes.c.quiz_id == quiz_id, quizzes.c.artifact_id == artifact_id)
        ).first()
        if quiz_row is None:
            raise NotFoundError("Quiz not found")

        correct = normalized == quiz_row.correct_label
        result = session.execute(
            update(quizzes)
            .where(quizzes.c.quiz_id == quiz_id, quizzes.c.status == "pending")
            .values(status="answered", user_answer=normalized, is_correct=correct, answered_at=answered_at)
        )
        if result.rowcount == 0:
            raise AlreadyAnsweredError("This quiz has already been answered")

        unlock_level = session.execute(
            select(func.count()).select_from(quizzes).where(
                and_(
                    quizzes.c.artifact_id == artifact_id,
                    quizzes.c.status == "answered",
                    quizzes.c.is_correct.is_(True),
                )
            )
        ).scalar_one()
        total = session.execute(
            select(func.count()).select_from(quizzes).where(quizzes.c.artifact_id == artifact_id)
        ).scalar_one()
        session.execute(
            update(artifacts)
            .where(artifacts.c.artifact_id == artifact_id)
            .values(unlock_level=unlock_level, total_questions=total)
        )
        items = _load_quizzes(session, artifact_id)

    quiz_answers_total.inc(labels={"correct": "true" if correct else "false"})
    answered = next(q for q in items if q.quiz_id == quiz_id)
    next_quiz = next((q for q in items if q.status == "pending"), None)
    logger.info(
        "quiz.answered",
        extra={"artifact_id": artifact_id, "quiz_id": quiz_id, "correct": correct, "unlock_level": unlock_level},
    )
    return AnswerResult(
        quiz=answered,
        is_correct=correct,
        current_level=unlock_level,
        total_questions=total,
        is_unlocked=is_unlocked(unlock_level, total),
        next_quiz=next_quiz,
    )
