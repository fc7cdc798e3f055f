import json
import random

import pytest

from learnchat.core.errors import AlreadyAnsweredError, NotFoundError, ValidationError
from learnchat.core.metrics import quiz_answers_total
from learnchat.features.conversations.service import create_conversation
from learnchat.features.quizzes.service import (
    create_artifact,
    ensure_quizzes,
    get_artifact,
    list_quizzes,
    reset_quizzes,
    submit_answer,
)
from learnchat.tests.mocks import ScriptedGenerator, failing_generator

CODE = """
async function loadUser(id) {
  try {
    const res = await fetch(`/api/users/${id}`);
    return await res.json();
  } catch (err) {
    return null;
  }
}
"""


def _reply(count):
    return json.dumps([
        {
            "question": f"Why is step {i} needed?",
            "options": [
                {"label": "A", "text": f"right {i}"},
                {"label": "B", "text": f"wrong {i}"},
                {"label": "C", "text": f"other {i}"},
            ],
            "correctLabel": "A",
        }
        for i in range(count)
    ])


def _artifact(user_id, code=CODE):
    conversation = create_conversation(user_id, "generation")
    return create_artifact(conversation.conversation_id, user_id, code, title="loader", language="javascript")


def _with_quizzes(user_id, count=3, seed=0):
    artifact = _artifact(user_id)
    generator = ScriptedGenerator(replies={"quiz": _reply(count)})
    listing = ensure_quizzes(artifact.artifact_id, user_id, generator=generator, rng=random.Random(seed))
    return artifact, listing


def _wrong_label(quiz):
    return next(opt.label for opt in quiz.options if opt.label != quiz.correct_label)


def test_generation_is_lazy_and_happens_once(individual):
    artifact, listing = _with_quizzes(individual.user_id)
    assert listing.generated is True
    assert listing.total == 3
    assert listing.unlock_level == 0
    assert listing.current_level == 1
    assert listing.is_unlocked is False
    assert listing.next_quiz_id == listing.quizzes[0].quiz_id

    generator = ScriptedGenerator(replies={"quiz": _reply(5)})
    again = ensure_quizzes(artifact.artifact_id, individual.user_id, generator=generator)
    assert again.generated is False
    assert again.total == 3
    assert generator.calls == []
    assert get_artifact(artifact.artifact_id, individual.user_id).total_questions == 3


def test_unlock_level_counts_correct_answers(individual, now):
    artifact, listing = _with_quizzes(individual.user_id)
    first, second, third = listing.quizzes

    result = submit_answer(artifact.artifact_id, first.quiz_id, first.correct_label.lower(), individual.user_id, now=now)
    assert result.is_correct is True
    assert result.current_level == 1
    assert result.next_quiz.quiz_id == second.quiz_id

    result = submit_answer(artifact.artifact_id, second.quiz_id, _wrong_label(second), individual.user_id, now=now)
    assert result.is_correct is False
    assert result.current_level == 1

    result = submit_answer(artifact.artifact_id, third.quiz_id, third.correct_label, individual.user_id, now=now)
    assert result.current_level == 2
    assert result.total_questions == 3
    assert result.is_unlocked is False
    assert result.next_quiz is None

    stored = get_artifact(artifact.artifact_id, individual.user_id)
    assert stored.unlock_level == 2
    assert stored.is_unlocked is False
    assert quiz_answers_total.value(labels={"correct": "true"}) == 2
    assert quiz_answers_total.value(labels={"correct": "false"}) == 1


def test_all_correct_unlocks(individual, now):
    artifact, listing = _with_quizzes(individual.user_id, count=2)
    for quiz in listing.quizzes:
        result = submit_answer(artifact.artifact_id, quiz.quiz_id, quiz.correct_label, individual.user_id, now=now)
    assert result.is_unlocked is True
    assert list_quizzes(artifact.artifact_id, individual.user_id).is_unlocked is True


def test_artifact_without_quizzes_is_unlocked(individual):
    artifact = _artifact(individual.user_id, code="total = price * qty\nprint(total)\nreturn total\n")
    listing = ensure_quizzes(artifact.artifact_id, individual.user_id, generator=failing_generator())
    assert listing.total == 0
    assert listing.is_unlocked is True
    assert listing.next_quiz_id is None
    assert get_artifact(artifact.artifact_id, individual.user_id).is_unlocked is True


def test_failed_generation_uses_pattern_quizzes(individual):
    artifact = _artifact(individual.user_id)
    listing = ensure_quizzes(artifact.artifact_id, individual.user_id, generator=failing_generator(), rng=random.Random(2))
    assert listing.total == 2
    assert [q.level for q in listing.quizzes] == [1, 2]


def test_second_answer_is_rejected_without_changes(individual, now):
    artifact, listing = _with_quizzes(individual.user_id)
    quiz = listing.quizzes[0]
    submit_answer(artifact.artifact_id, quiz.quiz_id, _wrong_label(quiz), individual.user_id, now=now)

    with pytest.raises(AlreadyAnsweredError) as exc:
        submit_answer(artifact.artifact_id, quiz.quiz_id, quiz.correct_label, individual.user_id)
    assert exc.value.code == "ALREADY_ANSWERED"

    stored = list_quizzes(artifact.artifact_id, individual.user_id).quizzes[0]
    assert stored.is_correct is False
    assert stored.answered_at == now
    assert get_artifact(artifact.artifact_id, individual.user_id).unlock_level == 0


@pytest.mark.parametrize("answer", ["", "G", "AB", "1"])
def test_malformed_answer_is_rejected(individual, answer):
    artifact, listing = _with_quizzes(individual.user_id)
    with pytest.raises(ValidationError):
        submit_answer(artifact.artifact_id, listing.quizzes[0].quiz_id, answer, individual.user_id)
    assert list_quizzes(artifact.artifact_id, individual.user_id).quizzes[0].status == "pending"


def test_other_users_cannot_see_or_answer(individual, free_individual):
    artifact, listing = _with_quizzes(individual.user_id)
    with pytest.raises(NotFoundError):
        list_quizzes(artifact.artifact_id, free_individual.user_id)
    with pytest.raises(NotFoundError):
        submit_answer(artifact.artifact_id, listing.quizzes[0].quiz_id, "A", free_individual.user_id)


def test_unknown_quiz_is_not_found(individual):
    artifact, _ = _with_quizzes(individual.user_id)
    with pytest.raises(NotFoundError):
        submit_answer(artifact.artifact_id, "missing", "A", individual.user_id)


def test_unlock_level_tracks_correct_count_for_any_sequence(individual, now):
    rng = random.Random(11)
    for seed in range(3):
        artifact, listing = _with_quizzes(individual.user_id, count=5, seed=seed)
        order = list(listing.quizzes)
        rng.shuffle(order)
        correct = 0
        for quiz in order:
            right = rng.random() < 0.5
            answer = quiz.correct_label if right else _wrong_label(quiz)
            result = submit_answer(artifact.artifact_id, quiz.quiz_id, answer, individual.user_id, now=now)
            correct += int(right)
            assert result.current_level == correct
            assert result.is_unlocked == (correct == 5)
        assert get_artifact(artifact.artifact_id, individual.user_id).unlock_level == correct


def test_reset_allows_regeneration(individual, now):
    artifact, listing = _with_quizzes(individual.user_id)
    quiz = listing.quizzes[0]
    submit_answer(artifact.artifact_id, quiz.quiz_id, quiz.correct_label, individual.user_id, now=now)

    reset_quizzes(artifact.artifact_id, individual.user_id)
    stored = get_artifact(artifact.artifact_id, individual.user_id)
    assert stored.total_questions == 0
    assert stored.unlock_level == 0

    generator = ScriptedGenerator(replies={"quiz": _reply(4)})
    regenerated = ensure_quizzes(artifact.artifact_id, individual.user_id, generator=generator)
    assert regenerated.generated is True
    assert regenerated.total == 4
    assert all(q.status == "pending" for q in regenerated.quizzes)
