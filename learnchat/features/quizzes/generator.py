"""
learnchat/features/quizzes/generator.py

Quiz generation for generated code artifacts.

Handles:
- Quiz count estimation from code size and structure
- Generation through the auxiliary model (JSON array output)
- Validation: dedupe, option count, correct label, "why" phrasing, levels
- Correct-answer redistribution so answers do not cluster on one label
- Pattern-based fallback quizzes when generation fails
"""

import json
import logging
import random
import re
from typing import Dict, List, Optional, Sequence

import pydantic

from learnchat.core.config import settings
from learnchat.features.llm.client import GenerationError, TextGenerator, get_text_generator
from learnchat.features.quizzes.prompts import QUIZ_PROMPT, QUIZ_SYSTEM_PROMPT
from learnchat.models.quiz import ANSWER_LABELS, GeneratedQuiz, QuizOption

logger = logging.getLogger(__name__)

MIN_CODE_LENGTH = 10
MAX_QUIZZES = 5
MIN_OPTIONS = 3
MAX_OPTIONS = 6
QUESTION_KEY_LENGTH = 50
QUIZ_MAX_TOKENS = 4096
TARGET_LABELS = "ABC"

_JSON_ARRAY_RE = re.compile(r"\[[\s\S]*\]")
_WHITESPACE_RE = re.compile(r"\s+")
_WHY_MARKERS = ("why", "なぜ", "どうして")
_LEADING_DEMONSTRATIVE_RE = re.compile(r"^.*?\b(?:this|that)\b\s*", re.IGNORECASE)

_STRUCTURE_PATTERNS = [
    re.compile(r"\b(?:function|def|func|fn)\s+\w+"),
    re.compile(r"=>"),
    re.compile(r"\bclass\s+\w+"),
    re.compile(r"\basync\b"),
    re.compile(r"\b(?:try|catch|except)\b"),
    re.compile(r"\buse[A-Z]\w*\s*\("),
    re.compile(r"\b(?:for|while)\b"),
    re.compile(r"\bimport\b"),
]


def estimate_quiz_count(code: str) -> int:
    """
    0 for trivial code, otherwise 1..MAX_QUIZZES.

    Grows with non-blank line count and the number of distinct structural
    constructs (functions, classes, async, error handling, hooks, loops).
    """
    stripped = code.strip()
    if len(stripped) < MIN_CODE_LENGTH:
        return 0
    lines = [line for line in stripped.splitlines() if line.strip()]
    if len(lines) < 3:
        return 0

    if len(lines) < 15:
        count = 1
    elif len(lines) < 50:
        count = 2
    else:
        count = 3

    constructs = sum(1 for pattern in _STRUCTURE_PATTERNS if pattern.search(code))
    if constructs >= 3:
        count += 1
    if constructs >= 6:
        count += 1
    return min(count, MAX_QUIZZES)


def _question_key(question: str) -> str:
    return _WHITESPACE_RE.sub(" ", question.lower()).strip()[:QUESTION_KEY_LENGTH]


def _as_why_question(question: str) -> str:
    lowered = question.lower()
    if any(marker in lowered for marker in _WHY_MARKERS):
        return question
    rest = _LEADING_DEMONSTRATIVE_RE.sub("", question, count=1).strip() or question.strip()
    rest = rest.rstrip("?").strip()
    return f"Why {rest}?"


def validate_quizzes(quizzes: Sequence[GeneratedQuiz]) -> List[GeneratedQuiz]:
    """Drop duplicates and malformed quizzes, enforce "why" phrasing, renumber 1..N."""
    seen = set()
    validated: List[GeneratedQuiz] = []
    for quiz in quizzes:
        key = _question_key(quiz.question)
        if key in seen:
            continue
        seen.add(key)

        if not MIN_OPTIONS <= len(quiz.options) <= MAX_OPTIONS:
            continue
        if not any(opt.label == quiz.correct_label for opt in quiz.options):
            continue

        validated.append(quiz.model_copy(update={"question": _as_why_question(quiz.question)}))

    return [quiz.model_copy(update={"level": index + 1}) for index, quiz in enumerate(validated)]


def _shuffle(items: List, rng: random.Random) -> List:
    # Fisher-Yates
    shuffled = list(items)
    for i in range(len(shuffled) - 1, 0, -1):
        j = rng.randint(0, i)
        shuffled[i], shuffled[j] = shuffled[j], shuffled[i]
    return shuffled


def _redistribute_one(quiz: GeneratedQuiz, target: str, rng: random.Random) -> GeneratedQuiz:
    labels = [opt.label for opt in quiz.options]
    correct_positions = [i for i, label in enumerate(labels) if label == quiz.correct_label]
    if not correct_positions:
        return quiz
    correct_option = quiz.options[correct_positions[0]]
    ambiguous = len(set(labels)) != len(labels)

    shuffled = _shuffle(list(quiz.options), rng)
    relabeled = []
    new_correct = quiz.correct_label
    for index, opt in enumerate(shuffled):
        label = ANSWER_LABELS[index]
        if opt is correct_option:
            new_correct = label
        relabeled.append(opt.model_copy(update={"label": label}))

    target_index = next((i for i, opt in enumerate(relabeled) if opt.label == target), None)
    if not ambiguous and target_index is not None and new_correct != target:
        correct_index = next(i for i, opt in enumerate(relabeled) if opt.label == new_correct)
        relabeled[correct_index] = relabeled[correct_index].model_copy(update={"label": target})
        relabeled[target_index] = relabeled[target_index].model_copy(update={"label": new_correct})
        new_correct = target

    relabeled.sort(key=lambda opt: opt.label)
    return quiz.model_copy(update={"options": relabeled, "correct_label": new_correct})


def distribute_correct_answers(quizzes: Sequence[GeneratedQuiz], rng: Optional[random.Random] = None) -> List[GeneratedQuiz]:
    """
    Shuffle each quiz's options and move its correct answer onto A, B, C in
    turn, starting from a random offset.
    """
    rng = rng or random.Random()
    offset = rng.randrange(len(TARGET_LABELS))
    distributed = []
    for index, quiz in enumerate(quizzes):
        target = TARGET_LABELS[(offset + index) % len(TARGET_LABELS)]
        distributed.append(_redistribute_one(quiz, target, rng))
    return distributed


def parse_quizzes(text: str) -> List[GeneratedQuiz]:
    """Extract the JSON array from a model response. Raises ValueError when there is none."""
    match = _JSON_ARRAY_RE.search(text)
    if not match:
        raise ValueError("no JSON array in response")
    data = json.loads(match.group(0))
    if not isinstance(data, list):
        raise ValueError("quiz payload is not a list")

    quizzes = []
    for item in data:
        try:
            quizzes.append(GeneratedQuiz.model_validate(item))
        except pydantic.ValidationError as exc:
            logger.info("quiz.item_rejected", extra={"errors": exc.error_count()})
    return quizzes


def generate_quizzes(
    code: str,
    language: Optional[str] = None,
    estimated_count: Optional[int] = None,
    title: Optional[str] = None,
    generator: Optional[TextGenerator] = None,
    rng: Optional[random.Random] = None,
) -> List[GeneratedQuiz]:
    """
    Generate comprehension quizzes for `code`.

    Returns [] without a provider call for trivial code. Provider failures
    and unparsable responses are logged and also return [].
    """
    count = estimated_count if estimated_count is not None else estimate_quiz_count(code)
    if count <= 0 or len(code.strip()) < MIN_CODE_LENGTH:
        return []

    lang = language or "javascript"
    prompt = QUIZ_PROMPT.format(count=count, title=title or "untitled", language=lang, code=code)
    gen = generator or get_text_generator()
    try:
        result = gen.generate(
            model=settings.AUX_MODEL,
            system=QUIZ_SYSTEM_PROMPT,
            messages=[{"role": "user", "content": prompt}],
            max_tokens=QUIZ_MAX_TOKENS,
            purpose="quiz",
        )
    except GenerationError as exc:
        logger.warning("quiz.generation_failed", extra={"error": exc.message})
        return []

    try:
        parsed = parse_quizzes(result.text)
    except ValueError as exc:
        # Metadata only; the response body may echo user code
        logger.warning("quiz.unparsable", extra={"error": str(exc), "length": len(result.text)})
        return []

    return distribute_correct_answers(validate_quizzes(parsed), rng)


def _fallback(question: str, options: List[Dict[str, str]], correct: str, hint: str, language: Optional[str]) -> GeneratedQuiz:
    return GeneratedQuiz(
        question=question,
        options=[QuizOption(**opt) for opt in options],
        correct_label=correct,
        hint=hint,
        code_language=language,
    )


def fallback_quizzes(code: str, language: Optional[str] = None, rng: Optional[random.Random] = None) -> List[GeneratedQuiz]:
    """One canned quiz per recognised idiom, redistributed like generated ones."""
    quizzes: List[GeneratedQuiz] = []

    if re.search(r"async\s+(?:function\s+)?(\w+)", code):
        quizzes.append(_fallback(
            "Why is this function marked async?",
            [
                {"label": "A", "text": "To make the function run faster",
                 "explanation": "async does not speed anything up; it lets the function handle asynchronous work."},
                {"label": "B", "text": "Because it uses await inside",
                 "explanation": "Correct. Inside an async function await pauses until the promise settles."},
                {"label": "C", "text": "To handle errors automatically",
                 "explanation": "async alone does not handle errors; you still need try/catch."},
            ],
            "B",
            "Check whether await is used inside the function",
            language,
        ))

    if re.search(r"useEffect\s*\(", code):
        if re.search(r"useEffect\s*\([^,]*,\s*\[\s*\]", code):
            quizzes.append(_fallback(
                "Why is the useEffect dependency array empty?",
                [
                    {"label": "A", "text": "To run on every render",
                     "explanation": "Running on every render means omitting the array entirely."},
                    {"label": "B", "text": "To run once when the component mounts",
                     "explanation": "Correct. An empty dependency array runs the effect once after mount."},
                    {"label": "C", "text": "To prevent errors",
                     "explanation": "The empty array controls timing, not error handling."},
                ],
                "B",
                "Think about when the effect runs",
                language,
            ))
        else:
            quizzes.append(_fallback(
                "Why does useEffect declare a dependency array?",
                [
                    {"label": "A", "text": "For performance optimisation",
                     "explanation": "The array mainly controls when the effect re-runs, not performance."},
                    {"label": "B", "text": "To re-run only when those values change",
                     "explanation": "Correct. The effect re-runs only when a listed dependency changes."},
                    {"label": "C", "text": "Because React requires it",
                     "explanation": "The array is optional, but a wrong one causes bugs."},
                ],
                "B",
                "Compare the dependencies with what the effect reads",
                language,
            ))

    if re.search(r"try\s*\{[\s\S]*?\}\s*catch", code):
        quizzes.append(_fallback(
            "Why is this logic wrapped in a try/catch block?",
            [
                {"label": "A", "text": "To speed up execution",
                 "explanation": "try/catch is for error handling, not speed."},
                {"label": "B", "text": "To guarantee the operation succeeds",
                 "explanation": "try/catch defines what happens on failure; it guarantees nothing."},
                {"label": "C", "text": "To handle failures gracefully",
                 "explanation": "Correct. The catch block can recover or report the error to the user."},
            ],
            "C",
            "Look at what the catch block does",
            language,
        ))

    if re.search(r"useState\s*[<(]", code):
        quizzes.append(_fallback(
            "Why is the state managed with useState?",
            [
                {"label": "A", "text": "So updates trigger a re-render",
                 "explanation": "Correct. Changing useState state makes React re-render the component."},
                {"label": "B", "text": "To share the variable globally",
                 "explanation": "useState is local to the component, not global."},
                {"label": "C", "text": "To fix the variable's type",
                 "explanation": "useState tracks and updates state; it does not fix types."},
            ],
            "A",
            "Think about when React re-renders a component",
            language,
        ))

    numbered = [quiz.model_copy(update={"level": index + 1}) for index, quiz in enumerate(quizzes)]
    return distribute_correct_answers(numbered, rng)
