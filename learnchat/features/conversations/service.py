"""
learnchat/features/conversations/service.py

Conversation lifecycle.

Handles:
- Conversation creation, lookup and ownership checks
- prepare_turn: compaction + optimistic persistence of new summaries
- run_turn: admission -> compaction -> generation -> debit -> append
- Title generation and brainstorm summaries
"""

import logging
import re
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence

from sqlalchemy import insert, or_, select, update

from learnchat.core.config import settings
from learnchat.core.database import conversations, get_db_session
from learnchat.core.errors import NotFoundError, OutOfCreditsError, PermissionError, ValidationError
from learnchat.core.logging import log_event
from learnchat.features.compaction.service import (
    CompactDecision,
    CompactionResult,
    SummaryGenerationError,
    compact_conversation,
)
from learnchat.features.conversations.prompts import (
    BRAINSTORM_SUMMARY_PROMPT,
    CHAT_SYSTEM_PROMPTS,
    PLANNING_SUMMARY_PROMPT,
    TITLE_SYSTEM_PROMPT,
    TITLE_USER_PROMPT,
)
from learnchat.features.credits.balance import get_balance_summary
from learnchat.features.credits.ledger import as_utc, credit_usage, debit_usage
from learnchat.features.llm.client import GenerationError, TextGenerator, get_text_generator
from learnchat.features.plans.registry import get_plan, model_rate
from learnchat.features.usage.service import enforce_token_limit, estimate_conversation_tokens, record_token_usage
from learnchat.models.account import Account
from learnchat.models.conversation import CompactSummary, Conversation, Message

logger = logging.getLogger(__name__)

MODES = ("explanation", "generation", "brainstorm")
TITLE_MAX_LENGTH = 50
TITLE_SOURCE_MESSAGES = 10
TITLE_SOURCE_CHARS = 200
BRAINSTORM_MAX_MESSAGES = 100
BRAINSTORM_MAX_TOKENS = 2048


@dataclass(frozen=True)
class TurnResult:
    conversation_id: str
    reply: Message
    model_key: str
    points_debited: int
    was_compacted: bool
    input_tokens: int
    output_tokens: int


def _row_to_conversation(row) -> Conversation:
    summary = CompactSummary.model_validate(row.compact_summary) if row.compact_summary else None
    return Conversation(
        conversation_id=row.conversation_id,
        user_id=row.user_id,
        mode=row.mode,
        title=row.title,
        messages=[Message.model_validate(m) for m in (row.messages or [])],
        compact_summary=summary,
        created_at=as_utc(row.created_at) if row.created_at else None,
        updated_at=as_utc(row.updated_at) if row.updated_at else None,
    )


def _dump_messages(messages: Sequence[Message]) -> List[Dict]:
    return [m.model_dump(mode="json", exclude_none=True) for m in messages]


def create_conversation(user_id: str, mode: str, title: Optional[str] = None, messages: Optional[Sequence[Message]] = None) -> Conversation:
    if mode not in MODES:
        raise ValidationError(f"mode must be one of: {', '.join(MODES)}")
    conversation_id = uuid.uuid4().hex
    with get_db_session() as session:
        session.execute(
            insert(conversations).values(
                conversation_id=conversation_id,
                user_id=user_id,
                mode=mode,
                title=title,
                messages=_dump_messages(messages or []),
            )
        )
    return get_conversation(conversation_id, user_id)


def get_conversation(conversation_id: str, user_id: str) -> Conversation:
    """Load a conversation owned by `user_id` (NOT_FOUND / FORBIDDEN otherwise)."""
    with get_db_session() as session:
        row = session.execute(
            select(conversations).where(conversations.c.conversation_id == conversation_id)
        ).first()
    if row is None:
        raise NotFoundError("Conversation not found")
    if row.user_id != user_id:
        raise PermissionError("You do not have access to this conversation")
    return _row_to_conversation(row)


def append_messages(conversation_id: str, new_messages: Sequence[Message]) -> None:
    with get_db_session() as session:
        row = session.execute(
            select(conversations.c.messages)
            .where(conversations.c.conversation_id == conversation_id)
            .with_for_update()
        ).first()
        if row is None:
            raise NotFoundError("Conversation not found")
        messages = list(row.messages or []) + _dump_messages(new_messages)
        session.execute(
            update(conversations)
            .where(conversations.c.conversation_id == conversation_id)
            .values(messages=messages)
        )


def persist_summary(conversation_id: str, summary: CompactSummary) -> bool:
    """
    Store a regenerated summary unless a newer one is already stored.

    Guarded on summary_through_index so last_summarized_message_index never
    moves backwards when two compactions of one conversation race.
    """
    index = summary.last_summarized_message_index
    with get_db_session() as session:
        result = session.execute(
            update(conversations)
            .where(
                conversations.c.conversation_id == conversation_id,
                or_(
                    conversations.c.summary_through_index.is_(None),
                    conversations.c.summary_through_index <= index,
                ),
            )
            .values(
                compact_summary=summary.model_dump(mode="json", by_alias=True),
                summary_through_index=index,
            )
        )
    stored = result.rowcount == 1
    if not stored:
        logger.info("compaction.summary_superseded", extra={"conversation_id": conversation_id, "index": index})
    return stored


def _load_summary(conversation_id: str) -> Optional[CompactSummary]:
    with get_db_session() as session:
        row = session.execute(
            select(conversations.c.compact_summary).where(conversations.c.conversation_id == conversation_id)
        ).first()
    if row is None:
        raise NotFoundError("Conversation not found")
    return CompactSummary.model_validate(row.compact_summary) if row.compact_summary else None


def prepare_turn(
    conversation_id: str,
    messages: Sequence[Message],
    mode: str,
    generator: Optional[TextGenerator] = None,
    now: Optional[datetime] = None,
) -> CompactionResult:
    """
    Provider-bound message list for the next turn.

    Summary regeneration failures fall back to the full, uncompacted history.
    """
    _check_alternation(messages)
    existing = _load_summary(conversation_id)
    try:
        result = compact_conversation(messages, mode, existing_summary=existing, generator=generator, now=now)
    except SummaryGenerationError as exc:
        logger.warning(
            "compaction.fallback_full_history",
            extra={"conversation_id": conversation_id, "error": exc.message, "messages": len(messages)},
        )
        return CompactionResult(
            messages_for_api=[m.for_provider() for m in messages],
            was_compacted=False,
            decision=CompactDecision.NO_COMPACT,
        )

    if result.new_summary is not None:
        persist_summary(conversation_id, result.new_summary)
    return result


def _check_alternation(messages: Sequence[Message]) -> None:
    for index, message in enumerate(messages):
        expected = "user" if index % 2 == 0 else "assistant"
        if message.role != expected:
            raise ValidationError("Conversation roles must alternate starting with user")


def run_turn(
    account: Account,
    conversation_id: str,
    content: str,
    model_key: Optional[str] = None,
    generator: Optional[TextGenerator] = None,
    now: Optional[datetime] = None,
) -> TurnResult:
    """
    One conversation turn.

    The debit happens after a successful generation. If storing the reply
    fails afterwards the points are given back with a compensating credit.
    """
    moment = now or datetime.now(timezone.utc)
    if not content or not content.strip():
        raise ValidationError("Message content is required")

    conversation = get_conversation(conversation_id, account.user_id)
    summary = get_balance_summary(account, now=moment)
    check = summary.check
    if not check.allowed:
        raise OutOfCreditsError(
            "No points remaining for this period",
            details={"outOfCreditsActions": check.out_of_credits_actions, "availableModels": []},
        )

    plan = get_plan(summary.context.plan)
    chosen = model_key or check.available_models[0]
    points = model_rate(plan, chosen)
    if points is None:
        raise ValidationError(f"Model {chosen} is not offered on the {plan.plan_id} plan")
    if chosen not in check.available_models:
        raise OutOfCreditsError(
            f"Not enough points for model {chosen}",
            details={"outOfCreditsActions": check.out_of_credits_actions, "availableModels": check.available_models},
        )

    user_message = Message(role="user", content=content, timestamp=moment)
    messages = list(conversation.messages) + [user_message]
    _check_alternation(messages)

    system_prompt = CHAT_SYSTEM_PROMPTS[conversation.mode]
    enforce_token_limit(account, estimate_conversation_tokens(messages, system_prompt), now=moment)

    gen = generator or get_text_generator()
    prepared = prepare_turn(conversation_id, messages, conversation.mode, generator=gen, now=moment)
    generation = gen.generate(
        model=settings.chat_model_ids()[chosen],
        system=system_prompt,
        messages=prepared.messages_for_api,
        max_tokens=settings.CHAT_MAX_TOKENS,
        purpose="chat",
    )

    debit_usage(summary.target, points, category=conversation.mode, model_key=chosen, now=moment)

    reply = Message(role="assistant", content=generation.text, timestamp=datetime.now(timezone.utc))
    try:
        append_messages(conversation_id, [user_message, reply])
    except Exception:
        credit_usage(summary.target, points, category=conversation.mode, model_key=chosen)
        raise

    record_token_usage(account.user_id, generation.total_tokens, category=conversation.mode, now=moment)
    log_event(
        "info",
        "turn.completed",
        request_id=None,
        user_id=account.user_id,
        conversation_id=conversation_id,
        event_type="turn",
        extra={"model": chosen, "points": points, "compacted": prepared.was_compacted},
    )
    return TurnResult(
        conversation_id=conversation_id,
        reply=reply,
        model_key=chosen,
        points_debited=points,
        was_compacted=prepared.was_compacted,
        input_tokens=generation.input_tokens,
        output_tokens=generation.output_tokens,
    )


_TITLE_STRIP_RE = re.compile(r"[。、！？.,!?\s]")


def _normalize_title(value: str) -> str:
    return _TITLE_STRIP_RE.sub("", value.lower()).strip()


def titles_similar(existing: Optional[str], generated: str) -> bool:
    """Same after normalization, one contains the other, or >70% shared characters."""
    if not existing:
        return False
    a = _normalize_title(existing)
    b = _normalize_title(generated)
    if a == b:
        return True
    if a in b or b in a:
        return True
    longest = max(len(a), len(b))
    if min(len(a), len(b)) == 0:
        return False
    common = sum(1 for char in a if char in b)
    return common / longest > 0.7


def _clean_title(text: str) -> str:
    title = text.strip().splitlines()[0].strip() if text.strip() else ""
    title = title.strip("\"'「」 ")
    return title[:TITLE_MAX_LENGTH].rstrip()


def generate_title(account: Account, conversation_id: str, generator: Optional[TextGenerator] = None) -> Dict[str, object]:
    conversation = get_conversation(conversation_id, account.user_id)
    if len(conversation.messages) < 2:
        raise ValidationError("At least two messages are needed to generate a title")

    transcript = "\n".join(
        f"{'User' if m.role == 'user' else 'AI'}: {m.content[:TITLE_SOURCE_CHARS]}"
        for m in conversation.messages[:TITLE_SOURCE_MESSAGES]
    )
    gen = generator or get_text_generator()
    try:
        result = gen.generate(
            model=settings.AUX_MODEL,
            system=TITLE_SYSTEM_PROMPT,
            messages=[{"role": "user", "content": TITLE_USER_PROMPT.format(conversation=transcript)}],
            max_tokens=50,
            purpose="title",
        )
    except GenerationError as exc:
        logger.warning("title.failed", extra={"conversation_id": conversation_id, "error": exc.message})
        return {"title": conversation.title, "updated": False, "reason": "generation_failed"}

    generated = _clean_title(result.text)
    if not generated:
        return {"title": conversation.title, "updated": False, "reason": "generation_failed"}
    if titles_similar(conversation.title, generated):
        return {"title": conversation.title, "generatedTitle": generated, "updated": False, "reason": "similar_to_existing"}

    with get_db_session() as session:
        session.execute(
            update(conversations).where(conversations.c.conversation_id == conversation_id).values(title=generated)
        )
    return {"title": generated, "previousTitle": conversation.title, "updated": True}


def _brainstorm_context(state: Optional[Dict]) -> str:
    if not state:
        return ""
    parts = []
    if state.get("ideaSummary"):
        parts.append(f"\n\n[Idea summary]: {state['ideaSummary']}")
    if state.get("persona"):
        parts.append(f"\n[Target]: {state['persona']}")
    steps = state.get("planSteps") or []
    if steps:
        ordered = sorted(steps, key=lambda s: s.get("order", 0))
        lines = [f"{i + 1}. {s.get('title', '')}{' (done)' if s.get('completed') else ''}" for i, s in enumerate(ordered)]
        parts.append("\n[Plan steps]:\n" + "\n".join(lines))
    return "".join(parts)


def summarize_brainstorm(
    account: Account,
    conversation_id: str,
    sub_mode: str = "casual",
    state: Optional[Dict] = None,
    generator: Optional[TextGenerator] = None,
) -> Dict[str, object]:
    """Markdown summary of a brainstorm conversation (casual or planning format)."""
    if sub_mode not in {"casual", "planning"}:
        raise ValidationError("sub_mode must be casual or planning")
    conversation = get_conversation(conversation_id, account.user_id)
    if conversation.mode != "brainstorm":
        raise ValidationError("Only brainstorm conversations can be summarized")
    if not conversation.messages:
        raise ValidationError("Conversation has no messages")

    transcript = "\n\n".join(
        f"{'User' if m.role == 'user' else 'AI'}: {m.content}"
        for m in conversation.messages[-BRAINSTORM_MAX_MESSAGES:]
    )
    system = PLANNING_SUMMARY_PROMPT if sub_mode == "planning" else BRAINSTORM_SUMMARY_PROMPT
    gen = generator or get_text_generator()
    result = gen.generate(
        model=settings.CHAT_MODEL_STANDARD,
        system=system,
        messages=[{"role": "user", "content": f"Summarize the following brainstorm conversation:\n\n{transcript}{_brainstorm_context(state)}"}],
        max_tokens=BRAINSTORM_MAX_TOKENS,
        purpose="brainstorm_summary",
    )
    return {"summary": result.text, "tokensUsed": result.total_tokens}
