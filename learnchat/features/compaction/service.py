"""
learnchat/features/compaction/service.py

History compactor.

Long conversations are sent to the provider as a synthetic
[user: summary notice, assistant: acknowledgement] pair followed by the
most recent messages. Three outcomes per turn:

- no_compact: below the size thresholds, send everything
- reuse_existing: a stored summary is still fresh, no provider call
- regenerate: summarize the older messages with the auxiliary model

The synthetic pair never becomes part of the stored conversation.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional, Sequence

from learnchat.core.config import settings
from learnchat.core.metrics import compaction_decisions_total
from learnchat.features.compaction.prompts import (
    MODE_INSTRUCTIONS,
    PREVIOUS_SUMMARY_SECTION,
    SUMMARY_ACKNOWLEDGEMENT,
    SUMMARY_NOTICE,
    SUMMARY_PROMPT,
    SUMMARY_SYSTEM_PROMPT,
)
from learnchat.features.llm.client import GenerationError, TextGenerator, get_text_generator
from learnchat.features.usage.service import estimate_tokens
from learnchat.models.conversation import CompactSummary, Message

logger = logging.getLogger(__name__)

MIN_MESSAGES_FOR_COMPACT = 10
TOKEN_THRESHOLD = 40_000
RECENT_MESSAGES_TO_KEEP = 6
SUMMARY_MAX_TOKENS = 512


class CompactDecision(str, Enum):
    NO_COMPACT = "no_compact"
    REUSE_EXISTING = "reuse_existing"
    REGENERATE = "regenerate"


class SummaryGenerationError(GenerationError):
    """Summarization failed; the caller sends the full history instead."""


@dataclass(frozen=True)
class CompactionResult:
    messages_for_api: List[Dict[str, str]]
    was_compacted: bool
    decision: CompactDecision
    new_summary: Optional[CompactSummary] = None


def get_compact_decision(messages: Sequence[Message], existing_summary: Optional[CompactSummary] = None) -> CompactDecision:
    if len(messages) < MIN_MESSAGES_FOR_COMPACT:
        return CompactDecision.NO_COMPACT

    # System prompt is excluded from the threshold
    message_tokens = sum(estimate_tokens(m.content) for m in messages)
    if message_tokens < TOKEN_THRESHOLD:
        return CompactDecision.NO_COMPACT

    if existing_summary is not None:
        messages_since_summary = len(messages) - (existing_summary.last_summarized_message_index + 1)
        if messages_since_summary <= RECENT_MESSAGES_TO_KEEP * 2:
            return CompactDecision.REUSE_EXISTING

    return CompactDecision.REGENERATE


def compute_keep_count(messages: Sequence[Message]) -> int:
    """
    Number of trailing messages to send verbatim.

    The kept slice must begin with a user message: it follows the synthetic
    assistant acknowledgement and roles must alternate.
    """
    keep_count = min(RECENT_MESSAGES_TO_KEEP, len(messages) - 1)
    if keep_count <= 0:
        return 0

    def starts_with_assistant(count: int) -> bool:
        return messages[len(messages) - count].role == "assistant"

    while keep_count < len(messages) - 1 and starts_with_assistant(keep_count):
        keep_count += 1
    # No room to grow on short lists: fall back to the nearest user turn
    while keep_count > 0 and starts_with_assistant(keep_count):
        keep_count -= 1
    return keep_count


def _reuse_split_index(messages: Sequence[Message], summary: CompactSummary) -> int:
    """
    First message not covered by `summary`, moved back onto a user turn.

    Stepping back re-sends an already summarized user message rather than
    dropping an unsummarized one.
    """
    split = summary.last_summarized_message_index + 1
    if split <= 0 or split >= len(messages):
        return len(messages) - compute_keep_count(messages)
    while split > 0 and messages[split].role == "assistant":
        split -= 1
    if messages[split].role != "user":
        return len(messages) - compute_keep_count(messages)
    return split


def build_compacted_messages(summary: str, recent_messages: Sequence[Message]) -> List[Dict[str, str]]:
    return [
        {"role": "user", "content": SUMMARY_NOTICE.format(summary=summary)},
        {"role": "assistant", "content": SUMMARY_ACKNOWLEDGEMENT},
        *[m.for_provider() for m in recent_messages],
    ]


def build_summarization_prompt(messages: Sequence[Message], mode: str, previous_summary: Optional[str] = None) -> str:
    lines = []
    for msg in messages:
        speaker = "User" if msg.role == "user" else "Assistant"
        attachment_note = ""
        if msg.attachments:
            names = ", ".join(f"{a.get('name', 'file')}({a.get('type', 'unknown')})" for a in msg.attachments)
            attachment_note = f" [attachments: {names}]"
        lines.append(f"{speaker}:{attachment_note} {msg.content}")

    previous_section = PREVIOUS_SUMMARY_SECTION.format(previous=previous_summary) if previous_summary else ""
    return SUMMARY_PROMPT.format(
        mode_instruction=MODE_INSTRUCTIONS.get(mode, MODE_INSTRUCTIONS["explanation"]),
        previous_summary_section=previous_section,
        conversation="\n\n".join(lines),
    )


def generate_summary(
    messages: Sequence[Message],
    mode: str,
    previous_summary: Optional[str] = None,
    generator: Optional[TextGenerator] = None,
) -> str:
    """Summarize `messages` with the auxiliary model. Raises SummaryGenerationError on failure."""
    gen = generator or get_text_generator()
    prompt = build_summarization_prompt(messages, mode, previous_summary)
    try:
        result = gen.generate(
            model=settings.AUX_MODEL,
            system=SUMMARY_SYSTEM_PROMPT,
            messages=[{"role": "user", "content": prompt}],
            max_tokens=SUMMARY_MAX_TOKENS,
            purpose="compaction",
        )
    except GenerationError as exc:
        raise SummaryGenerationError(exc.message) from exc
    return result.text.strip()


def compact_conversation(
    messages: Sequence[Message],
    mode: str,
    existing_summary: Optional[CompactSummary] = None,
    generator: Optional[TextGenerator] = None,
    now: Optional[datetime] = None,
) -> CompactionResult:
    """
    Produce the provider-bound message list for `messages`.

    Only the regenerate path yields `new_summary`, which the caller
    persists. Raises SummaryGenerationError when regeneration fails.
    """
    decision = get_compact_decision(messages, existing_summary)
    compaction_decisions_total.inc(labels={"decision": decision.value})

    if decision == CompactDecision.NO_COMPACT:
        return CompactionResult(
            messages_for_api=[m.for_provider() for m in messages],
            was_compacted=False,
            decision=decision,
        )

    if decision == CompactDecision.REUSE_EXISTING:
        split_index = _reuse_split_index(messages, existing_summary)
        return CompactionResult(
            messages_for_api=build_compacted_messages(existing_summary.content, messages[split_index:]),
            was_compacted=True,
            decision=decision,
        )

    keep_count = compute_keep_count(messages)
    split_index = len(messages) - keep_count
    summary_text = generate_summary(
        messages[:split_index],
        mode,
        previous_summary=existing_summary.content if existing_summary else None,
        generator=generator,
    )
    new_summary = CompactSummary(
        content=summary_text,
        generated_at=now or datetime.now(timezone.utc),
        last_summarized_message_index=split_index - 1,
        summarized_message_count=split_index,
        summary_tokens=estimate_tokens(summary_text),
    )
    logger.info(
        "compaction.regenerated",
        extra={"summarized": split_index, "kept": keep_count, "summary_tokens": new_summary.summary_tokens},
    )
    return CompactionResult(
        messages_for_api=build_compacted_messages(summary_text, messages[split_index:]),
        was_compacted=True,
        decision=decision,
        new_summary=new_summary,
    )
