"""
learnchat/features/usage/service.py

Daily token meter.

Handles:
- Token estimation (1 token ~ 4 characters)
- Per-user daily usage with a per-category breakdown
- Daily token limit resolution and checks
"""

import math
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Dict, Iterable, Optional

from sqlalchemy import select, update

from learnchat.core.database import access_keys, get_db_session, insert_if_absent, token_usage
from learnchat.core.errors import TokenLimitError, ValidationError
from learnchat.features.plans.registry import get_plan
from learnchat.models.account import Account
from learnchat.models.conversation import Message

# Reserved tokens for the model's response
RESPONSE_TOKEN_RESERVE = 4096

# Access keys declare their daily limit in thousands of tokens
ACCESS_KEY_TOKEN_UNIT = 1000


def estimate_tokens(content: str) -> int:
    return math.ceil(len(content) / 4)


def estimate_conversation_tokens(messages: Iterable[Message], system_prompt: str = "") -> int:
    return sum(estimate_tokens(m.content) for m in messages) + estimate_tokens(system_prompt)


@dataclass(frozen=True)
class TokenLimitCheck:
    allowed: bool
    current_usage: int
    daily_limit: int
    remaining: int


def _today(now: Optional[datetime]) -> date:
    moment = now or datetime.now(timezone.utc)
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).date()


def record_token_usage(user_id: str, tokens: int, category: str = "learning", now: Optional[datetime] = None) -> Dict[str, int]:
    """
    Add `tokens` to today's meter for `user_id` under `category`.

    Returns the updated breakdown.
    """
    if tokens < 0:
        raise ValidationError("tokens must be >= 0")
    usage_date = _today(now)
    with get_db_session() as session:
        insert_if_absent(
            session,
            token_usage,
            {"user_id": user_id, "usage_date": usage_date, "tokens_used": 0, "breakdown": {}},
            ["user_id", "usage_date"],
        )
        row = session.execute(
            select(token_usage)
            .where(token_usage.c.user_id == user_id, token_usage.c.usage_date == usage_date)
            .with_for_update()
        ).one()
        breakdown = dict(row.breakdown or {})
        breakdown[category] = breakdown.get(category, 0) + tokens
        session.execute(
            update(token_usage)
            .where(token_usage.c.id == row.id)
            .values(tokens_used=token_usage.c.tokens_used + tokens, breakdown=breakdown)
        )
    return breakdown


def get_token_usage(user_id: str, now: Optional[datetime] = None) -> Dict[str, object]:
    usage_date = _today(now)
    with get_db_session() as session:
        row = session.execute(
            select(token_usage).where(token_usage.c.user_id == user_id, token_usage.c.usage_date == usage_date)
        ).first()
    if row is None:
        return {"date": usage_date.isoformat(), "tokensUsed": 0, "breakdown": {}}
    return {"date": usage_date.isoformat(), "tokensUsed": row.tokens_used, "breakdown": dict(row.breakdown or {})}


def daily_token_limit(account: Account) -> int:
    """Members use their access key limit; everyone else their plan's."""
    if account.is_member:
        with get_db_session() as session:
            key = session.execute(
                select(access_keys.c.daily_token_limit)
                .where(access_keys.c.user_id == account.user_id, access_keys.c.is_active.is_(True))
                .order_by(access_keys.c.created_at.desc())
                .limit(1)
            ).first()
        if key is not None and key.daily_token_limit:
            return key.daily_token_limit * ACCESS_KEY_TOKEN_UNIT
    plan_id = account.organization_plan if account.in_organization else account.individual_plan
    return get_plan(plan_id).daily_token_limit or get_plan(None).daily_token_limit


def check_token_limit(account: Account, required_tokens: int = 0, now: Optional[datetime] = None) -> TokenLimitCheck:
    limit = daily_token_limit(account)
    current = int(get_token_usage(account.user_id, now=now)["tokensUsed"])
    remaining = max(0, limit - current)
    return TokenLimitCheck(
        allowed=remaining >= required_tokens,
        current_usage=current,
        daily_limit=limit,
        remaining=remaining,
    )


def enforce_token_limit(account: Account, estimated_tokens: int, now: Optional[datetime] = None) -> TokenLimitCheck:
    """Raise TOKEN_LIMIT_EXCEEDED unless the estimate plus the response reserve fits."""
    check = check_token_limit(account, estimated_tokens + RESPONSE_TOKEN_RESERVE, now=now)
    if not check.allowed:
        raise TokenLimitError(
            "Daily token limit exceeded",
            details={"dailyLimit": check.daily_limit, "currentUsage": check.current_usage, "remaining": check.remaining},
        )
    return check
