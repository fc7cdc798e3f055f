"""
learnchat/features/credits/ledger.py

Credit ledger service.

Handles:
- Effective plan resolution per account (individual or organization)
- Lazy, idempotent creation of CreditBalance rows
- Remaining-point arithmetic (never negative)
- Atomic usage debits and compensating credits
- Per-category usage breakdown

Debits never read-then-write: every counter change is a single
`UPDATE ... SET col = col + :points` so concurrent turns from the same
account cannot lose updates.
"""

import calendar
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple

from sqlalchemy import and_, case, func, insert, literal, select, update

from learnchat.core.database import (
    credit_allocations,
    credit_balances,
    credit_usage_events,
    get_db_session,
    insert_if_absent,
)
from learnchat.core.errors import NotFoundError, ValidationError
from learnchat.core.metrics import credits_debited_total
from learnchat.features.plans.registry import get_plan
from learnchat.models.account import Account
from learnchat.models.credit import (
    BalanceContext,
    CreditBalance,
    DebitTarget,
    RemainingPoints,
)

logger = logging.getLogger(__name__)


def _normalize_now(now: Optional[Any]) -> datetime:
    if now is None:
        return datetime.now(timezone.utc)
    if getattr(now, "tzinfo", None) is None:
        return now.replace(tzinfo=timezone.utc)
    return now


def as_utc(value: datetime) -> datetime:
    """Storage backends without tz support hand back naive UTC datetimes."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def month_period(now: Optional[datetime] = None) -> Tuple[datetime, datetime]:
    """Calendar month containing `now`: 1st 00:00:00 to last day 23:59:59.999999 UTC."""
    moment = _normalize_now(now).astimezone(timezone.utc)
    last_day = calendar.monthrange(moment.year, moment.month)[1]
    start = datetime(moment.year, moment.month, 1, tzinfo=timezone.utc)
    end = datetime(moment.year, moment.month, last_day, 23, 59, 59, 999999, tzinfo=timezone.utc)
    return start, end


def resolve_balance_context(account: Account) -> BalanceContext:
    """
    Determine the effective plan for an account.

    Organization actors (owner/admin/member) use the organization plan,
    individuals their own plan. Anything missing falls back to `free`.
    Never raises.
    """
    if account.in_organization:
        plan = get_plan(account.organization_plan)
        is_organization = True
    else:
        plan = get_plan(account.individual_plan)
        is_organization = False
    return BalanceContext(
        plan=plan.plan_id,
        monthly_points=plan.monthly_points,
        is_organization=is_organization,
    )


def remaining_points(balance: Optional[CreditBalance], monthly_points: int) -> RemainingPoints:
    """Pure: remaining plan and purchased points, both floored at zero."""
    if balance is None:
        return RemainingPoints(plan_remaining=max(0, monthly_points), purchased_remaining=0)
    return RemainingPoints(
        plan_remaining=max(0, monthly_points - balance.monthly_used),
        purchased_remaining=max(0, balance.balance - balance.purchased_used),
    )


def _row_to_balance(row) -> CreditBalance:
    return CreditBalance(
        owner_type=row.owner_type,
        owner_id=row.owner_id,
        monthly_used=row.monthly_used,
        balance=row.balance,
        purchased_used=row.purchased_used,
        period_start=as_utc(row.period_start),
        period_end=as_utc(row.period_end),
    )


def _ensure_balance_row(session, owner_type: str, owner_id: str, now: datetime) -> None:
    period_start, period_end = month_period(now)
    insert_if_absent(
        session,
        credit_balances,
        {
            "owner_type": owner_type,
            "owner_id": owner_id,
            "monthly_used": 0,
            "balance": 0,
            "purchased_used": 0,
            "period_start": period_start,
            "period_end": period_end,
        },
        ["owner_type", "owner_id"],
    )


def get_or_create_balance(owner_type: str, owner_id: str, now: Optional[datetime] = None) -> CreditBalance:
    """Fetch the CreditBalance for an owner, creating an empty one on first use."""
    if owner_type not in {"user", "organization"}:
        raise ValidationError(f"Unknown balance owner type: {owner_type}")
    moment = _normalize_now(now)
    with get_db_session() as session:
        _ensure_balance_row(session, owner_type, owner_id, moment)
        row = session.execute(
            select(credit_balances).where(
                credit_balances.c.owner_type == owner_type,
                credit_balances.c.owner_id == owner_id,
            )
        ).one()
        return _row_to_balance(row)


def add_purchased_points(owner_type: str, owner_id: str, points: int, now: Optional[datetime] = None) -> CreditBalance:
    """Record purchased points (checkout confirmation hook)."""
    if points <= 0:
        raise ValidationError("Purchased points must be positive")
    moment = _normalize_now(now)
    with get_db_session() as session:
        _ensure_balance_row(session, owner_type, owner_id, moment)
        session.execute(
            update(credit_balances)
            .where(
                credit_balances.c.owner_type == owner_type,
                credit_balances.c.owner_id == owner_id,
            )
            .values(balance=credit_balances.c.balance + points)
        )
    logger.info("credits.purchased", extra={"owner_type": owner_type, "owner_id": owner_id, "points": points})
    return get_or_create_balance(owner_type, owner_id, now=moment)


def _record_event(session, target: DebitTarget, points: int, category: str, model_key: Optional[str], occurred_at: datetime) -> None:
    session.execute(
        insert(credit_usage_events).values(
            account_type=target.account_type,
            account_id=target.account_id,
            category=category,
            model_key=model_key,
            points=points,
            occurred_at=occurred_at,
        )
    )


def debit_usage(
    target: DebitTarget,
    points: int,
    category: str,
    model_key: Optional[str] = None,
    now: Optional[datetime] = None,
) -> None:
    """
    Debit `points` from the pool governing `target`, tagged with `category`.

    Allocation-governed targets increment the allocation's used_points.
    Balance targets fill monthly_used up to the plan grant and spill the
    rest into purchased_used; the split is computed inside the UPDATE from
    the row's pre-update values, so it is a single atomic statement.

    There is no rollback after a failed generation; callers that abort
    after debiting issue credit_usage() explicitly.
    """
    if points <= 0:
        raise ValidationError("Debit points must be positive")
    if not category:
        raise ValidationError("Debit category is required")
    moment = _normalize_now(now)

    with get_db_session() as session:
        if target.allocation_id is not None:
            result = session.execute(
                update(credit_allocations)
                .where(credit_allocations.c.id == target.allocation_id)
                .values(used_points=credit_allocations.c.used_points + points)
            )
            if result.rowcount == 0:
                raise NotFoundError(f"Allocation {target.allocation_id} not found")
        else:
            _ensure_balance_row(session, target.owner_type, target.owner_id, moment)
            monthly_used = credit_balances.c.monthly_used
            plan_room = case(
                (monthly_used < target.monthly_points, literal(target.monthly_points) - monthly_used),
                else_=0,
            )
            plan_part = case((plan_room > points, literal(points)), else_=plan_room)
            session.execute(
                update(credit_balances)
                .where(
                    credit_balances.c.owner_type == target.owner_type,
                    credit_balances.c.owner_id == target.owner_id,
                )
                .values(
                    monthly_used=monthly_used + plan_part,
                    purchased_used=credit_balances.c.purchased_used + (literal(points) - plan_part),
                )
            )
        _record_event(session, target, points, category, model_key, moment)

    credits_debited_total.inc(labels={"category": category}, amount=points)
    logger.info(
        "credits.debited",
        extra={"account_type": target.account_type, "account_id": target.account_id, "points": points, "category": category},
    )


def credit_usage(
    target: DebitTarget,
    points: int,
    category: str,
    model_key: Optional[str] = None,
    now: Optional[datetime] = None,
) -> None:
    """
    Compensating credit for an earlier debit.

    Gives points back to purchased_used first, then monthly_used (or to the
    allocation's used_points), never taking a counter below zero.
    """
    if points <= 0:
        raise ValidationError("Credit points must be positive")
    moment = _normalize_now(now)

    with get_db_session() as session:
        if target.allocation_id is not None:
            used = credit_allocations.c.used_points
            result = session.execute(
                update(credit_allocations)
                .where(credit_allocations.c.id == target.allocation_id)
                .values(used_points=case((used > points, used - points), else_=0))
            )
            if result.rowcount == 0:
                raise NotFoundError(f"Allocation {target.allocation_id} not found")
        else:
            purchased_used = credit_balances.c.purchased_used
            monthly_used = credit_balances.c.monthly_used
            purchased_part = case((purchased_used > points, literal(points)), else_=purchased_used)
            monthly_part = literal(points) - purchased_part
            result = session.execute(
                update(credit_balances)
                .where(
                    credit_balances.c.owner_type == target.owner_type,
                    credit_balances.c.owner_id == target.owner_id,
                )
                .values(
                    purchased_used=purchased_used - purchased_part,
                    monthly_used=case((monthly_used > monthly_part, monthly_used - monthly_part), else_=0),
                )
            )
            if result.rowcount == 0:
                raise NotFoundError(f"No credit balance for {target.owner_type} {target.owner_id}")
        _record_event(session, target, -points, category, model_key, moment)

    logger.info(
        "credits.refunded",
        extra={"account_type": target.account_type, "account_id": target.account_id, "points": points, "category": category},
    )


def usage_breakdown(target: DebitTarget, since: Optional[datetime] = None) -> Dict[str, int]:
    """Net points per category for `target` (debits minus compensating credits)."""
    with get_db_session() as session:
        query = (
            select(credit_usage_events.c.category, func.sum(credit_usage_events.c.points).label("points"))
            .where(
                and_(
                    credit_usage_events.c.account_type == target.account_type,
                    credit_usage_events.c.account_id == target.account_id,
                )
            )
            .group_by(credit_usage_events.c.category)
        )
        if since is not None:
            query = query.where(credit_usage_events.c.occurred_at >= _normalize_now(since))
        rows = session.execute(query).all()
    return {row.category: int(row.points or 0) for row in rows}
