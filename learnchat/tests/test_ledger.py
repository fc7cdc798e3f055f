import threading
from datetime import datetime, timezone

import pytest
from sqlalchemy import func, select

from learnchat.core.database import credit_balances, get_db_session
from learnchat.core.errors import ValidationError
from learnchat.core.metrics import credits_debited_total
from learnchat.features.credits.ledger import (
    add_purchased_points,
    credit_usage,
    debit_usage,
    get_or_create_balance,
    month_period,
    remaining_points,
    resolve_balance_context,
    usage_breakdown,
)
from learnchat.models.credit import CreditBalance, DebitTarget


def _user_target(user_id="alice", monthly_points=300):
    return DebitTarget(owner_type="user", owner_id=user_id, monthly_points=monthly_points)


def test_month_period_covers_calendar_month(now):
    start, end = month_period(now)
    assert start == datetime(2026, 3, 1, tzinfo=timezone.utc)
    assert end == datetime(2026, 3, 31, 23, 59, 59, 999999, tzinfo=timezone.utc)


def test_remaining_points_never_negative(now):
    start, end = month_period(now)
    balance = CreditBalance(
        owner_type="user", owner_id="alice", monthly_used=350, balance=10, purchased_used=40,
        period_start=start, period_end=end,
    )
    remaining = remaining_points(balance, 300)
    assert remaining.plan_remaining == 0
    assert remaining.purchased_remaining == 0
    assert remaining_points(None, 30).plan_remaining == 30


def test_balance_context_for_individual_and_org(individual, organization):
    ctx = resolve_balance_context(individual)
    assert (ctx.plan, ctx.monthly_points, ctx.is_organization) == ("starter", 300, False)

    ctx = resolve_balance_context(organization["member"])
    assert (ctx.plan, ctx.monthly_points, ctx.is_organization) == ("business", 5000, True)


def test_get_or_create_balance_is_idempotent(individual, now):
    first = get_or_create_balance("user", individual.user_id, now=now)
    second = get_or_create_balance("user", individual.user_id, now=now)
    assert first == second
    with get_db_session() as session:
        count = session.execute(select(func.count()).select_from(credit_balances)).scalar_one()
    assert count == 1


def test_debit_fills_plan_grant_then_spills_into_purchased(individual, now):
    add_purchased_points("user", "alice", 10, now=now)
    debit_usage(_user_target(), 298, category="explanation", model_key="standard", now=now)
    debit_usage(_user_target(), 5, category="generation", model_key="advanced", now=now)

    balance = get_or_create_balance("user", "alice", now=now)
    assert balance.monthly_used == 300
    assert balance.purchased_used == 3
    remaining = remaining_points(balance, 300)
    assert remaining.plan_remaining == 0
    assert remaining.purchased_remaining == 7
    assert credits_debited_total.value({"category": "generation"}) == 5


def test_compensating_credit_returns_purchased_first(individual, now):
    add_purchased_points("user", "alice", 10, now=now)
    debit_usage(_user_target(), 303, category="explanation", now=now)
    credit_usage(_user_target(), 5, category="explanation", now=now)

    balance = get_or_create_balance("user", "alice", now=now)
    assert balance.purchased_used == 0
    assert balance.monthly_used == 298


def test_compensating_credit_floors_at_zero(individual, now):
    debit_usage(_user_target(), 2, category="explanation", now=now)
    credit_usage(_user_target(), 10, category="explanation", now=now)
    balance = get_or_create_balance("user", "alice", now=now)
    assert balance.monthly_used == 0
    assert balance.purchased_used == 0


def test_usage_breakdown_nets_refunds(individual, now):
    debit_usage(_user_target(), 5, category="generation", now=now)
    debit_usage(_user_target(), 1, category="explanation", now=now)
    debit_usage(_user_target(), 1, category="explanation", now=now)
    credit_usage(_user_target(), 5, category="generation", now=now)
    assert usage_breakdown(_user_target()) == {"generation": 0, "explanation": 2}


def test_debit_rejects_invalid_input(individual, now):
    with pytest.raises(ValidationError):
        debit_usage(_user_target(), 0, category="explanation", now=now)
    with pytest.raises(ValidationError):
        debit_usage(_user_target(), 1, category="", now=now)


def test_concurrent_debits_do_not_lose_updates(individual, now):
    get_or_create_balance("user", "alice", now=now)
    errors = []

    def worker():
        try:
            debit_usage(_user_target(), 1, category="explanation", now=now)
        except Exception as exc:  # surfaced through the assertion below
            errors.append(exc)

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    assert get_or_create_balance("user", "alice", now=now).monthly_used == 8
