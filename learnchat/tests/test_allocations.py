import threading
from datetime import datetime, timezone

import pytest
from sqlalchemy import func, select

from learnchat.core.database import credit_allocations, get_db_session
from learnchat.core.errors import NotFoundError, PermissionError, ValidationError
from learnchat.features.credits.allocations import list_allocations, resolve_allocation, set_allocation
from learnchat.features.credits.ledger import debit_usage
from learnchat.models.credit import DebitTarget


def _allocation_count():
    with get_db_session() as session:
        return session.execute(select(func.count()).select_from(credit_allocations)).scalar_one()


def test_member_allocation_is_seeded_from_access_key(organization, now):
    allocation = resolve_allocation("org-1", "member-1", now)
    assert allocation.allocated_points == 100
    assert allocation.used_points == 0
    assert not allocation.is_ephemeral
    assert allocation.note == "access key KEY-MEMBER-1 auto-allocation"
    assert allocation.period_start == datetime(2026, 3, 1, tzinfo=timezone.utc)


def test_resolve_twice_creates_one_row(organization, now):
    first = resolve_allocation("org-1", "member-1", now)
    second = resolve_allocation("org-1", "member-1", now)
    assert first.id == second.id
    assert _allocation_count() == 1


def test_concurrent_resolution_creates_one_row(organization, now):
    results, errors = [], []

    def worker():
        try:
            results.append(resolve_allocation("org-1", "member-1", now))
        except Exception as exc:  # surfaced through the assertion below
            errors.append(exc)

    threads = [threading.Thread(target=worker) for _ in range(6)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    assert len({a.id for a in results}) == 1
    assert _allocation_count() == 1


def test_new_period_gets_a_fresh_allocation(organization, now):
    march = resolve_allocation("org-1", "member-1", now)
    april = resolve_allocation("org-1", "member-1", datetime(2026, 4, 2, tzinfo=timezone.utc))
    assert march.id != april.id
    assert _allocation_count() == 2


def test_member_without_key_gets_ephemeral_zero(organization, now):
    allocation = resolve_allocation("org-1", "member-2", now)
    assert allocation.is_ephemeral
    assert allocation.remaining == 0
    assert _allocation_count() == 0


def test_admin_without_allocation_uses_pool(organization, now):
    assert resolve_allocation("org-1", "admin-1", now, is_admin=True) is None
    assert _allocation_count() == 0


def test_admin_with_allocation_is_governed_by_it(organization, now):
    set_allocation(organization["owner"], "admin-1", 40, now=now)
    allocation = resolve_allocation("org-1", "admin-1", now, is_admin=True)
    assert allocation.allocated_points == 40


def test_debit_against_allocation_only_touches_allocation(organization, now):
    allocation = resolve_allocation("org-1", "member-1", now)
    target = DebitTarget(owner_type="organization", owner_id="org-1", monthly_points=5000, allocation_id=allocation.id)
    debit_usage(target, 5, category="generation", now=now)
    assert resolve_allocation("org-1", "member-1", now).used_points == 5


def test_admin_override_can_lower_used_points(organization, now):
    allocation = resolve_allocation("org-1", "member-1", now)
    target = DebitTarget(owner_type="organization", owner_id="org-1", monthly_points=5000, allocation_id=allocation.id)
    debit_usage(target, 50, category="explanation", now=now)

    updated = set_allocation(organization["admin"], "member-1", 200, used_points=0, note="top-up", now=now)
    assert updated.id == allocation.id
    assert updated.allocated_points == 200
    assert updated.used_points == 0
    assert updated.note == "top-up"


def test_set_allocation_guards(organization, now):
    with pytest.raises(PermissionError):
        set_allocation(organization["member"], "member-2", 10, now=now)
    with pytest.raises(NotFoundError):
        set_allocation(organization["owner"], "stranger", 10, now=now)
    with pytest.raises(ValidationError):
        set_allocation(organization["owner"], "member-2", -1, now=now)


def test_list_allocations_for_current_period(organization, now):
    resolve_allocation("org-1", "member-1", now)
    set_allocation(organization["owner"], "member-2", 25, now=now)
    items = list_allocations(organization["admin"], now=now)
    assert [(a.user_id, a.allocated_points) for a in items] == [("member-1", 100), ("member-2", 25)]
    with pytest.raises(PermissionError):
        list_allocations(organization["member"], now=now)
