"""
learnchat/features/credits/allocations.py

Allocation resolver.

Handles:
- Current-period allocation lookup per (organization, member)
- Auto-provisioning from the member's access-key limit (members only)
- Ephemeral zero allocations for members without a declared limit
- Admin override and listing for organization administrators

Creation is insert-if-absent on (organization_id, user_id, period_start,
period_end); a request that loses the race re-reads the winner's row.
"""

import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy import select, update

from learnchat.core.database import (
    access_keys,
    accounts,
    credit_allocations,
    get_db_session,
    insert_if_absent,
)
from learnchat.core.errors import NotFoundError, PermissionError, ValidationError
from learnchat.features.credits.ledger import _normalize_now, as_utc, month_period
from learnchat.models.account import Account
from learnchat.models.credit import CreditAllocation

logger = logging.getLogger(__name__)


def _row_to_allocation(row) -> CreditAllocation:
    return CreditAllocation(
        id=row.id,
        organization_id=row.organization_id,
        user_id=row.user_id,
        allocated_points=row.allocated_points,
        used_points=row.used_points,
        period_start=as_utc(row.period_start),
        period_end=as_utc(row.period_end),
        note=row.note,
    )


def _find_current(session, organization_id: str, user_id: str, now: datetime):
    return session.execute(
        select(credit_allocations)
        .where(
            credit_allocations.c.organization_id == organization_id,
            credit_allocations.c.user_id == user_id,
            credit_allocations.c.period_start <= now,
            credit_allocations.c.period_end >= now,
        )
        .order_by(credit_allocations.c.period_start.desc())
        .limit(1)
    ).first()


def _find_access_key(session, user_id: str):
    return session.execute(
        select(access_keys)
        .where(access_keys.c.user_id == user_id, access_keys.c.is_active.is_(True))
        .order_by(access_keys.c.created_at.desc())
        .limit(1)
    ).first()


def resolve_allocation(
    organization_id: str,
    user_id: str,
    now: Optional[datetime] = None,
    *,
    is_admin: bool = False,
) -> Optional[CreditAllocation]:
    """
    Resolve the allocation governing a member for the period containing `now`.

    Members:
    - existing allocation for the period is returned as-is
    - otherwise, when the member's access key declares a limit, an
      allocation for the current calendar month is created seeded with it
    - otherwise an ephemeral zero allocation is returned (not persisted)

    Admins/owners get their allocation when one exists and None otherwise;
    None means "use the organization pool". Admins never auto-create.
    """
    moment = _normalize_now(now)
    with get_db_session() as session:
        row = _find_current(session, organization_id, user_id, moment)
        if row is not None:
            return _row_to_allocation(row)

        if is_admin:
            return None

        period_start, period_end = month_period(moment)
        key = _find_access_key(session, user_id)
        if key is None or not key.daily_token_limit:
            return CreditAllocation(
                organization_id=organization_id,
                user_id=user_id,
                allocated_points=0,
                used_points=0,
                period_start=period_start,
                period_end=period_end,
            )

        created = insert_if_absent(
            session,
            credit_allocations,
            {
                "organization_id": organization_id,
                "user_id": user_id,
                "allocated_points": key.daily_token_limit,
                "used_points": 0,
                "period_start": period_start,
                "period_end": period_end,
                "note": f"access key {key.key_code} auto-allocation",
            },
            ["organization_id", "user_id", "period_start", "period_end"],
        )
        row = _find_current(session, organization_id, user_id, moment)

    if created:
        logger.info(
            "allocation.auto_created",
            extra={"organization_id": organization_id, "user_id": user_id, "allocated_points": row.allocated_points},
        )
    return _row_to_allocation(row)


def _require_org_admin(actor: Account) -> str:
    if not actor.is_org_admin:
        raise PermissionError("Organization admin role required")
    return actor.organization_id


def _require_member_of(session, organization_id: str, member_id: str):
    member = session.execute(
        select(accounts).where(accounts.c.user_id == member_id, accounts.c.organization_id == organization_id)
    ).first()
    if member is None:
        raise NotFoundError(f"Member {member_id} not found in organization")
    return member


def set_allocation(
    actor: Account,
    member_id: str,
    allocated_points: int,
    used_points: Optional[int] = None,
    note: Optional[str] = None,
    now: Optional[datetime] = None,
) -> CreditAllocation:
    """
    Admin override: set the member's allocation for the current period.

    Creates the allocation when absent. This is the only path allowed to
    lower used_points.
    """
    organization_id = _require_org_admin(actor)
    if allocated_points < 0:
        raise ValidationError("allocated_points must be >= 0")
    if used_points is not None and used_points < 0:
        raise ValidationError("used_points must be >= 0")

    moment = _normalize_now(now)
    period_start, period_end = month_period(moment)
    with get_db_session() as session:
        _require_member_of(session, organization_id, member_id)
        row = _find_current(session, organization_id, member_id, moment)
        if row is None:
            insert_if_absent(
                session,
                credit_allocations,
                {
                    "organization_id": organization_id,
                    "user_id": member_id,
                    "allocated_points": allocated_points,
                    "used_points": used_points or 0,
                    "period_start": period_start,
                    "period_end": period_end,
                    "note": note or f"set by {actor.user_id}",
                },
                ["organization_id", "user_id", "period_start", "period_end"],
            )
            row = _find_current(session, organization_id, member_id, moment)

        values = {"allocated_points": allocated_points}
        if used_points is not None:
            values["used_points"] = used_points
        if note is not None:
            values["note"] = note
        session.execute(update(credit_allocations).where(credit_allocations.c.id == row.id).values(**values))
        row = session.execute(select(credit_allocations).where(credit_allocations.c.id == row.id)).one()

    logger.info(
        "allocation.admin_set",
        extra={"organization_id": organization_id, "user_id": member_id, "actor": actor.user_id, "allocated_points": allocated_points},
    )
    return _row_to_allocation(row)


def list_allocations(actor: Account, now: Optional[datetime] = None) -> List[CreditAllocation]:
    """Current-period allocations of the actor's organization."""
    organization_id = _require_org_admin(actor)
    moment = _normalize_now(now)
    with get_db_session() as session:
        rows = session.execute(
            select(credit_allocations)
            .where(
                credit_allocations.c.organization_id == organization_id,
                credit_allocations.c.period_start <= moment,
                credit_allocations.c.period_end >= moment,
            )
            .order_by(credit_allocations.c.user_id)
        ).all()
    return [_row_to_allocation(row) for row in rows]
