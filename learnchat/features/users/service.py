"""
Account domain service.
- get_account(user_id)
- create_account(...) / create_organization(...) for provisioning and tests
- update_member_role(actor, member_id, role)
"""

import logging
from typing import Optional
from sqlalchemy import insert, select, update

from learnchat.core.database import accounts, get_db_session, organizations
from learnchat.core.errors import NotFoundError, PermissionError, ValidationError
from learnchat.models.account import Account, Organization

logger = logging.getLogger(__name__)

ASSIGNABLE_ROLES = {"admin", "member"}


def _account_query():
    return select(
        accounts.c.user_id,
        accounts.c.display_name,
        accounts.c.user_type,
        accounts.c.organization_id,
        accounts.c.individual_plan,
        organizations.c.plan.label("organization_plan"),
    ).select_from(accounts.outerjoin(organizations, accounts.c.organization_id == organizations.c.organization_id))


def _row_to_account(row) -> Account:
    return Account(
        user_id=row.user_id,
        user_type=row.user_type,
        organization_id=row.organization_id,
        individual_plan=row.individual_plan,
        organization_plan=row.organization_plan,
        display_name=row.display_name,
    )


def get_account(user_id: str) -> Optional[Account]:
    with get_db_session() as session:
        row = session.execute(_account_query().where(accounts.c.user_id == user_id)).first()
        if not row:
            return None
        return _row_to_account(row)


def create_organization(organization_id: str, name: str, plan: str = "business") -> Organization:
    with get_db_session() as session:
        session.execute(insert(organizations).values(organization_id=organization_id, name=name, plan=plan))
    return Organization(organization_id=organization_id, name=name, plan=plan)


def create_account(
    user_id: str,
    user_type: str = "individual",
    organization_id: Optional[str] = None,
    individual_plan: Optional[str] = None,
    display_name: Optional[str] = None,
) -> Account:
    if user_type != "individual" and not organization_id:
        raise ValidationError(f"{user_type} accounts need an organization")
    with get_db_session() as session:
        session.execute(
            insert(accounts).values(
                user_id=user_id,
                user_type=user_type,
                organization_id=organization_id,
                individual_plan=individual_plan,
                display_name=display_name,
            )
        )
    account = get_account(user_id)
    return account


def update_member_role(actor: Account, member_id: str, role: str) -> Account:
    """
    Change an organization member's role.

    Only the organization owner may do this, never on themselves, and the
    target role is admin or member (ownership is not transferable here).
    """
    if role not in ASSIGNABLE_ROLES:
        raise ValidationError(f"Role must be one of: {', '.join(sorted(ASSIGNABLE_ROLES))}")
    if actor.user_type != "owner" or not actor.organization_id:
        raise PermissionError("Only the organization owner can change roles")
    if actor.user_id == member_id:
        raise ValidationError("You cannot change your own role")

    with get_db_session() as session:
        target = session.execute(
            select(accounts.c.user_id, accounts.c.user_type).where(
                accounts.c.user_id == member_id,
                accounts.c.organization_id == actor.organization_id,
            )
        ).first()
        if target is None:
            raise NotFoundError(f"Member {member_id} not found in organization")
        if target.user_type == "owner":
            raise PermissionError("The owner's role cannot be changed")
        session.execute(update(accounts).where(accounts.c.user_id == member_id).values(user_type=role))

    logger.info(
        "member.role_changed",
        extra={"organization_id": actor.organization_id, "member_id": member_id, "role": role, "actor": actor.user_id},
    )
    return get_account(member_id)
