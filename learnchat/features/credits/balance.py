"""
learnchat/features/credits/balance.py

Balance summary: ties plan resolution, the ledger, the allocation resolver
and the admission decision together for one account.

Policy for organization actors:
- members are always allocation-governed (auto-created or ephemeral zero)
- admins/owners use their allocation when one exists for the period,
  otherwise the organization's own CreditBalance (admin-pool fallback)
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from learnchat.features.credits.admission import ConversationCheck, PlanContext, check_can_start_conversation
from learnchat.features.credits.allocations import resolve_allocation
from learnchat.features.credits.ledger import (
    _normalize_now,
    get_or_create_balance,
    remaining_points,
    resolve_balance_context,
)
from learnchat.features.plans.registry import get_plan
from learnchat.models.account import Account
from learnchat.models.credit import BalanceContext, CreditAllocation, CreditBalance, DebitTarget, RemainingPoints


@dataclass(frozen=True)
class BalanceSummary:
    account: Account
    context: BalanceContext
    balance: CreditBalance
    remaining: RemainingPoints
    allocation: Optional[CreditAllocation]
    check: ConversationCheck
    target: DebitTarget

    def to_response(self) -> dict:
        """camelCase payload for the UI."""
        plan = get_plan(self.context.plan)
        allocated = None
        if self.allocation is not None:
            allocated = {
                "total": self.allocation.allocated_points,
                "used": self.allocation.used_points,
                "remaining": self.allocation.remaining,
            }
        period_start = self.allocation.period_start if self.allocation is not None else self.balance.period_start
        period_end = self.allocation.period_end if self.allocation is not None else self.balance.period_end
        return {
            "plan": self.context.plan,
            "isOrganization": self.context.is_organization,
            "isOrganizationMember": self.account.is_member,
            "points": {
                "monthly": {
                    "total": plan.monthly_points,
                    "used": self.balance.monthly_used,
                    "remaining": self.remaining.plan_remaining,
                },
                "purchased": {
                    "balance": self.balance.balance,
                    "used": self.balance.purchased_used,
                    "remaining": self.remaining.purchased_remaining,
                },
                "allocated": allocated,
                "totalRemaining": self.check.total_points_remaining,
            },
            "remainingConversations": dict(self.check.remaining_conversations),
            "availableModels": list(self.check.available_models),
            "canStartConversation": self.check.allowed,
            "lowBalanceWarning": self.check.low_balance_warning,
            "outOfCreditsActions": list(self.check.out_of_credits_actions),
            "canPurchaseCredits": self.account.can_purchase_credits,
            "period": {
                "start": period_start.isoformat(),
                "end": period_end.isoformat(),
            },
        }


def get_balance_summary(account: Account, now: Optional[datetime] = None) -> BalanceSummary:
    moment = _normalize_now(now)
    context = resolve_balance_context(account)

    if account.in_organization:
        owner_type, owner_id = "organization", account.organization_id
        allocation = resolve_allocation(
            account.organization_id,
            account.user_id,
            moment,
            is_admin=account.is_org_admin,
        )
    else:
        owner_type, owner_id = "user", account.user_id
        allocation = None

    balance = get_or_create_balance(owner_type, owner_id, now=moment)
    remaining = remaining_points(balance, context.monthly_points)

    plan_context = PlanContext(
        plan=context.plan,
        is_organization=context.is_organization,
        plan_points_remaining=remaining.plan_remaining,
        purchased_points_remaining=remaining.purchased_remaining,
        can_purchase_credits=account.can_purchase_credits,
        allocated_points_remaining=allocation.remaining if allocation is not None else None,
    )
    check = check_can_start_conversation(plan_context)

    target = DebitTarget(
        owner_type=owner_type,
        owner_id=owner_id,
        monthly_points=context.monthly_points,
        allocation_id=allocation.id if allocation is not None else None,
    )
    return BalanceSummary(
        account=account,
        context=context,
        balance=balance,
        remaining=remaining,
        allocation=allocation,
        check=check,
        target=target,
    )
