"""
learnchat/features/credits/admission.py

Admission controller: may this account start (or continue) a conversation?

Pure decision over an explicit PlanContext. "Not allowed" is a normal
outcome carrying remediation actions, never an exception.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional

from learnchat.core.config import settings
from learnchat.core.metrics import admission_denied_total
from learnchat.features.plans.registry import get_plan, models_by_rate


class OutOfCreditsAction(str, Enum):
    PURCHASE = "purchase"
    CONTACT_ADMIN = "contact-admin"
    UPGRADE = "upgrade"


@dataclass(frozen=True)
class PlanContext:
    """
    Everything the admission decision needs.

    `allocated_points_remaining` is None unless the account is governed by
    an allocation; when set, plan and purchased pools are not usable.
    """
    plan: str
    is_organization: bool
    plan_points_remaining: int
    purchased_points_remaining: int
    can_purchase_credits: bool
    allocated_points_remaining: Optional[int] = None

    @property
    def is_allocation_governed(self) -> bool:
        return self.allocated_points_remaining is not None


@dataclass(frozen=True)
class ConversationCheck:
    allowed: bool
    total_points_remaining: int
    available_models: List[str]
    low_balance_warning: bool
    out_of_credits_actions: List[str]
    remaining_conversations: Dict[str, int] = field(default_factory=dict)


def _actions_for(context: PlanContext) -> List[str]:
    if context.can_purchase_credits:
        return [OutOfCreditsAction.PURCHASE.value, OutOfCreditsAction.UPGRADE.value]
    if context.is_allocation_governed:
        return [OutOfCreditsAction.CONTACT_ADMIN.value]
    return [OutOfCreditsAction.UPGRADE.value]


def check_can_start_conversation(context: PlanContext, low_balance_turns: Optional[int] = None) -> ConversationCheck:
    """
    Decide admission for one conversation turn.

    1. allocation-governed: total = allocated remaining
    2. otherwise: total = plan remaining + purchased remaining
    3. allowed = total > 0
    4. available models: rate <= total
    5. low balance: total < cheapest rate * low_balance_turns
    6. remediation actions when denied or low
    """
    plan = get_plan(context.plan)
    turns = settings.LOW_BALANCE_TURNS if low_balance_turns is None else low_balance_turns

    if context.is_allocation_governed:
        total = max(0, context.allocated_points_remaining)
    else:
        total = max(0, context.plan_points_remaining) + max(0, context.purchased_points_remaining)

    allowed = total > 0
    ordered = models_by_rate(plan)
    available = [key for key in ordered if plan.model_rates[key] <= total]

    cheapest_key = available[0] if available else ordered[0]
    low_balance = total < plan.model_rates[cheapest_key] * turns

    actions = _actions_for(context) if (not allowed or low_balance) else []
    remaining_conversations = {key: total // plan.model_rates[key] for key in ordered}

    if not allowed:
        admission_denied_total.inc(labels={"plan": plan.plan_id})

    return ConversationCheck(
        allowed=allowed,
        total_points_remaining=total,
        available_models=available,
        low_balance_warning=low_balance,
        out_of_credits_actions=actions,
        remaining_conversations=remaining_conversations,
    )
