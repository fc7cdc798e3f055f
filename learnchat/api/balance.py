"""
Billing API: credit balance and admission state for the current account.

- GET /v1/billing/credits/balance
"""
from typing import Dict

from fastapi import APIRouter, Depends

from learnchat.core.auth import get_current_account
from learnchat.features.credits.balance import get_balance_summary
from learnchat.features.credits.ledger import usage_breakdown
from learnchat.models.account import Account

router = APIRouter(prefix="/v1/billing", tags=["billing"])


@router.get("/credits/balance")
def get_credit_balance(account: Account = Depends(get_current_account)) -> Dict:
    """
    Points, remaining conversations per model and remediation actions.

    Running out of points is reported through canStartConversation and
    outOfCreditsActions; it is not an error here.
    """
    summary = get_balance_summary(account)
    payload = summary.to_response()
    payload["usageByCategory"] = usage_breakdown(summary.target, since=summary.balance.period_start)
    return payload
