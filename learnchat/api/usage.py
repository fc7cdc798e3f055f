from typing import Dict

from fastapi import APIRouter, Depends

from learnchat.core.auth import get_current_account
from learnchat.features.usage.service import check_token_limit, get_token_usage
from learnchat.models.account import Account

router = APIRouter(prefix="/v1/usage", tags=["usage"])


@router.get("/tokens")
def get_daily_tokens(account: Account = Depends(get_current_account)) -> Dict:
    """Today's token meter for the current account."""
    usage = get_token_usage(account.user_id)
    check = check_token_limit(account)
    return {
        **usage,
        "dailyLimit": check.daily_limit,
        "remaining": check.remaining,
    }
