"""
learnchat/models/credit.py

Credit balance, allocation and usage models.
"""

from datetime import datetime
from typing import Literal, Optional
from pydantic import BaseModel, ConfigDict

AccountType = Literal["user", "organization", "allocation"]


class CreditBalance(BaseModel):
    """
    Point balance owned by exactly one individual user or one organization.

    `monthly_used` counts points consumed from the plan grant this period,
    `balance` is the cumulative purchased amount and `purchased_used` what
    has been consumed from it.
    """
    model_config = ConfigDict(frozen=True)

    owner_type: Literal["user", "organization"]
    owner_id: str
    monthly_used: int = 0
    balance: int = 0
    purchased_used: int = 0
    period_start: datetime
    period_end: datetime


class CreditAllocation(BaseModel):
    """Per-member sub-budget for one period. `id is None` means ephemeral."""
    model_config = ConfigDict(frozen=True)

    id: Optional[int] = None
    organization_id: str
    user_id: str
    allocated_points: int
    used_points: int = 0
    period_start: datetime
    period_end: datetime
    note: Optional[str] = None

    @property
    def is_ephemeral(self) -> bool:
        return self.id is None

    @property
    def remaining(self) -> int:
        return max(0, self.allocated_points - self.used_points)


class BalanceContext(BaseModel):
    model_config = ConfigDict(frozen=True)

    plan: str
    monthly_points: int
    is_organization: bool


class RemainingPoints(BaseModel):
    model_config = ConfigDict(frozen=True)

    plan_remaining: int
    purchased_remaining: int


class DebitTarget(BaseModel):
    """
    Which pool a debit (or compensating credit) lands in.

    Allocation-governed accounts carry `allocation_id`; everything else
    debits the CreditBalance of (`owner_type`, `owner_id`).
    """
    model_config = ConfigDict(frozen=True)

    owner_type: Literal["user", "organization"]
    owner_id: str
    monthly_points: int
    allocation_id: Optional[int] = None

    @property
    def account_type(self) -> AccountType:
        return "allocation" if self.allocation_id is not None else self.owner_type

    @property
    def account_id(self) -> str:
        return str(self.allocation_id) if self.allocation_id is not None else self.owner_id
