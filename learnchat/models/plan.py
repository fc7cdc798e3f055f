"""
learnchat/models/plan.py

Plan model: a named tier granting a monthly point budget.

Plans carry capability limits only. Pricing, billing cycles and checkout
live with the payment provider.
"""

from typing import Dict, Literal, Optional
from pydantic import BaseModel, ConfigDict, field_validator


class Plan(BaseModel):
    """
    Plan represents a point-granting tier.

    Examples:
    - free (default for individuals without a subscription)
    - starter / pro / max (individual)
    - business / enterprise (organization)

    `model_rates` maps a model key to the points one conversation turn
    costs on that model. A plan only offers the models it lists.
    """
    model_config = ConfigDict(frozen=True)

    plan_id: str
    name: str
    audience: Literal["individual", "organization"]
    monthly_points: int
    model_rates: Dict[str, int]
    daily_token_limit: Optional[int] = None

    @field_validator("model_rates")
    @classmethod
    def _rates_positive(cls, value: Dict[str, int]) -> Dict[str, int]:
        if not value:
            raise ValueError("plan must offer at least one model")
        for model_key, rate in value.items():
            if rate <= 0:
                raise ValueError(f"rate for {model_key} must be positive")
        return value
