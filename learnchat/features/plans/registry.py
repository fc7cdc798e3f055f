"""
learnchat/features/plans/registry.py

Plan registry.

Handles:
- Static plan definitions (individual: free/starter/pro/max,
  organization: business/enterprise)
- Plan lookup with `free` fallback for unknown or missing ids
- Model catalogue helpers (rates, cheapest model)

Loaded once at import; read-only for the process lifetime.
"""

from typing import Dict, List, Optional

from learnchat.models.plan import Plan

DEFAULT_PLAN_ID = "free"

# Points per conversation turn on each model key
STANDARD_RATE = 1
ADVANCED_RATE = 5

# Default plan configurations
DEFAULT_PLANS: Dict[str, Dict] = {
    "free": {
        "name": "Free Plan",
        "audience": "individual",
        "monthly_points": 30,
        "model_rates": {"standard": STANDARD_RATE},
        "daily_token_limit": 50_000,
    },
    "starter": {
        "name": "Starter Plan",
        "audience": "individual",
        "monthly_points": 300,
        "model_rates": {"standard": STANDARD_RATE, "advanced": ADVANCED_RATE},
        "daily_token_limit": 200_000,
    },
    "pro": {
        "name": "Pro Plan",
        "audience": "individual",
        "monthly_points": 1000,
        "model_rates": {"standard": STANDARD_RATE, "advanced": ADVANCED_RATE},
        "daily_token_limit": 500_000,
    },
    "max": {
        "name": "Max Plan",
        "audience": "individual",
        "monthly_points": 3000,
        "model_rates": {"standard": STANDARD_RATE, "advanced": ADVANCED_RATE},
        "daily_token_limit": 1_000_000,
    },
    "business": {
        "name": "Business Plan",
        "audience": "organization",
        "monthly_points": 5000,
        "model_rates": {"standard": STANDARD_RATE, "advanced": ADVANCED_RATE},
        "daily_token_limit": 500_000,
    },
    "enterprise": {
        "name": "Enterprise Plan",
        "audience": "organization",
        "monthly_points": 30000,
        "model_rates": {"standard": STANDARD_RATE, "advanced": ADVANCED_RATE},
        "daily_token_limit": 999_999_999,
    },
}

PLANS: Dict[str, Plan] = {
    plan_id: Plan(plan_id=plan_id, **config) for plan_id, config in DEFAULT_PLANS.items()
}


def get_plan(plan_id: Optional[str]) -> Plan:
    """Return the plan for `plan_id`, falling back to the free plan."""
    if plan_id and plan_id in PLANS:
        return PLANS[plan_id]
    return PLANS[DEFAULT_PLAN_ID]


def list_plans(audience: Optional[str] = None) -> List[Plan]:
    return [plan for plan in PLANS.values() if audience is None or plan.audience == audience]


def model_rate(plan: Plan, model_key: str) -> Optional[int]:
    """Points one turn costs on `model_key`, or None when the plan lacks it."""
    return plan.model_rates.get(model_key)


def models_by_rate(plan: Plan) -> List[str]:
    """Model keys of `plan`, cheapest first."""
    return sorted(plan.model_rates, key=lambda key: (plan.model_rates[key], key))
