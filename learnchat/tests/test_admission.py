from learnchat.core.metrics import admission_denied_total
from learnchat.features.credits.admission import PlanContext, check_can_start_conversation


def _context(**overrides):
    values = dict(
        plan="starter",
        is_organization=False,
        plan_points_remaining=300,
        purchased_points_remaining=0,
        can_purchase_credits=True,
    )
    values.update(overrides)
    return PlanContext(**values)


def test_plan_and_purchased_points_add_up():
    check = check_can_start_conversation(_context(plan_points_remaining=10, purchased_points_remaining=7))
    assert check.allowed
    assert check.total_points_remaining == 17
    assert check.available_models == ["standard", "advanced"]
    assert check.remaining_conversations == {"standard": 17, "advanced": 3}


def test_exhausted_allocation_denies_with_no_models():
    context = _context(
        plan="business",
        is_organization=True,
        purchased_points_remaining=500,
        can_purchase_credits=False,
        allocated_points_remaining=0,
    )
    check = check_can_start_conversation(context)
    assert not check.allowed
    assert check.available_models == []
    assert check.out_of_credits_actions == ["contact-admin"]
    assert admission_denied_total.value({"plan": "business"}) == 1


def test_allocation_total_ignores_plan_and_purchased_points():
    context = _context(
        plan="business",
        is_organization=True,
        plan_points_remaining=5000,
        purchased_points_remaining=800,
        can_purchase_credits=False,
        allocated_points_remaining=4,
    )
    check = check_can_start_conversation(context)
    assert check.total_points_remaining == 4
    assert check.available_models == ["standard"]


def test_low_balance_warning_offers_purchase_and_upgrade():
    check = check_can_start_conversation(_context(plan_points_remaining=3), low_balance_turns=5)
    assert check.allowed
    assert check.low_balance_warning
    assert check.out_of_credits_actions == ["purchase", "upgrade"]


def test_comfortable_balance_has_no_actions():
    check = check_can_start_conversation(_context(plan_points_remaining=200), low_balance_turns=5)
    assert not check.low_balance_warning
    assert check.out_of_credits_actions == []


def test_free_plan_exhausted_suggests_upgrade_only_for_non_purchaser():
    check = check_can_start_conversation(
        _context(plan="free", plan_points_remaining=0, can_purchase_credits=False)
    )
    assert not check.allowed
    assert check.out_of_credits_actions == ["upgrade"]


def test_negative_inputs_are_floored():
    check = check_can_start_conversation(_context(plan_points_remaining=-20, purchased_points_remaining=-5))
    assert check.total_points_remaining == 0
    assert not check.allowed
