from fastapi.testclient import TestClient

from learnchat.features.credits.balance import get_balance_summary
from learnchat.features.credits.ledger import add_purchased_points, debit_usage
from learnchat.main import app


def _balance(account):
    client = TestClient(app)
    resp = client.get("/v1/billing/credits/balance", headers={"X-User-Id": account.user_id})
    assert resp.status_code == 200
    return resp.json()


def test_individual_balance(individual):
    body = _balance(individual)
    assert body["plan"] == "starter"
    assert body["isOrganization"] is False
    assert body["isOrganizationMember"] is False
    assert body["points"]["monthly"] == {"total": 300, "used": 0, "remaining": 300}
    assert body["points"]["allocated"] is None
    assert body["points"]["totalRemaining"] == 300
    assert body["remainingConversations"] == {"standard": 300, "advanced": 60}
    assert body["availableModels"] == ["standard", "advanced"]
    assert body["canStartConversation"] is True
    assert body["lowBalanceWarning"] is False
    assert body["outOfCreditsActions"] == []
    assert body["canPurchaseCredits"] is True
    assert body["usageByCategory"] == {}


def test_purchased_points_extend_the_balance(free_individual):
    add_purchased_points("user", free_individual.user_id, 20)
    debit_usage(get_balance_summary(free_individual).target, 32, category="generation")

    body = _balance(free_individual)
    assert body["points"]["monthly"]["remaining"] == 0
    assert body["points"]["purchased"] == {"balance": 20, "used": 2, "remaining": 18}
    assert body["points"]["totalRemaining"] == 18
    assert body["availableModels"] == ["standard"]
    assert body["usageByCategory"] == {"generation": 32}


def test_low_balance_warns_with_actions(free_individual):
    debit_usage(get_balance_summary(free_individual).target, 27, category="explanation")
    body = _balance(free_individual)
    assert body["canStartConversation"] is True
    assert body["lowBalanceWarning"] is True
    assert body["outOfCreditsActions"] == ["purchase", "upgrade"]


def test_member_with_access_key_gets_allocation(organization):
    body = _balance(organization["member"])
    assert body["plan"] == "business"
    assert body["isOrganizationMember"] is True
    assert body["points"]["allocated"] == {"total": 100, "used": 0, "remaining": 100}
    assert body["points"]["totalRemaining"] == 100
    assert body["canStartConversation"] is True
    assert body["canPurchaseCredits"] is False


def test_keyless_member_must_contact_admin(organization):
    body = _balance(organization["keyless"])
    assert body["points"]["allocated"] == {"total": 0, "used": 0, "remaining": 0}
    assert body["canStartConversation"] is False
    assert body["availableModels"] == []
    assert body["outOfCreditsActions"] == ["contact-admin"]


def test_owner_uses_organization_pool(organization):
    body = _balance(organization["owner"])
    assert body["isOrganization"] is True
    assert body["points"]["allocated"] is None
    assert body["points"]["totalRemaining"] == 5000
    assert body["canPurchaseCredits"] is True


def test_admin_without_allocation_uses_pool_but_cannot_purchase(organization):
    body = _balance(organization["admin"])
    assert body["points"]["allocated"] is None
    assert body["points"]["totalRemaining"] == 5000
    assert body["canPurchaseCredits"] is False
