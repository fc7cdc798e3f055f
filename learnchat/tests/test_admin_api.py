from fastapi.testclient import TestClient

from learnchat.main import app


def _client():
    return TestClient(app)


def _as(account):
    return {"X-User-Id": account.user_id}


def test_owner_promotes_member(organization):
    resp = _client().patch(
        f"/v1/admin/members/{organization['member'].user_id}/role",
        headers=_as(organization["owner"]),
        json={"role": "admin"},
    )
    assert resp.status_code == 200
    assert resp.json() == {"userId": "member-1", "role": "admin", "organizationId": "org-1"}


def test_admin_cannot_change_roles(organization):
    resp = _client().patch(
        f"/v1/admin/members/{organization['member'].user_id}/role",
        headers=_as(organization["admin"]),
        json={"role": "admin"},
    )
    assert resp.status_code == 403
    assert resp.json()["error"]["code"] == "FORBIDDEN"


def test_owner_cannot_change_own_role(organization):
    owner = organization["owner"]
    resp = _client().patch(f"/v1/admin/members/{owner.user_id}/role", headers=_as(owner), json={"role": "member"})
    assert resp.status_code == 400


def test_ownership_is_not_assignable(organization):
    resp = _client().patch(
        f"/v1/admin/members/{organization['member'].user_id}/role",
        headers=_as(organization["owner"]),
        json={"role": "owner"},
    )
    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "VALIDATION_ERROR"


def test_unknown_member_is_not_found(organization):
    resp = _client().patch("/v1/admin/members/stranger/role", headers=_as(organization["owner"]), json={"role": "admin"})
    assert resp.status_code == 404


def test_admin_sets_allocation(organization):
    client = _client()
    keyless = organization["keyless"]
    resp = client.put(
        f"/v1/admin/allocations/{keyless.user_id}",
        headers=_as(organization["admin"]),
        json={"allocated_points": 50, "note": "  exam week  "},
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body["allocatedPoints"] == 50
    assert body["usedPoints"] == 0
    assert body["remaining"] == 50
    assert body["note"] == "exam week"

    balance = client.get("/v1/billing/credits/balance", headers=_as(keyless)).json()
    assert balance["canStartConversation"] is True
    assert balance["points"]["allocated"]["total"] == 50

    listing = client.get("/v1/admin/allocations", headers=_as(organization["admin"])).json()
    assert listing["total"] == 1
    assert listing["items"][0]["userId"] == keyless.user_id


def test_negative_allocation_is_rejected(organization):
    resp = _client().put(
        f"/v1/admin/allocations/{organization['keyless'].user_id}",
        headers=_as(organization["admin"]),
        json={"allocated_points": -1},
    )
    assert resp.status_code == 400


def test_members_cannot_manage_allocations(organization):
    client = _client()
    member = organization["member"]
    assert client.get("/v1/admin/allocations", headers=_as(member)).status_code == 403
    resp = client.put(f"/v1/admin/allocations/{member.user_id}", headers=_as(member), json={"allocated_points": 1000})
    assert resp.status_code == 403


def test_individuals_are_not_admins(individual):
    assert _client().get("/v1/admin/allocations", headers=_as(individual)).status_code == 403
