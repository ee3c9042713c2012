import pytest

from tests.fixtures.helpers import auth, seed_org


@pytest.fixture
def members(store, verifier):
    verifier.register("u1", email="owner@example.com")
    verifier.register("u2", email="client@example.com")
    verifier.register("u3")
    verifier.register("u9")
    seed_org(store, "acme", name="Acme", admins=["u1"], editors=["u3"], clients=["u2"],
             subscription={"status": "active", "active": True, "plan": "Website",
                           "stripeCustomerId": "cus_acme", "billingEmail": "billing@example.com"})
    seed_org(store, "beta", name="beta works", admins=["u9"], clients=["u1"])
    seed_org(store, "old", name="Old Co", admins=["u1"], status="archived")
    return store


async def test_create_makes_caller_sole_admin(client, store, verifier):
    verifier.register("u1", email="owner@example.com")
    response = await client.post("/api/organizations", json={"name": "New Studio!"}, headers=auth("u1"))

    assert response.status_code == 201
    body = response.json()
    assert body["slug"] == "new-studio"
    assert body["role"] == "admin"

    stored = store.fields(f"orgs/{body['id']}")
    assert stored["adminUids"] == ["u1"]
    assert stored["editorUids"] == [] and stored["clientUids"] == []
    assert stored["subscription"]["status"] == "inactive"
    assert stored["subscription"]["billingEmail"] == "owner@example.com"


async def test_create_replay_is_keyed_on_the_creator(client, store, verifier):
    verifier.register("u1")
    verifier.register("u2")
    headers = {**auth("u1"), "Idempotency-Key": "k-1"}
    first = await client.post("/api/organizations", json={"name": "Acme"}, headers=headers)
    again = await client.post("/api/organizations", json={"name": "Acme"}, headers=headers)
    other = await client.post(
        "/api/organizations", json={"name": "Acme"}, headers={**auth("u2"), "Idempotency-Key": "k-1"}
    )

    assert again.status_code == 200
    assert again.json() == {"id": first.json()["id"], "duplicate": True}
    assert other.status_code == 201
    assert len(store.paths("orgs")) == 2


async def test_list_merges_memberships_and_skips_archived(client, members):
    response = await client.get("/api/organizations", headers=auth("u1"))
    body = response.json()

    assert body["total"] == 2
    assert [(o["id"], o["role"]) for o in body["organizations"]] == [("acme", "admin"), ("beta", "client")]


async def test_client_gets_reduced_view(client, members):
    response = await client.get("/api/organizations/acme", headers=auth("u2"))
    body = response.json()

    assert body["role"] == "client"
    assert body["plan"] == "Website"
    assert body["subscriptionStatus"] == "active"
    assert "subscription" not in body
    assert "adminUids" not in body


async def test_staff_get_full_record(client, members):
    body = (await client.get("/api/organizations/acme", headers=auth("u3"))).json()
    assert body["role"] == "editor"
    assert body["subscription"]["stripeCustomerId"] == "cus_acme"


async def test_outsider_is_forbidden_and_unknown_is_missing(client, members):
    assert (await client.get("/api/organizations/acme", headers=auth("u9"))).status_code == 403
    missing = await client.get("/api/organizations/nope", headers=auth("u1"))
    assert missing.status_code == 404
    assert missing.json() == {"error": "Organization not found"}


async def test_only_admins_update(client, members):
    response = await client.put("/api/organizations/acme", json={"name": "Acme 2"}, headers=auth("u3"))
    assert response.status_code == 403

    response = await client.put(
        "/api/organizations/acme", json={"name": "Acme 2", "createdBy": "u3"}, headers=auth("u1")
    )
    assert response.status_code == 200
    assert response.json()["name"] == "Acme 2"
    assert "createdBy" not in members.fields("orgs/acme")


async def test_update_refuses_to_remove_every_admin(client, members):
    response = await client.put("/api/organizations/acme", json={"adminUids": []}, headers=auth("u1"))
    assert response.status_code == 400
    assert response.json() == {"error": "An organization needs at least one admin"}
    assert members.fields("orgs/acme")["adminUids"] == ["u1"]


async def test_archive_is_a_soft_delete(client, members):
    response = await client.delete("/api/organizations/acme", headers=auth("u1"))
    assert response.json() == {"archived": True}

    stored = members.fields("orgs/acme")
    assert stored["status"] == "archived"
    assert stored["archivedAt"] is not None

    listed = await client.get("/api/organizations", headers=auth("u1"))
    assert [o["id"] for o in listed.json()["organizations"]] == ["beta"]
