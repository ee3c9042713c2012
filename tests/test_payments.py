from datetime import datetime, timedelta, timezone

import httpx
import pytest

from tests.fixtures.helpers import auth, seed_org


@pytest.fixture
def org(store, verifier):
    verifier.register("u1")
    verifier.register("u2")
    seed_org(store, "acme", admins=["u1"], clients=["u2"])
    store.seed("orgs/acme/invoices/inv1", {
        "orgId": "acme", "invoiceNumber": "INV-0001", "description": "Build",
        "status": "open", "total": 500.0, "stripeInvoiceId": "in_1",
    })
    return store


# ========================================
# Scenario: manual payment marks its invoice paid
# ========================================
async def test_manual_payment_marks_invoice_paid(client, org):
    response = await client.post(
        "/api/payments",
        json={"orgId": "acme", "amount": 500.00, "method": "wire", "invoiceId": "inv1", "reference": "TX-9"},
        headers=auth("u1"),
    )
    assert response.status_code == 201
    body = response.json()
    assert body["invoiceUpdated"] is True
    assert body["message"] == "Payment recorded successfully"

    invoice = org.fields("orgs/acme/invoices/inv1")
    assert invoice["status"] == "paid"
    assert invoice["paidAt"] is not None
    assert invoice["paymentReference"] == "TX-9"

    event = org.fields(f"orgs/acme/payment_events/{body['id']}")
    assert event["eventType"] == "manual_payment_recorded"
    assert event["amount"] == 500.0
    assert event["recordedBy"] == "u1"


async def test_payment_against_missing_invoice_is_still_logged(client, org):
    response = await client.post(
        "/api/payments",
        json={"orgId": "acme", "amount": 75, "method": "cash", "invoiceId": "ghost"},
        headers=auth("u1"),
    )
    assert response.status_code == 201
    body = response.json()
    assert body["invoiceUpdated"] is False
    assert f"orgs/acme/payment_events/{body['id']}" in org.docs
    assert "orgs/acme/invoices/ghost" not in org.docs


async def test_payment_without_invoice_touches_no_invoice(client, org):
    response = await client.post(
        "/api/payments", json={"orgId": "acme", "amount": 10, "method": "card"}, headers=auth("u1")
    )
    assert response.json()["invoiceUpdated"] is False
    assert org.fields("orgs/acme/invoices/inv1")["status"] == "open"


async def test_only_staff_record_payments(client, org):
    response = await client.post(
        "/api/payments", json={"orgId": "acme", "amount": 10, "method": "card"}, headers=auth("u2")
    )
    assert response.status_code == 403
    assert org.writes() == []


async def test_non_positive_amount_is_rejected(client, org):
    response = await client.post(
        "/api/payments", json={"orgId": "acme", "amount": 0, "method": "card"}, headers=auth("u1")
    )
    assert response.status_code == 400
    assert "amount" in response.json()["error"]


async def test_replayed_payment_is_not_logged_twice(client, org):
    headers = {**auth("u1"), "Idempotency-Key": "pay-1"}
    body = {"orgId": "acme", "amount": 20, "method": "card"}
    first = await client.post("/api/payments", json=body, headers=headers)
    second = await client.post("/api/payments", json=body, headers=headers)

    assert second.status_code == 200
    assert second.json() == {"id": first.json()["id"], "duplicate": True}
    assert len(org.paths("payment_events")) == 1


# ========================================
# Listing
# ========================================
async def test_list_links_invoices_and_sums(client, org):
    now = datetime.now(timezone.utc)
    org.seed("orgs/acme/payment_events/e1", {
        "orgId": "acme", "eventType": "invoice_payment_succeeded", "amount": 500.0,
        "stripeInvoiceId": "in_1", "timestamp": now - timedelta(hours=2),
    })
    org.seed("orgs/acme/payment_events/e2", {
        "orgId": "acme", "eventType": "manual_payment_recorded", "amount": 25.25,
        "invoiceId": "inv1", "timestamp": now - timedelta(hours=1),
    })
    org.seed("orgs/acme/payment_events/e3", {
        "orgId": "acme", "eventType": "manual_payment_recorded", "amount": 10.0, "timestamp": now,
    })

    response = await client.get("/api/payments?orgId=acme", headers=auth("u2"))
    assert response.status_code == 200
    body = response.json()

    assert [p["id"] for p in body["payments"]] == ["e3", "e2", "e1"]
    linked = {p["id"]: p["invoice"] for p in body["payments"]}
    assert linked["e1"]["invoiceNumber"] == "INV-0001"
    assert linked["e2"]["id"] == "inv1"
    assert linked["e3"] is None
    assert body["metrics"] == {
        "total": 3,
        "byEventType": {"invoice_payment_succeeded": 1, "manual_payment_recorded": 2},
        "totalAmount": 535.25,
    }


async def test_list_filters_by_event_type(client, org):
    org.seed("orgs/acme/payment_events/e1", {
        "orgId": "acme", "eventType": "invoice_payment_failed", "amount": 5.0,
        "timestamp": datetime.now(timezone.utc),
    })
    org.seed("orgs/acme/payment_events/e2", {
        "orgId": "acme", "eventType": "manual_payment_recorded", "amount": 5.0,
        "timestamp": datetime.now(timezone.utc),
    })
    response = await client.get("/api/payments?orgId=acme&eventType=invoice_payment_failed", headers=auth("u1"))
    assert [p["id"] for p in response.json()["payments"]] == ["e1"]


# ========================================
# Invoice mirror edge cases
# ========================================
async def test_transport_failure_on_invoice_mirror_keeps_the_payment(client, org, monkeypatch, caplog):
    async def unreachable(*args, **kwargs):
        raise httpx.ConnectTimeout("firestore unreachable")

    monkeypatch.setattr(org, "patch", unreachable)
    response = await client.post(
        "/api/payments",
        json={"orgId": "acme", "amount": 500, "method": "wire", "invoiceId": "inv1"},
        headers=auth("u1"),
    )
    assert response.status_code == 201
    body = response.json()
    assert body["invoiceUpdated"] is False
    assert f"orgs/acme/payment_events/{body['id']}" in org.docs
    assert "Invoice inv1 not marked paid" in caplog.text


async def test_paid_invoice_keeps_its_original_paid_at(client, org):
    settled = datetime(2025, 1, 1, tzinfo=timezone.utc)
    org.seed("orgs/acme/invoices/inv2", {
        "orgId": "acme", "invoiceNumber": "INV-0002", "status": "paid", "total": 80.0, "paidAt": settled,
    })
    response = await client.post(
        "/api/payments",
        json={"orgId": "acme", "amount": 80, "method": "check", "invoiceId": "inv2", "reference": "CHK-1"},
        headers=auth("u1"),
    )
    assert response.json()["invoiceUpdated"] is True

    invoice = org.fields("orgs/acme/invoices/inv2")
    assert invoice["status"] == "paid"
    assert invoice["paidAt"] == settled
    assert invoice["paymentReference"] == "CHK-1"


async def test_void_invoice_is_not_marked_paid(client, org):
    org.seed("orgs/acme/invoices/inv3", {
        "orgId": "acme", "invoiceNumber": "INV-0003", "status": "void", "total": 40.0,
    })
    response = await client.post(
        "/api/payments",
        json={"orgId": "acme", "amount": 40, "method": "cash", "invoiceId": "inv3"},
        headers=auth("u1"),
    )
    assert response.status_code == 201
    assert response.json()["invoiceUpdated"] is False

    invoice = org.fields("orgs/acme/invoices/inv3")
    assert invoice["status"] == "void"
    assert "paidAt" not in invoice
