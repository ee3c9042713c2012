# routes/webhooks.py
"""
Stripe -> portal event sink.

There is no end user here: after the signature checks out, every store call
runs with the service credential. Writes are limited to the fields Stripe is
authoritative for (subscription state, invoice paid/failed, payment log).

Payment log entries carry the Stripe event id, so a redelivered event is
recorded once. Invoice mirrors are updated after the log entry and only on a
best-effort basis.
"""
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple
import json
import logging

import httpx
from fastapi import APIRouter, Depends, Header, Request

from core.codec import document_id, encode_fields, utcnow
from core.database import FirestoreError, FirestoreGateway, get_gateway, structured_query, where_equal
from core.errors import SideEffectFailure
from core.security import get_service_token_provider
from models.models import InvoiceStatus, PaymentEventType, SubscriptionStatus
from services.billing_service import BillingService, from_cents, from_unix, get_billing_service, subscription_fields
from services.documents import IDEMPOTENCY_FIELD, document_path, find_duplicate, nested_patch, owning_org_id

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Webhooks"])

EVENTS_COLLECTION = "payment_events"


async def _patch_subscription(
    gateway: FirestoreGateway, token: str, org_id: str, values: Dict[str, Any]
) -> None:
    fields, paths = nested_patch("subscription", {**values, "updatedAt": utcnow()})
    try:
        await gateway.patch(f"orgs/{org_id}", fields, token, field_paths=paths, must_exist=True)
    except FirestoreError as e:
        # An unknown tenant is not worth a Stripe retry.
        if e.is_not_found:
            logger.error(f"❌ Webhook for unknown org {org_id}")
            return
        raise


def _metadata_features(metadata: Dict[str, Any]) -> Optional[List[str]]:
    try:
        features = json.loads(metadata.get("features") or "null")
    except ValueError:
        return None
    if isinstance(features, list):
        return [str(f) for f in features]
    return None


# ========================================
# 🔁 Subscription events
# ========================================
async def _subscription_updated(
    gateway: FirestoreGateway, token: str, subscription: Dict[str, Any], _: BillingService, event_id: str
):
    metadata = subscription.get("metadata") or {}
    org_id = metadata.get("orgId")
    if not org_id:
        logger.error("❌ No orgId in subscription metadata")
        return

    values = subscription_fields(subscription)
    if metadata.get("plan"):
        values["plan"] = metadata["plan"]
    features = _metadata_features(metadata)
    if features is not None:
        values["features"] = features
    await _patch_subscription(gateway, token, org_id, values)
    logger.info(f"✅ Subscription {subscription.get('id')} synced to org {org_id} ({values['status']})")


async def _subscription_canceled(
    gateway: FirestoreGateway, token: str, subscription: Dict[str, Any], _: BillingService, event_id: str
):
    org_id = (subscription.get("metadata") or {}).get("orgId")
    if not org_id:
        logger.error("❌ No orgId in subscription metadata")
        return

    await _patch_subscription(gateway, token, org_id, {
        "status": SubscriptionStatus.CANCELED.value,
        "active": False,
        "canceledAt": from_unix(subscription.get("canceled_at")) or utcnow(),
    })
    logger.info(f"🛑 Subscription {subscription.get('id')} canceled for org {org_id}")


# ========================================
# 🧾 Payment log and invoice mirrors
# ========================================
async def _log_payment_event(
    gateway: FirestoreGateway, token: str, org_id: str, event_id: str, record: Dict[str, Any]
) -> bool:
    """Append a payment log entry unless this Stripe event was already recorded."""
    if await find_duplicate(gateway, token, EVENTS_COLLECTION, org_id, event_id):
        logger.info(f"🔁 Stripe event {event_id} already recorded for org {org_id}")
        return False

    entry = {
        **record,
        "orgId": org_id,
        "stripeEventId": event_id,
        "timestamp": utcnow(),
        IDEMPOTENCY_FIELD: event_id,
    }
    await gateway.add(f"orgs/{org_id}", EVENTS_COLLECTION, encode_fields(entry), token)
    logger.info(f"💳 {record['eventType'].value} logged for org {org_id} (event {event_id})")
    return True


async def _mirror_invoice(gateway: FirestoreGateway, token: str, path: str, changes: Dict[str, Any]) -> None:
    try:
        await gateway.patch(path, encode_fields({**changes, "updatedAt": utcnow()}), token, must_exist=True)
    except (FirestoreError, httpx.HTTPError) as e:
        raise SideEffectFailure(f"Invoice mirror {path} not updated", cause=e)


async def _mirror_invoices(
    gateway: FirestoreGateway, token: str, paths: List[str], changes: Dict[str, Any], event_id: str
) -> None:
    for path in paths:
        try:
            await _mirror_invoice(gateway, token, path, changes)
        except SideEffectFailure as e:
            logger.warning(f"⚠️ {e.message} (event {event_id}): {e.cause}")


# ========================================
# 🧾 Invoice events
# ========================================
async def _resolve_invoice_org(
    gateway: FirestoreGateway, token: str, invoice: Dict[str, Any], billing: BillingService
) -> Tuple[List[Dict[str, Any]], Optional[str]]:
    """Mirrored invoice documents plus the owning tenant id, from metadata or the mirror."""
    docs = await gateway.run_query(
        structured_query("invoices", filters=[where_equal("stripeInvoiceId", invoice.get("id"))]),
        token,
    )
    org_id = (invoice.get("metadata") or {}).get("orgId")
    if not org_id and docs:
        org_id = owning_org_id(docs[0])
    if not org_id and invoice.get("subscription"):
        subscription = await billing.retrieve_subscription(invoice["subscription"])
        org_id = (subscription.get("metadata") or {}).get("orgId")
    return docs, org_id


async def _record_invoice_event(
    gateway: FirestoreGateway,
    token: str,
    invoice: Dict[str, Any],
    billing: BillingService,
    event_id: str,
    event_type: PaymentEventType,
    changes: Dict[str, Any],
    amount_cents: Optional[int],
) -> None:
    docs, org_id = await _resolve_invoice_org(gateway, token, invoice, billing)
    if not org_id:
        logger.error(f"❌ No orgId for Stripe invoice {invoice.get('id')}")
        return

    logged = await _log_payment_event(gateway, token, org_id, event_id, {
        "eventType": event_type,
        "stripeInvoiceId": invoice.get("id"),
        "amount": from_cents(amount_cents),
        "currency": invoice.get("currency") or "usd",
    })
    if logged:
        await _mirror_invoices(gateway, token, [document_path(doc) for doc in docs], changes, event_id)


async def _invoice_paid(
    gateway: FirestoreGateway, token: str, invoice: Dict[str, Any], billing: BillingService, event_id: str
):
    transitions = invoice.get("status_transitions") or {}
    await _record_invoice_event(
        gateway,
        token,
        invoice,
        billing,
        event_id,
        PaymentEventType.INVOICE_PAYMENT_SUCCEEDED,
        {"status": InvoiceStatus.PAID, "paidAt": from_unix(transitions.get("paid_at")) or utcnow()},
        invoice.get("amount_paid"),
    )


async def _invoice_failed(
    gateway: FirestoreGateway, token: str, invoice: Dict[str, Any], billing: BillingService, event_id: str
):
    await _record_invoice_event(
        gateway,
        token,
        invoice,
        billing,
        event_id,
        PaymentEventType.INVOICE_PAYMENT_FAILED,
        {"status": InvoiceStatus.PAYMENT_FAILED},
        invoice.get("amount_due"),
    )


# ========================================
# 🛒 Checkout events
# ========================================
async def _org_by_email(gateway: FirestoreGateway, token: str, email: Optional[str]) -> Optional[str]:
    """Tenant whose billing email, or failing that primary contact, matches ``email``."""
    if not email:
        return None
    for field in ("subscription.billingEmail", "primaryContact.email"):
        query = structured_query("orgs", filters=[where_equal(field, email)], limit=1, all_descendants=False)
        docs = await gateway.run_query(query, token)
        if docs:
            return document_id(docs[0]["name"])
    return None


async def _invoice_checkout_completed(
    gateway: FirestoreGateway, token: str, session: Dict[str, Any], event_id: str
) -> None:
    metadata = session.get("metadata") or {}
    org_id, invoice_id = metadata.get("orgId"), metadata["invoiceId"]
    if not org_id:
        logger.error(f"❌ No orgId in checkout metadata for invoice {invoice_id}")
        return
    if session.get("payment_status") == "unpaid":
        logger.info(f"Checkout {session.get('id')} for invoice {invoice_id} completed without payment")
        return

    logged = await _log_payment_event(gateway, token, org_id, event_id, {
        "eventType": PaymentEventType.INVOICE_PAYMENT_SUCCEEDED,
        "invoiceId": invoice_id,
        "amount": from_cents(session.get("amount_total")),
        "currency": session.get("currency") or "usd",
        "method": "card",
        "reference": session.get("id"),
    })
    if logged:
        await _mirror_invoices(gateway, token, [f"orgs/{org_id}/invoices/{invoice_id}"], {
            "status": InvoiceStatus.PAID,
            "paidAt": utcnow(),
            "paymentMethod": "card",
            "paymentReference": session.get("id"),
        }, event_id)


async def _checkout_completed(
    gateway: FirestoreGateway, token: str, session: Dict[str, Any], _: BillingService, event_id: str
):
    metadata = session.get("metadata") or {}
    if metadata.get("invoiceId"):
        await _invoice_checkout_completed(gateway, token, session, event_id)
        return

    email = (session.get("customer_details") or {}).get("email") or session.get("customer_email")
    org_id = metadata.get("orgId") or await _org_by_email(gateway, token, email)
    if not org_id:
        logger.error(f"❌ No org found for checkout session {session.get('id')}")
        return

    values: Dict[str, Any] = {
        "setupPaid": True,
        "active": True,
        "status": SubscriptionStatus.ACTIVE.value,
    }
    if session.get("subscription"):
        values["stripeSubscriptionId"] = session["subscription"]
    if session.get("customer"):
        values["stripeCustomerId"] = session["customer"]
    if metadata.get("plan"):
        values["plan"] = metadata["plan"]
    features = _metadata_features(metadata)
    if features is not None:
        values["features"] = features
    await _patch_subscription(gateway, token, org_id, values)
    logger.info(f"✅ Checkout {session.get('id')} activated org {org_id}")


# ========================================
# 👤 Customer events
# ========================================
async def _customer_updated(
    gateway: FirestoreGateway, token: str, customer: Dict[str, Any], _: BillingService, event_id: str
):
    org_id = (customer.get("metadata") or {}).get("orgId")
    if not org_id:
        logger.error("❌ No orgId in customer metadata")
        return

    values = {"stripeCustomerId": customer.get("id")}
    if customer.get("email"):
        values["billingEmail"] = customer["email"]
    await _patch_subscription(gateway, token, org_id, values)


HANDLERS: Dict[str, Callable[..., Awaitable[None]]] = {
    "checkout.session.completed": _checkout_completed,
    "customer.subscription.created": _subscription_updated,
    "customer.subscription.updated": _subscription_updated,
    "customer.subscription.deleted": _subscription_canceled,
    "invoice.payment_succeeded": _invoice_paid,
    "invoice.payment_failed": _invoice_failed,
    "customer.created": _customer_updated,
    "customer.updated": _customer_updated,
}


# ==================================================================
#  ✅ Stripe webhook endpoint
# ==================================================================
@router.post("/stripe")
async def stripe_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(default=None, alias="Stripe-Signature"),
    gateway: FirestoreGateway = Depends(get_gateway),
    billing: BillingService = Depends(get_billing_service),
    service_token: Callable[[], Awaitable[str]] = Depends(get_service_token_provider),
):
    payload = (await request.body()).decode("utf-8")
    event = billing.verify_webhook(payload, stripe_signature)

    event_type = event.get("type", "")
    handler = HANDLERS.get(event_type)
    if handler is None:
        logger.info(f"Unhandled event type: {event_type}")
        return {"received": True}

    logger.info(f"📬 Stripe event {event.get('id')} ({event_type})")
    obj = (event.get("data") or {}).get("object") or {}
    await handler(gateway, await service_token(), obj, billing, event.get("id"))
    return {"received": True}
