# ================================================================
# services/billing_service.py: Stripe invoicing, subscriptions, checkout, webhooks
# ================================================================
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, List, Optional
import json
import logging

import stripe
from fastapi.concurrency import run_in_threadpool

from core.config import settings  # ✅ Use centralized configuration
from core.errors import UpstreamError, ValidationError
from core.pricing import FEATURE_LABELS, FeatureKey, Quote, plan_from_features, price
from models.models import Invoice

logger = logging.getLogger(__name__)

# ------------------------
# STRIPE CONFIG
# ------------------------
stripe.api_key = settings.STRIPE_SECRET_KEY


# ------------------------
# Amount helpers (store keeps dollars, Stripe wants cents)
# ------------------------
def to_cents(amount: float) -> int:
    return int((Decimal(str(amount)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_cents(cents: Optional[int]) -> float:
    return float(Decimal(cents or 0) / 100)


def from_unix(seconds: Optional[int]) -> Optional[datetime]:
    if not seconds:
        return None
    return datetime.fromtimestamp(seconds, tz=timezone.utc)


_STATUS_MAP = {
    "active": "active",
    "canceled": "canceled",
    "incomplete": "incomplete",
    "incomplete_expired": "incomplete",
    "past_due": "past_due",
    "unpaid": "past_due",
    "trialing": "trialing",
    "paused": "paused",
}


def map_subscription_status(stripe_status: Optional[str]) -> str:
    """Stripe subscription status -> the portal's smaller status set."""
    return _STATUS_MAP.get(stripe_status or "", "inactive")


def _first_item(subscription: Dict[str, Any]) -> Dict[str, Any]:
    items = (subscription.get("items") or {}).get("data") or []
    return items[0] if items else {}


def subscription_fields(subscription: Dict[str, Any]) -> Dict[str, Any]:
    """Processor subscription -> members of the tenant's ``subscription`` map."""
    item = _first_item(subscription)
    return {
        "stripeSubscriptionId": subscription.get("id"),
        "stripeCustomerId": subscription.get("customer"),
        "status": map_subscription_status(subscription.get("status")),
        "active": subscription.get("status") in ("active", "trialing"),
        "currentPeriodStart": from_unix(subscription.get("current_period_start") or item.get("current_period_start")),
        "currentPeriodEnd": from_unix(subscription.get("current_period_end") or item.get("current_period_end")),
        "cancelAtPeriodEnd": bool(subscription.get("cancel_at_period_end")),
        "canceledAt": from_unix(subscription.get("canceled_at")),
        "trialStart": from_unix(subscription.get("trial_start")),
        "trialEnd": from_unix(subscription.get("trial_end")),
        "priceId": (item.get("price") or {}).get("id"),
        "quantity": item.get("quantity") or 1,
    }


class BillingService:
    """
    Async facade over the (blocking) Stripe SDK.

    Every SDK call runs in the threadpool; ``stripe.StripeError`` propagates
    and is rendered as a generic 500 by the app's exception handler.
    """

    def __init__(self, webhook_secret: Optional[str] = settings.STRIPE_WEBHOOK_SECRET):
        self.webhook_secret = webhook_secret

    @property
    def configured(self) -> bool:
        return bool(stripe.api_key)

    def _require_configured(self) -> None:
        if not self.configured:
            raise UpstreamError("Stripe not configured")

    # ============================================================
    # ✅ Customers
    # ============================================================
    async def ensure_customer(
        self, org_id: str, name: str, email: str, existing_id: Optional[str] = None
    ) -> str:
        if existing_id:
            return existing_id
        self._require_configured()
        customer = await run_in_threadpool(
            stripe.Customer.create,
            email=email or None,
            name=name,
            description=f"Organization: {name}",
            metadata={"orgId": org_id, "orgName": name},
        )
        logger.info(f"✅ Created Stripe customer {customer['id']} for org {org_id}")
        return customer["id"]

    # ============================================================
    # ✅ One-time invoices
    # ============================================================
    def _create_invoice_sync(
        self,
        customer_id: str,
        org_id: str,
        description: str,
        line_items: List[Dict[str, Any]],
        project_id: Optional[str],
        due_date: Optional[datetime],
        auto_send: bool,
        metadata: Dict[str, str],
    ) -> Dict[str, Any]:
        params: Dict[str, Any] = {
            "customer": customer_id,
            "description": description,
            "collection_method": "send_invoice",
            "auto_advance": auto_send,
            "currency": settings.DEFAULT_CURRENCY,
            "metadata": {
                "orgId": org_id,
                "projectId": project_id or "",
                "invoiceType": "one_time",
                **metadata,
            },
        }
        if due_date:
            params["due_date"] = int(due_date.timestamp())
        else:
            params["days_until_due"] = settings.INVOICE_DAYS_UNTIL_DUE
        invoice = stripe.Invoice.create(**params)

        for item in line_items:
            stripe.InvoiceItem.create(
                customer=customer_id,
                invoice=invoice["id"],
                description=f"{item['description']} (x{item['quantity']})",
                amount=item["quantity"] * item["unit_amount"],
                currency=settings.DEFAULT_CURRENCY,
            )

        if auto_send:
            stripe.Invoice.finalize_invoice(invoice["id"])
            invoice = stripe.Invoice.send_invoice(invoice["id"])
        return invoice

    async def create_invoice(
        self,
        customer_id: str,
        org_id: str,
        description: str,
        line_items: List[Dict[str, Any]],
        project_id: Optional[str] = None,
        due_date: Optional[datetime] = None,
        auto_send: bool = True,
        metadata: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        """
        Mirror an invoice in Stripe.

        ``line_items`` carry ``description``, ``quantity`` and ``unit_amount``
        in cents.
        """
        self._require_configured()
        invoice = await run_in_threadpool(
            self._create_invoice_sync,
            customer_id,
            org_id,
            description,
            line_items,
            project_id,
            due_date,
            auto_send,
            {k: str(v) for k, v in (metadata or {}).items()},
        )
        logger.info(f"✅ Stripe invoice {invoice['id']} created for org {org_id}")
        return invoice

    # ============================================================
    # ✅ Subscriptions
    # ============================================================
    async def retrieve_subscription(self, subscription_id: str) -> Dict[str, Any]:
        self._require_configured()
        return await run_in_threadpool(stripe.Subscription.retrieve, subscription_id)

    async def subscription_status(self, subscription_id: str) -> Dict[str, Any]:
        subscription = await self.retrieve_subscription(subscription_id)
        metadata = subscription.get("metadata") or {}
        items = (subscription.get("items") or {}).get("data") or []
        monthly_cents = sum(((i.get("price") or {}).get("unit_amount") or 0) for i in items)
        fields = subscription_fields(subscription)
        return {
            "active": subscription.get("status") == "active",
            "status": subscription.get("status"),
            "currentPeriodStart": fields["currentPeriodStart"],
            "currentPeriodEnd": fields["currentPeriodEnd"],
            "cancelAtPeriodEnd": fields["cancelAtPeriodEnd"],
            "trialEnd": fields["trialEnd"],
            "features": json.loads(metadata.get("features") or "[]"),
            "plan": metadata.get("plan") or "Custom",
            "monthlyAmount": from_cents(monthly_cents),
            "nextBillingDate": fields["currentPeriodEnd"],
        }

    def _update_features_sync(self, subscription_id: str, features: List[FeatureKey]) -> Dict[str, Any]:
        subscription = stripe.Subscription.retrieve(subscription_id)
        quote = price(features)
        labels = ", ".join(FEATURE_LABELS[f] for f in features)
        new_price = stripe.Price.create(
            currency=settings.DEFAULT_CURRENCY,
            unit_amount=to_cents(quote.monthly),
            recurring={"interval": "month"},
            product_data={"name": "Updated Subscription", "metadata": {"description": f"Updated features: {labels}"}},
        )
        metadata = dict(subscription.get("metadata") or {})
        metadata["features"] = json.dumps([f.value for f in features])
        metadata["plan"] = plan_from_features(features)
        return stripe.Subscription.modify(
            subscription_id,
            items=[{"id": _first_item(subscription)["id"], "price": new_price["id"]}],
            metadata=metadata,
            proration_behavior="create_prorations",
        )

    async def update_subscription_features(
        self, subscription_id: str, features: List[FeatureKey]
    ) -> Dict[str, Any]:
        self._require_configured()
        return await run_in_threadpool(self._update_features_sync, subscription_id, features)

    async def cancel_subscription(self, subscription_id: str, immediately: bool = False) -> Dict[str, Any]:
        self._require_configured()
        if immediately:
            return await run_in_threadpool(stripe.Subscription.cancel, subscription_id)
        return await run_in_threadpool(
            stripe.Subscription.modify, subscription_id, cancel_at_period_end=True
        )

    # ============================================================
    # ✅ Checkout
    # ============================================================
    async def create_checkout_session(
        self,
        quote: Quote,
        features: List[FeatureKey],
        email: Optional[str] = None,
        org_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        if quote.setup <= 0 and quote.monthly <= 0:
            raise ValidationError("No features selected")
        self._require_configured()

        line_items: List[Dict[str, Any]] = []
        if quote.setup > 0:
            line_items.append({
                "quantity": 1,
                "price_data": {
                    "currency": settings.DEFAULT_CURRENCY,
                    "product_data": {"name": "Setup fee"},
                    "unit_amount": to_cents(quote.setup),
                },
            })
        if quote.monthly > 0:
            line_items.append({
                "quantity": 1,
                "price_data": {
                    "currency": settings.DEFAULT_CURRENCY,
                    "product_data": {"name": "Subscription"},
                    "unit_amount": to_cents(quote.monthly),
                    "recurring": {"interval": "month"},
                },
            })

        metadata = {
            "plan": plan_from_features(features),
            "features": json.dumps([f.value for f in features]),
        }
        if org_id:
            metadata["orgId"] = org_id

        params: Dict[str, Any] = {
            "mode": "subscription",
            "line_items": line_items,
            "allow_promotion_codes": True,
            "success_url": settings.STRIPE_SUCCESS_URL,
            "cancel_url": settings.STRIPE_CANCEL_URL,
            "metadata": metadata,
            "subscription_data": {"metadata": metadata},
        }
        if email:
            params["customer_email"] = email

        session = await run_in_threadpool(stripe.checkout.Session.create, **params)
        return {"url": session["url"], "sessionId": session["id"]}

    async def create_invoice_checkout_session(self, invoice: Invoice) -> Dict[str, Any]:
        """One-off card payment for an issued invoice; amounts go out in cents."""
        self._require_configured()
        currency = invoice.currency or settings.DEFAULT_CURRENCY

        line_items: List[Dict[str, Any]] = [
            {
                "quantity": item.quantity,
                "price_data": {
                    "currency": currency,
                    "product_data": {"name": item.description or invoice.description or invoice.invoice_number},
                    "unit_amount": to_cents(item.unit_price),
                },
            }
            for item in invoice.line_items
        ]
        if not line_items:
            line_items.append({
                "quantity": 1,
                "price_data": {
                    "currency": currency,
                    "product_data": {"name": invoice.description or invoice.invoice_number},
                    "unit_amount": to_cents(invoice.total),
                },
            })
        elif invoice.tax > 0:
            line_items.append({
                "quantity": 1,
                "price_data": {"currency": currency, "product_data": {"name": "Tax"}, "unit_amount": to_cents(invoice.tax)},
            })

        metadata = {
            "invoiceId": invoice.id,
            "orgId": invoice.org_id,
            "invoiceNumber": invoice.invoice_number,
        }
        page = f"{settings.FRONTEND_URL}/invoices/{invoice.invoice_number}"
        params: Dict[str, Any] = {
            "mode": "payment",
            "line_items": line_items,
            "success_url": f"{page}?checkout=success",
            "cancel_url": f"{page}?checkout=cancel",
            "metadata": metadata,
            "payment_intent_data": {"metadata": metadata},
        }
        # Stripe accepts a customer or an email, not both.
        if invoice.stripe_customer_id:
            params["customer"] = invoice.stripe_customer_id
        elif invoice.billing_email:
            params["customer_email"] = invoice.billing_email

        session = await run_in_threadpool(stripe.checkout.Session.create, **params)
        logger.info(f"✅ Checkout session {session['id']} opened for invoice {invoice.invoice_number}")
        return {"url": session["url"], "sessionId": session["id"]}

    # ============================================================
    # ✅ Webhooks
    # ============================================================
    def verify_webhook(self, payload: str, sig_header: Optional[str]) -> Dict[str, Any]:
        """
        Check the ``Stripe-Signature`` header against the endpoint secret and
        return the decoded event. Raises ``ValidationError`` when it does not verify.
        """
        if not self.webhook_secret:
            raise UpstreamError("Webhook secret not configured")
        if not sig_header:
            raise ValidationError("No signature")
        try:
            stripe.WebhookSignature.verify_header(payload, sig_header, self.webhook_secret)
        except stripe.SignatureVerificationError as e:
            logger.warning(f"❌ Invalid webhook signature: {e}")
            raise ValidationError("Invalid signature")
        try:
            return json.loads(payload)
        except ValueError:
            raise ValidationError("Invalid payload")


# ============================================================
# ✅ Dependency
# ============================================================
_billing_service = BillingService()


def get_billing_service() -> BillingService:
    return _billing_service
