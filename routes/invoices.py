# routes/invoices.py
from datetime import timedelta
from typing import Optional
import logging
import time

from fastapi import APIRouter, Body, Depends, Header, Query
from fastapi.concurrency import run_in_threadpool

from core.codec import document_id, encode_fields, utcnow
from core.config import settings
from core.database import FirestoreGateway, get_gateway, structured_query, where_equal
from core.errors import Forbidden, NotFound, UpstreamError, ValidationError
from core.roles import STAFF_ROLES, OrgRole, load_org, require_role, tenant_role
from core.security import TokenClaims, get_current_claims
from models.models import Invoice, InvoiceStatus, Organization
from schemas.invoice_schema import InvoiceCreate, InvoiceSend, InvoiceUpdate
from services.billing_service import BillingService, from_cents, get_billing_service
from services.documents import (
    IDEMPOTENCY_FIELD,
    created_response,
    document_path,
    duplicate_response,
    find_duplicate,
    load_for_caller,
    nested_patch,
    page_limit,
    page_response,
    status_counts,
)
from services.email_service import EmailService, get_email_service

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Invoices"])

COLLECTION = "invoices"
PAID = InvoiceStatus.PAID.value


def invoice_link(invoice: Invoice) -> str:
    return invoice.hosted_invoice_url or f"{settings.FRONTEND_URL}/invoice/{invoice.invoice_number}"


# ==================================================================
#  ✅ List Invoices
# ==================================================================
@router.get("")
async def list_invoices(
    org_id: str = Query(..., alias="orgId"),
    project_id: Optional[str] = Query(default=None, alias="projectId"),
    status: Optional[InvoiceStatus] = Query(default=None),
    limit: Optional[int] = Query(default=None, ge=1),
    claims: TokenClaims = Depends(get_current_claims),
    gateway: FirestoreGateway = Depends(get_gateway),
):
    org = await load_org(gateway, claims.token, org_id)
    role = require_role(tenant_role(org, claims.uid))

    filters = [where_equal("orgId", org_id)]
    if project_id:
        filters.append(where_equal("projectId", project_id))
    if status:
        filters.append(where_equal("status", status))
    if role == OrgRole.CLIENT:
        filters.append(where_equal("visibleToClient", True))

    page = page_limit(limit)
    docs = await gateway.run_query(
        structured_query(COLLECTION, filters=filters, order_by=[("createdAt", "DESCENDING")], limit=page),
        claims.token,
    )
    invoices = [Invoice.from_document(doc) for doc in docs]

    metrics = status_counts(i.status for i in invoices)
    metrics["outstandingAmount"] = round(sum(i.total for i in invoices if i.status == InvoiceStatus.OPEN.value), 2)
    metrics["paidAmount"] = round(sum(i.total for i in invoices if i.status == PAID), 2)
    return page_response("invoices", invoices, metrics, page)


# ==================================================================
#  ✅ Get Single Invoice
# ==================================================================
@router.get("/{invoice_id}")
async def get_invoice(
    invoice_id: str,
    claims: TokenClaims = Depends(get_current_claims),
    gateway: FirestoreGateway = Depends(get_gateway),
):
    doc, _, role = await load_for_caller(gateway, claims, COLLECTION, invoice_id, "Invoice not found")
    invoice = Invoice.from_document(doc)
    if role == OrgRole.CLIENT and not invoice.visible_to_client:
        raise NotFound("Invoice not found")
    return invoice.model_dump(by_alias=True, mode="json")


# ==================================================================
#  ✅ Create Invoice (Stripe first, then the store mirror)
# ==================================================================
@router.post("", status_code=201)
async def create_invoice(
    data: InvoiceCreate,
    idempotency_key: Optional[str] = Header(default=None, alias="Idempotency-Key"),
    claims: TokenClaims = Depends(get_current_claims),
    gateway: FirestoreGateway = Depends(get_gateway),
    billing: BillingService = Depends(get_billing_service),
):
    org_doc = await load_org(gateway, claims.token, data.org_id)
    require_role(tenant_role(org_doc, claims.uid), STAFF_ROLES)
    org = Organization.from_document(org_doc)

    duplicate = await find_duplicate(gateway, claims.token, COLLECTION, data.org_id, idempotency_key)
    if duplicate:
        return duplicate_response(duplicate)

    billing_email = org.subscription.billing_email or org.primary_contact.email
    customer_id = await billing.ensure_customer(
        data.org_id, org.name, billing_email, org.subscription.stripe_customer_id
    )
    if customer_id != org.subscription.stripe_customer_id:
        fields, paths = nested_patch("subscription", {"stripeCustomerId": customer_id})
        await gateway.patch(f"orgs/{data.org_id}", fields, claims.token, field_paths=paths)

    # Line items arrive in cents, the store keeps dollars.
    cents_items = [
        {"description": li.description, "quantity": li.quantity, "unit_amount": li.unit_price}
        for li in data.line_items
    ]
    stripe_invoice = await billing.create_invoice(
        customer_id,
        data.org_id,
        data.description,
        cents_items,
        project_id=data.project_id,
        due_date=data.due_date,
        auto_send=data.auto_send,
        metadata=data.metadata,
    )

    subtotal_cents = sum(li.quantity * li.unit_price for li in data.line_items)
    tax_cents = 0
    now = utcnow()
    sent = data.auto_send and bool(billing_email)
    record = {
        "orgId": data.org_id,
        "projectId": data.project_id,
        "invoiceNumber": stripe_invoice.get("number") or f"INV-{int(time.time() * 1000)}",
        "description": data.description,
        "lineItems": [
            {
                "description": li.description,
                "quantity": li.quantity,
                "unitPrice": from_cents(li.unit_price),
                "total": from_cents(li.quantity * li.unit_price),
            }
            for li in data.line_items
        ],
        "subtotal": from_cents(subtotal_cents),
        "tax": from_cents(tax_cents),
        "total": from_cents(subtotal_cents + tax_cents),
        "currency": settings.DEFAULT_CURRENCY,
        "status": stripe_invoice.get("status") or InvoiceStatus.DRAFT.value,
        "issueDate": now,
        "dueDate": data.due_date or now + timedelta(days=settings.INVOICE_DAYS_UNTIL_DUE),
        "stripeInvoiceId": stripe_invoice["id"],
        "stripeCustomerId": customer_id,
        "hostedInvoiceUrl": stripe_invoice.get("hosted_invoice_url"),
        "billingEmail": billing_email,
        "sentTo": [billing_email] if sent else [],
        "sentAt": now if sent else None,
        "visibleToClient": data.visible_to_client,
        "createdBy": claims.uid,
        "createdAt": now,
        "updatedAt": now,
        IDEMPOTENCY_FIELD: idempotency_key,
    }

    created = await gateway.add(f"orgs/{data.org_id}", COLLECTION, encode_fields(record), claims.token)
    return created_response({
        "id": document_id(created["name"]),
        "invoiceNumber": record["invoiceNumber"],
        "url": stripe_invoice.get("hosted_invoice_url"),
        "pdf": stripe_invoice.get("invoice_pdf"),
        "status": record["status"],
        "total": record["total"],
    })


# ==================================================================
#  ✅ Update Invoice (staff only; clients never write invoices)
# ==================================================================
@router.put("/{invoice_id}")
async def update_invoice(
    invoice_id: str,
    data: InvoiceUpdate,
    claims: TokenClaims = Depends(get_current_claims),
    gateway: FirestoreGateway = Depends(get_gateway),
):
    doc, _, role = await load_for_caller(gateway, claims, COLLECTION, invoice_id, "Invoice not found")
    if role not in STAFF_ROLES:
        raise Forbidden()
    current = Invoice.from_document(doc)

    changes = data.changes()
    now = utcnow()
    if changes.get("status") == InvoiceStatus.PAID and current.paid_at is None:
        changes["paidAt"] = now
    changes["updatedAt"] = now

    path = document_path(doc)
    await gateway.patch(path, encode_fields(changes, drop_none=False), claims.token)

    fresh = await gateway.get(path, claims.token)
    if not fresh:
        raise NotFound("Invoice not found")
    return Invoice.from_document(fresh).model_dump(by_alias=True, mode="json")


# ==================================================================
#  ✅ Send Invoice by email
# ==================================================================
@router.post("/{invoice_id}/send")
async def send_invoice(
    invoice_id: str,
    data: Optional[InvoiceSend] = Body(default=None),
    claims: TokenClaims = Depends(get_current_claims),
    gateway: FirestoreGateway = Depends(get_gateway),
    mailer: EmailService = Depends(get_email_service),
):
    doc, org_id, role = await load_for_caller(gateway, claims, COLLECTION, invoice_id, "Invoice not found")
    if role not in STAFF_ROLES:
        raise Forbidden()
    invoice = Invoice.from_document(doc)

    if invoice.status in (InvoiceStatus.VOID.value, PAID):
        raise ValidationError(f"Cannot send an invoice in '{invoice.status}' status")
    data = data or InvoiceSend()
    recipients = [str(e) for e in data.emails] or ([invoice.billing_email] if invoice.billing_email else [])
    if not recipients:
        raise ValidationError("No recipient email")

    org = Organization.from_document(await load_org(gateway, claims.token, org_id) or {})
    delivered = await run_in_threadpool(
        mailer.send_invoice_email,
        recipients,
        invoice.invoice_number,
        org.name or "Client",
        invoice.total,
        invoice.currency,
        invoice_link(invoice),
        invoice.due_date.date().isoformat() if invoice.due_date else None,
        data.message,
    )
    if not delivered:
        raise UpstreamError("Failed to send invoice email")

    now = utcnow()
    changes = {
        "sentTo": list(dict.fromkeys(invoice.sent_to + recipients)),
        "sentAt": now,
        "updatedAt": now,
    }
    if invoice.status == InvoiceStatus.DRAFT.value:
        changes["status"] = InvoiceStatus.OPEN
    path = document_path(doc)
    await gateway.patch(path, encode_fields(changes), claims.token)

    fresh = await gateway.get(path, claims.token)
    if not fresh:
        raise NotFound("Invoice not found")
    return {"sent": True, "recipients": recipients, "invoice": Invoice.from_document(fresh).model_dump(by_alias=True, mode="json")}
