# routes/payments.py
from collections import Counter
from datetime import datetime
from typing import Any, Dict, Optional, Tuple
import asyncio
import logging

import httpx
from fastapi import APIRouter, Depends, Header, Query

from core.codec import FieldReader, document_id, encode_fields, utcnow
from core.database import (
    FirestoreError,
    FirestoreGateway,
    field_filter,
    get_gateway,
    structured_query,
    where_equal,
)
from core.errors import SideEffectFailure
from core.roles import STAFF_ROLES, require_role, resolve_role
from core.security import TokenClaims, get_current_claims
from models.models import InvoiceStatus, PaymentEvent, PaymentEventType
from schemas.payment_schema import PaymentCreate
from services.documents import (
    IDEMPOTENCY_FIELD,
    created_response,
    duplicate_response,
    find_duplicate,
    page_limit,
    page_response,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Payments"])

COLLECTION = "payment_events"
MAX_INVOICE_LOOKUPS = 10


def _invoice_summary(doc: Dict[str, Any]) -> Dict[str, str]:
    f = FieldReader.of(doc)
    return {
        "id": document_id(doc["name"]),
        "invoiceNumber": f.string("invoiceNumber"),
        "description": f.string("description"),
    }


async def _invoice_by_stripe_id(
    gateway: FirestoreGateway, token: str, org_id: str, stripe_invoice_id: str
) -> Tuple[str, Optional[Dict[str, str]]]:
    query = structured_query(
        "invoices",
        filters=[where_equal("orgId", org_id), where_equal("stripeInvoiceId", stripe_invoice_id)],
        limit=1,
    )
    docs = await gateway.run_query(query, token)
    return stripe_invoice_id, (_invoice_summary(docs[0]) if docs else None)


async def _invoice_by_id(
    gateway: FirestoreGateway, token: str, org_id: str, invoice_id: str
) -> Tuple[str, Optional[Dict[str, str]]]:
    doc = await gateway.get(f"orgs/{org_id}/invoices/{invoice_id}", token)
    return invoice_id, (_invoice_summary(doc) if doc else None)


# ==================================================================
#  ✅ List Payment Events (with invoice cross-references)
# ==================================================================
@router.get("")
async def list_payments(
    org_id: str = Query(..., alias="orgId"),
    event_type: Optional[PaymentEventType] = Query(default=None, alias="eventType"),
    start_date: Optional[datetime] = Query(default=None, alias="startDate"),
    end_date: Optional[datetime] = Query(default=None, alias="endDate"),
    limit: Optional[int] = Query(default=None, ge=1),
    claims: TokenClaims = Depends(get_current_claims),
    gateway: FirestoreGateway = Depends(get_gateway),
):
    require_role(await resolve_role(gateway, claims.token, claims.uid, org_id))

    filters = [where_equal("orgId", org_id)]
    if event_type:
        filters.append(where_equal("eventType", event_type))
    if start_date:
        filters.append(field_filter("timestamp", "GREATER_THAN_OR_EQUAL", start_date))
    if end_date:
        filters.append(field_filter("timestamp", "LESS_THAN_OR_EQUAL", end_date))

    page = page_limit(limit)
    docs = await gateway.run_query(
        structured_query(COLLECTION, filters=filters, order_by=[("timestamp", "DESCENDING")], limit=page),
        claims.token,
    )
    payments = [PaymentEvent.from_document(doc) for doc in docs]

    # Independent read-only lookups: issue together, join once.
    lookups = []
    seen = set()
    for p in payments:
        ref = p.stripe_invoice_id or p.invoice_id
        if not ref or ref in seen:
            continue
        seen.add(ref)
        if p.stripe_invoice_id:
            lookups.append(_invoice_by_stripe_id(gateway, claims.token, org_id, ref))
        else:
            lookups.append(_invoice_by_id(gateway, claims.token, org_id, ref))
        if len(lookups) >= MAX_INVOICE_LOOKUPS:
            break
    invoices = dict(await asyncio.gather(*lookups))

    for p in payments:
        p.invoice = invoices.get(p.stripe_invoice_id or p.invoice_id)

    by_type = Counter(p.event_type for p in payments)
    metrics = {
        "total": len(payments),
        "byEventType": dict(by_type),
        "totalAmount": round(sum(p.amount for p in payments), 2),
    }
    return page_response("payments", payments, metrics, page)


# ==================================================================
#  ✅ Record Manual Payment
# ==================================================================
@router.post("", status_code=201)
async def record_payment(
    data: PaymentCreate,
    idempotency_key: Optional[str] = Header(default=None, alias="Idempotency-Key"),
    claims: TokenClaims = Depends(get_current_claims),
    gateway: FirestoreGateway = Depends(get_gateway),
):
    require_role(await resolve_role(gateway, claims.token, claims.uid, data.org_id), STAFF_ROLES)

    duplicate = await find_duplicate(gateway, claims.token, COLLECTION, data.org_id, idempotency_key)
    if duplicate:
        return duplicate_response(duplicate)

    now = utcnow()
    record = {
        "orgId": data.org_id,
        "eventType": PaymentEventType.MANUAL_PAYMENT_RECORDED,
        "amount": float(data.amount),
        "currency": data.currency.lower(),
        "method": data.method,
        "reference": data.reference,
        "notes": data.notes,
        "invoiceId": data.invoice_id,
        "recordedBy": claims.uid,
        "timestamp": now,
        IDEMPOTENCY_FIELD: idempotency_key,
    }
    created = await gateway.add(f"orgs/{data.org_id}", COLLECTION, encode_fields(record), claims.token)
    payment_id = document_id(created["name"])

    # The log entry is canonical from here on; the invoice mirror is best effort.
    invoice_updated = False
    if data.invoice_id:
        try:
            await _mark_invoice_paid(gateway, claims.token, data, now)
            invoice_updated = True
        except SideEffectFailure as e:
            logger.warning(f"⚠️ {e.message} (payment {payment_id}): {e.cause}")

    return created_response({
        "id": payment_id,
        "message": "Payment recorded successfully",
        "invoiceUpdated": invoice_updated,
    })


async def _mark_invoice_paid(
    gateway: FirestoreGateway, token: str, data: PaymentCreate, paid_at: datetime
) -> None:
    path = f"orgs/{data.org_id}/invoices/{data.invoice_id}"
    try:
        doc = await gateway.get(path, token)
        if doc is None:
            raise SideEffectFailure(f"Invoice {data.invoice_id} not found")

        current = FieldReader.of(doc)
        status = current.string("status")
        if status == InvoiceStatus.VOID:
            raise SideEffectFailure(f"Invoice {data.invoice_id} is void")

        changes: Dict[str, Any] = {
            "updatedAt": paid_at,
            "paymentMethod": data.method,
            "paymentReference": data.reference,
        }
        # An invoice that is already settled keeps its original settlement time.
        if status != InvoiceStatus.PAID or current.timestamp("paidAt") is None:
            changes["status"] = InvoiceStatus.PAID
            changes["paidAt"] = paid_at
        await gateway.patch(path, encode_fields(changes), token, must_exist=True)
    except (FirestoreError, httpx.HTTPError) as e:
        raise SideEffectFailure(f"Invoice {data.invoice_id} not marked paid", cause=e)
