# routes/public.py
from typing import Awaitable, Callable

from fastapi import APIRouter, Depends

from core.codec import FieldReader
from core.database import FirestoreGateway, get_gateway, structured_query, where_equal
from core.errors import NotFound, ValidationError
from core.security import get_service_token_provider
from models.models import Invoice, InvoiceStatus, PublicInvoice
from schemas.invoice_schema import InvoiceCheckoutRequest
from services.billing_service import BillingService, get_billing_service

router = APIRouter(tags=["Public"])


async def _issued_invoice(gateway: FirestoreGateway, token: str, invoice_number: str) -> Invoice:
    docs = await gateway.run_query(
        structured_query("invoices", filters=[where_equal("invoiceNumber", invoice_number)], limit=1),
        token,
    )
    if not docs:
        raise NotFound("Invoice not found")

    invoice = Invoice.from_document(docs[0])
    # Drafts have not been issued yet; they read as missing.
    if invoice.status == InvoiceStatus.DRAFT.value:
        raise NotFound("Invoice not found")
    return invoice


# ==================================================================
#  ✅ Invoice by its human-readable number (no auth)
# ==================================================================
@router.get("/invoices/{invoice_number}")
async def get_public_invoice(
    invoice_number: str,
    gateway: FirestoreGateway = Depends(get_gateway),
    service_token: Callable[[], Awaitable[str]] = Depends(get_service_token_provider),
):
    token = await service_token()
    invoice = await _issued_invoice(gateway, token, invoice_number)

    org = await gateway.get(f"orgs/{invoice.org_id}", token) if invoice.org_id else None
    client_name = FieldReader.of(org).map("primaryContact").string("name") or FieldReader.of(org).string("name")
    return PublicInvoice.from_invoice(invoice, client_name or "Client").model_dump(by_alias=True, mode="json")


# ==================================================================
#  💳 Pay an open invoice through Stripe Checkout (no auth)
# ==================================================================
@router.post("/invoices/checkout")
async def create_invoice_checkout(
    data: InvoiceCheckoutRequest,
    gateway: FirestoreGateway = Depends(get_gateway),
    billing: BillingService = Depends(get_billing_service),
    service_token: Callable[[], Awaitable[str]] = Depends(get_service_token_provider),
):
    invoice = await _issued_invoice(gateway, await service_token(), data.invoice_number)
    if invoice.status != InvoiceStatus.OPEN.value:
        raise ValidationError(f"Invoice is {invoice.status}, not payable")
    return await billing.create_invoice_checkout_session(invoice)
