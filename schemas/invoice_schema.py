# invoice_schema.py
from datetime import datetime
from typing import Dict, List, Optional

from pydantic import EmailStr, Field

from models.models import InvoiceStatus
from schemas.common import RequestModel, UpdateRequest


class LineItemIn(RequestModel):
    description: str = Field(..., min_length=1)
    quantity: int = Field(..., ge=1)
    unit_price: int = Field(..., ge=0, description="Unit price in cents")


class InvoiceCreate(RequestModel):
    org_id: str = Field(..., min_length=1)
    project_id: Optional[str] = None
    description: str = Field(..., min_length=1)
    line_items: List[LineItemIn] = Field(..., min_length=1)
    due_date: Optional[datetime] = None
    auto_send: bool = True
    visible_to_client: bool = True
    metadata: Dict[str, str] = Field(default_factory=dict)


class InvoiceUpdate(UpdateRequest):
    description: Optional[str] = None
    status: Optional[InvoiceStatus] = None
    due_date: Optional[datetime] = None
    billing_email: Optional[EmailStr] = None
    visible_to_client: Optional[bool] = None
    payment_method: Optional[str] = None
    payment_reference: Optional[str] = None


class InvoiceSend(RequestModel):
    emails: List[EmailStr] = Field(default_factory=list)
    message: Optional[str] = Field(default=None, max_length=2000)


class InvoiceCheckoutRequest(RequestModel):
    invoice_number: str = Field(..., min_length=1)
