# payment_schema.py
from typing import Optional

from pydantic import Field

from schemas.common import RequestModel


class PaymentCreate(RequestModel):
    org_id: str = Field(..., min_length=1)
    amount: float = Field(..., gt=0)
    method: str = Field(..., min_length=1, max_length=50)
    currency: str = Field(default="usd", min_length=3, max_length=3)
    invoice_id: Optional[str] = None
    reference: Optional[str] = Field(default=None, max_length=200)
    notes: Optional[str] = Field(default=None, max_length=2000)
