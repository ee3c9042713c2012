# subscription_schema.py
from datetime import datetime
from typing import Dict, List, Optional

from pydantic import EmailStr, Field

from core.pricing import FeatureKey
from models.models import BillingInterval, SubscriptionStatus
from schemas.common import RequestModel


class SubscriptionFeaturesUpdate(RequestModel):
    features: List[FeatureKey] = Field(..., min_length=1)


class ManualSubscription(RequestModel):
    """Site-staff override of a tenant's subscription state."""

    org_id: str = Field(..., min_length=1)
    plan: Optional[str] = None
    status: SubscriptionStatus = SubscriptionStatus.ACTIVE
    features: List[FeatureKey] = Field(default_factory=list)
    amount: float = Field(default=0.0, ge=0)
    currency: str = Field(default="usd", min_length=3, max_length=3)
    interval: BillingInterval = BillingInterval.MONTHLY
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    billing_email: Optional[EmailStr] = None
    stripe_customer_id: Optional[str] = None
    stripe_subscription_id: Optional[str] = None


class CheckoutRequest(RequestModel):
    features: Dict[FeatureKey, bool]
    email: Optional[EmailStr] = None
    org_id: Optional[str] = None

    def selected(self) -> List[FeatureKey]:
        return [key for key in FeatureKey if self.features.get(key)]
