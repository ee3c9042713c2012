# routes/checkout.py
from fastapi import APIRouter, Depends

from core.pricing import plan_from_features, price
from schemas.subscription_schema import CheckoutRequest
from services.billing_service import BillingService, get_billing_service

router = APIRouter(tags=["Checkout"])


# ==================================================================
#  ✅ Price a feature selection and open a Stripe Checkout session
# ==================================================================
@router.post("")
async def create_checkout(
    data: CheckoutRequest,
    billing: BillingService = Depends(get_billing_service),
):
    features = data.selected()
    quote = price(features)
    session = await billing.create_checkout_session(
        quote,
        features,
        email=str(data.email) if data.email else None,
        org_id=data.org_id,
    )
    return {
        **session,
        "plan": plan_from_features(features),
        "quote": quote.model_dump(),
    }
