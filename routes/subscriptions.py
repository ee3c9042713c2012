# routes/subscriptions.py
"""
Tenant subscription administration.

The subscription lives embedded in the tenant document (``orgs/{orgId}.subscription``);
every write here goes through Stripe first, then mirrors the outcome with a
dotted update mask so unrelated subscription members are left alone.
"""
import logging
from typing import Any, Dict, Tuple

from fastapi import APIRouter, Depends, Query

from core.codec import utcnow
from core.database import FirestoreGateway, get_gateway
from core.errors import NotFound, ValidationError
from core.pricing import plan_from_features, price
from core.roles import STAFF_ROLES, OrgRole, load_org, require_role, tenant_role
from core.security import TokenClaims, get_current_claims
from models.models import Organization, SubscriptionStatus
from schemas.subscription_schema import SubscriptionFeaturesUpdate
from services.billing_service import BillingService, from_unix, get_billing_service
from services.documents import nested_patch

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Subscriptions"])


async def _load(
    gateway: FirestoreGateway, claims: TokenClaims, org_id: str
) -> Tuple[Organization, OrgRole]:
    org_doc = await load_org(gateway, claims.token, org_id)
    if not org_doc:
        raise NotFound("Organization not found")
    role = require_role(tenant_role(org_doc, claims.uid))
    return Organization.from_document(org_doc), role


async def _mirror(gateway: FirestoreGateway, token: str, org_id: str, values: Dict[str, Any]) -> Organization:
    values = {**values, "updatedAt": utcnow()}
    fields, paths = nested_patch("subscription", values)
    await gateway.patch(f"orgs/{org_id}", fields, token, field_paths=paths, must_exist=True)
    fresh = await gateway.get(f"orgs/{org_id}", token)
    if not fresh:
        raise NotFound("Organization not found")
    return Organization.from_document(fresh)


# ==================================================================
#  ✅ Stored subscription record
# ==================================================================
@router.get("/{org_id}")
async def get_subscription(
    org_id: str,
    claims: TokenClaims = Depends(get_current_claims),
    gateway: FirestoreGateway = Depends(get_gateway),
):
    org, role = await _load(gateway, claims, org_id)
    require_role(role, STAFF_ROLES)
    return {"orgId": org.id, "subscription": org.subscription.model_dump(by_alias=True, mode="json")}


# ==================================================================
#  ✅ Live status from Stripe
# ==================================================================
@router.get("/{org_id}/status")
async def get_subscription_status(
    org_id: str,
    claims: TokenClaims = Depends(get_current_claims),
    gateway: FirestoreGateway = Depends(get_gateway),
    billing: BillingService = Depends(get_billing_service),
):
    org, role = await _load(gateway, claims, org_id)
    require_role(role, STAFF_ROLES)

    stored = org.subscription.model_dump(by_alias=True, mode="json")
    if not org.subscription.stripe_subscription_id:
        return {"orgId": org.id, "subscription": stored, "live": None}

    live = await billing.subscription_status(org.subscription.stripe_subscription_id)
    return {"orgId": org.id, "subscription": stored, "live": live}


# ==================================================================
#  ✅ Change feature set (tenant admin)
# ==================================================================
@router.put("/{org_id}")
async def update_subscription(
    org_id: str,
    data: SubscriptionFeaturesUpdate,
    claims: TokenClaims = Depends(get_current_claims),
    gateway: FirestoreGateway = Depends(get_gateway),
    billing: BillingService = Depends(get_billing_service),
):
    org, role = await _load(gateway, claims, org_id)
    require_role(role, [OrgRole.ADMIN])
    subscription_id = org.subscription.stripe_subscription_id
    if not subscription_id:
        raise ValidationError("No active subscription")

    features = list(dict.fromkeys(data.features))
    await billing.update_subscription_features(subscription_id, features)

    quote = price(features)
    org = await _mirror(gateway, claims.token, org_id, {
        "features": [f.value for f in features],
        "plan": plan_from_features(features),
        "monthlyTotal": float(quote.monthly),
        "amount": float(quote.monthly),
    })
    logger.info(f"✅ Subscription features for org {org_id} set to {[f.value for f in features]}")
    return {"orgId": org.id, "subscription": org.subscription.model_dump(by_alias=True, mode="json")}


# ==================================================================
#  ✅ Cancel (tenant admin)
# ==================================================================
@router.delete("/{org_id}")
async def cancel_subscription(
    org_id: str,
    immediately: bool = Query(default=False),
    claims: TokenClaims = Depends(get_current_claims),
    gateway: FirestoreGateway = Depends(get_gateway),
    billing: BillingService = Depends(get_billing_service),
):
    org, role = await _load(gateway, claims, org_id)
    require_role(role, [OrgRole.ADMIN])
    subscription_id = org.subscription.stripe_subscription_id
    if not subscription_id:
        raise ValidationError("No active subscription")

    canceled = await billing.cancel_subscription(subscription_id, immediately=immediately)

    if immediately:
        values = {
            "active": False,
            "status": SubscriptionStatus.CANCELED.value,
            "cancelAtPeriodEnd": False,
            "canceledAt": from_unix(canceled.get("canceled_at")) or utcnow(),
        }
    else:
        values = {
            "cancelAtPeriodEnd": True,
            "canceledAt": from_unix(canceled.get("canceled_at")),
        }
    org = await _mirror(gateway, claims.token, org_id, values)
    return {"orgId": org.id, "subscription": org.subscription.model_dump(by_alias=True, mode="json")}
