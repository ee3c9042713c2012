# routes/admin.py
"""
Site-staff console: admin-SDK status, claim bootstrap, and the
cross-tenant subscription overview.
"""
from datetime import timedelta
from typing import Optional
import logging

from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import JSONResponse

from core.codec import utcnow
from core.config import settings
from core.database import FirestoreGateway, get_gateway, structured_query, where_equal
from core.errors import Forbidden, NotFound
from core.pricing import plan_from_features
from core.security import (
    AdminTokenVerifier,
    TokenClaims,
    get_claims_admin,
    get_current_claims,
    get_site_staff,
    is_allowlisted_email,
)
from models.models import BillingInterval, Organization, SubscriptionStatus
from schemas.subscription_schema import ManualSubscription
from services.documents import nested_patch, page_limit

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Admin"])

SUPERADMIN_CLAIMS = {"admin": True, "siteRole": "superadmin"}


# ==================================================================
#  ✅ Admin SDK status (public)
# ==================================================================
@router.get("/status")
def admin_status():
    return {
        "adminAvailable": settings.ADMIN_SDK_AVAILABLE,
        "projectId": settings.FIREBASE_ADMIN_PROJECT_ID if settings.ADMIN_SDK_AVAILABLE else None,
    }


# ==================================================================
#  ✅ Bootstrap site-admin claims for allow-listed identities
# ==================================================================
@router.post("/bootstrap")
async def bootstrap_admin(
    claims: TokenClaims = Depends(get_current_claims),
    admin: Optional[AdminTokenVerifier] = Depends(get_claims_admin),
):
    if admin is None:
        return JSONResponse(
            status_code=status.HTTP_501_NOT_IMPLEMENTED,
            content={"error": "Admin SDK not configured; bootstrap disabled"},
        )
    if not is_allowlisted_email(claims.email):
        raise Forbidden("Forbidden")

    # Keep whatever custom claims the account already carries.
    reserved = {"iss", "aud", "auth_time", "user_id", "sub", "iat", "exp", "email",
                "email_verified", "firebase", "uid", "name", "picture"}
    current = {k: v for k, v in claims.claims.items() if k not in reserved}
    await admin.set_custom_claims(claims.uid, {**current, **SUPERADMIN_CLAIMS})

    logger.info(f"🛡️ Site admin claims granted to {claims.email} ({claims.uid})")
    return {"success": True, "message": "Claims set. Sign out and back in to refresh."}


# ==================================================================
#  ✅ Subscriptions across all tenants (site staff)
# ==================================================================
@router.get("/subscriptions")
async def list_subscriptions(
    org_id: Optional[str] = Query(default=None, alias="orgId"),
    subscription_status: Optional[SubscriptionStatus] = Query(default=None, alias="status"),
    limit: Optional[int] = Query(default=None, ge=1),
    staff: TokenClaims = Depends(get_site_staff),
    gateway: FirestoreGateway = Depends(get_gateway),
):
    if org_id:
        doc = await gateway.get(f"orgs/{org_id}", staff.token)
        docs = [doc] if doc else []
    else:
        filters = []
        if subscription_status:
            filters.append(where_equal("subscription.status", subscription_status))
        query = structured_query(
            "orgs",
            filters=filters,
            order_by=[("updatedAt", "DESCENDING")],
            limit=page_limit(limit),
            all_descendants=False,
        )
        docs = await gateway.run_query(query, staff.token)

    subscriptions = []
    for doc in docs:
        org = Organization.from_document(doc)
        if subscription_status and org.subscription.status != subscription_status.value:
            continue
        entry = org.subscription.model_dump(by_alias=True, mode="json")
        entry.update({"orgId": org.id, "orgName": org.name})
        subscriptions.append(entry)

    active = [s for s in subscriptions if s["status"] == SubscriptionStatus.ACTIVE.value]
    monthly = sum(s["amount"] for s in active if s["interval"] == BillingInterval.MONTHLY.value)
    yearly = sum(s["amount"] for s in active if s["interval"] == BillingInterval.YEARLY.value)
    canceled = sum(1 for s in subscriptions if s["status"] == SubscriptionStatus.CANCELED.value)
    count = len(subscriptions)

    metrics = {
        "totalSubscriptions": count,
        "activeSubscriptions": len(active),
        "monthlyRevenue": round(monthly, 2),
        "yearlyRevenue": round(yearly, 2),
        "totalMRR": round(monthly + yearly / 12, 2),
        "churnRate": canceled / max(count, 1),
        "averageAmount": round(sum(s["amount"] for s in subscriptions) / count, 2) if count else 0,
    }
    return {"subscriptions": subscriptions, "metrics": metrics}


# ==================================================================
#  ✅ Record a manual subscription onto a tenant (site staff)
# ==================================================================
@router.post("/subscriptions", status_code=201)
async def record_subscription(
    data: ManualSubscription,
    staff: TokenClaims = Depends(get_site_staff),
    gateway: FirestoreGateway = Depends(get_gateway),
):
    path = f"orgs/{data.org_id}"
    if not await gateway.get(path, staff.token):
        raise NotFound("Organization not found")

    now = utcnow()
    values = data.model_dump(by_alias=True, exclude={"org_id"}, exclude_none=True)
    values.update({
        "plan": data.plan or plan_from_features(data.features),
        "features": [f.value for f in data.features],
        "status": data.status.value,
        "interval": data.interval.value,
        "active": data.status in (SubscriptionStatus.ACTIVE, SubscriptionStatus.TRIALING),
        "currentPeriodStart": data.current_period_start or now,
        "currentPeriodEnd": data.current_period_end or now + timedelta(days=30),
        "updatedAt": now,
    })
    if data.billing_email:
        values["billingEmail"] = str(data.billing_email)

    fields, paths = nested_patch("subscription", values)
    await gateway.patch(path, fields, staff.token, field_paths=paths, must_exist=True)
    logger.info(f"✅ Manual subscription recorded for org {data.org_id} by {staff.email}")

    fresh = await gateway.get(path, staff.token)
    if not fresh:
        raise NotFound("Organization not found")
    org = Organization.from_document(fresh)
    return {"orgId": org.id, "subscription": org.subscription.model_dump(by_alias=True, mode="json")}
