# routes/organizations.py
from typing import Any, Dict, List, Optional, Tuple
import asyncio
import logging
import re

from fastapi import APIRouter, Depends, Header

from core.codec import document_id, encode_fields, utcnow
from core.database import FirestoreGateway, field_filter, get_gateway, structured_query, where_equal
from core.errors import NotFound, ValidationError
from core.roles import OrgRole, load_org, require_role, role_from_org
from core.security import TokenClaims, get_current_claims
from models.models import (
    BillingInterval,
    Organization,
    OrganizationClientView,
    OrgStatus,
    SubscriptionStatus,
)
from schemas.organization_schema import OrganizationCreate, OrganizationUpdate
from services.documents import IDEMPOTENCY_FIELD, created_response, duplicate_response

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Organizations"])

COLLECTION = "orgs"
MEMBERSHIP_FIELDS = ("adminUids", "editorUids", "clientUids")


def _slugify(name: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-")
    return slug[:50] or "org"


def _org_view(org: Organization, role: OrgRole) -> Dict[str, Any]:
    """Full record for staff, reduced shape for clients."""
    if role == OrgRole.CLIENT:
        view = OrganizationClientView.from_org(org).model_dump(by_alias=True, mode="json")
    else:
        view = org.model_dump(by_alias=True, mode="json")
    view["role"] = role.value
    return view


async def _load_member_org(
    gateway: FirestoreGateway, claims: TokenClaims, org_id: str
) -> Tuple[Dict[str, Any], OrgRole]:
    org_doc = await load_org(gateway, claims.token, org_id)
    if not org_doc:
        raise NotFound("Organization not found")
    role = require_role(role_from_org(org_doc, claims.uid))
    return org_doc, role


# ==================================================================
#  ✅ Create Organization (caller becomes its sole admin)
# ==================================================================
@router.post("", status_code=201)
async def create_organization(
    data: OrganizationCreate,
    idempotency_key: Optional[str] = Header(default=None, alias="Idempotency-Key"),
    claims: TokenClaims = Depends(get_current_claims),
    gateway: FirestoreGateway = Depends(get_gateway),
):
    # Tenants have no parent tenant, so the replay check is keyed on the creator.
    if idempotency_key:
        query = structured_query(
            COLLECTION,
            filters=[where_equal("createdBy", claims.uid), where_equal(IDEMPOTENCY_FIELD, idempotency_key)],
            limit=1,
            all_descendants=False,
        )
        existing = await gateway.run_query(query, claims.token)
        if existing:
            return duplicate_response(existing[0])

    now = utcnow()
    contact = data.primary_contact.model_dump(by_alias=True, mode="json") if data.primary_contact else {
        "name": "",
        "email": claims.email or "",
    }
    billing_email = str(data.billing_email) if data.billing_email else (contact.get("email") or claims.email or "")
    org_settings = data.settings.model_dump(by_alias=True) if data.settings else {
        "timezone": "UTC",
        "currency": "usd",
        "allowClientUploads": False,
        "enableNotifications": True,
    }

    record = {
        "name": data.name,
        "slug": data.slug or _slugify(data.name),
        "description": data.description,
        "website": data.website,
        "primaryContact": contact,
        "adminUids": [claims.uid],
        "editorUids": [],
        "clientUids": [],
        "subscription": {
            "plan": "",
            "active": False,
            "status": SubscriptionStatus.INACTIVE.value,
            "features": [],
            "billingEmail": billing_email,
            "amount": 0.0,
            "currency": org_settings.get("currency", "usd"),
            "interval": BillingInterval.MONTHLY.value,
            "setupTotal": 0.0,
            "monthlyTotal": 0.0,
            "setupPaid": False,
            "cancelAtPeriodEnd": False,
            "updatedAt": now,
        },
        "settings": org_settings,
        "status": OrgStatus.ACTIVE,
        "createdBy": claims.uid,
        "createdAt": now,
        "updatedAt": now,
        IDEMPOTENCY_FIELD: idempotency_key,
    }

    created = await gateway.add("", COLLECTION, encode_fields(record), claims.token)
    org_id = document_id(created["name"])
    logger.info(f"✅ Organization {org_id} created by {claims.uid}")
    return created_response({
        "id": org_id,
        "name": record["name"],
        "slug": record["slug"],
        "role": OrgRole.ADMIN.value,
    })


# ==================================================================
#  ✅ List My Organizations (one query per membership list)
# ==================================================================
@router.get("")
async def list_organizations(
    claims: TokenClaims = Depends(get_current_claims),
    gateway: FirestoreGateway = Depends(get_gateway),
):
    queries = [
        gateway.run_query(
            structured_query(
                COLLECTION,
                filters=[field_filter(membership, "ARRAY_CONTAINS", claims.uid)],
                all_descendants=False,
            ),
            claims.token,
        )
        for membership in MEMBERSHIP_FIELDS
    ]
    results = await asyncio.gather(*queries)

    organizations: List[Dict[str, Any]] = []
    seen = set()
    for docs in results:
        for doc in docs:
            org_id = document_id(doc["name"])
            if org_id in seen:
                continue
            seen.add(org_id)
            org = Organization.from_document(doc)
            role = role_from_org(doc, claims.uid)
            if role is None or org.status == OrgStatus.ARCHIVED.value:
                continue
            organizations.append(_org_view(org, role))

    organizations.sort(key=lambda o: o.get("name", "").lower())
    return {"organizations": organizations, "total": len(organizations)}


# ==================================================================
#  ✅ Get Organization (clients get the reduced view)
# ==================================================================
@router.get("/{org_id}")
async def get_organization(
    org_id: str,
    claims: TokenClaims = Depends(get_current_claims),
    gateway: FirestoreGateway = Depends(get_gateway),
):
    org_doc, role = await _load_member_org(gateway, claims, org_id)
    return _org_view(Organization.from_document(org_doc), role)


# ==================================================================
#  ✅ Update Organization (tenant admin)
# ==================================================================
@router.put("/{org_id}")
async def update_organization(
    org_id: str,
    data: OrganizationUpdate,
    claims: TokenClaims = Depends(get_current_claims),
    gateway: FirestoreGateway = Depends(get_gateway),
):
    _, role = await _load_member_org(gateway, claims, org_id)
    require_role(role, [OrgRole.ADMIN])

    changes = data.changes()
    if "adminUids" in changes and not changes["adminUids"]:
        raise ValidationError("An organization needs at least one admin")
    changes = {k: v for k, v in changes.items() if v is not None}
    changes["updatedAt"] = utcnow()

    path = f"{COLLECTION}/{org_id}"
    await gateway.patch(path, encode_fields(changes), claims.token, must_exist=True)

    fresh = await gateway.get(path, claims.token)
    if not fresh:
        raise NotFound("Organization not found")
    return _org_view(Organization.from_document(fresh), role_from_org(fresh, claims.uid) or role)


# ==================================================================
#  ✅ Archive Organization (soft delete, tenant admin)
# ==================================================================
@router.delete("/{org_id}")
async def archive_organization(
    org_id: str,
    claims: TokenClaims = Depends(get_current_claims),
    gateway: FirestoreGateway = Depends(get_gateway),
):
    _, role = await _load_member_org(gateway, claims, org_id)
    require_role(role, [OrgRole.ADMIN])

    now = utcnow()
    await gateway.patch(
        f"{COLLECTION}/{org_id}",
        encode_fields({"status": OrgStatus.ARCHIVED, "archivedAt": now, "updatedAt": now}),
        claims.token,
        must_exist=True,
    )
    logger.info(f"🗄️ Organization {org_id} archived by {claims.uid}")
    return {"archived": True}
