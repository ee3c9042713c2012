# routes/deliverables.py
from typing import Optional
import logging

from fastapi import APIRouter, Depends, Header, Query

from core.codec import FieldReader, document_id, encode_fields, utcnow
from core.database import FirestoreGateway, get_gateway, structured_query, where_equal
from core.errors import Forbidden, NotFound
from core.roles import STAFF_ROLES, OrgRole, require_role, resolve_role
from core.security import TokenClaims, get_current_claims
from models.models import Deliverable, DeliverableStatus
from schemas.deliverable_schema import CLIENT_WRITABLE_FIELDS, DeliverableCreate, DeliverableUpdate
from services.documents import (
    IDEMPOTENCY_FIELD,
    created_response,
    document_path,
    duplicate_response,
    find_duplicate,
    load_for_caller,
    page_limit,
    page_response,
    status_counts,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Deliverables"])

COLLECTION = "deliverables"
DELIVERED = DeliverableStatus.DELIVERED.value


# ==================================================================
#  ✅ List Deliverables (clients see only client-visible ones)
# ==================================================================
@router.get("")
async def list_deliverables(
    org_id: str = Query(..., alias="orgId"),
    project_id: Optional[str] = Query(default=None, alias="projectId"),
    status: Optional[DeliverableStatus] = Query(default=None),
    limit: Optional[int] = Query(default=None, ge=1),
    claims: TokenClaims = Depends(get_current_claims),
    gateway: FirestoreGateway = Depends(get_gateway),
):
    role = require_role(await resolve_role(gateway, claims.token, claims.uid, org_id))

    filters = [where_equal("orgId", org_id)]
    if project_id:
        filters.append(where_equal("projectId", project_id))
    if status:
        filters.append(where_equal("status", status))
    if role == OrgRole.CLIENT:
        filters.append(where_equal("visibleToClient", True))

    page = page_limit(limit)
    docs = await gateway.run_query(
        structured_query(COLLECTION, filters=filters, order_by=[("dueDate", "ASCENDING")], limit=page),
        claims.token,
    )
    deliverables = [Deliverable.from_document(doc) for doc in docs]

    metrics = status_counts(d.status for d in deliverables)
    metrics["awaitingApproval"] = sum(
        1 for d in deliverables if d.client_approval_required and not d.client_approved
    )
    return page_response("deliverables", deliverables, metrics, page)


# ==================================================================
#  ✅ Get Single Deliverable
# ==================================================================
@router.get("/{deliverable_id}")
async def get_deliverable(
    deliverable_id: str,
    claims: TokenClaims = Depends(get_current_claims),
    gateway: FirestoreGateway = Depends(get_gateway),
):
    doc, _, role = await load_for_caller(gateway, claims, COLLECTION, deliverable_id, "Deliverable not found")
    deliverable = Deliverable.from_document(doc)
    if role == OrgRole.CLIENT and not deliverable.visible_to_client:
        raise NotFound("Deliverable not found")
    return deliverable.model_dump(by_alias=True, mode="json")


# ==================================================================
#  ✅ Create Deliverable under an existing project
# ==================================================================
@router.post("", status_code=201)
async def create_deliverable(
    data: DeliverableCreate,
    idempotency_key: Optional[str] = Header(default=None, alias="Idempotency-Key"),
    claims: TokenClaims = Depends(get_current_claims),
    gateway: FirestoreGateway = Depends(get_gateway),
):
    require_role(await resolve_role(gateway, claims.token, claims.uid, data.org_id), STAFF_ROLES)

    project = await gateway.get(f"orgs/{data.org_id}/projects/{data.project_id}", claims.token)
    if not project:
        raise NotFound("Project not found")

    duplicate = await find_duplicate(gateway, claims.token, COLLECTION, data.org_id, idempotency_key)
    if duplicate:
        return duplicate_response(duplicate)

    now = utcnow()
    record = data.model_dump(by_alias=True, exclude_none=True)
    record.update({
        "clientApproved": False,
        "clientFeedback": "",
        "completedAt": now if data.status == DeliverableStatus.DELIVERED else None,
        "createdBy": claims.uid,
        "createdAt": now,
        "updatedAt": now,
        IDEMPOTENCY_FIELD: idempotency_key,
    })

    created = await gateway.add(f"orgs/{data.org_id}", COLLECTION, encode_fields(record), claims.token)
    return created_response({
        "id": document_id(created["name"]),
        "name": data.name,
        "projectId": data.project_id,
        "projectName": FieldReader.of(project).string("name"),
        "status": data.status.value,
        "dueDate": data.due_date,
    })


# ==================================================================
#  ✅ Update Deliverable
# ==================================================================
@router.put("/{deliverable_id}")
async def update_deliverable(
    deliverable_id: str,
    data: DeliverableUpdate,
    claims: TokenClaims = Depends(get_current_claims),
    gateway: FirestoreGateway = Depends(get_gateway),
):
    doc, _, role = await load_for_caller(gateway, claims, COLLECTION, deliverable_id, "Deliverable not found")
    current = Deliverable.from_document(doc)

    if role == OrgRole.CLIENT:
        if not current.visible_to_client:
            raise NotFound("Deliverable not found")
        if not data.provided_keys() <= CLIENT_WRITABLE_FIELDS:
            raise Forbidden("Clients can only update approval status and feedback")

    changes = data.changes()
    now = utcnow()

    # completedAt is stamped once, on entry into "delivered"
    if changes.get("status") == DeliverableStatus.DELIVERED and current.status != DELIVERED:
        if current.completed_at is None:
            changes["completedAt"] = now
    if changes.get("clientApproved") is True and not current.client_approved:
        changes["clientApprovedAt"] = now
    changes["updatedAt"] = now

    path = document_path(doc)
    await gateway.patch(path, encode_fields(changes, drop_none=False), claims.token)

    fresh = await gateway.get(path, claims.token)
    if not fresh:
        raise NotFound("Deliverable not found")
    return Deliverable.from_document(fresh).model_dump(by_alias=True, mode="json")


# ==================================================================
#  ✅ Delete Deliverable (admin or editor)
# ==================================================================
@router.delete("/{deliverable_id}")
async def delete_deliverable(
    deliverable_id: str,
    claims: TokenClaims = Depends(get_current_claims),
    gateway: FirestoreGateway = Depends(get_gateway),
):
    doc, _, role = await load_for_caller(gateway, claims, COLLECTION, deliverable_id, "Deliverable not found")
    if role not in STAFF_ROLES:
        raise Forbidden()
    await gateway.delete(document_path(doc), claims.token)
    logger.info(f"🗑️ Deliverable {deliverable_id} deleted by {claims.uid}")
    return {"deleted": True}
