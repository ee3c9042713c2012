# routes/projects.py
from typing import Optional

from fastapi import APIRouter, Depends, Header, Query

from core.codec import document_id, encode_fields, utcnow
from core.database import FirestoreGateway, field_filter, get_gateway, structured_query, where_equal
from core.errors import Forbidden, NotFound
from core.roles import STAFF_ROLES, OrgRole, require_role, resolve_role
from core.security import TokenClaims, get_current_claims
from models.models import Project, ProjectStatus
from schemas.project_schema import ProjectCreate, ProjectUpdate
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

router = APIRouter(tags=["Projects"])

COLLECTION = "projects"


def _visible_to(project: Project, role: OrgRole, uid: str) -> bool:
    return role != OrgRole.CLIENT or uid in project.assigned_client_uids


# ==================================================================
#  ✅ List Projects (tenant-scoped; clients see only their projects)
# ==================================================================
@router.get("")
async def list_projects(
    org_id: str = Query(..., alias="orgId"),
    status: Optional[ProjectStatus] = Query(default=None),
    assigned_client_uid: Optional[str] = Query(default=None, alias="assignedClientUid"),
    limit: Optional[int] = Query(default=None, ge=1),
    claims: TokenClaims = Depends(get_current_claims),
    gateway: FirestoreGateway = Depends(get_gateway),
):
    role = require_role(await resolve_role(gateway, claims.token, claims.uid, org_id))

    filters = [where_equal("orgId", org_id)]
    if status:
        filters.append(where_equal("status", status))
    # Clients are pinned to their own uid; the filter param only narrows staff views.
    if role == OrgRole.CLIENT:
        filters.append(field_filter("assignedClientUids", "ARRAY_CONTAINS", claims.uid))
    elif assigned_client_uid:
        filters.append(field_filter("assignedClientUids", "ARRAY_CONTAINS", assigned_client_uid))

    page = page_limit(limit)
    docs = await gateway.run_query(
        structured_query(
            COLLECTION, filters=filters, order_by=[("createdAt", "DESCENDING")], limit=page
        ),
        claims.token,
    )
    projects = [Project.from_document(doc) for doc in docs]
    return page_response("projects", projects, status_counts(p.status for p in projects), page)


# ==================================================================
#  ✅ Get Single Project
# ==================================================================
@router.get("/{project_id}")
async def get_project(
    project_id: str,
    claims: TokenClaims = Depends(get_current_claims),
    gateway: FirestoreGateway = Depends(get_gateway),
):
    doc, _, role = await load_for_caller(gateway, claims, COLLECTION, project_id, "Project not found")
    project = Project.from_document(doc)
    if not _visible_to(project, role, claims.uid):
        raise NotFound("Project not found")
    return project.model_dump(by_alias=True, mode="json")


# ==================================================================
#  ✅ Create New Project under a tenant
# ==================================================================
@router.post("", status_code=201)
async def create_project(
    data: ProjectCreate,
    idempotency_key: Optional[str] = Header(default=None, alias="Idempotency-Key"),
    claims: TokenClaims = Depends(get_current_claims),
    gateway: FirestoreGateway = Depends(get_gateway),
):
    require_role(await resolve_role(gateway, claims.token, claims.uid, data.org_id), STAFF_ROLES)

    duplicate = await find_duplicate(gateway, claims.token, COLLECTION, data.org_id, idempotency_key)
    if duplicate:
        return duplicate_response(duplicate)

    now = utcnow()
    record = data.model_dump(by_alias=True, exclude_none=True)
    record.setdefault("quote", {"setup": 0.0, "monthly": 0.0, "approved": False})
    record.setdefault(
        "progress",
        {"percentage": 0.0, "currentPhase": "", "milestonesCompleted": 0, "milestonesTotal": 0},
    )
    record.update({
        "createdBy": claims.uid,
        "createdAt": now,
        "updatedAt": now,
        IDEMPOTENCY_FIELD: idempotency_key,
    })

    created = await gateway.add(f"orgs/{data.org_id}", COLLECTION, encode_fields(record), claims.token)
    return created_response({
        "id": document_id(created["name"]),
        "name": data.name,
        "orgId": data.org_id,
        "status": data.status.value,
    })


# ==================================================================
#  ✅ Update Project (role checked against the owning tenant)
# ==================================================================
@router.put("/{project_id}")
async def update_project(
    project_id: str,
    data: ProjectUpdate,
    claims: TokenClaims = Depends(get_current_claims),
    gateway: FirestoreGateway = Depends(get_gateway),
):
    doc, _, role = await load_for_caller(gateway, claims, COLLECTION, project_id, "Project not found")
    if role not in STAFF_ROLES:
        raise Forbidden()

    changes = data.changes()
    changes["updatedAt"] = utcnow()
    path = document_path(doc)
    await gateway.patch(path, encode_fields(changes, drop_none=False), claims.token)

    fresh = await gateway.get(path, claims.token)
    if not fresh:
        raise NotFound("Project not found")
    return Project.from_document(fresh).model_dump(by_alias=True, mode="json")


# ==================================================================
#  ✅ Delete Project (tenant admin only)
# ==================================================================
@router.delete("/{project_id}")
async def delete_project(
    project_id: str,
    claims: TokenClaims = Depends(get_current_claims),
    gateway: FirestoreGateway = Depends(get_gateway),
):
    doc, _, role = await load_for_caller(gateway, claims, COLLECTION, project_id, "Project not found")
    if role != OrgRole.ADMIN:
        raise Forbidden()
    await gateway.delete(document_path(doc), claims.token)
    return {"deleted": True}
