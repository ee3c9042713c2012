# services/documents.py
"""
Shared lookups for tenant-owned resources.

Sub-tenant resources live at ``orgs/{orgId}/{collection}/{id}``. Callers
usually know only the bare id, so ``find_by_id`` scans the collection group.
"""
from collections import Counter
from typing import Any, Dict, Iterable, List, Optional, Tuple
import logging

from fastapi import status
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from core.codec import FieldReader, document_id, encode_value, parent_org_id, relative_path
from core.config import settings
from core.database import FirestoreGateway, structured_query, where_equal
from core.errors import NotFound
from core.roles import OrgRole, require_role, resolve_role
from core.security import TokenClaims

logger = logging.getLogger(__name__)

IDEMPOTENCY_FIELD = "idempotencyKey"


async def find_by_id(
    gateway: FirestoreGateway, token: str, collection: str, doc_id: str
) -> Optional[Dict[str, Any]]:
    """
    Locate ``{collection}/{doc_id}`` under any tenant.

    Only the first ``FIND_BY_ID_SCAN_LIMIT`` documents of the group are
    scanned; a document past that point reads as missing.
    """
    docs = await gateway.run_query(
        structured_query(collection, limit=settings.FIND_BY_ID_SCAN_LIMIT), token
    )
    suffix = f"/{collection}/{doc_id}"
    for doc in docs:
        if doc.get("name", "").endswith(suffix):
            return doc
    if len(docs) >= settings.FIND_BY_ID_SCAN_LIMIT:
        logger.warning(
            f"⚠️ {collection}/{doc_id} not within the first {settings.FIND_BY_ID_SCAN_LIMIT} "
            "documents of the group; lookup may be a false miss"
        )
    return None


def document_path(doc: Dict[str, Any]) -> str:
    return relative_path(doc.get("name", ""))


def owning_org_id(doc: Dict[str, Any]) -> str:
    """Tenant that owns ``doc``, read from its path (never from caller input)."""
    return parent_org_id(doc.get("name", "")) or FieldReader.of(doc).string("orgId")


async def load_for_caller(
    gateway: FirestoreGateway,
    claims: TokenClaims,
    collection: str,
    doc_id: str,
    not_found: str = "Not found",
) -> Tuple[Dict[str, Any], str, OrgRole]:
    """
    Find a resource by bare id and resolve the caller's role in the tenant
    that owns it. Raises ``NotFound`` or ``Forbidden``.
    """
    doc = await find_by_id(gateway, claims.token, collection, doc_id)
    if not doc:
        raise NotFound(not_found)
    org_id = owning_org_id(doc)
    role = require_role(await resolve_role(gateway, claims.token, claims.uid, org_id))
    return doc, org_id, role


def nested_patch(prefix: str, values: Dict[str, Any]) -> Tuple[Dict[str, Any], List[str]]:
    """
    Fields and dotted update mask that touch only ``prefix.<key>`` members
    of a map field, leaving its other members alone.
    """
    fields = {prefix: encode_value(dict(values))}
    return fields, [f"{prefix}.{key}" for key in values]


def page_limit(limit: Optional[int]) -> int:
    if not limit or limit < 1:
        return settings.DEFAULT_PAGE_SIZE
    return min(limit, settings.MAX_PAGE_SIZE)


def status_counts(statuses: Iterable[str]) -> Dict[str, int]:
    """Counts for the fetched page only, never a total across pages."""
    counts = Counter(statuses)
    return {"total": sum(counts.values()), **dict(counts)}


def page_response(key: str, items: List[Any], metrics: Dict[str, Any], limit: int) -> Dict[str, Any]:
    return {
        key: [item.model_dump(by_alias=True, mode="json") for item in items],
        "metrics": metrics,
        "hasMore": len(items) >= limit,
    }


async def find_duplicate(
    gateway: FirestoreGateway,
    token: str,
    collection: str,
    org_id: str,
    idempotency_key: Optional[str],
) -> Optional[Dict[str, Any]]:
    """Document already created under ``org_id`` with this idempotency key, if any."""
    if not idempotency_key:
        return None
    query = structured_query(
        collection,
        filters=[where_equal("orgId", org_id), where_equal(IDEMPOTENCY_FIELD, idempotency_key)],
        limit=1,
    )
    docs = await gateway.run_query(query, token)
    return docs[0] if docs else None


def duplicate_response(doc: Dict[str, Any]) -> JSONResponse:
    """Replay of a create that already happened: original id, 200 instead of 201."""
    return JSONResponse(
        status_code=status.HTTP_200_OK,
        content={"id": document_id(doc.get("name", "")), "duplicate": True},
    )


def created_response(content: Dict[str, Any]) -> JSONResponse:
    return JSONResponse(status_code=status.HTTP_201_CREATED, content=jsonable_encoder(content))
