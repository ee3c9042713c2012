# core/roles.py
from enum import Enum
from typing import Any, Dict, Iterable, Optional
import logging

from core.codec import FieldReader
from core.database import FirestoreError, FirestoreGateway
from core.errors import Forbidden
from models.models import OrgStatus

logger = logging.getLogger(__name__)


class OrgRole(str, Enum):
    ADMIN = "admin"
    EDITOR = "editor"
    CLIENT = "client"


STAFF_ROLES = (OrgRole.ADMIN, OrgRole.EDITOR)
ANY_ROLE = (OrgRole.ADMIN, OrgRole.EDITOR, OrgRole.CLIENT)

# Precedence when a uid sits in more than one list.
_MEMBERSHIP_FIELDS = (
    ("adminUids", OrgRole.ADMIN),
    ("editorUids", OrgRole.EDITOR),
    ("clientUids", OrgRole.CLIENT),
)


def role_from_org(org_doc: Optional[Dict[str, Any]], uid: str) -> Optional[OrgRole]:
    fields = FieldReader.of(org_doc)
    for field_name, role in _MEMBERSHIP_FIELDS:
        if uid in fields.strings(field_name):
            return role
    return None


def tenant_role(org_doc: Optional[Dict[str, Any]], uid: str) -> Optional[OrgRole]:
    """Role for work inside the tenant; an archived tenant grants none."""
    if FieldReader.of(org_doc).string("status") == OrgStatus.ARCHIVED.value:
        return None
    return role_from_org(org_doc, uid)


async def load_org(gateway: FirestoreGateway, token: str, org_id: str) -> Optional[Dict[str, Any]]:
    """Tenant document, or ``None`` when it is missing or the store refuses to show it."""
    try:
        return await gateway.get(f"orgs/{org_id}", token)
    except FirestoreError as e:
        if e.status_code == 403:
            logger.info(f"Store denied read of org {org_id}")
            return None
        raise


async def resolve_role(
    gateway: FirestoreGateway, token: str, uid: str, org_id: str
) -> Optional[OrgRole]:
    """
    Role of ``uid`` in ``org_id``; re-read from the tenant document on every call.
    Members of an archived tenant resolve to no role.
    """
    if not org_id:
        return None
    org_doc = await load_org(gateway, token, org_id)
    if not org_doc:
        return None
    return tenant_role(org_doc, uid)


def require_role(
    role: Optional[OrgRole],
    allowed: Iterable[OrgRole] = ANY_ROLE,
    message: str = "Insufficient permissions",
) -> OrgRole:
    if role is None or role not in tuple(allowed):
        raise Forbidden(message)
    return role
