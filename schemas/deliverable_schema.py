# deliverable_schema.py
from datetime import datetime
from typing import Optional

from pydantic import Field

from models.models import DeliverableStatus, DeliverableType
from schemas.common import RequestModel, UpdateRequest

# The only keys a client-role caller may send on update.
CLIENT_WRITABLE_FIELDS = frozenset({"clientApproved", "clientFeedback"})


class DeliverableCreate(RequestModel):
    org_id: str = Field(..., min_length=1)
    project_id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1, max_length=200)
    type: DeliverableType
    due_date: datetime
    description: str = Field(default="", max_length=5000)
    status: DeliverableStatus = DeliverableStatus.PENDING
    assigned_uid: Optional[str] = None
    reviewer_uid: Optional[str] = None
    visible_to_client: bool = True
    client_approval_required: bool = False


class DeliverableUpdate(UpdateRequest):
    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, max_length=5000)
    type: Optional[DeliverableType] = None
    status: Optional[DeliverableStatus] = None
    due_date: Optional[datetime] = None
    assigned_uid: Optional[str] = None
    reviewer_uid: Optional[str] = None
    visible_to_client: Optional[bool] = None
    client_approval_required: Optional[bool] = None
    client_approved: Optional[bool] = None
    client_feedback: Optional[str] = Field(default=None, max_length=5000)
