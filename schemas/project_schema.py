# project_schema.py
from datetime import datetime
from typing import List, Optional

from pydantic import Field

from models.models import Priority, ProjectStatus
from schemas.common import RequestModel, UpdateRequest


class QuoteIn(RequestModel):
    setup: float = Field(default=0.0, ge=0)
    monthly: float = Field(default=0.0, ge=0)
    approved: bool = False
    approved_at: Optional[datetime] = None
    approved_by: Optional[str] = None


class ProgressIn(RequestModel):
    percentage: float = Field(default=0.0, ge=0, le=100)
    current_phase: str = ""
    milestones_completed: int = Field(default=0, ge=0)
    milestones_total: int = Field(default=0, ge=0)


class ProjectCreate(RequestModel):
    org_id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1, max_length=200)
    description: str = Field(default="", max_length=5000)
    status: ProjectStatus = ProjectStatus.PLANNING
    priority: Priority = Priority.MEDIUM
    start_date: Optional[datetime] = None
    estimated_end_date: Optional[datetime] = None
    assigned_editor_uids: List[str] = Field(default_factory=list)
    assigned_client_uids: List[str] = Field(default_factory=list)
    project_manager: Optional[str] = None
    features: List[str] = Field(default_factory=list)
    quote: Optional[QuoteIn] = None
    progress: Optional[ProgressIn] = None


class ProjectUpdate(UpdateRequest):
    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, max_length=5000)
    status: Optional[ProjectStatus] = None
    priority: Optional[Priority] = None
    start_date: Optional[datetime] = None
    estimated_end_date: Optional[datetime] = None
    actual_end_date: Optional[datetime] = None
    assigned_editor_uids: Optional[List[str]] = None
    assigned_client_uids: Optional[List[str]] = None
    project_manager: Optional[str] = None
    features: Optional[List[str]] = None
    quote: Optional[QuoteIn] = None
    progress: Optional[ProgressIn] = None
