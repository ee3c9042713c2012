# organization_schema.py
from typing import List, Optional

from pydantic import EmailStr, Field

from schemas.common import RequestModel, UpdateRequest


class PrimaryContactIn(RequestModel):
    name: str = Field(default="", max_length=100)
    email: Optional[EmailStr] = None
    phone: Optional[str] = Field(default=None, max_length=40)


class OrgSettingsIn(RequestModel):
    timezone: str = "UTC"
    currency: str = Field(default="usd", min_length=3, max_length=3)
    allow_client_uploads: bool = False
    enable_notifications: bool = True


class OrganizationCreate(RequestModel):
    name: str = Field(..., min_length=1, max_length=100)
    slug: Optional[str] = Field(default=None, max_length=50)
    description: str = Field(default="", max_length=1000)
    website: str = Field(default="", max_length=200)
    primary_contact: Optional[PrimaryContactIn] = None
    billing_email: Optional[EmailStr] = None
    settings: Optional[OrgSettingsIn] = None
    # creator becomes the sole admin; set server-side


class OrganizationUpdate(UpdateRequest):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=1000)
    website: Optional[str] = Field(default=None, max_length=200)
    primary_contact: Optional[PrimaryContactIn] = None
    settings: Optional[OrgSettingsIn] = None
    admin_uids: Optional[List[str]] = None
    editor_uids: Optional[List[str]] = None
    client_uids: Optional[List[str]] = None
