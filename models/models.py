# models/models.py
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from core.codec import FieldReader, document_id, parent_org_id


# ============================================================
# ENUMS
# ============================================================
class OrgStatus(str, Enum):
    ACTIVE = "active"
    SUSPENDED = "suspended"
    ARCHIVED = "archived"


class ProjectStatus(str, Enum):
    PLANNING = "planning"
    IN_PROGRESS = "in-progress"
    REVIEW = "review"
    COMPLETED = "completed"
    ON_HOLD = "on-hold"
    CANCELLED = "cancelled"


class Priority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class DeliverableType(str, Enum):
    DESIGN = "design"
    DEVELOPMENT = "development"
    CONTENT = "content"
    TESTING = "testing"
    DEPLOYMENT = "deployment"
    DOCUMENTATION = "documentation"


class DeliverableStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in-progress"
    REVIEW = "review"
    APPROVED = "approved"
    DELIVERED = "delivered"


class InvoiceStatus(str, Enum):
    DRAFT = "draft"
    OPEN = "open"
    PAID = "paid"
    VOID = "void"
    UNCOLLECTIBLE = "uncollectible"
    PAYMENT_FAILED = "payment_failed"


class SubscriptionStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    CANCELED = "canceled"
    INCOMPLETE = "incomplete"
    PAST_DUE = "past_due"
    TRIALING = "trialing"
    PAUSED = "paused"


class BillingInterval(str, Enum):
    MONTHLY = "monthly"
    YEARLY = "yearly"


class PaymentEventType(str, Enum):
    MANUAL_PAYMENT_RECORDED = "manual_payment_recorded"
    INVOICE_PAYMENT_SUCCEEDED = "invoice_payment_succeeded"
    INVOICE_PAYMENT_FAILED = "invoice_payment_failed"


# Stored-document field names that no update payload may set.
PROTECTED_FIELDS = frozenset({"id", "orgId", "createdBy", "createdAt"})


class DocumentModel(BaseModel):
    """Read model decoded from a Firestore document; serialises camelCase."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ============================================================
# ORGANIZATION (tenant)
# ============================================================
class PrimaryContact(DocumentModel):
    name: str = ""
    email: str = ""
    phone: Optional[str] = None

    @classmethod
    def from_fields(cls, f: FieldReader) -> "PrimaryContact":
        return cls(name=f.string("name"), email=f.string("email"), phone=f.optional_string("phone"))


class SubscriptionRecord(DocumentModel):
    """
    The tenant's one current subscription, embedded as ``orgs/{id}.subscription``.

    Mirrors the processor's subscription plus the plan/feature bookkeeping
    the portal keeps itself.
    """

    plan: str = ""
    active: bool = False
    status: str = SubscriptionStatus.INACTIVE.value
    features: List[str] = Field(default_factory=list)
    billing_email: str = ""
    stripe_customer_id: Optional[str] = None
    stripe_subscription_id: Optional[str] = None
    price_id: Optional[str] = None
    quantity: int = 1
    amount: float = 0.0
    currency: str = "usd"
    interval: str = BillingInterval.MONTHLY.value
    setup_total: float = 0.0
    monthly_total: float = 0.0
    setup_paid: bool = False
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    cancel_at_period_end: bool = False
    canceled_at: Optional[datetime] = None
    trial_start: Optional[datetime] = None
    trial_end: Optional[datetime] = None
    start_date: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_fields(cls, f: FieldReader) -> "SubscriptionRecord":
        return cls(
            plan=f.string("plan"),
            active=f.boolean("active"),
            status=f.string("status", SubscriptionStatus.INACTIVE.value),
            features=f.strings("features"),
            billing_email=f.string("billingEmail"),
            stripe_customer_id=f.optional_string("stripeCustomerId"),
            stripe_subscription_id=f.optional_string("stripeSubscriptionId"),
            price_id=f.optional_string("priceId"),
            quantity=f.integer("quantity", 1),
            amount=f.number("amount"),
            currency=f.string("currency", "usd"),
            interval=f.string("interval", BillingInterval.MONTHLY.value),
            setup_total=f.number("setupTotal"),
            monthly_total=f.number("monthlyTotal"),
            setup_paid=f.boolean("setupPaid"),
            current_period_start=f.timestamp("currentPeriodStart"),
            current_period_end=f.timestamp("currentPeriodEnd"),
            cancel_at_period_end=f.boolean("cancelAtPeriodEnd"),
            canceled_at=f.timestamp("canceledAt"),
            trial_start=f.timestamp("trialStart"),
            trial_end=f.timestamp("trialEnd"),
            start_date=f.timestamp("startDate"),
            updated_at=f.timestamp("updatedAt"),
        )


class OrgSettings(DocumentModel):
    timezone: str = "UTC"
    currency: str = "usd"
    allow_client_uploads: bool = False
    enable_notifications: bool = True

    @classmethod
    def from_fields(cls, f: FieldReader) -> "OrgSettings":
        return cls(
            timezone=f.string("timezone", "UTC"),
            currency=f.string("currency", "usd"),
            allow_client_uploads=f.boolean("allowClientUploads"),
            enable_notifications=f.boolean("enableNotifications", True),
        )


class Organization(DocumentModel):
    id: str
    name: str = ""
    slug: str = ""
    description: str = ""
    website: str = ""
    primary_contact: PrimaryContact = Field(default_factory=PrimaryContact)
    admin_uids: List[str] = Field(default_factory=list)
    editor_uids: List[str] = Field(default_factory=list)
    client_uids: List[str] = Field(default_factory=list)
    subscription: SubscriptionRecord = Field(default_factory=SubscriptionRecord)
    settings: OrgSettings = Field(default_factory=OrgSettings)
    status: str = OrgStatus.ACTIVE.value
    created_by: str = ""
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "Organization":
        f = FieldReader.of(doc)
        return cls(
            id=document_id(doc.get("name", "")),
            name=f.string("name"),
            slug=f.string("slug"),
            description=f.string("description"),
            website=f.string("website"),
            primary_contact=PrimaryContact.from_fields(f.map("primaryContact")),
            admin_uids=f.strings("adminUids"),
            editor_uids=f.strings("editorUids"),
            client_uids=f.strings("clientUids"),
            subscription=SubscriptionRecord.from_fields(f.map("subscription")),
            settings=OrgSettings.from_fields(f.map("settings")),
            status=f.string("status", OrgStatus.ACTIVE.value),
            created_by=f.string("createdBy"),
            created_at=f.timestamp("createdAt"),
            updated_at=f.timestamp("updatedAt"),
        )


class OrganizationClientView(DocumentModel):
    """What a client-role member may see of their tenant (no billing identifiers)."""

    id: str
    name: str
    description: str = ""
    website: str = ""
    plan: str = ""
    subscription_status: str = ""
    current_period_end: Optional[datetime] = None
    settings: OrgSettings

    @classmethod
    def from_org(cls, org: Organization) -> "OrganizationClientView":
        return cls(
            id=org.id,
            name=org.name,
            description=org.description,
            website=org.website,
            plan=org.subscription.plan,
            subscription_status=org.subscription.status,
            current_period_end=org.subscription.current_period_end,
            settings=org.settings,
        )


# ============================================================
# PROJECT
# ============================================================
class ProjectQuote(DocumentModel):
    setup: float = 0.0
    monthly: float = 0.0
    approved: bool = False
    approved_at: Optional[datetime] = None
    approved_by: Optional[str] = None

    @classmethod
    def from_fields(cls, f: FieldReader) -> "ProjectQuote":
        return cls(
            setup=f.number("setup"),
            monthly=f.number("monthly"),
            approved=f.boolean("approved"),
            approved_at=f.timestamp("approvedAt"),
            approved_by=f.optional_string("approvedBy"),
        )


class ProjectProgress(DocumentModel):
    percentage: float = 0.0
    current_phase: str = ""
    milestones_completed: int = 0
    milestones_total: int = 0

    @classmethod
    def from_fields(cls, f: FieldReader) -> "ProjectProgress":
        return cls(
            percentage=f.number("percentage"),
            current_phase=f.string("currentPhase"),
            milestones_completed=f.integer("milestonesCompleted"),
            milestones_total=f.integer("milestonesTotal"),
        )


class Project(DocumentModel):
    id: str
    org_id: str
    name: str = ""
    description: str = ""
    status: str = ProjectStatus.PLANNING.value
    priority: str = Priority.MEDIUM.value
    start_date: Optional[datetime] = None
    estimated_end_date: Optional[datetime] = None
    actual_end_date: Optional[datetime] = None
    assigned_editor_uids: List[str] = Field(default_factory=list)
    assigned_client_uids: List[str] = Field(default_factory=list)
    project_manager: Optional[str] = None
    features: List[str] = Field(default_factory=list)
    quote: ProjectQuote = Field(default_factory=ProjectQuote)
    progress: ProjectProgress = Field(default_factory=ProjectProgress)
    created_by: str = ""
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "Project":
        f = FieldReader.of(doc)
        name = doc.get("name", "")
        return cls(
            id=document_id(name),
            org_id=f.string("orgId") or parent_org_id(name) or "",
            name=f.string("name"),
            description=f.string("description"),
            status=f.string("status", ProjectStatus.PLANNING.value),
            priority=f.string("priority", Priority.MEDIUM.value),
            start_date=f.timestamp("startDate"),
            estimated_end_date=f.timestamp("estimatedEndDate"),
            actual_end_date=f.timestamp("actualEndDate"),
            assigned_editor_uids=f.strings("assignedEditorUids"),
            assigned_client_uids=f.strings("assignedClientUids"),
            project_manager=f.optional_string("projectManager"),
            features=f.strings("features"),
            quote=ProjectQuote.from_fields(f.map("quote")),
            progress=ProjectProgress.from_fields(f.map("progress")),
            created_by=f.string("createdBy"),
            created_at=f.timestamp("createdAt"),
            updated_at=f.timestamp("updatedAt"),
        )


# ============================================================
# DELIVERABLE
# ============================================================
class Deliverable(DocumentModel):
    id: str
    org_id: str
    project_id: str = ""
    name: str = ""
    description: str = ""
    type: str = DeliverableType.DEVELOPMENT.value
    status: str = DeliverableStatus.PENDING.value
    due_date: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    assigned_uid: Optional[str] = None
    reviewer_uid: Optional[str] = None
    visible_to_client: bool = False
    client_approval_required: bool = False
    client_approved: bool = False
    client_approved_at: Optional[datetime] = None
    client_feedback: str = ""
    created_by: str = ""
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "Deliverable":
        f = FieldReader.of(doc)
        name = doc.get("name", "")
        return cls(
            id=document_id(name),
            org_id=f.string("orgId") or parent_org_id(name) or "",
            project_id=f.string("projectId"),
            name=f.string("name"),
            description=f.string("description"),
            type=f.string("type", DeliverableType.DEVELOPMENT.value),
            status=f.string("status", DeliverableStatus.PENDING.value),
            due_date=f.timestamp("dueDate"),
            completed_at=f.timestamp("completedAt"),
            assigned_uid=f.optional_string("assignedUid"),
            reviewer_uid=f.optional_string("reviewerUid"),
            visible_to_client=f.boolean("visibleToClient"),
            client_approval_required=f.boolean("clientApprovalRequired"),
            client_approved=f.boolean("clientApproved"),
            client_approved_at=f.timestamp("clientApprovedAt"),
            client_feedback=f.string("clientFeedback"),
            created_by=f.string("createdBy"),
            created_at=f.timestamp("createdAt"),
            updated_at=f.timestamp("updatedAt"),
        )


# ============================================================
# INVOICE
# ============================================================
class InvoiceLineItem(DocumentModel):
    description: str = ""
    quantity: int = 1
    unit_price: float = 0.0
    total: float = 0.0

    @classmethod
    def from_fields(cls, f: FieldReader) -> "InvoiceLineItem":
        return cls(
            description=f.string("description"),
            quantity=f.integer("quantity", 1),
            unit_price=f.number("unitPrice"),
            total=f.number("total"),
        )


class Invoice(DocumentModel):
    """Amounts are decimal currency units (dollars), never cents."""

    id: str
    org_id: str
    project_id: Optional[str] = None
    invoice_number: str = ""
    description: str = ""
    line_items: List[InvoiceLineItem] = Field(default_factory=list)
    subtotal: float = 0.0
    tax: float = 0.0
    total: float = 0.0
    currency: str = "usd"
    status: str = InvoiceStatus.DRAFT.value
    issue_date: Optional[datetime] = None
    due_date: Optional[datetime] = None
    paid_at: Optional[datetime] = None
    sent_at: Optional[datetime] = None
    stripe_invoice_id: str = ""
    stripe_event_id: str = ""
    stripe_customer_id: str = ""
    hosted_invoice_url: str = ""
    billing_email: str = ""
    sent_to: List[str] = Field(default_factory=list)
    visible_to_client: bool = True
    payment_method: Optional[str] = None
    payment_reference: Optional[str] = None
    created_by: str = ""
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "Invoice":
        f = FieldReader.of(doc)
        name = doc.get("name", "")
        return cls(
            id=document_id(name),
            org_id=f.string("orgId") or parent_org_id(name) or "",
            project_id=f.optional_string("projectId"),
            invoice_number=f.string("invoiceNumber"),
            description=f.string("description"),
            line_items=[InvoiceLineItem.from_fields(li) for li in f.maps("lineItems")],
            subtotal=f.number("subtotal"),
            tax=f.number("tax"),
            total=f.number("total"),
            currency=f.string("currency", "usd"),
            status=f.string("status", InvoiceStatus.DRAFT.value),
            issue_date=f.timestamp("issueDate"),
            due_date=f.timestamp("dueDate"),
            paid_at=f.timestamp("paidAt"),
            sent_at=f.timestamp("sentAt"),
            stripe_invoice_id=f.string("stripeInvoiceId"),
            stripe_event_id=f.string("stripeEventId"),
            stripe_customer_id=f.string("stripeCustomerId"),
            hosted_invoice_url=f.string("hostedInvoiceUrl"),
            billing_email=f.string("billingEmail"),
            sent_to=f.strings("sentTo"),
            visible_to_client=f.boolean("visibleToClient", True),
            payment_method=f.optional_string("paymentMethod"),
            payment_reference=f.optional_string("paymentReference"),
            created_by=f.string("createdBy"),
            created_at=f.timestamp("createdAt"),
            updated_at=f.timestamp("updatedAt"),
        )


class PublicInvoice(DocumentModel):
    """Invoice-by-number shape: no processor ids, no creator, no internal flags."""

    id: str
    invoice_number: str
    description: str
    line_items: List[InvoiceLineItem]
    subtotal: float
    tax: float
    total: float
    currency: str
    status: str
    issue_date: Optional[datetime] = None
    due_date: Optional[datetime] = None
    paid_at: Optional[datetime] = None
    billing_email: str = ""
    hosted_invoice_url: str = ""
    client_name: str = "Client"

    @classmethod
    def from_invoice(cls, invoice: Invoice, client_name: str = "Client") -> "PublicInvoice":
        return cls(
            id=invoice.id,
            invoice_number=invoice.invoice_number,
            description=invoice.description,
            line_items=invoice.line_items,
            subtotal=invoice.subtotal,
            tax=invoice.tax,
            total=invoice.total,
            currency=invoice.currency,
            status=invoice.status,
            issue_date=invoice.issue_date,
            due_date=invoice.due_date,
            paid_at=invoice.paid_at,
            billing_email=invoice.billing_email,
            hosted_invoice_url=invoice.hosted_invoice_url,
            client_name=client_name,
        )


# ============================================================
# PAYMENT EVENT (append-only)
# ============================================================
class PaymentEvent(DocumentModel):
    id: str
    org_id: str
    event_type: str = "unknown"
    amount: float = 0.0
    currency: str = "usd"
    method: str = ""
    reference: str = ""
    notes: str = ""
    invoice_id: str = ""
    stripe_invoice_id: str = ""
    stripe_event_id: str = ""
    recorded_by: str = ""
    timestamp: Optional[datetime] = None
    invoice: Optional[Dict[str, str]] = None

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "PaymentEvent":
        f = FieldReader.of(doc)
        name = doc.get("name", "")
        return cls(
            id=document_id(name),
            org_id=f.string("orgId") or parent_org_id(name) or "",
            event_type=f.string("eventType", "unknown"),
            amount=f.number("amount"),
            currency=f.string("currency", "usd"),
            method=f.string("method"),
            reference=f.string("reference"),
            notes=f.string("notes"),
            invoice_id=f.string("invoiceId"),
            stripe_invoice_id=f.string("stripeInvoiceId"),
            stripe_event_id=f.string("stripeEventId"),
            recorded_by=f.string("recordedBy"),
            timestamp=f.timestamp("timestamp"),
        )
