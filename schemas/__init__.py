from .common import RequestModel, UpdateRequest
from .deliverable_schema import CLIENT_WRITABLE_FIELDS, DeliverableCreate, DeliverableUpdate
from .invoice_schema import InvoiceCheckoutRequest, InvoiceCreate, InvoiceSend, InvoiceUpdate, LineItemIn
from .organization_schema import OrganizationCreate, OrganizationUpdate, OrgSettingsIn, PrimaryContactIn
from .payment_schema import PaymentCreate
from .project_schema import ProgressIn, ProjectCreate, ProjectUpdate, QuoteIn
from .subscription_schema import CheckoutRequest, ManualSubscription, SubscriptionFeaturesUpdate

__all__ = [
    # Base
    "RequestModel", "UpdateRequest",

    # Organization
    "OrganizationCreate", "OrganizationUpdate", "OrgSettingsIn", "PrimaryContactIn",

    # Project
    "ProjectCreate", "ProjectUpdate", "QuoteIn", "ProgressIn",

    # Deliverable
    "DeliverableCreate", "DeliverableUpdate", "CLIENT_WRITABLE_FIELDS",

    # Invoice
    "InvoiceCreate", "InvoiceUpdate", "InvoiceSend", "LineItemIn", "InvoiceCheckoutRequest",

    # Payment
    "PaymentCreate",

    # Subscription / checkout
    "SubscriptionFeaturesUpdate", "ManualSubscription", "CheckoutRequest",
]
