from typing import Any, Dict, List, Optional

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from core.database import get_gateway
from core.errors import InvalidToken, ValidationError
from core.security import TokenClaims, get_claims_admin, get_service_token_provider, get_token_verifier
from services.billing_service import BillingService, get_billing_service
from services.email_service import get_email_service
from tests.fixtures.firestore_fake import FakeFirestore
from tests.fixtures.helpers import SERVICE_TOKEN, WEBHOOK_SECRET, auth


# ---------- collaborators ----------
class FakeVerifier:
    """Accepts ``token-<uid>`` for every uid registered in ``users``."""

    def __init__(self):
        self.users: Dict[str, Dict[str, Any]] = {}

    def register(self, uid: str, email: Optional[str] = None, **claims) -> Dict[str, str]:
        self.users[uid] = {"email": email, **claims}
        return auth(uid)

    async def verify(self, token: str) -> TokenClaims:
        uid = token[len("token-"):] if token.startswith("token-") else None
        if uid not in self.users:
            raise InvalidToken()
        extra = dict(self.users[uid])
        return TokenClaims(uid=uid, token=token, email=extra.pop("email"), claims={"uid": uid, **extra})


class FakeBilling(BillingService):
    """Real webhook verification; everything that would reach Stripe is canned."""

    def __init__(self):
        super().__init__(webhook_secret=WEBHOOK_SECRET)
        self.calls: List[tuple] = []
        self.subscriptions: Dict[str, Dict[str, Any]] = {}

    @property
    def configured(self) -> bool:
        return True

    async def ensure_customer(self, org_id, name, email, existing_id=None):
        self.calls.append(("ensure_customer", org_id))
        return existing_id or f"cus_{org_id}"

    async def create_invoice(self, customer_id, org_id, description, line_items, **kwargs):
        self.calls.append(("create_invoice", customer_id, line_items, kwargs))
        return {
            "id": f"in_{len(self.calls)}",
            "number": f"INV-{len(self.calls):04d}",
            "status": "open" if kwargs.get("auto_send", True) else "draft",
            "hosted_invoice_url": "https://pay.example/inv",
            "invoice_pdf": "https://pay.example/inv.pdf",
        }

    async def retrieve_subscription(self, subscription_id):
        return self.subscriptions[subscription_id]

    async def subscription_status(self, subscription_id):
        self.calls.append(("subscription_status", subscription_id))
        return {"active": True, "status": "active", "plan": "Website", "monthlyAmount": 150.0}

    async def update_subscription_features(self, subscription_id, features):
        self.calls.append(("update_features", subscription_id, [f.value for f in features]))
        return {"id": subscription_id}

    async def cancel_subscription(self, subscription_id, immediately=False):
        self.calls.append(("cancel", subscription_id, immediately))
        return {"id": subscription_id, "canceled_at": 1767225600 if immediately else None}

    async def create_checkout_session(self, quote, features, email=None, org_id=None):
        if quote.setup <= 0 and quote.monthly <= 0:
            raise ValidationError("No features selected")
        self.calls.append(("checkout", [f.value for f in features], email, org_id))
        return {"url": "https://checkout.example/s/cs_1", "sessionId": "cs_1"}

    async def create_invoice_checkout_session(self, invoice):
        self.calls.append(("invoice_checkout", invoice.id, invoice.org_id, invoice.invoice_number))
        return {"url": "https://checkout.example/s/cs_inv", "sessionId": "cs_inv"}


class FakeMailer:
    def __init__(self):
        self.sent: List[Dict[str, Any]] = []
        self.result = True

    def send_invoice_email(self, to_emails, invoice_number, org_name, total, currency, invoice_link,
                           due_date=None, message=None):
        self.sent.append({"to": list(to_emails), "invoiceNumber": invoice_number, "link": invoice_link})
        return self.result


class FakeClaimsAdmin:
    def __init__(self):
        self.granted: Dict[str, Dict[str, Any]] = {}

    async def set_custom_claims(self, uid, claims):
        self.granted[uid] = claims


# ---------- fixtures ----------
@pytest.fixture
def store():
    return FakeFirestore()


@pytest.fixture
def verifier():
    return FakeVerifier()


@pytest.fixture
def billing():
    return FakeBilling()


@pytest.fixture
def mailer():
    return FakeMailer()


@pytest.fixture
def claims_admin():
    return FakeClaimsAdmin()


@pytest.fixture
def app(store, verifier, billing, mailer, claims_admin):
    from main import app as portal_app

    async def service_token():
        return SERVICE_TOKEN

    portal_app.dependency_overrides[get_gateway] = lambda: store
    portal_app.dependency_overrides[get_token_verifier] = lambda: verifier
    portal_app.dependency_overrides[get_billing_service] = lambda: billing
    portal_app.dependency_overrides[get_email_service] = lambda: mailer
    portal_app.dependency_overrides[get_claims_admin] = lambda: claims_admin
    portal_app.dependency_overrides[get_service_token_provider] = lambda: service_token
    yield portal_app
    portal_app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def client(app):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
