from datetime import datetime, timedelta, timezone
from typing import Dict

from tests.fixtures.firestore_fake import FakeFirestore

WEBHOOK_SECRET = "whsec_test_secret"
SERVICE_TOKEN = "service-token"


def auth(uid: str) -> Dict[str, str]:
    return {"Authorization": f"Bearer token-{uid}"}


def seed_org(store: FakeFirestore, org_id: str, admins=(), editors=(), clients=(), **extra) -> str:
    now = datetime.now(timezone.utc)
    data = {
        "name": extra.pop("name", org_id.title()),
        "adminUids": list(admins),
        "editorUids": list(editors),
        "clientUids": list(clients),
        "status": "active",
        "primaryContact": {"name": "Pat Client", "email": "billing@example.com"},
        "subscription": {"status": "inactive", "active": False, "billingEmail": "billing@example.com"},
        "createdAt": now,
        "updatedAt": now,
    }
    data.update(extra)
    return store.seed(f"orgs/{org_id}", data)


def in_days(days: int) -> str:
    return (datetime.now(timezone.utc) + timedelta(days=days)).isoformat()
