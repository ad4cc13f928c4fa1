from typing import Any, Dict, List, Optional

import pytest
from fastapi.testclient import TestClient

from app.main import app
from app.services import contact_resolver as contact_resolver_module
from app.services import offplatform_ingest as offplatform_ingest_module
from app.services import session_repository as session_repository_module
from app.services.contact_resolver import ContactLoader, ContactResolver
from app.services.contacts_client import ContactsClientError
from app.services.offplatform_ingest import OffPlatformIngestService


# Configure anyio to use only asyncio backend
@pytest.fixture
def anyio_backend():
    return "asyncio"


class FakeContactsClient:
    """CRM contacts API를 흉내내는 in-memory stub (by-email 도메인 fallback 포함)"""

    def __init__(self, contacts: Optional[List[Dict[str, Any]]] = None) -> None:
        self.contacts: List[Dict[str, Any]] = list(contacts or [])
        self.lookup_errors: Dict[str, int] = {}
        self.send_errors: Dict[str, int] = {}
        self.lookups: List[str] = []
        self.get_calls: List[str] = []
        self.created: List[Dict[str, Any]] = []
        self.sends: List[Dict[str, Any]] = []
        self.conversations: List[Dict[str, Any]] = []

    def add(self, contact_id: str, email: str, **extra: Any) -> Dict[str, Any]:
        contact = {"id": contact_id, "email": email, **extra}
        self.contacts.append(contact)
        return contact

    async def find_contact_by_email(self, email: str, company_hq_id: Optional[str] = None):
        normalized = email.strip().lower()
        self.lookups.append(normalized)
        if normalized in self.lookup_errors:
            raise ContactsClientError(self.lookup_errors[normalized], "lookup failed")

        for contact in self.contacts:
            if (contact.get("email") or "").lower() == normalized:
                return {"success": True, "fuzzy": False, "contact": contact}

        domain = normalized.split("@")[1]
        candidates = [
            c for c in self.contacts if (c.get("email") or "").lower().endswith("@" + domain)
        ]
        if not candidates:
            return None
        if len(candidates) == 1:
            return {"success": True, "fuzzy": True, "contact": candidates[0]}
        return {"success": False, "fuzzy": True, "candidates": candidates}

    async def get_contact(self, contact_id: str):
        self.get_calls.append(contact_id)
        return next((c for c in self.contacts if c["id"] == contact_id), None)

    async def create_contact(self, *, email, company_hq_id, first_name=None, last_name=None):
        contact = {
            "id": f"new-{len(self.created) + 1}",
            "email": email,
            "firstName": first_name,
            "lastName": last_name,
            "crmId": company_hq_id,
        }
        self.created.append(contact)
        self.contacts.append(contact)
        return contact

    async def record_off_platform_send(self, contact_id: str, send: Dict[str, Any]):
        if contact_id in self.send_errors:
            raise ContactsClientError(self.send_errors[contact_id], "send failed")
        self.sends.append({"contactId": contact_id, **send})
        return {"success": True, "offPlatformSend": {"id": f"send-{len(self.sends)}", "contactId": contact_id}}

    async def record_off_platform_conversation(self, contact_id: str, messages, platform: str):
        self.conversations.append({"contactId": contact_id, "messages": messages, "platform": platform})
        return {
            "success": True,
            "activityIds": [f"act-{i + 1}" for i in range(len(messages))],
            "messageCount": len(messages),
        }


@pytest.fixture
def contacts_client() -> FakeContactsClient:
    client = FakeContactsClient()
    client.add("c-1", "alice@acme.com", firstName="Alice", lastName="Kim", companyName="Acme")
    client.add("c-2", "bob@globex.com", firstName="Bob", lastName="Lee", companyName="Globex")
    client.add("c-3", "carol@globex.com", firstName="Carol", lastName="Park", companyName="Globex")
    return client


@pytest.fixture
def resolver(contacts_client) -> ContactResolver:
    return ContactResolver(contacts_client)


@pytest.fixture
def ingest_service(resolver) -> OffPlatformIngestService:
    return OffPlatformIngestService(resolver, default_company_hq_id="hq-1")


@pytest.fixture
def session_repository():
    return session_repository_module.InMemorySessionRepository(30 * 60)


@pytest.fixture(autouse=True)
def override_dependencies(contacts_client, ingest_service, session_repository):
    loader = ContactLoader(contacts_client)
    app.dependency_overrides[offplatform_ingest_module.get_ingest_service] = lambda: ingest_service
    app.dependency_overrides[session_repository_module.get_session_repository] = lambda: session_repository
    app.dependency_overrides[contact_resolver_module.get_contact_loader] = lambda: loader
    yield
    app.dependency_overrides.clear()


@pytest.fixture()
def test_client() -> TestClient:
    with TestClient(app) as client:
        yield client
