import asyncio
import json

import httpx
import pytest

from app.services.contacts_client import ContactsClient, ContactsClientError


def _client(handler) -> ContactsClient:
    return ContactsClient(
        "http://crm.test/api/",
        token="secret",
        transport=httpx.MockTransport(handler),
    )


def _run(client: ContactsClient, coro_factory):
    async def scenario():
        try:
            return await coro_factory()
        finally:
            await client.close()

    return asyncio.run(scenario())


def test_find_by_email_sends_lowercased_email_and_scope():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["params"] = dict(request.url.params)
        seen["auth"] = request.headers.get("Authorization")
        return httpx.Response(200, json={"success": True, "fuzzy": False, "contact": {"id": "c-1"}})

    client = _client(handler)
    payload = _run(client, lambda: client.find_contact_by_email(" Alice@Acme.com ", "hq-1"))

    assert payload["contact"]["id"] == "c-1"
    assert seen["path"] == "/api/contacts/by-email"
    assert seen["params"] == {"email": "alice@acme.com", "companyHQId": "hq-1"}
    assert seen["auth"] == "Bearer secret"


def test_find_by_email_not_found_returns_none():
    client = _client(lambda request: httpx.Response(404, json={"error": "Contact not found"}))
    assert _run(client, lambda: client.find_contact_by_email("x@y.com")) is None


def test_server_error_is_raised_once():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request.url.path)
        return httpx.Response(503, json={"error": "unavailable"})

    client = _client(handler)
    with pytest.raises(ContactsClientError) as excinfo:
        _run(client, lambda: client.find_contact_by_email("x@y.com"))

    assert excinfo.value.status_code == 503
    assert excinfo.value.server_error is True
    assert str(excinfo.value) == "unavailable"
    assert len(calls) == 1


def test_get_contact_unwraps_payload():
    client = _client(lambda request: httpx.Response(200, json={"success": True, "contact": {"id": "c-9"}}))
    assert _run(client, lambda: client.get_contact("c-9")) == {"id": "c-9"}


def test_create_contact_posts_scope_and_names():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["body"] = json.loads(request.content)
        return httpx.Response(201, json={"success": True, "contact": {"id": "c-new"}})

    client = _client(handler)
    contact = _run(
        client,
        lambda: client.create_contact(email="new@initech.com", company_hq_id="hq-1", first_name="Peter"),
    )

    assert contact == {"id": "c-new"}
    assert seen["path"] == "/api/contacts/create"
    assert seen["body"] == {"email": "new@initech.com", "companyHQId": "hq-1", "firstName": "Peter"}


def test_off_platform_send_unsuccessful_payload_raises():
    client = _client(lambda request: httpx.Response(200, json={"success": False, "error": "nope"}))
    with pytest.raises(ContactsClientError) as excinfo:
        _run(client, lambda: client.record_off_platform_send("c-1", {"emailSent": "2025-01-01"}))
    assert excinfo.value.status_code == 502


def test_non_json_response_is_bad_gateway():
    client = _client(lambda request: httpx.Response(200, text="<html>oops</html>"))
    with pytest.raises(ContactsClientError) as excinfo:
        _run(client, lambda: client.get_contact("c-1"))
    assert excinfo.value.status_code == 502


def test_transport_error_is_bad_gateway():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    client = _client(handler)
    with pytest.raises(ContactsClientError) as excinfo:
        _run(client, lambda: client.get_contact("c-1"))
    assert excinfo.value.status_code == 502
