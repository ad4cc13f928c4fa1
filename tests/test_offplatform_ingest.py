import asyncio

import pytest

from app.models.ingest import (
    ContactCandidate,
    ExactMatch,
    FuzzyMatch,
    MultipleFuzzyMatches,
    NoMatch,
    NormalizedEmailRecord,
)
from app.services.email_blob_parser import parse_email_conversation
from app.services.ingest_errors import (
    IngestBusyError,
    InvalidRecordError,
    ParseError,
    PersistenceError,
    UnconfirmedMatchError,
)


def _record(email: str, **kwargs) -> NormalizedEmailRecord:
    return NormalizedEmailRecord(email=email, sent_date="2025-02-20", **kwargs)


def test_persist_exact_match_records_send(ingest_service, contacts_client):
    contact = ContactCandidate(id="c-1", email="alice@acme.com")
    outcome = asyncio.run(
        ingest_service.persist(_record("alice@acme.com", subject="Hi", body="Body"), ExactMatch(contact))
    )

    assert outcome.contact.id == "c-1"
    assert outcome.created is False
    assert contacts_client.sends == [
        {
            "contactId": "c-1",
            "emailSent": "2025-02-20",
            "subject": "Hi",
            "body": "Body",
            "platform": "manual",
            "notes": None,
        }
    ]


def test_persist_refuses_unconfirmed_multiple_match(ingest_service, contacts_client):
    candidates = [ContactCandidate(id="c-2"), ContactCandidate(id="c-3")]

    with pytest.raises(UnconfirmedMatchError) as excinfo:
        asyncio.run(ingest_service.persist(_record("dave@globex.com"), MultipleFuzzyMatches(candidates)))

    assert [c.id for c in excinfo.value.candidates] == ["c-2", "c-3"]
    assert contacts_client.sends == []


def test_persist_refuses_confirmation_outside_candidates(ingest_service, contacts_client):
    match = FuzzyMatch(ContactCandidate(id="c-1"))
    with pytest.raises(UnconfirmedMatchError):
        asyncio.run(ingest_service.persist(_record("ceo@acme.com"), match, confirmed_contact_id="c-99"))
    assert contacts_client.sends == []


def test_persist_confirmed_fuzzy_match(ingest_service, contacts_client):
    candidates = [ContactCandidate(id="c-2"), ContactCandidate(id="c-3")]
    outcome = asyncio.run(
        ingest_service.persist(
            _record("dave@globex.com"), MultipleFuzzyMatches(candidates), confirmed_contact_id="c-3"
        )
    )
    assert outcome.contact.id == "c-3"
    assert contacts_client.sends[0]["contactId"] == "c-3"


def test_persist_no_match_creates_contact(ingest_service, contacts_client):
    outcome = asyncio.run(ingest_service.persist(_record("new@initech.com", first_name="Peter"), NoMatch()))

    assert outcome.created is True
    assert contacts_client.created[0]["email"] == "new@initech.com"
    assert contacts_client.created[0]["crmId"] == "hq-1"
    assert contacts_client.sends[0]["contactId"] == outcome.contact.id


def test_persist_rejects_invalid_email(ingest_service, contacts_client):
    with pytest.raises(InvalidRecordError):
        asyncio.run(ingest_service.persist(_record("garbage"), NoMatch()))
    assert contacts_client.created == []
    assert contacts_client.sends == []


def test_persist_wraps_collaborator_failure(ingest_service, contacts_client):
    contacts_client.send_errors["c-1"] = 500
    with pytest.raises(PersistenceError):
        asyncio.run(ingest_service.persist(_record("alice@acme.com"), ExactMatch(ContactCandidate(id="c-1"))))


def test_batch_partial_failure(ingest_service, contacts_client):
    text = "email,subject\nalice@acme.com,One\nnot-an-email,Two\nnew@initech.com,Three\n"

    result = asyncio.run(ingest_service.ingest_csv(text))

    assert result.saved == 2
    assert result.skipped == 1
    assert len(result.errors) == 1
    assert "not-an-email" in result.errors[0]
    assert "Row 2" in result.errors[0]


def test_batch_parse_error_aborts_before_any_row(ingest_service, contacts_client):
    with pytest.raises(ParseError):
        asyncio.run(ingest_service.ingest_csv("subject\nHello\n"))
    assert contacts_client.lookups == []


def test_batch_server_error_is_skip_without_retry(ingest_service, contacts_client):
    contacts_client.lookup_errors["boom@acme.com"] = 500
    text = "email\nboom@acme.com\nalice@acme.com\n"

    result = asyncio.run(ingest_service.ingest_csv(text))

    assert result.saved == 1
    assert result.skipped == 1
    assert result.failed == 0
    assert contacts_client.lookups.count("boom@acme.com") == 1
    assert "boom@acme.com" in result.errors[0]


def test_batch_persistence_error_does_not_abort(ingest_service, contacts_client):
    contacts_client.send_errors["c-1"] = 400
    text = "email\nalice@acme.com\nbob@globex.com\n"

    result = asyncio.run(ingest_service.ingest_csv(text))

    assert result.saved == 1
    assert result.failed == 1
    assert result.errors[0].startswith("Row 1 (alice@acme.com)")


def test_batch_fuzzy_rows_wait_for_confirmation(ingest_service, contacts_client):
    text = "email\ndave@globex.com\n"

    result = asyncio.run(ingest_service.ingest_csv(text))

    assert result.saved == 0
    assert result.errors == []
    assert len(result.pending) == 1
    assert sorted(c.id for c in result.pending[0].candidates) == ["c-2", "c-3"]
    assert contacts_client.sends == []

    confirmed = asyncio.run(ingest_service.ingest_csv(text, confirmations={"Dave@Globex.com": "c-2"}))

    assert confirmed.saved == 1
    assert confirmed.pending == []
    assert contacts_client.sends[0]["contactId"] == "c-2"


def test_batch_without_scope_reports_failure(resolver, contacts_client):
    from app.services.offplatform_ingest import OffPlatformIngestService

    service = OffPlatformIngestService(resolver)
    result = asyncio.run(service.ingest_csv("email\nnew@initech.com\n"))

    assert result.failed == 1
    assert "new@initech.com" in result.errors[0]
    assert contacts_client.created == []


@pytest.mark.anyio
async def test_batch_busy_flag_rejects_overlapping_run(ingest_service, contacts_client):
    gate = asyncio.Event()
    original = contacts_client.find_contact_by_email

    async def slow_lookup(email, company_hq_id=None):
        await gate.wait()
        return await original(email, company_hq_id)

    contacts_client.find_contact_by_email = slow_lookup

    first = asyncio.create_task(ingest_service.ingest_csv("email\nalice@acme.com\n"))
    await asyncio.sleep(0)
    with pytest.raises(IngestBusyError):
        await ingest_service.ingest_csv("email\nalice@acme.com\n")
    gate.set()
    result = await first
    assert result.saved == 1


def test_save_conversation_oldest_first(ingest_service, contacts_client):
    thread = (
        "From: Client <client@acme.com>\nTo: Me <me@ourfirm.com>\nSubject: RE: Intro\n\nYes!\n"
        "-----Original Message-----\n"
        "From: Me <me@ourfirm.com>\nTo: Client <client@acme.com>\nSubject: Intro\n\nFree to chat?\n"
    )
    conversation = parse_email_conversation(thread, our_emails=["me@ourfirm.com"])

    asyncio.run(ingest_service.save_conversation("c-1", conversation, platform="outlook"))

    saved = contacts_client.conversations[0]
    assert saved["platform"] == "outlook"
    assert [m["direction"] for m in saved["messages"]] == ["outbound", "inbound"]
    assert saved["messages"][0]["body"] == "Free to chat?"


def test_save_empty_conversation_rejected(ingest_service):
    conversation = parse_email_conversation("")
    with pytest.raises(InvalidRecordError):
        asyncio.run(ingest_service.save_conversation("c-1", conversation))
