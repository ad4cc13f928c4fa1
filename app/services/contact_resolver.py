from __future__ import annotations

import logging
from functools import lru_cache
from typing import Any, Dict, Optional

from app.models.ingest import (
    ContactCandidate,
    ExactMatch,
    FuzzyMatch,
    MatchResult,
    MultipleFuzzyMatches,
    NoMatch,
    NormalizedEmailRecord,
)
from app.services.contacts_client import ContactsClient, ContactsClientError, get_contacts_client
from app.services.ingest_errors import InvalidRecordError, ResolutionError

logger = logging.getLogger(__name__)


class ContactResolver:
    """이메일 → MatchResult (정확 → 도메인 fuzzy → 없음)

    fuzzy 결과는 자동으로 연결하지 않는다. 확인은 호출자(세션/배치)가 담당.
    """

    def __init__(self, client: ContactsClient) -> None:
        self.client = client

    async def resolve(self, email: str, company_hq_id: Optional[str] = None) -> MatchResult:
        email = (email or "").strip()
        if "@" not in email:
            raise InvalidRecordError(email)

        try:
            payload = await self.client.find_contact_by_email(email, company_hq_id)
        except ContactsClientError as exc:
            if exc.server_error:
                logger.error("Contact lookup for %s failed with server error %s", email, exc.status_code)
            else:
                logger.warning("Contact lookup for %s failed: %s", email, exc)
            raise ResolutionError(email, f"Contact lookup failed: {exc}", status_code=exc.status_code) from exc

        return self._interpret(email, payload)

    def _interpret(self, email: str, payload: Optional[Dict[str, Any]]) -> MatchResult:
        if not payload:
            logger.info("No contact shares the domain of %s", email)
            return NoMatch()

        contact = payload.get("contact")
        candidates = payload.get("candidates") or []

        if contact and not payload.get("fuzzy"):
            return ExactMatch(ContactCandidate.from_payload(contact))
        if contact:
            logger.info("Single domain match for %s: contact %s", email, contact.get("id"))
            return FuzzyMatch(ContactCandidate.from_payload(contact))
        if len(candidates) == 1:
            return FuzzyMatch(ContactCandidate.from_payload(candidates[0]))
        if candidates:
            logger.info("%d domain candidates for %s", len(candidates), email)
            return MultipleFuzzyMatches([ContactCandidate.from_payload(raw) for raw in candidates])
        return NoMatch()

    async def create_for_record(
        self,
        record: NormalizedEmailRecord,
        company_hq_id: Optional[str],
    ) -> ContactCandidate:
        """NoMatch일 때 신규 연락처 생성 (company scope 필수)"""
        if not company_hq_id:
            raise ResolutionError(record.email, f"No company scope available to create a contact for {record.email}")
        try:
            raw = await self.client.create_contact(
                email=record.email,
                company_hq_id=company_hq_id,
                first_name=record.first_name,
                last_name=record.last_name,
            )
        except ContactsClientError as exc:
            raise ResolutionError(
                record.email, f"Contact creation failed: {exc}", status_code=exc.status_code
            ) from exc
        created = ContactCandidate.from_payload(raw)
        logger.info("Created contact %s for %s", created.id, record.email)
        return created


class ContactLoader:
    """contact id 기준 메모이제이션 (id가 바뀌면 무효화 후 다시 로드)"""

    def __init__(self, client: ContactsClient) -> None:
        self.client = client
        self._loaded_id: Optional[str] = None
        self._contact: Optional[ContactCandidate] = None

    async def load(self, contact_id: str) -> Optional[ContactCandidate]:
        if contact_id == self._loaded_id:
            return self._contact

        self.invalidate()
        try:
            raw = await self.client.get_contact(contact_id)
        except ContactsClientError as exc:
            raise ResolutionError("", f"Loading contact {contact_id} failed: {exc}", status_code=exc.status_code) from exc
        self._loaded_id = contact_id
        self._contact = ContactCandidate.from_payload(raw) if raw else None
        return self._contact

    def invalidate(self) -> None:
        self._loaded_id = None
        self._contact = None


@lru_cache
def get_contact_resolver() -> ContactResolver:
    return ContactResolver(get_contacts_client())


@lru_cache
def get_contact_loader() -> ContactLoader:
    return ContactLoader(get_contacts_client())
