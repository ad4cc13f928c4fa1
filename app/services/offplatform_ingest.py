"""
Off-Platform Ingest Service

CSV 배치 / 단건 레코드를 연락처에 "오프플랫폼 발송" 활동으로 기록.
- 배치는 행 단위 순차 처리 (행별 에러 격리, 예측 가능한 에러 귀속)
- fuzzy/다중 매칭은 명시적 확인 없이 저장하지 않음
- 같은 company scope에 대한 배치 중복 실행은 busy 플래그로 거절
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Dict, Iterator, List, Mapping, Optional, Set, Union

from app.core.config import get_settings
from app.models.ingest import (
    BatchResult,
    ContactCandidate,
    ExactMatch,
    MatchResult,
    NoMatch,
    NormalizedEmailRecord,
    ParsedConversation,
    PendingConfirmation,
    RowSkipped,
    needs_confirmation,
)
from app.services.contact_resolver import ContactResolver, get_contact_resolver
from app.services.contacts_client import ContactsClient, ContactsClientError
from app.services.csv_extractor import parse_csv
from app.services.ingest_errors import (
    IngestBusyError,
    InvalidRecordError,
    PersistenceError,
    ResolutionError,
    UnconfirmedMatchError,
)

logger = logging.getLogger(__name__)


@dataclass
class PersistOutcome:
    contact: ContactCandidate
    created: bool
    response: Dict[str, Any]


def _send_payload(record: NormalizedEmailRecord) -> Dict[str, Any]:
    return {
        "emailSent": record.sent_date,
        "subject": record.subject or None,
        "body": record.body or None,
        "platform": record.platform or "manual",
        "notes": record.notes or None,
    }


class OffPlatformIngestService:
    def __init__(
        self,
        resolver: ContactResolver,
        *,
        default_company_hq_id: Optional[str] = None,
    ) -> None:
        self.resolver = resolver
        self.default_company_hq_id = default_company_hq_id
        self._busy: Set[str] = set()

    @property
    def client(self) -> ContactsClient:
        return self.resolver.client

    def _scope(self, company_hq_id: Optional[str]) -> Optional[str]:
        return company_hq_id or self.default_company_hq_id

    @contextmanager
    def _busy_flag(self, key: str) -> Iterator[None]:
        if key in self._busy:
            raise IngestBusyError(f"A CSV import is already running for {key}")
        self._busy.add(key)
        try:
            yield
        finally:
            self._busy.discard(key)

    # =========================================================================
    # 단건 저장
    # =========================================================================

    async def persist(
        self,
        record: NormalizedEmailRecord,
        match: MatchResult,
        *,
        confirmed_contact_id: Optional[str] = None,
        company_hq_id: Optional[str] = None,
    ) -> PersistOutcome:
        """MatchResult에 따라 대상 연락처를 정하고 발송 기록 저장

        Raises:
            InvalidRecordError: 이메일에 '@' 없음
            UnconfirmedMatchError: fuzzy/다중 매칭인데 확인된 연락처가 후보에 없음
            ResolutionError: 신규 연락처 생성 실패 (scope 없음 포함)
            PersistenceError: 발송 기록 저장 실패
        """
        if not record.has_valid_email:
            raise InvalidRecordError(record.email)

        created = False
        if isinstance(match, ExactMatch):
            target = match.contact
        elif needs_confirmation(match):
            target = next(
                (c for c in match.candidates if confirmed_contact_id and c.id == confirmed_contact_id),
                None,
            )
            if target is None:
                raise UnconfirmedMatchError(record.email, list(match.candidates))
        elif isinstance(match, NoMatch):
            target = await self.resolver.create_for_record(record, self._scope(company_hq_id))
            created = True
        else:  # pragma: no cover
            raise TypeError(f"Unknown match result: {match!r}")

        response = await self.record_send(target.id, record)
        return PersistOutcome(contact=target, created=created, response=response)

    async def record_send(self, contact_id: str, record: NormalizedEmailRecord) -> Dict[str, Any]:
        """이미 확정된 연락처 id에 발송 기록 저장"""
        if not record.has_valid_email:
            raise InvalidRecordError(record.email)
        try:
            response = await self.client.record_off_platform_send(contact_id, _send_payload(record))
        except ContactsClientError as exc:
            logger.warning("Recording off-platform send for contact %s failed: %s", contact_id, exc)
            raise PersistenceError(contact_id, str(exc), status_code=exc.status_code) from exc
        logger.info("Recorded off-platform send for contact %s (%s)", contact_id, record.email)
        return response

    # =========================================================================
    # CSV 배치
    # =========================================================================

    async def ingest_csv(
        self,
        text: str,
        *,
        company_hq_id: Optional[str] = None,
        confirmations: Optional[Mapping[str, str]] = None,
    ) -> BatchResult:
        """CSV 전체 저장

        ParseError는 어떤 행도 처리하기 전에 그대로 전파된다.
        confirmations: 이메일(소문자) → 사용자가 확인한 contact id
        """
        parsed = parse_csv(text, default_platform=get_settings().default_platform)
        confirmed = {email.strip().lower(): contact_id for email, contact_id in (confirmations or {}).items()}
        scope = self._scope(company_hq_id)

        rows: List[tuple] = [(n, record) for n, record in zip(parsed.row_numbers, parsed.records)]
        rows.extend((skip.row_number, skip) for skip in parsed.skipped)
        rows.sort(key=lambda item: item[0])

        result = BatchResult()
        with self._busy_flag(scope or "-"):
            for row_number, item in rows:
                await self._ingest_row(row_number, item, scope, confirmed, result)

        logger.info(
            "CSV import finished: saved=%s skipped=%s failed=%s pending=%s",
            result.saved,
            result.skipped,
            result.failed,
            len(result.pending),
        )
        return result

    async def _ingest_row(
        self,
        row_number: int,
        item: Union[NormalizedEmailRecord, RowSkipped],
        scope: Optional[str],
        confirmed: Dict[str, str],
        result: BatchResult,
    ) -> None:
        if isinstance(item, RowSkipped):
            result.skipped += 1
            result.errors.append(f"Row {row_number}: skipped, no valid email ({item.email!r})")
            return

        record = item
        try:
            match = await self.resolver.resolve(record.email, scope)
        except ResolutionError as exc:
            if exc.server_error:
                # 5xx는 재시도하지 않고 해당 행만 skip
                logger.error("Row %s (%s): contact lookup server error, skipping", row_number, record.email)
                result.skipped += 1
            else:
                result.failed += 1
            result.errors.append(f"Row {row_number} ({record.email}): {exc}")
            return

        confirmed_id = confirmed.get(record.email.lower())
        if needs_confirmation(match) and not confirmed_id:
            result.pending.append(
                PendingConfirmation(row_number=row_number, email=record.email, candidates=list(match.candidates))
            )
            return

        try:
            await self.persist(record, match, confirmed_contact_id=confirmed_id, company_hq_id=scope)
        except UnconfirmedMatchError as exc:
            result.failed += 1
            result.errors.append(
                f"Row {row_number} ({record.email}): confirmed contact {confirmed_id} is not a candidate"
            )
            logger.warning("Row %s: %s", row_number, exc)
            return
        except (ResolutionError, PersistenceError) as exc:
            result.failed += 1
            result.errors.append(f"Row {row_number} ({record.email}): {exc}")
            return
        result.saved += 1

    # =========================================================================
    # 대화(스레드) 저장
    # =========================================================================

    async def save_conversation(
        self,
        contact_id: str,
        conversation: ParsedConversation,
        *,
        platform: str = "manual",
    ) -> Dict[str, Any]:
        """스레드를 오래된 메시지부터 순서대로 저장"""
        if not conversation.messages:
            raise InvalidRecordError("", "Conversation has no messages")

        messages = [
            {
                "direction": message.direction,
                "subject": message.email.subject or None,
                "body": message.email.body,
                "sent": message.email.sent or None,
            }
            for message in reversed(conversation.messages)
        ]
        try:
            response = await self.client.record_off_platform_conversation(contact_id, messages, platform)
        except ContactsClientError as exc:
            raise PersistenceError(contact_id, str(exc), status_code=exc.status_code) from exc
        logger.info("Recorded %d conversation messages for contact %s", len(messages), contact_id)
        return response


@lru_cache
def get_ingest_service() -> OffPlatformIngestService:
    settings = get_settings()
    return OffPlatformIngestService(
        get_contact_resolver(),
        default_company_hq_id=settings.default_company_hq_id,
    )
