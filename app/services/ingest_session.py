"""
단건 오프플랫폼 이메일 기록 세션

상태 전이:
    Idle → Parsing → {AwaitingConfirmation | ReadyToSave | Failed}
    AwaitingConfirmation --confirm--> ReadyToSave
    ReadyToSave / Failed --save--> Saving → {Saved | Failed}

AwaitingConfirmation은 사용자의 명시적 confirm으로만 벗어난다 (자동/타임아웃 없음).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional
from uuid import uuid4

from app.core.config import get_settings
from app.models.ingest import (
    ExactMatch,
    MatchResult,
    NoMatch,
    NormalizedEmailRecord,
    needs_confirmation,
)
from app.models.session import (
    AwaitingConfirmationState,
    FailedState,
    IngestSession,
    ParsingState,
    ReadyToSaveState,
    SavedState,
    SavingState,
)
from app.services.contact_resolver import ContactLoader
from app.services.email_blob_parser import parse_email_blob, to_record
from app.services.ingest_errors import (
    IngestBusyError,
    InvalidRecordError,
    InvalidTransitionError,
    PersistenceError,
    ResolutionError,
    UnconfirmedMatchError,
)
from app.services.offplatform_ingest import OffPlatformIngestService
from app.services.session_repository import SessionRepository

logger = logging.getLogger(__name__)

BUSY_STATES = {"parsing", "saving"}


class SessionNotFoundError(KeyError):
    pass


@dataclass
class StartRequest:
    """세션 시작 입력: 이메일 붙여넣기(blob) 또는 수동 입력 레코드"""
    blob: Optional[str] = None
    record: Optional[NormalizedEmailRecord] = None
    contact_id: Optional[str] = None
    confirmed_contact_id: Optional[str] = None
    company_hq_id: Optional[str] = None
    platform: Optional[str] = None
    notes: Optional[str] = None


class IngestSessionManager:
    def __init__(
        self,
        service: OffPlatformIngestService,
        repository: SessionRepository,
        loader: Optional[ContactLoader] = None,
    ) -> None:
        self.service = service
        self.repository = repository
        self.loader = loader or ContactLoader(service.client)

    async def get(self, session_id: str) -> IngestSession:
        session = await self.repository.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    async def _transition(self, session: IngestSession, state) -> IngestSession:
        previous = session.state.kind
        session.transition(state)
        logger.info("Session %s: %s → %s", session.session_id, previous, state.kind)
        return await self.repository.save(session)

    # =========================================================================
    # start: Idle → Parsing → ...
    # =========================================================================

    async def start(self, request: StartRequest) -> IngestSession:
        session = IngestSession(
            session_id=uuid4().hex,
            company_hq_id=request.company_hq_id or self.service.default_company_hq_id,
        )
        await self.repository.save(session)
        await self._transition(session, ParsingState())

        platform = request.platform or get_settings().default_platform
        if request.blob is not None:
            parsed = parse_email_blob(request.blob)
            session.parsed_email = parsed
            session.record = to_record(parsed, platform=platform, notes=request.notes)
        elif request.record is not None:
            session.record = request.record
        else:
            return await self._transition(
                session, FailedState(reason="Nothing to record: provide an email blob or a record", stage="invalid")
            )

        if request.contact_id:
            return await self._attach_known_contact(session, request.contact_id)

        if not session.record.has_valid_email:
            return await self._transition(
                session,
                FailedState(
                    reason="Please select a contact or enter a valid email address",
                    stage="invalid",
                ),
            )
        return await self._resolve(session, request.confirmed_contact_id)

    async def _attach_known_contact(self, session: IngestSession, contact_id: str) -> IngestSession:
        try:
            contact = await self.loader.load(contact_id)
        except ResolutionError as exc:
            return await self._transition(session, FailedState(reason=str(exc), stage="resolve"))
        if contact is None:
            return await self._transition(
                session, FailedState(reason=f"Contact {contact_id} not found", stage="invalid")
            )
        if contact.email and not session.record.has_valid_email:
            session.record.email = contact.email
        return await self._transition(session, ReadyToSaveState(contact=contact, confirmed=True))

    async def _resolve(self, session: IngestSession, confirmed_contact_id: Optional[str] = None) -> IngestSession:
        record = session.record
        try:
            match: MatchResult = await self.service.resolver.resolve(record.email, session.company_hq_id)
        except ResolutionError as exc:
            return await self._transition(session, FailedState(reason=str(exc), stage="resolve"))

        if isinstance(match, ExactMatch):
            return await self._transition(session, ReadyToSaveState(contact=match.contact))

        if needs_confirmation(match):
            # 이전에 확인된 연락처가 후보에 있으면 바로 저장 가능
            confirmed = next((c for c in match.candidates if c.id == confirmed_contact_id), None)
            if confirmed is not None:
                return await self._transition(session, ReadyToSaveState(contact=confirmed, confirmed=True))
            return await self._transition(session, AwaitingConfirmationState(candidates=list(match.candidates)))

        if isinstance(match, NoMatch) and session.company_hq_id:
            return await self._transition(session, ReadyToSaveState(create_contact=True))
        return await self._transition(
            session,
            FailedState(
                reason=f"No contact found for {record.email} and no company scope to create one",
                stage="invalid",
            ),
        )

    # =========================================================================
    # confirm: AwaitingConfirmation → ReadyToSave
    # =========================================================================

    async def confirm(self, session_id: str, contact_id: str) -> IngestSession:
        session = await self.get(session_id)
        state = session.state
        if not isinstance(state, AwaitingConfirmationState):
            raise InvalidTransitionError(state.kind, "confirm a contact")

        chosen = next((c for c in state.candidates if c.id == contact_id), None)
        if chosen is None:
            raise ValueError(f"Contact {contact_id} is not one of the suggested candidates")
        return await self._transition(session, ReadyToSaveState(contact=chosen, confirmed=True))

    # =========================================================================
    # save: ReadyToSave / Failed → Saving → Saved | Failed
    # =========================================================================

    async def save(self, session_id: str) -> IngestSession:
        # get → 상태 확인 → Saving 기록 사이에 다른 저장이 끼어들지 못하도록 점유
        if not await self.repository.claim(session_id):
            raise IngestBusyError(f"Session {session_id} is already being saved")
        try:
            return await self._save_claimed(session_id)
        finally:
            await self.repository.release(session_id)

    async def _save_claimed(self, session_id: str) -> IngestSession:
        session = await self.get(session_id)
        state = session.state

        if state.kind in BUSY_STATES:
            raise IngestBusyError(f"Session {session_id} is {state.kind}")
        if isinstance(state, AwaitingConfirmationState):
            raise UnconfirmedMatchError(session.record.email, state.candidates)
        if isinstance(state, FailedState):
            if state.stage == "invalid":
                email = session.record.email if session.record else ""
                raise InvalidRecordError(email, state.reason)
            if state.stage == "resolve":
                session = await self._resolve(session)
                if not isinstance(session.state, ReadyToSaveState):
                    return session
                state = session.state
        elif not isinstance(state, ReadyToSaveState):
            raise InvalidTransitionError(state.kind, "save")

        contact, create_contact = state.contact, state.create_contact
        await self._transition(session, SavingState(contact=contact, create_contact=create_contact))

        created = False
        try:
            if contact is None:
                contact = await self.service.resolver.create_for_record(session.record, session.company_hq_id)
                created = True
            await self.service.record_send(contact.id, session.record)
        except (ResolutionError, PersistenceError) as exc:
            return await self._transition(
                session,
                FailedState(reason=str(exc), stage="save", contact=contact, create_contact=contact is None),
            )
        return await self._transition(session, SavedState(contact=contact, created=created))
