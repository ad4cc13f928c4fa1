"""
Off-Platform Email API

GET  /api/offplatform/csv-template                       - CSV 템플릿 다운로드
POST /api/offplatform/csv/parse                          - CSV 미리보기 (저장 없음)
POST /api/offplatform/csv/save                           - CSV 일괄 저장
POST /api/offplatform/email/parse                        - 이메일 붙여넣기 미리보기
POST /api/offplatform/conversation/parse                 - 스레드 미리보기
POST /api/offplatform/contacts/{contact_id}/conversation - 스레드 저장
POST /api/offplatform/sessions                           - 단건 기록 세션 시작
GET  /api/offplatform/sessions/{session_id}
POST /api/offplatform/sessions/{session_id}/confirm      - fuzzy 매칭 연락처 확인
POST /api/offplatform/sessions/{session_id}/save
"""
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Response, status

from app.models.ingest import NormalizedEmailRecord
from app.models.offplatform import (
    BatchResponse,
    ConfirmRequest,
    ContactOut,
    ConversationOut,
    ConversationParseRequest,
    ConversationSaveRequest,
    ConversationSaveResponse,
    CsvParseResponse,
    CsvRequest,
    EmailBlobRequest,
    ParsedEmailOut,
    RecordIn,
    RecordOut,
    SessionOut,
    SessionStartRequest,
    SkippedRowOut,
)
from app.services.contact_resolver import ContactLoader, get_contact_loader
from app.services.csv_extractor import build_csv_template, parse_csv
from app.services.email_blob_parser import parse_email_blob, parse_email_conversation
from app.services.ingest_errors import (
    IngestBusyError,
    IngestError,
    InvalidRecordError,
    InvalidTransitionError,
    ParseError,
    PersistenceError,
    UnconfirmedMatchError,
)
from app.services.ingest_session import IngestSessionManager, SessionNotFoundError, StartRequest
from app.services.offplatform_ingest import OffPlatformIngestService, get_ingest_service
from app.services.session_repository import SessionRepository, get_session_repository
from app.utils.dates import parse_loose_date, today_iso

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/offplatform", tags=["offplatform"])

TEMPLATE_FILENAME = "off-platform-emails-template.csv"


async def get_session_manager(
    service: OffPlatformIngestService = Depends(get_ingest_service),
    repository: SessionRepository = Depends(get_session_repository),
    loader: ContactLoader = Depends(get_contact_loader),
) -> IngestSessionManager:
    return IngestSessionManager(service, repository, loader)


def _http_error(exc: IngestError) -> HTTPException:
    if isinstance(exc, UnconfirmedMatchError):
        return HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={
                "error": str(exc),
                "email": exc.email,
                "candidates": [
                    ContactOut.from_candidate(c).model_dump(by_alias=True) for c in exc.candidates
                ],
            },
        )
    if isinstance(exc, (IngestBusyError, InvalidTransitionError)):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail={"error": str(exc)})
    if isinstance(exc, (ParseError, InvalidRecordError)):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail={"error": str(exc)})
    if isinstance(exc, PersistenceError):
        return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail={"error": str(exc)})
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail={"error": str(exc)})


def _to_record(payload: RecordIn, platform: str) -> NormalizedEmailRecord:
    return NormalizedEmailRecord(
        email=payload.email.strip(),
        sent_date=parse_loose_date(payload.sent_date) or today_iso(),
        platform=payload.platform or platform,
        first_name=payload.first_name,
        last_name=payload.last_name,
        subject=payload.subject,
        body=payload.body,
        notes=payload.notes,
    )


# =============================================================================
# CSV
# =============================================================================


@router.get("/csv-template")
def download_csv_template() -> Response:
    return Response(
        content=build_csv_template(),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{TEMPLATE_FILENAME}"'},
    )


@router.post("/csv/parse", response_model=CsvParseResponse, response_model_by_alias=True)
def parse_csv_preview(request: CsvRequest) -> CsvParseResponse:
    try:
        result = parse_csv(request.csv_text)
    except ParseError as exc:
        raise _http_error(exc)
    return CsvParseResponse(
        records=[RecordOut.from_record(record) for record in result.records],
        skipped=[SkippedRowOut.from_skip(skip) for skip in result.skipped],
    )


@router.post("/csv/save", response_model=BatchResponse, response_model_by_alias=True)
async def save_csv(
    request: CsvRequest,
    service: OffPlatformIngestService = Depends(get_ingest_service),
) -> BatchResponse:
    try:
        result = await service.ingest_csv(
            request.csv_text,
            company_hq_id=request.company_hq_id,
            confirmations=request.confirmations,
        )
    except (ParseError, IngestBusyError) as exc:
        raise _http_error(exc)
    return BatchResponse.from_result(result)


# =============================================================================
# Email blob / conversation
# =============================================================================


@router.post("/email/parse", response_model=ParsedEmailOut, response_model_by_alias=True)
def parse_email_preview(request: EmailBlobRequest) -> ParsedEmailOut:
    if not request.blob.strip():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail={"error": "Please paste email content"})
    return ParsedEmailOut.from_parsed(parse_email_blob(request.blob))


@router.post("/conversation/parse", response_model=ConversationOut, response_model_by_alias=True)
def parse_conversation_preview(request: ConversationParseRequest) -> ConversationOut:
    conversation = parse_email_conversation(
        request.blob,
        our_emails=request.our_emails,
        contact_email=request.contact_email,
    )
    return ConversationOut.from_conversation(conversation)


@router.post(
    "/contacts/{contact_id}/conversation",
    response_model=ConversationSaveResponse,
    response_model_by_alias=True,
)
async def save_conversation(
    contact_id: str,
    request: ConversationSaveRequest,
    service: OffPlatformIngestService = Depends(get_ingest_service),
) -> ConversationSaveResponse:
    conversation = parse_email_conversation(
        request.blob,
        our_emails=request.our_emails,
        contact_email=request.contact_email,
    )
    try:
        payload = await service.save_conversation(
            contact_id,
            conversation,
            platform=request.platform or "manual",
        )
    except (InvalidRecordError, PersistenceError) as exc:
        raise _http_error(exc)
    return ConversationSaveResponse.model_validate(
        {"messageCount": len(conversation.messages), **payload}
    )


# =============================================================================
# Single-record sessions
# =============================================================================


@router.post("/sessions", response_model=SessionOut, response_model_by_alias=True, status_code=201)
async def start_session(
    request: SessionStartRequest,
    manager: IngestSessionManager = Depends(get_session_manager),
) -> SessionOut:
    platform = request.platform or "manual"
    session = await manager.start(
        StartRequest(
            blob=request.blob,
            record=_to_record(request.record, platform) if request.record else None,
            contact_id=request.contact_id,
            confirmed_contact_id=request.confirmed_contact_id,
            company_hq_id=request.company_hq_id,
            platform=platform,
            notes=request.notes,
        )
    )
    return SessionOut.from_session(session)


@router.get("/sessions/{session_id}", response_model=SessionOut, response_model_by_alias=True)
async def get_session(
    session_id: str,
    manager: IngestSessionManager = Depends(get_session_manager),
) -> SessionOut:
    try:
        session = await manager.get(session_id)
    except SessionNotFoundError:
        raise HTTPException(status_code=404, detail="session not found or expired")
    return SessionOut.from_session(session)


@router.post("/sessions/{session_id}/confirm", response_model=SessionOut, response_model_by_alias=True)
async def confirm_contact(
    session_id: str,
    request: ConfirmRequest,
    manager: IngestSessionManager = Depends(get_session_manager),
) -> SessionOut:
    try:
        session = await manager.confirm(session_id, request.contact_id)
    except SessionNotFoundError:
        raise HTTPException(status_code=404, detail="session not found or expired")
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail={"error": str(exc)})
    except IngestError as exc:
        raise _http_error(exc)
    return SessionOut.from_session(session)


@router.post("/sessions/{session_id}/save", response_model=SessionOut, response_model_by_alias=True)
async def save_session(
    session_id: str,
    manager: IngestSessionManager = Depends(get_session_manager),
) -> SessionOut:
    try:
        session = await manager.save(session_id)
    except SessionNotFoundError:
        raise HTTPException(status_code=404, detail="session not found or expired")
    except IngestError as exc:
        raise _http_error(exc)
    return SessionOut.from_session(session)
