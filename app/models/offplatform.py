from __future__ import annotations

from dataclasses import asdict
from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, BaseModel, Field
from pydantic.config import ConfigDict

from app.models.ingest import (
    BatchResult,
    ContactCandidate,
    NormalizedEmailRecord,
    ParsedConversation,
    ParsedEmail,
    RowSkipped,
)
from app.models.session import IngestSession


class ApiModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class ContactOut(ApiModel):
    id: str
    email: Optional[str] = None
    first_name: Optional[str] = Field(default=None, alias="firstName")
    last_name: Optional[str] = Field(default=None, alias="lastName")
    title: Optional[str] = None
    company_name: Optional[str] = Field(default=None, alias="companyName")

    @classmethod
    def from_candidate(cls, contact: ContactCandidate) -> "ContactOut":
        return cls.model_validate(asdict(contact))


class RecordIn(ApiModel):
    email: str = ""
    first_name: Optional[str] = Field(default=None, alias="firstName")
    last_name: Optional[str] = Field(default=None, alias="lastName")
    subject: Optional[str] = None
    body: Optional[str] = None
    sent_date: Optional[str] = Field(
        default=None,
        alias="sentDate",
        validation_alias=AliasChoices("sentDate", "emailSent", "sent_date"),
    )
    platform: Optional[str] = None
    notes: Optional[str] = None


class RecordOut(ApiModel):
    email: str
    sent_date: str = Field(alias="sentDate")
    platform: str
    first_name: Optional[str] = Field(default=None, alias="firstName")
    last_name: Optional[str] = Field(default=None, alias="lastName")
    subject: Optional[str] = None
    body: Optional[str] = None
    notes: Optional[str] = None

    @classmethod
    def from_record(cls, record: NormalizedEmailRecord) -> "RecordOut":
        return cls.model_validate(asdict(record))


class SkippedRowOut(ApiModel):
    row_number: int = Field(alias="rowNumber")
    email: str
    reason: str

    @classmethod
    def from_skip(cls, skip: RowSkipped) -> "SkippedRowOut":
        return cls.model_validate(asdict(skip))


class CsvRequest(ApiModel):
    csv_text: str = Field(alias="csvText", validation_alias=AliasChoices("csvText", "csv", "text"))
    company_hq_id: Optional[str] = Field(default=None, alias="companyHQId")
    # 이메일 → 사용자가 확인한 contact id
    confirmations: Dict[str, str] = Field(default_factory=dict)


class CsvParseResponse(ApiModel):
    records: List[RecordOut]
    skipped: List[SkippedRowOut]


class PendingOut(ApiModel):
    row_number: int = Field(alias="rowNumber")
    email: str
    candidates: List[ContactOut]


class BatchResponse(ApiModel):
    saved: int
    skipped: int
    failed: int
    errors: List[str]
    pending: List[PendingOut] = Field(default_factory=list)

    @classmethod
    def from_result(cls, result: BatchResult) -> "BatchResponse":
        return cls(
            saved=result.saved,
            skipped=result.skipped,
            failed=result.failed,
            errors=list(result.errors),
            pending=[
                PendingOut(
                    row_number=p.row_number,
                    email=p.email,
                    candidates=[ContactOut.from_candidate(c) for c in p.candidates],
                )
                for p in result.pending
            ],
        )


class EmailBlobRequest(ApiModel):
    blob: str = Field(validation_alias=AliasChoices("blob", "emailBlob", "text"))


class ParsedEmailOut(ApiModel):
    from_name: str = Field(alias="from")
    from_email: str = Field(alias="fromEmail")
    to_name: str = Field(alias="to")
    to_email: str = Field(alias="toEmail")
    sent: str
    subject: str
    body: str

    @classmethod
    def from_parsed(cls, parsed: ParsedEmail) -> "ParsedEmailOut":
        return cls.model_validate(asdict(parsed))


class ConversationParseRequest(ApiModel):
    blob: str = Field(validation_alias=AliasChoices("blob", "emailBlob", "text"))
    our_emails: List[str] = Field(default_factory=list, alias="ourEmails")
    contact_email: Optional[str] = Field(default=None, alias="contactEmail")


class ConversationMessageOut(ParsedEmailOut):
    index: int
    direction: str


class ConversationOut(ApiModel):
    messages: List[ConversationMessageOut]
    contact_email: Optional[str] = Field(default=None, alias="contactEmail")

    @classmethod
    def from_conversation(cls, conversation: ParsedConversation) -> "ConversationOut":
        return cls(
            messages=[
                ConversationMessageOut.model_validate(
                    {**asdict(m.email), "index": m.index, "direction": m.direction}
                )
                for m in conversation.messages
            ],
            contact_email=conversation.contact_email,
        )


class ConversationSaveRequest(ConversationParseRequest):
    platform: Optional[str] = None


class ConversationSaveResponse(ApiModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    success: bool
    message_count: int = Field(alias="messageCount")
    activity_ids: List[str] = Field(default_factory=list, alias="activityIds")


class SessionStartRequest(ApiModel):
    blob: Optional[str] = Field(default=None, validation_alias=AliasChoices("blob", "emailBlob"))
    record: Optional[RecordIn] = None
    contact_id: Optional[str] = Field(default=None, alias="contactId")
    confirmed_contact_id: Optional[str] = Field(default=None, alias="confirmedContactId")
    company_hq_id: Optional[str] = Field(default=None, alias="companyHQId")
    platform: Optional[str] = None
    notes: Optional[str] = None


class ConfirmRequest(ApiModel):
    contact_id: str = Field(alias="contactId")


class SessionOut(ApiModel):
    session_id: str = Field(alias="sessionId")
    state: Dict[str, Any]
    record: Optional[RecordOut] = None
    parsed_email: Optional[ParsedEmailOut] = Field(default=None, alias="parsedEmail")
    company_hq_id: Optional[str] = Field(default=None, alias="companyHQId")

    @classmethod
    def from_session(cls, session: IngestSession) -> "SessionOut":
        return cls(
            session_id=session.session_id,
            state=session.state.model_dump(mode="json", by_alias=True),
            record=RecordOut.from_record(session.record) if session.record else None,
            parsed_email=ParsedEmailOut.from_parsed(session.parsed_email) if session.parsed_email else None,
            company_hq_id=session.company_hq_id,
        )
