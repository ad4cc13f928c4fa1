from __future__ import annotations

from datetime import datetime, timezone
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, Field
from pydantic.config import ConfigDict

from app.models.ingest import ContactCandidate, NormalizedEmailRecord, ParsedEmail


class SessionBase(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


# =============================================================================
# 세션 상태 (tagged union)
# Idle → Parsing → {AwaitingConfirmation | ReadyToSave} → Saving → {Saved | Failed}
# =============================================================================


class IdleState(SessionBase):
    kind: Literal["idle"] = "idle"


class ParsingState(SessionBase):
    kind: Literal["parsing"] = "parsing"


class AwaitingConfirmationState(SessionBase):
    kind: Literal["awaiting_confirmation"] = "awaiting_confirmation"
    candidates: List[ContactCandidate]


class ReadyToSaveState(SessionBase):
    kind: Literal["ready_to_save"] = "ready_to_save"
    contact: Optional[ContactCandidate] = None
    create_contact: bool = Field(default=False, alias="createContact")
    confirmed: bool = False


class SavingState(SessionBase):
    kind: Literal["saving"] = "saving"
    contact: Optional[ContactCandidate] = None
    create_contact: bool = Field(default=False, alias="createContact")


class SavedState(SessionBase):
    kind: Literal["saved"] = "saved"
    contact: ContactCandidate
    created: bool = False


class FailedState(SessionBase):
    kind: Literal["failed"] = "failed"
    reason: str
    # resolve: 연락처 확인 단계 실패, save: 저장 단계 실패, invalid: 재시도 불가
    stage: Literal["resolve", "save", "invalid"] = "save"
    contact: Optional[ContactCandidate] = None
    create_contact: bool = Field(default=False, alias="createContact")


SessionState = Annotated[
    Union[
        IdleState,
        ParsingState,
        AwaitingConfirmationState,
        ReadyToSaveState,
        SavingState,
        SavedState,
        FailedState,
    ],
    Field(discriminator="kind"),
]


def _now() -> datetime:
    return datetime.now(timezone.utc)


class IngestSession(SessionBase):
    session_id: str = Field(alias="sessionId")
    created_at: datetime = Field(default_factory=_now, alias="createdAt")
    updated_at: datetime = Field(default_factory=_now, alias="updatedAt")
    company_hq_id: Optional[str] = Field(default=None, alias="companyHQId")
    record: Optional[NormalizedEmailRecord] = None
    parsed_email: Optional[ParsedEmail] = Field(default=None, alias="parsedEmail")
    state: SessionState = Field(default_factory=IdleState)

    def transition(self, state: SessionState) -> "IngestSession":
        self.state = state
        self.updated_at = _now()
        return self
