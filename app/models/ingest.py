from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

PLATFORM_SUGGESTIONS = (
    "gmail",
    "outlook",
    "linkedin",
    "apollo",
    "in-person",
    "csv",
    "manual",
    "other",
)


@dataclass
class NormalizedEmailRecord:
    """CSV/이메일 붙여넣기 양쪽에서 만들어지는 정규화 레코드"""
    email: str
    sent_date: str
    platform: str = "manual"
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    subject: Optional[str] = None
    body: Optional[str] = None
    notes: Optional[str] = None

    @property
    def has_valid_email(self) -> bool:
        return "@" in (self.email or "")


@dataclass
class RowSkipped:
    """이메일이 없어 건너뛴 CSV 행 (에러 아님)"""
    row_number: int
    email: str
    reason: str = "missing or invalid email"


@dataclass
class CsvParseResult:
    records: List[NormalizedEmailRecord]
    skipped: List[RowSkipped] = field(default_factory=list)
    # records[i]의 원본 데이터 행 번호 (1부터)
    row_numbers: List[int] = field(default_factory=list)


@dataclass
class ParsedEmail:
    from_name: str = ""
    from_email: str = ""
    to_name: str = ""
    to_email: str = ""
    sent: str = ""
    subject: str = ""
    body: str = ""


@dataclass
class ConversationMessage:
    index: int
    direction: str
    email: ParsedEmail


@dataclass
class ParsedConversation:
    messages: List[ConversationMessage]
    contact_email: Optional[str] = None
    our_outbound: Optional[ConversationMessage] = None
    last_reply: Optional[ConversationMessage] = None


@dataclass
class ContactCandidate:
    id: str
    email: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    title: Optional[str] = None
    company_name: Optional[str] = None

    @classmethod
    def from_payload(cls, raw: Dict[str, Any]) -> "ContactCandidate":
        return cls(
            id=str(raw.get("id")),
            email=raw.get("email"),
            first_name=raw.get("firstName"),
            last_name=raw.get("lastName"),
            title=raw.get("title"),
            company_name=raw.get("companyName"),
        )


@dataclass
class ExactMatch:
    contact: ContactCandidate
    kind: str = "exact"


@dataclass
class FuzzyMatch:
    contact: ContactCandidate
    kind: str = "fuzzy"

    @property
    def candidates(self) -> List[ContactCandidate]:
        return [self.contact]


@dataclass
class MultipleFuzzyMatches:
    candidates: List[ContactCandidate]
    kind: str = "multiple"


@dataclass
class NoMatch:
    kind: str = "none"


MatchResult = Union[ExactMatch, FuzzyMatch, MultipleFuzzyMatches, NoMatch]


def needs_confirmation(match: MatchResult) -> bool:
    return isinstance(match, (FuzzyMatch, MultipleFuzzyMatches))


@dataclass
class PendingConfirmation:
    """배치 저장 중 사람 확인이 필요한 행"""
    row_number: int
    email: str
    candidates: List[ContactCandidate]


@dataclass
class BatchResult:
    saved: int = 0
    skipped: int = 0
    failed: int = 0
    errors: List[str] = field(default_factory=list)
    pending: List[PendingConfirmation] = field(default_factory=list)
