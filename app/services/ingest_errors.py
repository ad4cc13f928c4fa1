from __future__ import annotations

from typing import List, Optional

from app.models.ingest import ContactCandidate


class IngestError(Exception):
    """오프플랫폼 이메일 수집 공통 에러"""


class ParseError(IngestError):
    """CSV 구조 자체가 잘못됨 - 배치 전체 중단"""


class InvalidRecordError(IngestError):
    """이메일에 '@'가 없는 레코드"""

    def __init__(self, email: str, message: Optional[str] = None) -> None:
        super().__init__(message or f"Invalid email address: {email!r}")
        self.email = email


class UnconfirmedMatchError(IngestError):
    """fuzzy/다중 매칭이 확인되지 않은 상태에서 저장 시도"""

    def __init__(self, email: str, candidates: List[ContactCandidate]) -> None:
        super().__init__(f"Contact match for {email} requires confirmation")
        self.email = email
        self.candidates = candidates


class ResolutionError(IngestError):
    def __init__(self, email: str, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.email = email
        self.status_code = status_code

    @property
    def server_error(self) -> bool:
        return self.status_code is not None and self.status_code >= 500


class PersistenceError(IngestError):
    def __init__(self, contact_id: str, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.contact_id = contact_id
        self.status_code = status_code


class IngestBusyError(IngestError):
    """같은 작업이 이미 진행 중"""


class InvalidTransitionError(IngestError):
    """현재 세션 상태에서 허용되지 않는 동작"""

    def __init__(self, state: str, action: str) -> None:
        super().__init__(f"Cannot {action} while session is {state}")
        self.state = state
        self.action = action
