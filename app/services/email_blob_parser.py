"""
Email Blob Parser - 붙여넣은 Outlook/Gmail 이메일 텍스트 파싱

헤더(From/To/Sent/Subject)와 본문을 분리하고, 흔한 서명 패턴을 잘라낸다.
각 detector 함수는 순수 함수로 독립 테스트 가능:
- detect_header: 헤더 라인 첫 번째 값
- split_address: "Name <email>" 분리
- detect_sent: 날짜 ISO 변환 (실패 시 원문 유지)
- extract_body / strip_signature: 본문 + 서명 제거
"""

from __future__ import annotations

import logging
import re
from datetime import date
from typing import Iterable, List, Optional, Tuple

from app.models.ingest import (
    ConversationMessage,
    NormalizedEmailRecord,
    ParsedConversation,
    ParsedEmail,
)
from app.utils.dates import parse_loose_date, today_iso

logger = logging.getLogger(__name__)

HEADER_KEYWORDS = ("From", "To", "Sent", "Subject")

_BODY_HEADER_LINE = re.compile(r"^\s*(From|To|Sent|Date|Subject):", re.IGNORECASE)
_ANGLE_EMAIL = re.compile(r"<([^>]+)>")
_CLOSING_PHRASE = re.compile(r"^(Best|Regards|Sincerely|Thanks|Thank you|Cheers),?\s*$", re.IGNORECASE)
_PERSON_NAME = re.compile(r"^[A-Z][a-z]+(\s+[A-Z][a-z]+)?$")
_CONTACT_INFO = re.compile(r"@|\(\d{3}\)|\d{3}-\d{3}-\d{4}|\b(LLC|Inc|Corp|Law|PLLC)\b")

_OUTLOOK_SEPARATOR = re.compile(r"\n\s*-----Original Message-----", re.IGNORECASE)
_GMAIL_SEPARATOR = re.compile(r"\n\s*On\s+[^\n]+wrote:\s*\n", re.IGNORECASE)
_FROM_BLOCK_SEPARATOR = re.compile(r"\n(?=From:\s*.+\n(?:.*\n){0,3}Sent:)", re.IGNORECASE)


def _normalize_newlines(blob: str) -> str:
    return blob.replace("\r\n", "\n").replace("\r", "\n")


def detect_header(blob: str, keyword: str) -> str:
    """keyword로 시작하는 첫 번째 헤더 라인의 값 (없으면 빈 문자열)"""
    pattern = re.compile(rf"^[ \t]*{re.escape(keyword)}:[ \t]*(.*)$", re.IGNORECASE | re.MULTILINE)
    match = pattern.search(_normalize_newlines(blob))
    if not match:
        return ""
    return match.group(1).strip()


def split_address(value: str) -> Tuple[str, str]:
    """헤더 값 → (표시 이름, 이메일)"""
    value = value.strip()
    if not value:
        return "", ""
    angle = _ANGLE_EMAIL.search(value)
    if angle and "@" in angle.group(1):
        name = _ANGLE_EMAIL.sub("", value, count=1).strip().strip('"').strip()
        return name, angle.group(1).strip()
    if "@" in value:
        return "", value
    return value, ""


def detect_sent(value: str) -> str:
    """Sent: 값을 ISO 날짜로 변환, 해석 불가면 원문 그대로"""
    value = value.strip()
    if not value:
        return ""
    parsed = parse_loose_date(value)
    if parsed:
        return parsed
    logger.debug("Sent header not parseable, keeping raw value: %r", value)
    return value


def _is_person_name(line: str) -> bool:
    return bool(_PERSON_NAME.match(line.strip()))


def _signature_starts(lines: List[str], index: int, collected: int) -> bool:
    if collected == 0:
        return False
    line = lines[index].strip()
    following = lines[index + 1] if index + 1 < len(lines) else ""
    after_following = lines[index + 2] if index + 2 < len(lines) else ""

    if _CLOSING_PHRASE.match(line) and _is_person_name(following):
        return True
    if _is_person_name(line) and (
        _CONTACT_INFO.search(following) or _CONTACT_INFO.search(after_following)
    ):
        return True
    return False


def strip_signature(text: str) -> str:
    """본문 끝의 서명(맺음말 + 이름, 또는 이름 + 연락처) 제거"""
    lines = _normalize_newlines(text).split("\n")
    kept: List[str] = []
    # 빈 줄은 본문으로 세지 않음
    content_lines = 0
    for index, line in enumerate(lines):
        if _signature_starts(lines, index, content_lines):
            break
        kept.append(line)
        if line.strip():
            content_lines += 1
    return "\n".join(kept).strip()


def extract_body(blob: str) -> str:
    """마지막 헤더 라인 이후를 본문으로 추출

    헤더가 하나도 없으면 입력 전체(앞뒤 공백 제거)를 본문으로 본다.
    """
    lines = _normalize_newlines(blob).split("\n")
    last_header = -1
    for index, line in enumerate(lines):
        if _BODY_HEADER_LINE.match(line):
            last_header = index

    if last_header < 0:
        return blob.strip()

    start = last_header + 1
    while start < len(lines) and not lines[start].strip():
        start += 1
    return strip_signature("\n".join(lines[start:]))


def parse_email_blob(blob: str) -> ParsedEmail:
    result = ParsedEmail()
    if not blob or not blob.strip():
        return result

    result.from_name, result.from_email = split_address(detect_header(blob, "From"))
    result.to_name, result.to_email = split_address(detect_header(blob, "To"))
    result.sent = detect_sent(detect_header(blob, "Sent"))
    result.subject = detect_header(blob, "Subject")
    result.body = extract_body(blob)
    return result


def _split_name(display_name: str) -> Tuple[Optional[str], Optional[str]]:
    parts = display_name.replace('"', "").split()
    if not parts:
        return None, None
    if len(parts) == 1:
        return parts[0], None
    return parts[0], " ".join(parts[1:])


def to_record(
    parsed: ParsedEmail,
    *,
    platform: str = "manual",
    notes: Optional[str] = None,
    today: Optional[date] = None,
) -> NormalizedEmailRecord:
    """ParsedEmail → NormalizedEmailRecord (수신자 To가 연락처)

    sent가 ISO 형태가 아니면(원문 fallback) 오늘 날짜를 사용한다.
    """
    first_name, last_name = _split_name(parsed.to_name)
    return NormalizedEmailRecord(
        email=parsed.to_email,
        sent_date=parse_loose_date(parsed.sent) or today_iso(today),
        platform=platform,
        first_name=first_name,
        last_name=last_name,
        subject=parsed.subject or None,
        body=parsed.body or None,
        notes=notes,
    )


# =============================================================================
# Conversation (thread) parsing
# =============================================================================


def split_conversation_blocks(blob: str) -> List[str]:
    """붙여넣은 스레드를 메시지 단위로 분리 (최신 메시지가 먼저)"""
    if not blob or not blob.strip():
        return []

    normalized = _normalize_newlines(blob).strip()
    for separator in (_OUTLOOK_SEPARATOR, _GMAIL_SEPARATOR, _FROM_BLOCK_SEPARATOR):
        parts = separator.split(normalized)
        if len(parts) > 1:
            return [part.strip() for part in parts if part.strip()]
    return [normalized]


def _direction(parsed: ParsedEmail, our_emails: List[str], contact_email: Optional[str]) -> str:
    from_lower = parsed.from_email.lower()
    to_lower = parsed.to_email.lower()
    if our_emails:
        return "outbound" if from_lower in our_emails else "inbound"
    if contact_email:
        if from_lower == contact_email:
            return "inbound"
        if to_lower == contact_email:
            return "outbound"
    return "unknown"


def parse_email_conversation(
    blob: str,
    *,
    our_emails: Iterable[str] = (),
    contact_email: Optional[str] = None,
) -> ParsedConversation:
    """스레드 전체 파싱 + 메시지별 방향(outbound/inbound) 태깅"""
    normalized_ours = [email.strip().lower() for email in our_emails if email and email.strip()]
    contact_hint = (contact_email or "").strip().lower() or None

    messages: List[ConversationMessage] = []
    for index, raw in enumerate(split_conversation_blocks(blob)):
        parsed = parse_email_blob(raw)
        messages.append(
            ConversationMessage(
                index=index,
                direction=_direction(parsed, normalized_ours, contact_hint),
                email=parsed,
            )
        )

    our_outbound = next((m for m in messages if m.direction == "outbound"), None)
    last_reply = next((m for m in messages if m.direction == "inbound"), None)

    resolved_contact = contact_hint
    if not resolved_contact and last_reply and last_reply.email.from_email:
        resolved_contact = last_reply.email.from_email.lower()
    elif not resolved_contact and our_outbound and our_outbound.email.to_email:
        resolved_contact = our_outbound.email.to_email.lower()

    return ParsedConversation(
        messages=messages,
        contact_email=resolved_contact,
        our_outbound=our_outbound,
        last_reply=last_reply,
    )
