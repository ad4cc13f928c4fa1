"""
CSV Extractor - 오프플랫폼 이메일 CSV 파싱

- 따옴표 필드 안의 쉼표/줄바꿈(\\r, \\n, \\r\\n) 보존 (단일 패스 스캐너)
- "" → 리터럴 따옴표
- 헤더는 부분 문자열로 컬럼 역할 결정 (예: "date of email" → sent_date)
- 이메일 없는 행은 에러가 아니라 skip
"""

from __future__ import annotations

import csv
import io
import logging
from dataclasses import dataclass
from datetime import date
from typing import List, Optional

from app.models.ingest import CsvParseResult, NormalizedEmailRecord, RowSkipped
from app.services.ingest_errors import ParseError
from app.utils.dates import parse_loose_date, today_iso

logger = logging.getLogger(__name__)

TEMPLATE_HEADERS = ["first name", "last name", "email", "date of email", "subject", "body"]

TEMPLATE_EXAMPLE_ROW = [
    "John",
    "Doe",
    "john.doe@example.com",
    "2025-01-15",
    "Following up on our conversation",
    "Hi John,\n\nGreat meeting you last week. I wanted to follow up on the proposal we discussed.\n\nBest,\nJane",
]


@dataclass
class ColumnMap:
    email: int
    first_name: Optional[int] = None
    last_name: Optional[int] = None
    subject: Optional[int] = None
    sent_date: Optional[int] = None
    body: Optional[int] = None
    platform: Optional[int] = None
    notes: Optional[int] = None


def tokenize_csv(text: str) -> List[List[str]]:
    """CSV 텍스트를 행/필드로 분리 (따옴표 상태 추적)

    닫히지 않은 따옴표가 있어도 입력 끝에서 종료하고 누적된 값을 flush 한다.
    """
    rows: List[List[str]] = []
    row: List[str] = []
    current: List[str] = []
    in_quotes = False
    i = 0
    length = len(text)

    while i < length:
        char = text[i]
        if in_quotes:
            if char == '"':
                if i + 1 < length and text[i + 1] == '"':
                    current.append('"')
                    i += 1
                else:
                    in_quotes = False
            else:
                current.append(char)
        elif char == '"':
            in_quotes = True
        elif char == ",":
            row.append("".join(current))
            current = []
        elif char in "\r\n":
            row.append("".join(current))
            current = []
            rows.append(row)
            row = []
            if char == "\r" and i + 1 < length and text[i + 1] == "\n":
                i += 1
        else:
            current.append(char)
        i += 1

    if current or row:
        row.append("".join(current))
        rows.append(row)

    return [r for r in rows if any(value.strip() for value in r)]


def _clean(value: str) -> str:
    value = value.strip()
    if len(value) >= 2 and value[0] == '"' and value[-1] == '"':
        value = value[1:-1]
    return value


def _find(headers: List[str], *needles: str) -> Optional[int]:
    for index, header in enumerate(headers):
        if all(needle in header for needle in needles):
            return index
    return None


def resolve_columns(headers: List[str]) -> ColumnMap:
    """헤더 이름(소문자)에 포함된 키워드로 컬럼 역할 매핑"""
    lowered = [header.strip().lower() for header in headers]
    email_index = _find(lowered, "email")
    if email_index is None:
        raise ParseError("missing email column")

    sent_index = next(
        (index for index, header in enumerate(lowered) if "date" in header or "sent" in header),
        None,
    )

    return ColumnMap(
        email=email_index,
        first_name=_find(lowered, "first", "name"),
        last_name=_find(lowered, "last", "name"),
        subject=_find(lowered, "subject"),
        sent_date=sent_index,
        body=_find(lowered, "body"),
        platform=_find(lowered, "platform"),
        notes=_find(lowered, "note"),
    )


def _field(values: List[str], index: Optional[int]) -> str:
    if index is None:
        return ""
    return values[index]


def parse_csv(text: str, *, today: Optional[date] = None, default_platform: str = "manual") -> CsvParseResult:
    """CSV 텍스트 → NormalizedEmailRecord 목록

    Raises:
        ParseError: 헤더 + 데이터 1행 미만이거나 email 컬럼이 없을 때
    """
    rows = tokenize_csv(text or "")
    if len(rows) < 2:
        raise ParseError("too few rows")

    headers = rows[0]
    columns = resolve_columns(headers)
    fallback_date = today_iso(today)

    result = CsvParseResult(records=[])
    for row_number, raw_values in enumerate(rows[1:], start=1):
        values = [_clean(value) for value in raw_values]
        if len(values) < len(headers):
            values.extend([""] * (len(headers) - len(values)))

        email = values[columns.email]
        if not email or "@" not in email:
            logger.debug("Skipping CSV row %s: no usable email (%r)", row_number, email)
            result.skipped.append(RowSkipped(row_number=row_number, email=email))
            continue

        raw_date = _field(values, columns.sent_date)
        result.records.append(
            NormalizedEmailRecord(
                email=email,
                sent_date=parse_loose_date(raw_date) or fallback_date,
                platform=_field(values, columns.platform) or default_platform,
                first_name=_field(values, columns.first_name) or None,
                last_name=_field(values, columns.last_name) or None,
                subject=_field(values, columns.subject) or None,
                body=_field(values, columns.body) or None,
                notes=_field(values, columns.notes) or None,
            )
        )
        result.row_numbers.append(row_number)

    logger.info(
        "Parsed CSV: %s records, %s skipped rows",
        len(result.records),
        len(result.skipped),
    )
    return result


def parse_csv_records(text: str, *, today: Optional[date] = None) -> List[NormalizedEmailRecord]:
    return parse_csv(text, today=today).records


def build_csv_template() -> str:
    """다운로드용 CSV 템플릿 (예시 1행, 본문은 여러 줄)"""
    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator="\n")
    writer.writerow(TEMPLATE_HEADERS)
    writer.writerow(TEMPLATE_EXAMPLE_ROW)
    return buf.getvalue()
