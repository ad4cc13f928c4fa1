"""
날짜 문자열 정규화

이메일 클라이언트 헤더(Sent:)와 CSV 날짜 컬럼에 공통으로 사용.
지원 형태 (순서대로 시도):
- <Weekday,> Month D, YYYY   (예: "Monday, March 3, 2025 10:15 AM")
- M/D/YYYY                   (예: "3/4/2025")
- YYYY-MM-DD
"""

from __future__ import annotations

import re
from datetime import date, datetime
from typing import Optional

_MONTH_DAY_YEAR = re.compile(r"(\w+day,?\s+)?(\w+)\s+(\d+),?\s+(\d{4})", re.IGNORECASE)
_SLASH_DATE = re.compile(r"(\d{1,2})/(\d{1,2})/(\d{4})")
_ISO_DATE = re.compile(r"(\d{4})-(\d{2})-(\d{2})")


def _month_day_year(value: str) -> Optional[date]:
    match = _MONTH_DAY_YEAR.search(value)
    if not match:
        return None
    month_name, day, year = match.group(2), match.group(3), match.group(4)
    for fmt in ("%B %d %Y", "%b %d %Y"):
        try:
            return datetime.strptime(f"{month_name} {day} {year}", fmt).date()
        except ValueError:
            continue
    return None


def _slash_date(value: str) -> Optional[date]:
    match = _SLASH_DATE.search(value)
    if not match:
        return None
    month, day, year = (int(part) for part in match.groups())
    try:
        return date(year, month, day)
    except ValueError:
        return None


def _iso_date(value: str) -> Optional[date]:
    match = _ISO_DATE.search(value)
    if not match:
        return None
    year, month, day = (int(part) for part in match.groups())
    try:
        return date(year, month, day)
    except ValueError:
        return None


_SHAPES = (_month_day_year, _slash_date, _iso_date)


def parse_loose_date(value: Optional[str]) -> Optional[str]:
    """지원 형태 중 처음 성공한 날짜를 ISO(YYYY-MM-DD)로 반환, 실패 시 None"""
    if not value or not value.strip():
        return None
    for shape in _SHAPES:
        parsed = shape(value)
        if parsed is not None:
            return parsed.isoformat()
    return None


def today_iso(today: Optional[date] = None) -> str:
    return (today or date.today()).isoformat()
