from datetime import datetime, timezone
from typing import Any, Dict

from fastapi import APIRouter

from app.core.config import get_settings

router = APIRouter(tags=["health"])


@router.get("/health")
def read_health() -> dict:
    return {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@router.get("/status")
def read_status() -> Dict[str, Any]:
    """CRM API 연결 설정 및 세션 저장소 종류 반환"""
    settings = get_settings()
    return {
        "ready": bool(settings.crm_api_base_url),
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "crmApiBaseUrl": settings.crm_api_base_url,
        "sessionBackend": "redis" if settings.redis_url else "memory",
        "defaultCompanyScope": bool(settings.default_company_hq_id),
    }
