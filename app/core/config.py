from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """기본 FastAPI 설정과 공통 환경 변수를 관리"""

    api_prefix: str = "/api"
    app_name: str = "Off-Platform Email Ingest"
    log_level: str = "INFO"

    # 단건 기록 세션 (이메일 붙여넣기 → 확인 → 저장)
    session_ttl_minutes: int = 30
    redis_url: Optional[str] = None
    redis_session_prefix: str = "offplatform-ingest-session"

    # CRM REST API (연락처 조회/생성, 오프플랫폼 발송 기록)
    crm_api_base_url: str = "http://localhost:3000/api"
    crm_api_token: Optional[str] = None
    crm_api_timeout: Optional[float] = Field(default=None)  # None = transport 기본값

    # 신규 연락처 생성에 사용할 기본 company scope
    default_company_hq_id: Optional[str] = None

    default_platform: str = "manual"

    model_config = SettingsConfigDict(
        env_prefix="",
        env_file=(".env", ".env.local"),
        env_file_encoding="utf-8",
    )

    @field_validator("crm_api_base_url", mode="before")
    @classmethod
    def strip_trailing_slash(cls, value):
        if isinstance(value, str):
            return value.rstrip("/")
        return value

    @field_validator("crm_api_timeout", mode="before")
    @classmethod
    def blank_timeout(cls, value):
        if isinstance(value, str) and not value.strip():
            return None
        return value


@lru_cache
def get_settings() -> Settings:
    return Settings()
