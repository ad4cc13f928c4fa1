from fastapi import APIRouter

from app.api.routes import health, offplatform
from app.core.config import get_settings


def get_api_router() -> APIRouter:
    settings = get_settings()
    router = APIRouter(prefix=settings.api_prefix)
    router.include_router(health.router)
    router.include_router(offplatform.router)  # Off-platform email ingest (CSV, paste, sessions)
    return router
