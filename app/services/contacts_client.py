"""
CRM Contacts API Client

연락처 조회(정확/도메인 fuzzy), 생성, 오프플랫폼 발송 기록을 위한 HTTP 클라이언트.
- httpx 커넥션 풀링 (lazy init)
- 재시도 없음: 5xx도 호출자에게 그대로 전달 (무한 재조회 방지)
- timeout은 설정하지 않으면 transport 기본값 사용
"""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import Any, Dict, List, Optional

import httpx
from fastapi import status

from app.core.config import get_settings

logger = logging.getLogger(__name__)


class ContactsClientError(RuntimeError):
    """CRM API 호출 실패"""

    def __init__(self, status_code: int, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.details = details or {"error": message}

    @property
    def server_error(self) -> bool:
        return self.status_code >= 500


class ContactsClient:
    def __init__(
        self,
        base_url: str,
        *,
        token: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            headers = {"Accept": "application/json"}
            if self.token:
                headers["Authorization"] = f"Bearer {self.token}"
            kwargs: Dict[str, Any] = {"base_url": self.base_url, "headers": headers}
            if self.timeout is not None:
                kwargs["timeout"] = self.timeout
            if self._transport is not None:
                kwargs["transport"] = self._transport
            self._client = httpx.AsyncClient(**kwargs)
        return self._client

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    # =========================================================================
    # 연락처
    # =========================================================================

    async def find_contact_by_email(
        self,
        email: str,
        company_hq_id: Optional[str] = None,
    ) -> Optional[Dict[str, Any]]:
        """이메일로 연락처 조회

        Returns:
            - {"fuzzy": False, "contact": {...}}: 정확히 일치
            - {"fuzzy": True, "contact": {...}}: 같은 도메인 연락처 1명
            - {"fuzzy": True, "candidates": [...]}: 같은 도메인 연락처 여러 명
            - None: 일치하는 연락처 없음 (404)
        """
        params = {"email": email.strip().lower()}
        if company_hq_id:
            params["companyHQId"] = company_hq_id
        try:
            return await self._request("GET", "/contacts/by-email", params=params)
        except ContactsClientError as exc:
            if exc.status_code == status.HTTP_404_NOT_FOUND:
                return None
            raise

    async def get_contact(self, contact_id: str) -> Optional[Dict[str, Any]]:
        try:
            payload = await self._request("GET", f"/contacts/{contact_id}")
        except ContactsClientError as exc:
            if exc.status_code == status.HTTP_404_NOT_FOUND:
                return None
            raise
        return payload.get("contact")

    async def create_contact(
        self,
        *,
        email: str,
        company_hq_id: str,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
    ) -> Dict[str, Any]:
        body: Dict[str, Any] = {"email": email, "companyHQId": company_hq_id}
        if first_name:
            body["firstName"] = first_name
        if last_name:
            body["lastName"] = last_name
        payload = await self._request("POST", "/contacts/create", json=body)
        contact = payload.get("contact")
        if not payload.get("success", True) or not contact:
            raise ContactsClientError(
                status.HTTP_502_BAD_GATEWAY,
                payload.get("error") or "Contact creation returned no contact",
                payload,
            )
        return contact

    # =========================================================================
    # 오프플랫폼 활동 기록
    # =========================================================================

    async def record_off_platform_send(self, contact_id: str, send: Dict[str, Any]) -> Dict[str, Any]:
        payload = await self._request("POST", f"/contacts/{contact_id}/off-platform-send", json=send)
        if not payload.get("success"):
            raise ContactsClientError(
                status.HTTP_502_BAD_GATEWAY,
                payload.get("error") or "Off-platform send was not recorded",
                payload,
            )
        return payload

    async def record_off_platform_conversation(
        self,
        contact_id: str,
        messages: List[Dict[str, Any]],
        platform: str,
    ) -> Dict[str, Any]:
        payload = await self._request(
            "POST",
            f"/contacts/{contact_id}/off-platform-conversation",
            json={"messages": messages, "platform": platform},
        )
        if not payload.get("success"):
            raise ContactsClientError(
                status.HTTP_502_BAD_GATEWAY,
                payload.get("error") or "Conversation was not recorded",
                payload,
            )
        return payload

    # =========================================================================
    # Internal
    # =========================================================================

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        client = await self._get_client()
        try:
            response = await client.request(method, path, params=params, json=json)
        except httpx.HTTPError as exc:
            logger.error("CRM API %s %s failed: %s", method, path, exc)
            raise ContactsClientError(
                status.HTTP_502_BAD_GATEWAY, f"CRM API unreachable: {exc}"
            ) from exc

        if response.status_code >= 400:
            try:
                payload = response.json()
            except ValueError:
                payload = {"error": response.text or response.reason_phrase}
            if not isinstance(payload, dict):
                payload = {"error": str(payload)}
            message = payload.get("error") or response.reason_phrase or "CRM API request failed"
            raise ContactsClientError(response.status_code, message, payload)

        try:
            return response.json()
        except ValueError as exc:
            raise ContactsClientError(
                status.HTTP_502_BAD_GATEWAY, "CRM API returned a non-JSON response"
            ) from exc


@lru_cache
def get_contacts_client() -> ContactsClient:
    settings = get_settings()
    return ContactsClient(
        settings.crm_api_base_url,
        token=settings.crm_api_token,
        timeout=settings.crm_api_timeout,
    )
