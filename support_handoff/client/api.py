from datetime import datetime
from typing import Any
from uuid import UUID

import httpx

from support_handoff.client.config import WidgetClientSettings
from support_handoff.schemas.handoff import (
    EscalateResponse,
    HandoffMessageResponse,
    HandoffMessagesResponse,
    HandoffStatusResponse,
)
from support_handoff.schemas.transcript import SessionHistoryResponse
from support_handoff.schemas.widget import ChatResponse, EndChatResponse


class WidgetApiError(Exception):
    def __init__(self, status_code: int, detail: str) -> None:
        super().__init__(f"{status_code}: {detail}")
        self.status_code = status_code
        self.detail = detail


class WidgetApiClient:
    """HTTP client for the customer-facing widget endpoints."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        referrer: str | None = None,
        timeout_seconds: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.referrer = referrer
        self._client = client or httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=timeout_seconds,
        )
        self._client.headers["X-Widget-Key"] = api_key

    @classmethod
    def from_settings(cls, settings: WidgetClientSettings) -> "WidgetApiClient":
        return cls(
            base_url=settings.base_url,
            api_key=settings.api_key,
            referrer=settings.referrer,
            timeout_seconds=settings.request_timeout_seconds,
        )

    async def chat(self, conversation_id: str | None, message: str) -> ChatResponse:
        data = await self._request(
            "POST",
            "/api/v1/widget/chat",
            json={"conversation_id": conversation_id, "message": message},
        )
        return ChatResponse.model_validate(data)

    async def history(
        self,
        conversation_id: str | None,
        handoff_id: UUID | None,
    ) -> SessionHistoryResponse:
        params: dict[str, str] = {}
        if conversation_id is not None:
            params["conversation_id"] = conversation_id
        if handoff_id is not None:
            params["handoff_id"] = str(handoff_id)
        data = await self._request("GET", "/api/v1/widget/history", params=params)
        return SessionHistoryResponse.model_validate(data)

    async def escalate(
        self,
        conversation_id: str | None,
        recent_turns: list[dict[str, str]],
        last_customer_message: str | None,
        contact_email: str | None = None,
        contact_message: str | None = None,
        handoff_id: UUID | None = None,
    ) -> EscalateResponse:
        data = await self._request(
            "POST",
            "/api/v1/widget/handoffs",
            json={
                "conversation_id": conversation_id,
                "handoff_id": str(handoff_id) if handoff_id is not None else None,
                "recent_turns": recent_turns,
                "last_customer_message": last_customer_message,
                "contact_email": contact_email,
                "contact_message": contact_message,
            },
        )
        return EscalateResponse.model_validate(data)

    async def status(self, handoff_id: UUID) -> HandoffStatusResponse:
        data = await self._request("GET", f"/api/v1/widget/handoffs/{handoff_id}/status")
        return HandoffStatusResponse.model_validate(data)

    async def send_message(
        self,
        handoff_id: UUID,
        body: str,
        conversation_id: str | None,
    ) -> HandoffMessageResponse:
        data = await self._request(
            "POST",
            f"/api/v1/widget/handoffs/{handoff_id}/messages",
            json={"body": body, "conversation_id": conversation_id},
        )
        return HandoffMessageResponse.model_validate(data)

    async def poll_messages(
        self,
        handoff_id: UUID,
        since: datetime | None = None,
    ) -> list[HandoffMessageResponse]:
        params = {"since": since.isoformat()} if since is not None else {}
        data = await self._request(
            "GET", f"/api/v1/widget/handoffs/{handoff_id}/messages", params=params
        )
        return HandoffMessagesResponse.model_validate(data).items

    async def resolve(
        self,
        handoff_id: UUID,
        conversation_id: str | None,
    ) -> HandoffStatusResponse:
        data = await self._request(
            "POST",
            f"/api/v1/widget/handoffs/{handoff_id}/resolve",
            json={"conversation_id": conversation_id},
        )
        return HandoffStatusResponse.model_validate(data)

    async def end_chat(
        self,
        conversation_id: str | None,
        handoff_id: UUID | None,
    ) -> EndChatResponse:
        data = await self._request(
            "POST",
            "/api/v1/widget/end-chat",
            json={
                "conversation_id": conversation_id,
                "handoff_id": str(handoff_id) if handoff_id is not None else None,
            },
        )
        return EndChatResponse.model_validate(data)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        params: dict[str, str] | None = None,
        json: dict[str, Any] | None = None,
    ) -> Any:
        query = dict(params or {})
        if self.referrer:
            query["referrer"] = self.referrer

        response = await self._client.request(method, path, params=query, json=json)
        if response.is_error:
            raise WidgetApiError(response.status_code, _error_detail(response))
        return response.json()


def _error_detail(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return response.text or response.reason_phrase
    if isinstance(payload, dict) and isinstance(payload.get("detail"), str):
        return payload["detail"]
    return str(payload)
