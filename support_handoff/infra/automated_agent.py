"""Adapters for the automated conversational agent.

The agent is an opaque request/response text service: it mints a session id
and answers one customer utterance at a time.
"""

import logging
from typing import Protocol
from uuid import uuid4

import httpx

from support_handoff.core.config import Settings

logger = logging.getLogger(__name__)

CANNED_REPLY = (
    "Thanks for reaching out. I can answer common questions, "
    "or you can ask to talk to a support agent."
)


class AutomatedAgentError(RuntimeError):
    def __init__(self, message: str = "Automated agent is unavailable") -> None:
        super().__init__(message)


class AutomatedAgent(Protocol):
    async def start_session(self) -> str: ...

    async def reply(self, session_id: str, text: str) -> str: ...


class CannedAutomatedAgent:
    """Local stand-in used when no agent backend URL is configured."""

    def __init__(self, reply_text: str = CANNED_REPLY) -> None:
        self.reply_text = reply_text

    async def start_session(self) -> str:
        return f"local-{uuid4().hex}"

    async def reply(self, session_id: str, text: str) -> str:
        return self.reply_text

    async def aclose(self) -> None:
        return None


class HttpAutomatedAgent:
    def __init__(
        self,
        base_url: str,
        api_key: str | None = None,
        timeout_seconds: float = 15.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}
        self._client = client or httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers=headers,
            timeout=timeout_seconds,
        )

    async def start_session(self) -> str:
        data = await self._post("/sessions", {})
        session_id = data.get("session_id")
        if not isinstance(session_id, str) or not session_id:
            raise AutomatedAgentError("Automated agent returned no session id")
        return session_id

    async def reply(self, session_id: str, text: str) -> str:
        data = await self._post(f"/sessions/{session_id}/messages", {"text": text})
        messages = data.get("messages") or []
        return "\n\n".join(str(message) for message in messages if message)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _post(self, path: str, payload: dict) -> dict:
        try:
            response = await self._client.post(path, json=payload)
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("Automated agent call to %s failed: %s", path, exc)
            raise AutomatedAgentError() from exc

        if not isinstance(data, dict):
            raise AutomatedAgentError("Automated agent returned an unexpected payload")
        return data


def build_automated_agent(settings: Settings) -> HttpAutomatedAgent | CannedAutomatedAgent:
    if settings.automated_agent_url:
        return HttpAutomatedAgent(
            base_url=settings.automated_agent_url,
            api_key=settings.automated_agent_api_key,
            timeout_seconds=settings.automated_agent_timeout_seconds,
        )
    logger.info("No AUTOMATED_AGENT_URL configured, using canned replies")
    return CannedAutomatedAgent()
