import json
import logging
from datetime import UTC, datetime
from typing import Any
from uuid import UUID

from fastapi import APIRouter, WebSocket
from starlette.websockets import WebSocketDisconnect

from support_handoff.core.config import get_settings
from support_handoff.core.db import get_session_factory
from support_handoff.core.security import decode_operator_access_token
from support_handoff.domain.enums import OperatorPresence
from support_handoff.infra.db.repositories import HandoffRepository, OperatorRepository
from support_handoff.infra.realtime.channels import (
    handoff_channel,
    operator_channel,
    tenant_operators_channel,
)
from support_handoff.services.operator_service import OperatorService

router = APIRouter()
settings = get_settings()
logger = logging.getLogger(__name__)


def _parse_uuid(raw: Any) -> UUID | None:
    if raw is None:
        return None
    try:
        return UUID(str(raw))
    except ValueError:
        return None


async def _send_system(websocket: WebSocket, event: str, payload: dict[str, Any]) -> None:
    await websocket.send_json(
        {
            "event": f"system.{event}",
            "payload": payload,
            "sent_at": datetime.now(UTC).isoformat(),
        }
    )


@router.websocket("/ws")
async def operator_realtime_ws(websocket: WebSocket) -> None:
    """Push channel for operator consoles. Customers poll instead."""
    hub = getattr(websocket.app.state, "realtime_hub", None)
    if hub is None:
        await websocket.close(code=1011, reason="Realtime hub not initialized")
        return

    try:
        session_factory = get_session_factory()
    except RuntimeError:
        await websocket.close(code=1011, reason="Database session is not initialized")
        return

    access_token = websocket.query_params.get("access_token", "").strip()
    if not access_token:
        await websocket.close(code=1008, reason="Operator websocket requires access_token")
        return

    try:
        claims = decode_operator_access_token(access_token, settings.operator_auth_secret)
    except ValueError:
        await websocket.close(code=1008, reason="Invalid or expired operator session")
        return

    async with session_factory() as session:
        operator = await OperatorRepository(session).get_by_id(claims.operator_id)
        if operator is None or not operator.is_active or operator.tenant_id != claims.tenant_id:
            await websocket.close(code=1008, reason="Invalid or expired operator session")
            return

    operator_id = claims.operator_id
    tenant_id = claims.tenant_id
    initial_channels = [tenant_operators_channel(tenant_id), operator_channel(operator_id)]

    await hub.connect(websocket)
    for channel in initial_channels:
        await hub.subscribe(websocket, channel)
    await _send_system(websocket, "connected", {"channels": initial_channels})

    async with session_factory() as session:
        await OperatorService(session=session, realtime=hub).heartbeat(operator_id)

    try:
        while True:
            raw_message = await websocket.receive_text()
            if raw_message.strip().lower() == "ping":
                await _send_system(websocket, "pong", {})
                continue

            try:
                message = json.loads(raw_message)
            except json.JSONDecodeError:
                await _send_system(websocket, "error", {"detail": "Expected JSON payload"})
                continue
            if not isinstance(message, dict):
                await _send_system(websocket, "error", {"detail": "Expected JSON object"})
                continue

            action = message.get("action")
            if action == "ping":
                await _send_system(websocket, "pong", {})
                continue

            if action not in ("subscribe_handoff", "unsubscribe_handoff"):
                await _send_system(websocket, "error", {"detail": "Unsupported action"})
                continue

            handoff_id = _parse_uuid(message.get("handoff_id"))
            if handoff_id is None:
                await _send_system(websocket, "error", {"detail": "Invalid handoff_id"})
                continue

            channel = handoff_channel(handoff_id)
            if action == "unsubscribe_handoff":
                await hub.unsubscribe(websocket, channel)
                await _send_system(websocket, "unsubscribed", {"channel": channel})
                continue

            async with session_factory() as session:
                handoff = await HandoffRepository(session).get_by_id(handoff_id)
            if handoff is None or handoff.tenant_id != tenant_id:
                await _send_system(websocket, "error", {"detail": "Handoff not found"})
                continue

            await hub.subscribe(websocket, channel)
            await _send_system(websocket, "subscribed", {"channel": channel})
    except WebSocketDisconnect:
        return
    finally:
        await hub.disconnect(websocket)
        if hub.subscriber_count(operator_channel(operator_id)) == 0:
            try:
                async with session_factory() as session:
                    await OperatorService(session=session, realtime=hub).set_presence(
                        operator_id, OperatorPresence.OFFLINE
                    )
            except Exception:
                logger.warning(
                    "Failed to mark operator %s offline on disconnect",
                    operator_id,
                    exc_info=True,
                )
