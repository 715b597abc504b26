import logging
from datetime import UTC, datetime, timedelta
from typing import Any
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from support_handoff.domain.enums import OperatorPresence
from support_handoff.infra.db.models import Operator
from support_handoff.infra.db.repositories import OperatorRepository
from support_handoff.infra.realtime.channels import operator_channel, tenant_operators_channel
from support_handoff.infra.realtime.events import RealtimeEvent
from support_handoff.infra.realtime.publisher import NoopRealtimePublisher, RealtimePublisher
from support_handoff.services.errors import OperatorNotFoundError

logger = logging.getLogger(__name__)


class OperatorService:
    def __init__(
        self,
        session: AsyncSession,
        operators: OperatorRepository | None = None,
        realtime: RealtimePublisher | None = None,
    ) -> None:
        self.session = session
        self.operators = operators or OperatorRepository(session)
        self.realtime = realtime or NoopRealtimePublisher()

    async def get_operator(self, operator_id: UUID) -> Operator:
        return await self._get_operator_or_raise(operator_id)

    async def list_operators(
        self, tenant_id: UUID, available_only: bool = False
    ) -> list[Operator]:
        operators = await self.operators.list_for_tenant(tenant_id)
        if not available_only:
            return operators
        ready = [
            operator
            for operator in operators
            if operator.is_active
            and operator.presence == OperatorPresence.AVAILABLE
            and operator.active_chats < operator.max_chats
        ]
        return sorted(ready, key=lambda operator: operator.active_chats)

    async def set_presence(self, operator_id: UUID, presence: OperatorPresence) -> Operator:
        operator = await self._get_operator_or_raise(operator_id)
        changed = operator.presence != presence
        await self.operators.update_presence(operator, presence, seen_at=datetime.now(UTC))
        await self.session.commit()
        await self.session.refresh(operator)
        if changed:
            await self._emit_presence_changed(operator)
        return operator

    async def heartbeat(self, operator_id: UUID) -> Operator:
        """Refresh last-seen. An offline operator sending heartbeats is available again."""
        operator = await self._get_operator_or_raise(operator_id)
        now = datetime.now(UTC)
        if operator.presence == OperatorPresence.OFFLINE:
            await self.operators.update_presence(operator, OperatorPresence.AVAILABLE, seen_at=now)
            await self.session.commit()
            await self.session.refresh(operator)
            await self._emit_presence_changed(operator)
            return operator

        await self.operators.touch_last_seen(operator, now)
        await self.session.commit()
        return operator

    async def sweep_stale(self, offline_after_seconds: int) -> list[Operator]:
        cutoff = datetime.now(UTC) - timedelta(seconds=offline_after_seconds)
        stale = await self.operators.mark_stale_offline(cutoff)
        await self.session.commit()
        for operator in stale:
            logger.info("Operator %s marked offline after missed heartbeats", operator.id)
            await self._emit_presence_changed(operator)
        return stale

    async def _get_operator_or_raise(self, operator_id: UUID) -> Operator:
        operator = await self.operators.get_by_id(operator_id)
        if operator is None:
            raise OperatorNotFoundError(operator_id)
        return operator

    async def _emit_presence_changed(self, operator: Operator) -> None:
        try:
            await self.realtime.publish(
                [tenant_operators_channel(operator.tenant_id), operator_channel(operator.id)],
                RealtimeEvent.OPERATOR_PRESENCE_CHANGED,
                {"operator": self._operator_payload(operator)},
            )
        except Exception:
            logger.warning("Failed to publish presence for %s", operator.id, exc_info=True)

    @staticmethod
    def _operator_payload(operator: Operator) -> dict[str, Any]:
        return {
            "id": str(operator.id),
            "display_name": operator.display_name,
            "presence": operator.presence.value,
            "active_chats": operator.active_chats,
            "max_chats": operator.max_chats,
        }
