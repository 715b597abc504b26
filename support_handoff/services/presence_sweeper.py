import asyncio
import logging
from contextlib import suppress

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from support_handoff.infra.realtime.publisher import RealtimePublisher
from support_handoff.services.operator_service import OperatorService

logger = logging.getLogger(__name__)


class PresenceSweeper:
    """Background task that marks operators offline once their heartbeats stop."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        realtime: RealtimePublisher | None,
        offline_after_seconds: int,
        interval_seconds: float,
    ) -> None:
        self.session_factory = session_factory
        self.realtime = realtime
        self.offline_after_seconds = offline_after_seconds
        self.interval_seconds = interval_seconds
        self._task: asyncio.Task | None = None

    async def sweep_once(self) -> int:
        async with self.session_factory() as session:
            service = OperatorService(session=session, realtime=self.realtime)
            stale = await service.sweep_stale(self.offline_after_seconds)
        return len(stale)

    async def run(self) -> None:
        while True:
            try:
                await self.sweep_once()
            except Exception:
                logger.warning("Operator presence sweep failed", exc_info=True)
            await asyncio.sleep(self.interval_seconds)

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run(), name="operator-presence-sweeper")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with suppress(asyncio.CancelledError):
            await self._task
        self._task = None
