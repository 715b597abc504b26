"""Client synchronization agent for the customer widget.

The agent keeps three identifiers across reloads (conversation id, handoff id,
handoff status), rebuilds the transcript from the server on resume, and runs
two independent timers while a handoff is open: a status loop (pending or
active) and an operator-message loop (active only). Customers never get push
events; everything here is learned by polling or from request responses.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from contextlib import suppress
from dataclasses import dataclass
from datetime import datetime
from typing import Protocol

import httpx

from support_handoff.client.api import WidgetApiClient, WidgetApiError
from support_handoff.client.config import WidgetClientSettings
from support_handoff.client.seen import DisplayedMessageIds
from support_handoff.client.session_store import ClientSessionRecord, SessionStore
from support_handoff.domain.enums import (
    ClientHandoffStatus,
    EscalationOutcome,
    HandoffStatus,
    SenderOrigin,
    TranscriptRole,
    TurnRole,
)
from support_handoff.schemas.handoff import EscalateResponse

logger = logging.getLogger(__name__)

FAILURE_NOTICE = "Failed to load new messages. Please try again."
CONNECTING_NOTICE = "Connecting you with a support agent..."
CONTACT_THANKS_NOTICE = "Thanks! Our team will get back to you by email."
CHAT_ENDED_NOTICE = "The chat has ended."
RESTART_STATUSES = {400, 404, 500}
TRANSIENT_ERRORS = (WidgetApiError, httpx.HTTPError)


class Renderer(Protocol):
    def clear(self) -> None: ...

    def render(self, role: TranscriptRole, body: str, message_id: str | None = None) -> None: ...

    def notice(self, text: str) -> None: ...

    def show_contact_form(self) -> None: ...


@dataclass(slots=True)
class LocalTurn:
    role: TurnRole
    body: str


class ClientSyncAgent:
    def __init__(
        self,
        api: WidgetApiClient,
        store: SessionStore,
        renderer: Renderer,
        settings: WidgetClientSettings | None = None,
        seen: DisplayedMessageIds | None = None,
        run_loops: bool = True,
    ) -> None:
        self.api = api
        self.store = store
        self.renderer = renderer
        self.settings = settings or WidgetClientSettings()
        self.seen = seen or DisplayedMessageIds()
        self.run_loops = run_loops

        self.record = ClientSessionRecord()
        self.watermark: datetime | None = None
        self.turns: list[LocalTurn] = []

        self._polling_messages = False
        self._polling_status = False
        self._message_task: asyncio.Task | None = None
        self._status_task: asyncio.Task | None = None
        self._consecutive_failures = 0

    @property
    def is_polling_messages(self) -> bool:
        return self._polling_messages

    @property
    def is_polling_status(self) -> bool:
        return self._polling_status

    async def resume(self) -> bool:
        """Restore a persisted session. Returns False when starting fresh."""
        stored = self.store.load()
        if stored is None or stored.is_empty:
            return False

        try:
            history = await self.api.history(stored.conversation_id, stored.handoff_id)
        except WidgetApiError as exc:
            if exc.status_code not in RESTART_STATUSES:
                raise
            logger.info("Stored session is no longer valid (%s), starting fresh", exc.status_code)
            self._forget_session()
            return False

        self.renderer.clear()
        self.seen.reset()
        self.turns = []
        self.watermark = None
        for entry in history.entries:
            self.renderer.render(entry.role, entry.body, str(entry.id))
            if entry.role == TranscriptRole.OPERATOR:
                self.watermark = entry.created_at
            elif entry.role == TranscriptRole.CUSTOMER:
                self.turns.append(LocalTurn(TurnRole.CUSTOMER, entry.body))
            elif entry.role == TranscriptRole.AUTOMATED_AGENT:
                self.turns.append(LocalTurn(TurnRole.AUTOMATED_AGENT, entry.body))
        self.seen.reset(str(entry.id) for entry in history.entries)

        if history.handoff_status == ClientHandoffStatus.RESOLVED:
            self._forget_session()
            return True

        self.record = ClientSessionRecord(
            conversation_id=history.conversation_id or stored.conversation_id,
            handoff_id=history.handoff_id,
            handoff_status=history.handoff_status,
        )
        self.store.save(self.record)

        if history.handoff_status == ClientHandoffStatus.ACTIVE:
            self._start_message_polling()
            self._start_status_polling()
        elif history.handoff_status == ClientHandoffStatus.PENDING:
            self._start_status_polling()
        return True

    async def send(self, text: str) -> None:
        body = text.strip()
        if not body:
            return

        if (
            self.record.handoff_id is not None
            and self.record.handoff_status == ClientHandoffStatus.ACTIVE
        ):
            message = await self.api.send_message(
                self.record.handoff_id, body, self.record.conversation_id
            )
            if self.seen.add(str(message.id)):
                self.renderer.render(TranscriptRole.CUSTOMER, message.body, str(message.id))
            return

        response = await self.api.chat(self.record.conversation_id, body)
        if response.conversation_id != self.record.conversation_id:
            self.record.conversation_id = response.conversation_id
            self.store.save(self.record)

        for turn in (response.customer_turn, response.reply_turn):
            role = TranscriptRole(turn.role.value)
            if self.seen.add(str(turn.id)):
                self.renderer.render(role, turn.body, str(turn.id))
            self.turns.append(LocalTurn(turn.role, turn.body))

    async def request_handoff(
        self,
        contact_email: str | None = None,
        contact_message: str | None = None,
    ) -> EscalateResponse:
        window = max(self.settings.context_window, 0)
        recent = self.turns[-window:] if window else []
        last_customer = next(
            (turn.body for turn in reversed(self.turns) if turn.role == TurnRole.CUSTOMER),
            None,
        )
        response = await self.api.escalate(
            conversation_id=self.record.conversation_id,
            recent_turns=[{"role": turn.role.value, "body": turn.body} for turn in recent],
            last_customer_message=last_customer,
            contact_email=contact_email,
            contact_message=contact_message,
            handoff_id=self.record.handoff_id,
        )

        self.record.handoff_id = response.handoff_id
        self.record.handoff_status = ClientHandoffStatus(response.handoff_status.value)
        self.store.save(self.record)

        if contact_email is not None:
            self.renderer.notice(CONTACT_THANKS_NOTICE)
        elif response.status == EscalationOutcome.AFTER_HOURS:
            self.renderer.show_contact_form()
        else:
            self.renderer.notice(CONNECTING_NOTICE)

        if response.handoff_status == HandoffStatus.ACTIVE:
            self._start_message_polling()
        self._start_status_polling()
        return response

    async def submit_contact(self, email: str, message: str | None = None) -> EscalateResponse:
        return await self.request_handoff(contact_email=email, contact_message=message)

    async def end_chat(self) -> None:
        if self.record.handoff_id is not None:
            await self.api.end_chat(self.record.conversation_id, self.record.handoff_id)
        self.stop_polling()
        self._forget_session()
        self.renderer.notice(CHAT_ENDED_NOTICE)

    async def poll_messages_once(self) -> int:
        """Fetch operator messages past the watermark; returns how many were rendered."""
        if (
            self.record.handoff_id is None
            or self.record.handoff_status != ClientHandoffStatus.ACTIVE
        ):
            return 0

        messages = await self.api.poll_messages(self.record.handoff_id, since=self.watermark)
        rendered = 0
        for message in messages:
            if message.sender_origin != SenderOrigin.OPERATOR:
                continue
            # The watermark moves even for ids already shown so the window keeps narrowing.
            if self.watermark is None or message.created_at > self.watermark:
                self.watermark = message.created_at
            if self.seen.add(str(message.id)):
                self.renderer.render(TranscriptRole.OPERATOR, message.body, str(message.id))
                rendered += 1
        return rendered

    async def check_status_once(self) -> ClientHandoffStatus:
        if self.record.handoff_id is None:
            return ClientHandoffStatus.NONE

        view = await self.api.status(self.record.handoff_id)
        status = ClientHandoffStatus(view.status.value)
        previous = self.record.handoff_status

        if status == ClientHandoffStatus.RESOLVED:
            self.stop_polling()
            self._forget_session()
            self.renderer.notice(CHAT_ENDED_NOTICE)
            return status

        if status != previous:
            self.record.handoff_status = status
            self.store.save(self.record)
        if status == ClientHandoffStatus.ACTIVE and previous != ClientHandoffStatus.ACTIVE:
            self.renderer.notice(f"{view.operator_name or 'A support agent'} has joined the chat")
            self._start_message_polling()
        return status

    def stop_polling(self) -> None:
        self._polling_messages = False
        self._polling_status = False
        for task in (self._message_task, self._status_task):
            if task is not None and not task.done():
                task.cancel()
        self._message_task = None
        self._status_task = None

    async def close(self) -> None:
        tasks = [task for task in (self._message_task, self._status_task) if task is not None]
        self.stop_polling()
        for task in tasks:
            with suppress(asyncio.CancelledError):
                await task

    def _forget_session(self) -> None:
        self.store.clear()
        self.record = ClientSessionRecord()
        self.watermark = None
        self.turns = []

    def _start_message_polling(self) -> None:
        self._polling_messages = True
        if self.run_loops and self._message_task is None:
            self._message_task = asyncio.create_task(
                self._run_every(
                    self.settings.message_poll_interval_seconds,
                    self.poll_messages_once,
                    lambda: self._polling_messages,
                )
            )

    def _start_status_polling(self) -> None:
        self._polling_status = True
        if self.run_loops and self._status_task is None:
            self._status_task = asyncio.create_task(
                self._run_every(
                    self.settings.status_poll_interval_seconds,
                    self.check_status_once,
                    lambda: self._polling_status,
                )
            )

    async def _run_every(
        self,
        interval: float,
        tick: Callable[[], Awaitable[object]],
        keep_running: Callable[[], bool],
    ) -> None:
        while keep_running():
            await self.safe_tick(tick)
            await asyncio.sleep(interval)

    async def safe_tick(self, tick: Callable[[], Awaitable[object]]) -> None:
        try:
            await tick()
        except TRANSIENT_ERRORS:
            self._consecutive_failures += 1
            logger.warning(
                "Widget poll failed (%d in a row)", self._consecutive_failures, exc_info=True
            )
            if self._consecutive_failures == self.settings.failure_notice_threshold:
                self.renderer.notice(FAILURE_NOTICE)
            return
        self._consecutive_failures = 0
