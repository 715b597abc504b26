from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from support_handoff.core.db import get_db_session
from support_handoff.domain.exceptions import InvalidHandoffTransition
from support_handoff.infra.automated_agent import AutomatedAgentError, CannedAutomatedAgent
from support_handoff.schemas.handoff import (
    CustomerResolveRequest,
    EscalateRequest,
    EscalateResponse,
    HandoffMessageResponse,
    HandoffMessagesResponse,
    HandoffStatusResponse,
    SendHandoffMessageRequest,
)
from support_handoff.schemas.transcript import SessionHistoryResponse, TranscriptEntryResponse
from support_handoff.schemas.widget import (
    AutomatedTurnResponse,
    ChatRequest,
    ChatResponse,
    EndChatRequest,
    EndChatResponse,
)
from support_handoff.services.conversation_service import ConversationService
from support_handoff.services.errors import (
    ConversationInHandoffError,
    ConversationNotFoundError,
    HandoffAccessDeniedError,
    HandoffNotActiveError,
    HandoffNotFoundError,
    WidgetCredentialError,
    WidgetDomainError,
)
from support_handoff.services.handoff_service import (
    ContextTurn,
    HandoffService,
    HandoffStatusView,
)
from support_handoff.services.transcript_service import SessionHistory, TranscriptService
from support_handoff.services.widget_access_service import WidgetAccessService

router = APIRouter()

_SERVICE_ERRORS = (
    ConversationNotFoundError,
    HandoffNotFoundError,
    HandoffAccessDeniedError,
    HandoffNotActiveError,
    ConversationInHandoffError,
    InvalidHandoffTransition,
    AutomatedAgentError,
    ValueError,
)


async def get_widget_tenant_id(
    request: Request,
    x_widget_key: str | None = Header(default=None, alias="X-Widget-Key"),
    referrer: str | None = Query(default=None, max_length=2048),
    session: AsyncSession = Depends(get_db_session),
) -> UUID:
    """Resolve the tenant from the widget key and check the embedding domain."""
    service = WidgetAccessService(session)
    try:
        widget_tenant = await service.authenticate(
            x_widget_key,
            referrer or request.headers.get("Origin") or request.headers.get("Referer"),
        )
    except WidgetCredentialError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(exc)) from exc
    except WidgetDomainError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc
    return widget_tenant.tenant_id


async def get_handoff_service(
    request: Request,
    session: AsyncSession = Depends(get_db_session),
) -> HandoffService:
    realtime = getattr(request.app.state, "realtime_hub", None)
    return HandoffService(session=session, realtime=realtime)


async def get_conversation_service(
    request: Request,
    session: AsyncSession = Depends(get_db_session),
) -> ConversationService:
    automated_agent = getattr(request.app.state, "automated_agent", None)
    return ConversationService(
        session=session,
        automated_agent=automated_agent or CannedAutomatedAgent(),
    )


async def get_transcript_service(
    session: AsyncSession = Depends(get_db_session),
) -> TranscriptService:
    return TranscriptService(session)


def _raise_for_service_error(exc: Exception) -> None:
    if isinstance(exc, (ConversationNotFoundError, HandoffNotFoundError)):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    if isinstance(exc, HandoffAccessDeniedError):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc
    if isinstance(
        exc, (HandoffNotActiveError, ConversationInHandoffError, InvalidHandoffTransition)
    ):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    if isinstance(exc, AutomatedAgentError):
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc)) from exc
    if isinstance(exc, ValueError):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    raise exc


def to_history_response(history: SessionHistory) -> SessionHistoryResponse:
    return SessionHistoryResponse(
        conversation_id=history.conversation_id,
        handoff_id=history.handoff.id if history.handoff is not None else None,
        handoff_status=history.handoff_status,
        entries=[TranscriptEntryResponse.model_validate(entry) for entry in history.entries],
    )


def _to_status_response(view: HandoffStatusView) -> HandoffStatusResponse:
    return HandoffStatusResponse(
        handoff_id=view.handoff.id,
        status=view.handoff.status,
        operator_name=view.operator_name,
        picked_up_at=view.handoff.picked_up_at,
        resolved_at=view.handoff.resolved_at,
    )


@router.post("/chat", response_model=ChatResponse)
async def chat(
    payload: ChatRequest,
    service: ConversationService = Depends(get_conversation_service),
    tenant_id: UUID = Depends(get_widget_tenant_id),
) -> ChatResponse:
    try:
        result = await service.send_customer_turn(
            tenant_id=tenant_id,
            conversation_id=payload.conversation_id,
            text=payload.message,
        )
    except _SERVICE_ERRORS as exc:
        _raise_for_service_error(exc)
    return ChatResponse(
        conversation_id=result.conversation.id,
        reply=result.reply_turn.body,
        customer_turn=AutomatedTurnResponse.model_validate(result.customer_turn),
        reply_turn=AutomatedTurnResponse.model_validate(result.reply_turn),
    )


@router.get("/history", response_model=SessionHistoryResponse)
async def session_history(
    conversation_id: str | None = Query(default=None, max_length=120),
    handoff_id: UUID | None = Query(default=None),
    service: TranscriptService = Depends(get_transcript_service),
    tenant_id: UUID = Depends(get_widget_tenant_id),
) -> SessionHistoryResponse:
    try:
        history = await service.history(
            tenant_id=tenant_id,
            conversation_id=conversation_id,
            handoff_id=handoff_id,
        )
    except _SERVICE_ERRORS as exc:
        _raise_for_service_error(exc)
    return to_history_response(history)


@router.post("/handoffs", response_model=EscalateResponse)
async def escalate(
    payload: EscalateRequest,
    service: HandoffService = Depends(get_handoff_service),
    tenant_id: UUID = Depends(get_widget_tenant_id),
) -> EscalateResponse:
    try:
        result = await service.escalate(
            tenant_id=tenant_id,
            conversation_id=payload.conversation_id,
            recent_turns=[
                ContextTurn(role=turn.role.value, body=turn.body)
                for turn in payload.recent_turns
            ],
            last_customer_message=payload.last_customer_message,
            contact_email=payload.contact_email,
            contact_message=payload.contact_message,
            metadata=payload.metadata,
            handoff_id=payload.handoff_id,
        )
    except _SERVICE_ERRORS as exc:
        _raise_for_service_error(exc)
    return EscalateResponse(
        handoff_id=result.handoff.id,
        status=result.outcome,
        handoff_status=result.handoff.status,
    )


@router.get("/handoffs/{handoff_id}/status", response_model=HandoffStatusResponse)
async def handoff_status(
    handoff_id: UUID,
    service: HandoffService = Depends(get_handoff_service),
    tenant_id: UUID = Depends(get_widget_tenant_id),
) -> HandoffStatusResponse:
    try:
        view = await service.get_status(tenant_id, handoff_id)
    except _SERVICE_ERRORS as exc:
        _raise_for_service_error(exc)
    return _to_status_response(view)


@router.post("/handoffs/{handoff_id}/messages", response_model=HandoffMessageResponse)
async def send_customer_message(
    handoff_id: UUID,
    payload: SendHandoffMessageRequest,
    service: HandoffService = Depends(get_handoff_service),
    tenant_id: UUID = Depends(get_widget_tenant_id),
) -> HandoffMessageResponse:
    try:
        message = await service.send_customer_message(
            tenant_id=tenant_id,
            handoff_id=handoff_id,
            body=payload.body,
            conversation_id=payload.conversation_id,
        )
    except _SERVICE_ERRORS as exc:
        _raise_for_service_error(exc)
    return HandoffMessageResponse.model_validate(message)


@router.get("/handoffs/{handoff_id}/messages", response_model=HandoffMessagesResponse)
async def poll_operator_messages(
    handoff_id: UUID,
    since: datetime | None = Query(default=None),
    service: HandoffService = Depends(get_handoff_service),
    tenant_id: UUID = Depends(get_widget_tenant_id),
) -> HandoffMessagesResponse:
    try:
        messages = await service.poll_messages(tenant_id, handoff_id, since=since)
    except _SERVICE_ERRORS as exc:
        _raise_for_service_error(exc)
    return HandoffMessagesResponse(
        items=[HandoffMessageResponse.model_validate(message) for message in messages]
    )


@router.post("/handoffs/{handoff_id}/resolve", response_model=HandoffStatusResponse)
async def resolve_by_customer(
    handoff_id: UUID,
    payload: CustomerResolveRequest,
    service: HandoffService = Depends(get_handoff_service),
    tenant_id: UUID = Depends(get_widget_tenant_id),
) -> HandoffStatusResponse:
    try:
        await service.resolve_by_customer(
            tenant_id=tenant_id,
            handoff_id=handoff_id,
            conversation_id=payload.conversation_id,
        )
        view = await service.get_status(tenant_id, handoff_id)
    except _SERVICE_ERRORS as exc:
        _raise_for_service_error(exc)
    return _to_status_response(view)


@router.post("/end-chat", response_model=EndChatResponse)
async def end_chat(
    payload: EndChatRequest,
    service: HandoffService = Depends(get_handoff_service),
    tenant_id: UUID = Depends(get_widget_tenant_id),
) -> EndChatResponse:
    try:
        handoff = await service.end_chat(
            tenant_id=tenant_id,
            conversation_id=payload.conversation_id,
            handoff_id=payload.handoff_id,
        )
    except _SERVICE_ERRORS as exc:
        _raise_for_service_error(exc)
    return EndChatResponse(
        success=True,
        handoff_status=handoff.status.value if handoff is not None else None,
    )
