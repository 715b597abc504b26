from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from support_handoff.api.v1.routes.widget import to_history_response
from support_handoff.core.config import get_settings
from support_handoff.core.db import get_db_session
from support_handoff.core.security import decode_operator_access_token
from support_handoff.domain.enums import HandoffStatus
from support_handoff.domain.exceptions import InvalidHandoffTransition
from support_handoff.infra.db.repositories import OperatorRepository
from support_handoff.schemas.handoff import (
    HandoffListResponse,
    HandoffMessageResponse,
    HandoffMessagesResponse,
    HandoffResponse,
    OperatorHandoffDetailResponse,
    SendHandoffMessageRequest,
)
from support_handoff.schemas.operator import (
    OperatorListResponse,
    OperatorLoginRequest,
    OperatorResponse,
    OperatorSessionResponse,
    SetOperatorPresenceRequest,
)
from support_handoff.services.errors import (
    ConversationNotFoundError,
    HandoffAccessDeniedError,
    HandoffNotActiveError,
    HandoffNotAvailableError,
    HandoffNotFoundError,
    OperatorAuthenticationError,
    OperatorNotFoundError,
)
from support_handoff.services.handoff_service import HandoffService
from support_handoff.services.operator_auth_service import OperatorAuthService
from support_handoff.services.operator_service import OperatorService
from support_handoff.services.transcript_service import TranscriptService

router = APIRouter()
settings = get_settings()
bearer_scheme = HTTPBearer(auto_error=False)

_SERVICE_ERRORS = (
    OperatorNotFoundError,
    ConversationNotFoundError,
    HandoffNotFoundError,
    HandoffAccessDeniedError,
    HandoffNotAvailableError,
    HandoffNotActiveError,
    InvalidHandoffTransition,
    ValueError,
)


@dataclass(frozen=True, slots=True)
class OperatorIdentity:
    operator_id: UUID
    tenant_id: UUID


async def get_operator_identity(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    session: AsyncSession = Depends(get_db_session),
) -> OperatorIdentity:
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing or invalid authorization credentials",
        )

    try:
        claims = decode_operator_access_token(
            credentials.credentials,
            settings.operator_auth_secret,
        )
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired operator session",
        ) from exc

    operator = await OperatorRepository(session).get_by_id(claims.operator_id)
    if operator is None or not operator.is_active or operator.tenant_id != claims.tenant_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired operator session",
        )
    return OperatorIdentity(operator_id=operator.id, tenant_id=operator.tenant_id)


async def get_handoff_service(
    request: Request,
    session: AsyncSession = Depends(get_db_session),
) -> HandoffService:
    realtime = getattr(request.app.state, "realtime_hub", None)
    return HandoffService(session=session, realtime=realtime)


async def get_operator_service(
    request: Request,
    session: AsyncSession = Depends(get_db_session),
) -> OperatorService:
    realtime = getattr(request.app.state, "realtime_hub", None)
    return OperatorService(session=session, realtime=realtime)


async def get_operator_auth_service(
    session: AsyncSession = Depends(get_db_session),
) -> OperatorAuthService:
    return OperatorAuthService(session=session)


async def get_transcript_service(
    session: AsyncSession = Depends(get_db_session),
) -> TranscriptService:
    return TranscriptService(session)


def _raise_for_service_error(exc: Exception) -> None:
    if isinstance(
        exc, (OperatorNotFoundError, ConversationNotFoundError, HandoffNotFoundError)
    ):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    if isinstance(exc, HandoffAccessDeniedError):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc
    if isinstance(
        exc, (HandoffNotAvailableError, HandoffNotActiveError, InvalidHandoffTransition)
    ):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    if isinstance(exc, ValueError):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    raise exc


@router.post("/auth/login", response_model=OperatorSessionResponse)
async def login_operator(
    payload: OperatorLoginRequest,
    service: OperatorAuthService = Depends(get_operator_auth_service),
) -> OperatorSessionResponse:
    try:
        result = await service.login(username=payload.username, password=payload.password)
    except OperatorAuthenticationError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(exc)) from exc

    return OperatorSessionResponse(
        access_token=result.access_token,
        token_type=result.token_type,
        expires_at=result.expires_at,
        operator=OperatorResponse.model_validate(result.operator),
    )


@router.get("/me", response_model=OperatorResponse)
async def get_operator_profile(
    service: OperatorService = Depends(get_operator_service),
    identity: OperatorIdentity = Depends(get_operator_identity),
) -> OperatorResponse:
    try:
        operator = await service.get_operator(identity.operator_id)
    except _SERVICE_ERRORS as exc:
        _raise_for_service_error(exc)
    return OperatorResponse.model_validate(operator)


@router.post("/presence", response_model=OperatorResponse)
async def set_operator_presence(
    payload: SetOperatorPresenceRequest,
    service: OperatorService = Depends(get_operator_service),
    identity: OperatorIdentity = Depends(get_operator_identity),
) -> OperatorResponse:
    try:
        operator = await service.set_presence(identity.operator_id, payload.presence)
    except _SERVICE_ERRORS as exc:
        _raise_for_service_error(exc)
    return OperatorResponse.model_validate(operator)


@router.post("/heartbeat", response_model=OperatorResponse)
async def operator_heartbeat(
    service: OperatorService = Depends(get_operator_service),
    identity: OperatorIdentity = Depends(get_operator_identity),
) -> OperatorResponse:
    try:
        operator = await service.heartbeat(identity.operator_id)
    except _SERVICE_ERRORS as exc:
        _raise_for_service_error(exc)
    return OperatorResponse.model_validate(operator)


@router.get("/operators", response_model=OperatorListResponse)
async def list_operators(
    available: bool = Query(default=False),
    service: OperatorService = Depends(get_operator_service),
    identity: OperatorIdentity = Depends(get_operator_identity),
) -> OperatorListResponse:
    operators = await service.list_operators(identity.tenant_id, available_only=available)
    return OperatorListResponse(
        items=[OperatorResponse.model_validate(operator) for operator in operators]
    )


@router.get("/handoffs", response_model=HandoffListResponse)
async def list_handoffs(
    status_filter: HandoffStatus | None = Query(default=None, alias="status"),
    mine: bool = Query(default=False),
    service: HandoffService = Depends(get_handoff_service),
    identity: OperatorIdentity = Depends(get_operator_identity),
) -> HandoffListResponse:
    if mine:
        try:
            handoffs = await service.list_for_operator(
                identity.tenant_id, identity.operator_id, status_filter=status_filter
            )
        except _SERVICE_ERRORS as exc:
            _raise_for_service_error(exc)
    else:
        handoffs = await service.list_handoffs(identity.tenant_id, status_filter=status_filter)
    return HandoffListResponse(
        items=[HandoffResponse.model_validate(handoff) for handoff in handoffs]
    )


@router.get("/handoffs/{handoff_id}", response_model=OperatorHandoffDetailResponse)
async def open_handoff(
    handoff_id: UUID,
    transcripts: TranscriptService = Depends(get_transcript_service),
    identity: OperatorIdentity = Depends(get_operator_identity),
) -> OperatorHandoffDetailResponse:
    try:
        history = await transcripts.history(identity.tenant_id, handoff_id=handoff_id)
    except _SERVICE_ERRORS as exc:
        _raise_for_service_error(exc)
    return OperatorHandoffDetailResponse(
        handoff=HandoffResponse.model_validate(history.handoff),
        transcript=to_history_response(history),
    )


@router.post("/handoffs/{handoff_id}/claim", response_model=HandoffResponse)
async def claim_handoff(
    handoff_id: UUID,
    service: HandoffService = Depends(get_handoff_service),
    identity: OperatorIdentity = Depends(get_operator_identity),
) -> HandoffResponse:
    try:
        handoff = await service.claim(identity.tenant_id, handoff_id, identity.operator_id)
    except _SERVICE_ERRORS as exc:
        _raise_for_service_error(exc)
    return HandoffResponse.model_validate(handoff)


@router.get("/handoffs/{handoff_id}/messages", response_model=HandoffMessagesResponse)
async def list_handoff_messages(
    handoff_id: UUID,
    since: datetime | None = Query(default=None),
    service: HandoffService = Depends(get_handoff_service),
    identity: OperatorIdentity = Depends(get_operator_identity),
) -> HandoffMessagesResponse:
    try:
        messages = await service.list_messages(identity.tenant_id, handoff_id, since=since)
    except _SERVICE_ERRORS as exc:
        _raise_for_service_error(exc)
    return HandoffMessagesResponse(
        items=[HandoffMessageResponse.model_validate(message) for message in messages]
    )


@router.post("/handoffs/{handoff_id}/messages", response_model=HandoffMessageResponse)
async def send_operator_message(
    handoff_id: UUID,
    payload: SendHandoffMessageRequest,
    service: HandoffService = Depends(get_handoff_service),
    identity: OperatorIdentity = Depends(get_operator_identity),
) -> HandoffMessageResponse:
    try:
        message = await service.send_operator_message(
            tenant_id=identity.tenant_id,
            handoff_id=handoff_id,
            operator_id=identity.operator_id,
            body=payload.body,
        )
    except _SERVICE_ERRORS as exc:
        _raise_for_service_error(exc)
    return HandoffMessageResponse.model_validate(message)


@router.post("/handoffs/{handoff_id}/resolve", response_model=HandoffResponse)
async def resolve_handoff(
    handoff_id: UUID,
    service: HandoffService = Depends(get_handoff_service),
    identity: OperatorIdentity = Depends(get_operator_identity),
) -> HandoffResponse:
    try:
        handoff = await service.resolve_by_operator(
            identity.tenant_id, handoff_id, identity.operator_id
        )
    except _SERVICE_ERRORS as exc:
        _raise_for_service_error(exc)
    return HandoffResponse.model_validate(handoff)
