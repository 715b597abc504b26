from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from support_handoff.domain.enums import (
    EscalationOutcome,
    HandoffStatus,
    SenderOrigin,
    TurnRole,
)
from support_handoff.schemas.transcript import SessionHistoryResponse

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"


class ContextTurnPayload(BaseModel):
    role: TurnRole
    body: str = Field(min_length=1, max_length=4000)


class EscalateRequest(BaseModel):
    conversation_id: str | None = Field(default=None, max_length=120)
    handoff_id: UUID | None = None
    recent_turns: list[ContextTurnPayload] = Field(default_factory=list, max_length=50)
    last_customer_message: str | None = Field(default=None, max_length=4000)
    contact_email: str | None = Field(default=None, max_length=320, pattern=EMAIL_PATTERN)
    contact_message: str | None = Field(default=None, max_length=4000)
    metadata: dict[str, Any] | None = None


class EscalateResponse(BaseModel):
    handoff_id: UUID
    status: EscalationOutcome
    handoff_status: HandoffStatus


class HandoffResponse(BaseModel):
    id: UUID
    tenant_id: UUID
    conversation_id: str | None
    status: HandoffStatus
    requested_at: datetime
    picked_up_at: datetime | None
    resolved_at: datetime | None
    assigned_operator_id: UUID | None
    contact_email: str | None
    contact_message: str | None
    last_customer_message: str | None
    context: dict | None = Field(default=None, validation_alias="context_json")

    model_config = ConfigDict(from_attributes=True, populate_by_name=True)


class HandoffListResponse(BaseModel):
    items: list[HandoffResponse]


class HandoffStatusResponse(BaseModel):
    handoff_id: UUID
    status: HandoffStatus
    operator_name: str | None
    picked_up_at: datetime | None
    resolved_at: datetime | None


class SendHandoffMessageRequest(BaseModel):
    body: str = Field(min_length=1, max_length=4000)
    conversation_id: str | None = Field(default=None, max_length=120)


class CustomerResolveRequest(BaseModel):
    conversation_id: str | None = Field(default=None, max_length=120)


class HandoffMessageResponse(BaseModel):
    id: UUID
    handoff_id: UUID
    sender_origin: SenderOrigin
    sender_operator_id: UUID | None
    body: str
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class HandoffMessagesResponse(BaseModel):
    items: list[HandoffMessageResponse]


class OperatorHandoffDetailResponse(BaseModel):
    handoff: HandoffResponse
    transcript: SessionHistoryResponse
