from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from support_handoff.domain.enums import OperatorPresence


class OperatorResponse(BaseModel):
    id: UUID
    tenant_id: UUID
    display_name: str
    username: str
    presence: OperatorPresence
    active_chats: int
    max_chats: int
    last_seen_at: datetime | None

    model_config = ConfigDict(from_attributes=True)


class OperatorLoginRequest(BaseModel):
    username: str = Field(min_length=3, max_length=80)
    password: str = Field(min_length=6, max_length=128)


class OperatorSessionResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_at: datetime
    operator: OperatorResponse


class SetOperatorPresenceRequest(BaseModel):
    presence: OperatorPresence


class OperatorListResponse(BaseModel):
    items: list[OperatorResponse]
