from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from support_handoff.domain.enums import TurnRole


class ChatRequest(BaseModel):
    conversation_id: str | None = Field(default=None, max_length=120)
    message: str = Field(min_length=1, max_length=4000)


class AutomatedTurnResponse(BaseModel):
    id: UUID
    conversation_id: str
    role: TurnRole
    body: str
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ChatResponse(BaseModel):
    conversation_id: str
    reply: str
    customer_turn: AutomatedTurnResponse
    reply_turn: AutomatedTurnResponse


class EndChatRequest(BaseModel):
    conversation_id: str | None = Field(default=None, max_length=120)
    handoff_id: UUID | None = None


class EndChatResponse(BaseModel):
    success: bool = True
    handoff_status: str | None = None
