from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict

from support_handoff.domain.enums import ClientHandoffStatus, TranscriptRole


class TranscriptEntryResponse(BaseModel):
    id: UUID
    role: TranscriptRole
    body: str
    created_at: datetime
    sender_operator_id: UUID | None = None

    model_config = ConfigDict(from_attributes=True)


class SessionHistoryResponse(BaseModel):
    conversation_id: str | None
    handoff_id: UUID | None
    handoff_status: ClientHandoffStatus
    entries: list[TranscriptEntryResponse]
