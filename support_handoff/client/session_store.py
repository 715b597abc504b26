"""Persistence of the widget's session identifiers.

Only the conversation id, handoff id and last known handoff status survive a
reload. Message bodies are never stored locally; the transcript is always
rebuilt from the server.
"""

import json
import logging
from pathlib import Path
from typing import Protocol
from uuid import UUID

from pydantic import BaseModel, ValidationError

from support_handoff.domain.enums import ClientHandoffStatus

logger = logging.getLogger(__name__)


class ClientSessionRecord(BaseModel):
    conversation_id: str | None = None
    handoff_id: UUID | None = None
    handoff_status: ClientHandoffStatus = ClientHandoffStatus.NONE

    @property
    def is_empty(self) -> bool:
        return self.conversation_id is None and self.handoff_id is None


class SessionStore(Protocol):
    def load(self) -> ClientSessionRecord | None: ...

    def save(self, record: ClientSessionRecord) -> None: ...

    def clear(self) -> None: ...


class InMemorySessionStore:
    def __init__(self, record: ClientSessionRecord | None = None) -> None:
        self.record = record

    def load(self) -> ClientSessionRecord | None:
        return self.record.model_copy() if self.record is not None else None

    def save(self, record: ClientSessionRecord) -> None:
        self.record = record.model_copy()

    def clear(self) -> None:
        self.record = None


class JsonFileSessionStore:
    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    def load(self) -> ClientSessionRecord | None:
        if not self.path.exists():
            return None
        try:
            return ClientSessionRecord.model_validate(json.loads(self.path.read_text("utf-8")))
        except (OSError, ValueError, ValidationError):
            logger.warning("Discarding unreadable session file %s", self.path, exc_info=True)
            self.clear()
            return None

    def save(self, record: ClientSessionRecord) -> None:
        self.path.write_text(record.model_dump_json(), encoding="utf-8")

    def clear(self) -> None:
        self.path.unlink(missing_ok=True)
