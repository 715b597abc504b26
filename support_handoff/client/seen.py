from collections.abc import Iterable


class DisplayedMessageIds:
    """Ids of messages already rendered in one widget view."""

    def __init__(self, ids: Iterable[str] = ()) -> None:
        self._ids: set[str] = set(ids)

    def add(self, message_id: str) -> bool:
        """Record ``message_id``; returns True only the first time it is seen."""
        if message_id in self._ids:
            return False
        self._ids.add(message_id)
        return True

    def reset(self, ids: Iterable[str] = ()) -> None:
        self._ids = set(ids)

    def __contains__(self, message_id: object) -> bool:
        return message_id in self._ids

    def __len__(self) -> int:
        return len(self._ids)
