"""Snapshots of session state and the store they are saved to."""

from abc import ABC, abstractmethod
from datetime import datetime, timezone

from pydantic import BaseModel, Field


class FileSnapshot(BaseModel):
    id: str
    file_name: str
    page_count: int


class PageSnapshot(BaseModel):
    id: str
    file_id: str
    page_index: int


class GroupSnapshot(BaseModel):
    id: str
    name: str
    pages: list[PageSnapshot]


class SessionSnapshot(BaseModel):
    """Serializable view of a session: files and groups, no document bytes."""

    id: str
    document_name: str
    files: list[FileSnapshot]
    groups: list[GroupSnapshot]
    saved_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class SessionStore(ABC):
    """Key-value persistence of session snapshots."""

    @abstractmethod
    def save(self, session_id: str, snapshot: SessionSnapshot) -> None:
        """Store the snapshot, replacing any previous one for the session."""

    @abstractmethod
    def load(self, session_id: str) -> SessionSnapshot | None:
        """Return the last saved snapshot, or None if there is none."""

    @abstractmethod
    def delete(self, session_id: str) -> bool:
        """Forget a session. Returns True if something was deleted."""


class InMemorySessionStore(SessionStore):
    """Process-local store; snapshots are kept as JSON like a real backend would."""

    def __init__(self):
        self._snapshots: dict[str, str] = {}

    def save(self, session_id: str, snapshot: SessionSnapshot) -> None:
        self._snapshots[session_id] = snapshot.model_dump_json()

    def load(self, session_id: str) -> SessionSnapshot | None:
        raw = self._snapshots.get(session_id)
        if raw is None:
            return None
        return SessionSnapshot.model_validate_json(raw)

    def delete(self, session_id: str) -> bool:
        return self._snapshots.pop(session_id, None) is not None
