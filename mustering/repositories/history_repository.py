# type: ignore
# pyright: reportMissingImports=false, reportGeneralTypeErrors=false
"""
Repository: Mustering audit trail.

Two bounded buffers: every event raised while mustering (activation,
status changes, notifications, closure) and the archive of closed
sessions. Oldest entries fall off once the configured size is reached.
"""

import uuid
from collections import Counter, deque
from datetime import datetime, timezone
from typing import Any, Optional

from mustering.core.config import settings
from mustering.models.domain import MusterSession


class SessionHistoryRepository:
    def __init__(
        self,
        max_events: int | None = None,
        max_sessions: int | None = None,
    ) -> None:
        if max_events is None:
            max_events = settings.MAX_HISTORY_SIZE
        if max_sessions is None:
            max_sessions = settings.MAX_SESSION_ARCHIVE
        self._events: deque[dict[str, Any]] = deque(maxlen=max_events)
        self._archive: deque[MusterSession] = deque(maxlen=max_sessions)

    # ── Read ──

    def get_events(
        self,
        session_id: Optional[str] = None,
        event_type: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> list[dict[str, Any]]:
        """Matching events, oldest first, at most ``limit`` of the newest."""
        matches = [
            e for e in self._events
            if (session_id is None or e["session_id"] == session_id)
            and (event_type is None or e["event_type"] == event_type)
        ]
        return matches[-(limit or settings.DEFAULT_HISTORY_LIMIT):]

    def summary(self, session_id: str) -> dict[str, int]:
        """event_type -> count for one session."""
        return dict(Counter(
            e["event_type"] for e in self._events if e["session_id"] == session_id
        ))

    def get_sessions(self, limit: Optional[int] = None) -> list[MusterSession]:
        """Closed sessions, newest last."""
        sessions = list(self._archive)
        return sessions[-limit:] if limit else sessions

    # ── Write ──

    def record_event(
        self, event_type: str, session_id: Optional[str], details: dict[str, Any]
    ) -> dict[str, Any]:
        event = {
            "event_id": str(uuid.uuid4()),
            "event_type": event_type,
            "session_id": session_id,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "details": details,
        }
        self._events.append(event)
        return event

    def archive(self, session: MusterSession) -> bool:
        """Keep a closed session. Returns False if it was already archived."""
        if any(s.id == session.id for s in self._archive):
            return False
        self._archive.append(session)
        return True

    # ── Bulk / internal ──

    def clear(self) -> None:
        self._events.clear()
        self._archive.clear()
