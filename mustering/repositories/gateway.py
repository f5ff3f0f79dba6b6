# type: ignore
# pyright: reportMissingImports=false, reportGeneralTypeErrors=false
"""
Repository: Persistence gateway contract.
Stores roster, zones and the current session as JSON-compatible records.
NO business rules here. Load/save plus change notification only.
"""

from abc import ABC, abstractmethod
from typing import Any, Callable, Optional

from mustering.core.logging import get_logger

logger = get_logger(__name__)

ZONES_KEY = "vsts_zones"
ROSTER_KEY = "vsts_people"
SESSION_KEY = "vsts_emergency_session"

Record = dict[str, Any]
Subscriber = Callable[[str, Any], None]


class PersistenceGateway(ABC):
    """
    Key/value style store for the three mustering snapshots.

    Every method may raise StorageUnavailable. Subscribers receive
    ``(key, payload)`` after each successful write and whenever a
    gateway detects a change written by someone else.
    """

    def __init__(self) -> None:
        self._subscribers: list[Subscriber] = []

    # ── Read ──

    def load_roster(self) -> Optional[list[Record]]:
        return self._read(ROSTER_KEY)

    def load_zones(self) -> Optional[list[Record]]:
        return self._read(ZONES_KEY)

    def load_session(self) -> Optional[Record]:
        return self._read(SESSION_KEY)

    # ── Write ──

    def save_roster(self, people: list[Record]) -> None:
        self._write(ROSTER_KEY, people)

    def save_zones(self, zones: list[Record]) -> None:
        self._write(ZONES_KEY, zones)

    def save_session(self, session: Record) -> None:
        self._write(SESSION_KEY, session)

    # ── Change notification ──

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register a change listener; returns a function that unregisters it."""
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def poll(self) -> int:
        """Publish changes made outside this gateway. Returns how many were found."""
        return 0

    def close(self) -> None:
        """Release any held resources."""

    def _publish(self, key: str, payload: Any) -> None:
        for callback in list(self._subscribers):
            try:
                callback(key, payload)
            except Exception as exc:
                logger.warning("Subscriber failed for key=%s: %s", key, exc)

    # ── Backend ──

    @abstractmethod
    def _read(self, key: str) -> Any:
        ...

    @abstractmethod
    def _write(self, key: str, payload: Any) -> None:
        ...
