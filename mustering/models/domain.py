# type: ignore
# pyright: reportMissingImports=false, reportGeneralTypeErrors=false
"""
Domain models. Pure data structures with NO FastAPI dependency.

All models are frozen: a change always produces a new instance via
``model_copy(update=...)``. Serialised field names are camelCase so that
stored records keep the layout used by the browser client.
"""

from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

UNASSIGNED_ZONE = "unassigned"

PersonType = Literal["staff", "visitor", "contractor"]
SafetyStatus = Literal["safe", "missing", "unknown"]
SessionType = Literal["drill", "actual"]
SessionStatus = Literal["active", "completed", "cancelled"]

TERMINAL_STATUSES: frozenset[str] = frozenset({"completed", "cancelled"})


def accounted_for_percentage(safe: int, total: int) -> int:
    """round(safe / total * 100) with halves rounded up; 0 for an empty roster."""
    if total <= 0:
        return 0
    return (safe * 200 + total) // (2 * total)


class DomainModel(BaseModel):
    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )

    def to_record(self) -> dict[str, Any]:
        """JSON-compatible dict with camelCase keys, as persisted."""
        return self.model_dump(mode="json", by_alias=True)


class Person(DomainModel):
    """A trackable person on site (staff, visitor, contractor)."""
    id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    company: str = ""
    type: PersonType = "visitor"
    last_known_zone: str = UNASSIGNED_ZONE
    status: SafetyStatus = "unknown"
    check_in_time: Optional[str] = None
    phone_number: Optional[str] = None
    host_name: Optional[str] = None
    badge_number: Optional[str] = None


class ZoneConfig(DomainModel):
    """Static zone definition. Capacity is validated by the ZoneRegistry."""
    id: str
    name: str
    muster_point: str = ""
    capacity: int


class Zone(ZoneConfig):
    """Zone with derived headcount aggregates."""
    current_count: int = 0
    safe_count: int = 0
    missing_count: int = 0
    last_update: Optional[str] = None

    @property
    def unknown_count(self) -> int:
        return self.current_count - self.safe_count - self.missing_count


class Statistics(DomainModel):
    total: int = 0
    safe: int = 0
    missing: int = 0
    unknown: int = 0
    percentage: int = 0


class MusterSession(DomainModel):
    """One activation-to-close cycle of emergency or drill tracking."""
    id: str
    start_time: str
    end_time: Optional[str] = None
    type: SessionType
    activated_by: str
    status: SessionStatus = "active"
    total_people: int = 0
    safe_people: int = 0
    missing_people: int = 0
    zones: tuple[Zone, ...] = ()
    last_update: Optional[str] = None
    cancel_reason: Optional[str] = None

    @property
    def is_active(self) -> bool:
        return self.status == "active"

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def unknown_people(self) -> int:
        return self.total_people - self.safe_people - self.missing_people

    @property
    def accounted_for_percentage(self) -> int:
        return accounted_for_percentage(self.safe_people, self.total_people)


class DeactivationResult(DomainModel):
    """Closed session plus the headcount left unresolved at close time."""
    session: MusterSession
    missing_at_close: int = 0
    unknown_at_close: int = 0
    warning: Optional[str] = None
