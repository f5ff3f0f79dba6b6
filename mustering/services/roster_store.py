# type: ignore
# pyright: reportMissingImports=false, reportGeneralTypeErrors=false
"""
Service: Roster construction and status updates.
Every operation takes a roster and returns a new one; inputs are never mutated.
"""

from typing import Any, Iterable, Mapping, Optional

from mustering.core.config import settings
from mustering.core.errors import DataError
from mustering.models.domain import (
    UNASSIGNED_ZONE,
    Person,
    SafetyStatus,
    Statistics,
    accounted_for_percentage,
)

Roster = tuple[Person, ...]

STAFF_TYPES: frozenset[str] = frozenset({"staff", "contractor"})

DEMO_STAFF_DIRECTORY: tuple[dict[str, str], ...] = (
    {"id": "staff-1", "name": "John Smith", "company": "VSTS Corp", "type": "staff",
     "lastKnownZone": "production", "phoneNumber": "+1-555-0101"},
    {"id": "staff-2", "name": "Sarah Johnson", "company": "VSTS Corp", "type": "staff",
     "lastKnownZone": "office", "phoneNumber": "+1-555-0102"},
    {"id": "staff-3", "name": "Michael Brown", "company": "Contractor Co", "type": "contractor",
     "lastKnownZone": "warehouse", "phoneNumber": "+1-555-0103"},
    {"id": "staff-4", "name": "Lisa Anderson", "company": "VSTS Corp", "type": "staff",
     "lastKnownZone": "cafeteria", "phoneNumber": "+1-555-0104"},
)


def _text(record: Mapping[str, Any], *keys: str) -> Optional[str]:
    for key in keys:
        value = record.get(key)
        if value is None:
            continue
        value = str(value).strip()
        if value:
            return value
    return None


class RosterStore:
    """Builds and updates the list of trackable people for the site."""

    def __init__(self, default_zone: str | None = None) -> None:
        self._default_zone = default_zone or settings.DEFAULT_ZONE

    @property
    def default_zone(self) -> str:
        return self._default_zone

    # ── Import ──

    def load(
        self,
        source: Iterable[Mapping[str, Any]],
        staff_directory: Iterable[Mapping[str, Any]],
    ) -> Roster:
        """
        Merge visitor records and the staff directory into one roster.

        Visitors take their recorded ``zone`` or the site's default zone.
        Staff keep their ``lastKnownZone`` or fall back to ``unassigned``.
        A later record with an already seen id replaces the earlier one in
        place. Raises DataError when a record lacks an id or a name.
        """
        merged: dict[str, Person] = {}
        for index, record in enumerate(source):
            person = self._visitor_to_person(record, index)
            merged[person.id] = person
        for index, record in enumerate(staff_directory):
            person = self._staff_to_person(record, index)
            merged[person.id] = person
        return tuple(merged.values())

    def _visitor_to_person(self, record: Mapping[str, Any], index: int) -> Person:
        person_id = _text(record, "id")
        name = _text(record, "fullName", "full_name", "name")
        if not person_id or not name:
            raise DataError(f"Visitor record #{index} is missing a required id or name")
        return Person(
            id=person_id,
            name=name,
            company=_text(record, "company") or "",
            type="visitor",
            last_known_zone=_text(record, "zone", "lastKnownZone") or self._default_zone,
            status="unknown",
            check_in_time=_text(record, "checkInTime", "check_in_time"),
            phone_number=_text(record, "phoneNumber", "phone_number"),
            host_name=_text(record, "hostName", "host_name"),
            badge_number=_text(record, "badgeNumber", "badge_number"),
        )

    def _staff_to_person(self, record: Mapping[str, Any], index: int) -> Person:
        person_id = _text(record, "id")
        name = _text(record, "name", "fullName")
        if not person_id or not name:
            raise DataError(f"Staff record #{index} is missing a required id or name")
        person_type = (_text(record, "type") or "staff").lower()
        if person_type not in STAFF_TYPES:
            raise DataError(
                f"Staff record '{person_id}' has unsupported type '{person_type}'"
            )
        return Person(
            id=person_id,
            name=name,
            company=_text(record, "company") or "",
            type=person_type,
            last_known_zone=_text(record, "lastKnownZone", "last_known_zone", "zone")
            or UNASSIGNED_ZONE,
            status="unknown",
            phone_number=_text(record, "phoneNumber", "phone_number"),
            badge_number=_text(record, "badgeNumber", "badge_number"),
        )

    # ── Status updates ──

    def reset(self, roster: Iterable[Person]) -> Roster:
        """Copy of the roster with every status set back to ``unknown``."""
        return tuple(
            p if p.status == "unknown" else p.model_copy(update={"status": "unknown"})
            for p in roster
        )

    def set_status(
        self,
        roster: Roster,
        person_id: str,
        status: SafetyStatus,
        zone_id: str | None = None,
    ) -> Roster:
        """
        Update one person's status (and zone, if given).
        Returns the very same roster object when ``person_id`` is unknown.
        """
        if self.find(roster, person_id) is None:
            return roster
        changes: dict[str, Any] = {"status": status}
        if zone_id is not None:
            changes["last_known_zone"] = zone_id
        return tuple(
            p.model_copy(update=changes) if p.id == person_id else p
            for p in roster
        )

    # ── Queries ──

    @staticmethod
    def find(roster: Iterable[Person], person_id: str) -> Optional[Person]:
        for person in roster:
            if person.id == person_id:
                return person
        return None

    @staticmethod
    def in_zone(roster: Iterable[Person], zone_id: str | None = None) -> list[Person]:
        if zone_id is None:
            return list(roster)
        return [p for p in roster if p.last_known_zone == zone_id]

    @staticmethod
    def tally(roster: Iterable[Person]) -> Statistics:
        total = safe = missing = 0
        for person in roster:
            total += 1
            if person.status == "safe":
                safe += 1
            elif person.status == "missing":
                missing += 1
        return Statistics(
            total=total,
            safe=safe,
            missing=missing,
            unknown=total - safe - missing,
            percentage=accounted_for_percentage(safe, total),
        )
