# type: ignore
# pyright: reportMissingImports=false, reportGeneralTypeErrors=false
"""
Service: Zone catalogue and headcount aggregation.
Aggregation is a pure computation without I/O or logging.
"""

from collections import Counter
from datetime import datetime, timezone
from typing import Iterable, Optional

from mustering.core.errors import ConfigError, NotFoundError
from mustering.models.domain import Person, Zone, ZoneConfig

DEFAULT_ZONES: tuple[ZoneConfig, ...] = (
    ZoneConfig(id="production", name="Production Floor", muster_point="Main Exit", capacity=150),
    ZoneConfig(id="warehouse", name="Warehouse A", muster_point="Loading Dock", capacity=80),
    ZoneConfig(id="office", name="Office Building", muster_point="Front Entrance", capacity=100),
    ZoneConfig(id="cafeteria", name="Cafeteria", muster_point="Side Exit", capacity=60),
    ZoneConfig(id="parking", name="Parking Area", muster_point="Gate A", capacity=40),
)


class ZoneRegistry:
    """Owns the static zone catalogue."""

    def __init__(self) -> None:
        self._zones: tuple[Zone, ...] = ()

    @property
    def zones(self) -> tuple[Zone, ...]:
        return self._zones

    def initialize(self, zones: Iterable[ZoneConfig]) -> tuple[Zone, ...]:
        """Replace the catalogue. Raises ConfigError on a bad definition."""
        seen: set[str] = set()
        catalogue: list[Zone] = []
        for config in zones:
            if not config.id:
                raise ConfigError("Zone id must not be empty")
            if config.id in seen:
                raise ConfigError(f"Duplicate zone id '{config.id}'")
            if config.capacity <= 0:
                raise ConfigError(
                    f"Zone '{config.id}' capacity must be positive, got {config.capacity}"
                )
            seen.add(config.id)
            catalogue.append(
                Zone(
                    id=config.id,
                    name=config.name,
                    muster_point=config.muster_point,
                    capacity=config.capacity,
                )
            )
        self._zones = tuple(catalogue)
        return self._zones

    def contains(self, zone_id: str) -> bool:
        return any(z.id == zone_id for z in self._zones)

    def get(self, zone_id: str) -> Zone:
        for zone in self._zones:
            if zone.id == zone_id:
                return zone
        raise NotFoundError(f"Zone '{zone_id}' not found")

    def recompute_aggregates(
        self,
        roster: Iterable[Person],
        previous: Optional[Iterable[Zone]] = None,
        timestamp: Optional[str] = None,
    ) -> tuple[Zone, ...]:
        """
        Count roster members per zone and return a new zone tuple.

        Counts depend only on the roster and the catalogue. ``last_update``
        is carried over from ``previous`` when a zone's counts did not
        change, and stamped with ``timestamp`` (default: now) otherwise.
        """
        current: Counter = Counter()
        safe: Counter = Counter()
        missing: Counter = Counter()
        for person in roster:
            current[person.last_known_zone] += 1
            if person.status == "safe":
                safe[person.last_known_zone] += 1
            elif person.status == "missing":
                missing[person.last_known_zone] += 1

        before = {z.id: z for z in (previous if previous is not None else self._zones)}
        stamp = timestamp or datetime.now(timezone.utc).isoformat()
        result: list[Zone] = []
        for zone in self._zones:
            counts = (current[zone.id], safe[zone.id], missing[zone.id])
            prior = before.get(zone.id)
            if prior is not None and counts == (
                prior.current_count, prior.safe_count, prior.missing_count
            ):
                last_update = prior.last_update
            else:
                last_update = stamp
            result.append(
                zone.model_copy(update={
                    "current_count": counts[0],
                    "safe_count": counts[1],
                    "missing_count": counts[2],
                    "last_update": last_update,
                })
            )
        return tuple(result)
