# type: ignore
# pyright: reportMissingImports=false, reportGeneralTypeErrors=false
"""
Service: Mustering session lifecycle.

State machine:
    idle ─► active ─► completed
                 └──► cancelled

Only one session may be active. Closed sessions are immutable and archived;
a new session can be activated once the previous one is closed. Every
mutation recomputes the aggregates and persists the snapshots through the
gateway. Storage failures degrade to in-memory operation and never reach
the caller.
"""

import time
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, Mapping, Optional

from pydantic import ValidationError

from mustering.core.config import settings
from mustering.core.errors import (
    AlreadyActiveError,
    ConfigError,
    DataError,
    NoActiveSessionError,
    NotFoundError,
    StorageUnavailable,
    TerminalStateError,
)
from mustering.core.logging import get_logger
from mustering.metrics.prometheus import (
    ACCOUNTED_FOR,
    PEOPLE_BY_STATUS,
    PEOPLE_MARKED,
    SESSION_ACTIVE,
    SESSIONS_ACTIVATED,
    SESSIONS_CLOSED,
    STORAGE_FAILURES,
)
from mustering.models.domain import (
    DeactivationResult,
    MusterSession,
    Person,
    Statistics,
    Zone,
    ZoneConfig,
)
from mustering.repositories.gateway import (
    ROSTER_KEY,
    SESSION_KEY,
    PersistenceGateway,
)
from mustering.repositories.history_repository import SessionHistoryRepository
from mustering.services.notification_client import NotificationClient
from mustering.services.roster_store import DEMO_STAFF_DIRECTORY, Roster, RosterStore
from mustering.services.session_clock import SessionClock
from mustering.services.zone_registry import DEFAULT_ZONES, ZoneRegistry

logger = get_logger(__name__)

SESSION_TYPES = ("drill", "actual")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class MusterSessionService:
    """Business logic for emergency and drill mustering."""

    def __init__(
        self,
        zone_registry: ZoneRegistry,
        roster_store: RosterStore,
        gateway: PersistenceGateway,
        clock: SessionClock,
        history_repo: SessionHistoryRepository,
        notification_client: NotificationClient,
        countdown_seconds: int | None = None,
    ) -> None:
        self._registry = zone_registry
        self._roster = roster_store
        self._gateway = gateway
        self._clock = clock
        self._history = history_repo
        self._notifications = notification_client
        if countdown_seconds is None:
            countdown_seconds = settings.DRILL_COUNTDOWN_SECONDS
        self._countdown_seconds = countdown_seconds

        self._people: Roster = ()
        self._zones: tuple[Zone, ...] = ()
        self._session: Optional[MusterSession] = None
        self._degraded = False
        self._last_id_ms = 0
        self._gateway.subscribe(self._on_external_change)

    # ── State ──

    @property
    def state(self) -> str:
        """``idle`` before the first activation, else the session status."""
        if self._session is None:
            return "idle"
        return self._session.status

    @property
    def current_session(self) -> Optional[MusterSession]:
        return self._session

    @property
    def people(self) -> Roster:
        return self._people

    @property
    def degraded(self) -> bool:
        return self._degraded

    def status(self) -> dict[str, Any]:
        return {
            "state": self.state,
            "session": self._session,
            "countdown_remaining": self._clock.countdown_remaining,
            "auto_refresh": self._clock.running,
            "degraded": self._degraded,
        }

    # ── Startup / shutdown ──

    def bootstrap(self) -> None:
        """
        Load zones, roster and the last session from storage.
        An active session found in storage is resumed without resetting
        anyone's status.
        """
        try:
            self._registry.initialize(self._load_zone_configs())
        except ConfigError as exc:
            logger.warning("Ignoring invalid stored zones: %s", exc)
            self._registry.initialize(DEFAULT_ZONES if settings.SEED_DEFAULT_ZONES else ())
        self._people = self._load_people()
        self._zones = self._registry.recompute_aggregates(self._people)

        stored = self._load("load_session", self._gateway.load_session)
        if stored:
            try:
                session = MusterSession.model_validate(stored)
            except ValidationError as exc:
                logger.warning("Ignoring malformed stored session: %s", exc)
                session = None
            if session is not None:
                self._session = session
                if session.is_active:
                    self._recompute()
                    self._clock.start(self.tick)
                    self._history.record_event("session_resumed", session.id, {
                        "type": session.type,
                        "activated_by": session.activated_by,
                    })
                    logger.info("Resumed active session %s", session.id)
                else:
                    self._history.archive(session)

        self._clock.watch(self.sync)
        SESSION_ACTIVE.set(1 if self.state == "active" else 0)
        self._publish_gauges()
        logger.info(
            "Bootstrap complete: zones=%d, people=%d, state=%s",
            len(self._zones), len(self._people), self.state,
        )

    def shutdown(self) -> None:
        self._clock.cancel()
        self._clock.stop_watch()
        self._gateway.close()
        logger.info("Mustering service stopped (state=%s)", self.state)

    def reset(self) -> None:
        """Drop all in-memory state. Storage is left untouched."""
        self._clock.cancel()
        self._clock.stop_watch()
        self._registry.initialize(())
        self._people = ()
        self._zones = ()
        self._session = None
        self._degraded = False

    def _load_zone_configs(self) -> list[ZoneConfig]:
        records = self._load("load_zones", self._gateway.load_zones)
        if records:
            try:
                return [ZoneConfig.model_validate(r) for r in records]
            except ValidationError as exc:
                logger.warning("Ignoring malformed stored zones: %s", exc)
        return list(DEFAULT_ZONES) if settings.SEED_DEFAULT_ZONES else []

    def _load_people(self) -> Roster:
        records = self._load("load_roster", self._gateway.load_roster)
        if records is not None:
            try:
                return tuple(Person.model_validate(r) for r in records)
            except ValidationError as exc:
                logger.warning("Ignoring malformed stored roster: %s", exc)
        if settings.SEED_DEMO_STAFF:
            return self._roster.load([], DEMO_STAFF_DIRECTORY)
        return ()

    # ── Roster & zone management ──

    def import_roster(
        self,
        visitors: Iterable[Mapping[str, Any]],
        staff_directory: Iterable[Mapping[str, Any]],
    ) -> Roster:
        """Replace the roster. Not allowed while a session is active."""
        self._ensure_not_active()
        people = self._roster.load(visitors, staff_directory)
        self._people = people
        self._zones = self._registry.recompute_aggregates(people, previous=self._zones)
        self._save_roster()
        self._save_zones()
        self._publish_gauges()
        self._history.record_event("roster_imported", None, {"people": len(people)})
        logger.info("Roster imported: people=%d", len(people))
        return people

    def configure_zones(self, zones: Iterable[ZoneConfig]) -> tuple[Zone, ...]:
        """Replace the zone catalogue. Not allowed while a session is active."""
        self._ensure_not_active()
        self._registry.initialize(zones)
        self._zones = self._registry.recompute_aggregates(self._people)
        self._save_zones()
        self._history.record_event("zones_configured", None, {
            "zones": [z.id for z in self._zones],
        })
        logger.info("Zones configured: %s", [z.id for z in self._zones])
        return self._zones

    # ── Transitions ──

    def activate(
        self,
        session_type: str,
        activated_by: str,
        roster: Optional[Iterable[Person]] = None,
        zones: Optional[Iterable[ZoneConfig]] = None,
    ) -> MusterSession:
        """
        Start a session. Everyone's status goes back to ``unknown``.
        Drills also start the evacuation countdown.
        Raises AlreadyActiveError if a session is already active, here or
        in shared storage.
        """
        self.sync()
        if self._session is not None and self._session.is_active:
            raise AlreadyActiveError(self._session.id)
        if session_type not in SESSION_TYPES:
            raise DataError(
                f"Session type must be one of {SESSION_TYPES}, got '{session_type}'"
            )
        if zones is not None:
            self._registry.initialize(zones)
        if roster is not None:
            self._people = tuple(roster)

        self._clock.cancel()
        now = _now_iso()
        self._people = self._roster.reset(self._people)
        self._zones = self._registry.recompute_aggregates(self._people, timestamp=now)
        session = MusterSession(
            id=self._new_session_id(),
            start_time=now,
            type=session_type,
            activated_by=activated_by,
            status="active",
            total_people=len(self._people),
            safe_people=0,
            missing_people=0,
            zones=self._zones,
            last_update=now,
        )
        self._session = session
        self._save_roster()
        self._save_zones()
        self._save_session()

        self._clock.start(self.tick)
        if session_type == "drill" and self._countdown_seconds > 0:
            self._clock.start_countdown(self._countdown_seconds, self._on_countdown_complete)

        SESSIONS_ACTIVATED.labels(type=session_type).inc()
        SESSION_ACTIVE.set(1)
        self._publish_gauges()
        self._history.record_event("session_activated", session.id, {
            "type": session_type,
            "activated_by": activated_by,
            "total_people": session.total_people,
        })
        logger.warning(
            "Mustering session activated: id=%s, type=%s, by=%s, people=%d",
            session.id, session_type, activated_by, session.total_people,
        )
        return session

    def mark_safe(self, person_id: str, zone_id: str | None = None) -> MusterSession:
        """
        Confirm a person safe at ``zone_id`` (default: their last known zone).
        Raises NotFoundError for an unknown person or zone.
        """
        session = self._require_active()
        person = self._roster.find(self._people, person_id)
        if person is None:
            raise NotFoundError(f"Person '{person_id}' not found in roster")
        if zone_id is not None and not self._registry.contains(zone_id):
            raise NotFoundError(f"Zone '{zone_id}' not found")
        target_zone = zone_id or person.last_known_zone

        self._people = self._roster.set_status(self._people, person_id, "safe", target_zone)
        updated = self._recompute()
        self._save_roster()
        self._save_zones()
        self._save_session()

        PEOPLE_MARKED.labels(status="safe").inc()
        self._publish_gauges()
        self._history.record_event("person_safe", session.id, {
            "person_id": person_id,
            "zone": target_zone,
            "previous_status": person.status,
        })
        logger.info(
            "Person marked safe: session=%s, person=%s, zone=%s",
            session.id, person_id, target_zone,
        )
        return updated

    def mark_missing(self, person_id: str) -> MusterSession:
        """Flag a person missing; their zone stays unchanged."""
        session = self._require_active()
        person = self._roster.find(self._people, person_id)
        if person is None:
            raise NotFoundError(f"Person '{person_id}' not found in roster")

        self._people = self._roster.set_status(self._people, person_id, "missing")
        updated = self._recompute()
        self._save_roster()
        self._save_zones()
        self._save_session()

        PEOPLE_MARKED.labels(status="missing").inc()
        self._publish_gauges()
        self._history.record_event("person_missing", session.id, {
            "person_id": person_id,
            "zone": person.last_known_zone,
            "previous_status": person.status,
        })
        logger.warning(
            "Person marked missing: session=%s, person=%s, zone=%s",
            session.id, person_id, person.last_known_zone,
        )
        return updated

    def refresh(self) -> MusterSession:
        """Recompute aggregates from the roster. Idempotent."""
        before = self._require_active()
        updated = self._recompute()
        if updated != before or self._degraded:
            self._save_zones()
            self._save_session()
            self._publish_gauges()
        return updated

    def deactivate(self) -> DeactivationResult:
        """
        Complete the active session. Missing people do not block the
        transition; their count is returned as a warning.
        """
        self._require_active()
        final = self._recompute()
        self._clock.cancel()
        closed = final.model_copy(update={"status": "completed", "end_time": _now_iso()})
        self._close(closed, outcome="completed")

        warning = None
        if closed.missing_people > 0:
            warning = (
                f"{closed.missing_people} people are still unaccounted for "
                f"at the end of session {closed.id}"
            )
            logger.warning(warning)
        return DeactivationResult(
            session=closed,
            missing_at_close=closed.missing_people,
            unknown_at_close=closed.unknown_people,
            warning=warning,
        )

    def cancel(self, reason: str | None = None) -> MusterSession:
        """Abort the active session (e.g. false alarm)."""
        self._require_active()
        final = self._recompute()
        self._clock.cancel()
        closed = final.model_copy(update={
            "status": "cancelled",
            "end_time": _now_iso(),
            "cancel_reason": reason,
        })
        self._close(closed, outcome="cancelled")
        return closed

    def set_auto_refresh(self, enabled: bool) -> dict[str, Any]:
        """Pause or resume the periodic refresh. The drill countdown is unaffected."""
        session = self._require_active()
        if enabled and not self._clock.running:
            self._clock.start(self.tick)
        elif not enabled and self._clock.running:
            self._clock.stop_refresh()
        else:
            return self.status()
        event = "auto_refresh_resumed" if enabled else "auto_refresh_paused"
        self._history.record_event(event, session.id, {})
        logger.info("Auto-refresh %s: session=%s", "resumed" if enabled else "paused", session.id)
        return self.status()

    def tick(self) -> None:
        """Periodic refresh callback while a session is active."""
        if self._session is not None and self._session.is_active:
            self.refresh()

    def sync(self) -> int:
        """Pick up snapshots written by other replicas. Runs in every state."""
        try:
            return self._gateway.poll()
        except StorageUnavailable as exc:
            self._storage_failed("poll", exc)
            return 0

    # ── Queries ──

    def get_statistics(self) -> Statistics:
        return self._roster.tally(self._people)

    def get_zone_summaries(self) -> list[Zone]:
        return list(self._registry.recompute_aggregates(self._people, previous=self._zones))

    def get_people_in_zone(self, zone_id: str | None = None) -> list[Person]:
        return self._roster.in_zone(self._people, zone_id)

    def list_sessions(self, limit: int | None = None) -> list[MusterSession]:
        return self._history.get_sessions(limit)

    # ── Notifications ──

    def notify(self, person_ids: list[str], message: str) -> dict[str, Any]:
        """Send a message to the given people. Raises NotFoundError for unknown ids."""
        known = {p.id for p in self._people}
        unknown = [pid for pid in person_ids if pid not in known]
        if unknown:
            raise NotFoundError(f"Unknown person ids: {unknown}")
        return self._dispatch("notification", person_ids, message)

    def announce(self, message: str) -> dict[str, Any]:
        """Broadcast to everyone not yet confirmed safe."""
        targets = [p.id for p in self._people if p.status != "safe"]
        return self._dispatch("announcement", targets, message)

    def _dispatch(self, kind: str, person_ids: list[str], message: str) -> dict[str, Any]:
        session_id = self._session.id if self._session is not None else None
        delivered = self._notifications.notify(person_ids, message, session_id or "N/A")
        self._history.record_event(kind, session_id, {
            "recipients": len(person_ids),
            "delivered": delivered,
            "message": message,
        })
        logger.info("%s dispatched: recipients=%d, delivered=%d", kind, len(person_ids), delivered)
        return {
            "session_id": session_id,
            "recipients": len(person_ids),
            "delivered": delivered,
        }

    # ── Internal ──

    def _require_active(self) -> MusterSession:
        if self._session is None:
            raise NoActiveSessionError()
        if self._session.is_terminal:
            raise TerminalStateError(self._session.id, self._session.status)
        return self._session

    def _ensure_not_active(self) -> None:
        if self._session is not None and self._session.is_active:
            raise AlreadyActiveError(self._session.id)

    def _new_session_id(self) -> str:
        millis = int(time.time() * 1000)
        if millis <= self._last_id_ms:
            millis = self._last_id_ms + 1
        self._last_id_ms = millis
        return f"emergency-{millis}"

    def _recompute(self) -> MusterSession:
        """Refresh zone and session aggregates from the current roster."""
        session = self._session
        zones = self._registry.recompute_aggregates(self._people, previous=session.zones)
        stats = self._roster.tally(self._people)
        updates: dict[str, Any] = {
            "zones": zones,
            "total_people": stats.total,
            "safe_people": stats.safe,
            "missing_people": stats.missing,
        }
        if any(getattr(session, key) != value for key, value in updates.items()):
            updates["last_update"] = _now_iso()
            session = session.model_copy(update=updates)
        self._zones = zones
        self._session = session
        return session

    def _close(self, closed: MusterSession, outcome: str) -> None:
        self._session = closed
        self._history.archive(closed)
        self._save_zones()
        self._save_session()
        SESSIONS_CLOSED.labels(outcome=outcome).inc()
        SESSION_ACTIVE.set(0)
        self._history.record_event(f"session_{outcome}", closed.id, {
            "total_people": closed.total_people,
            "safe_people": closed.safe_people,
            "missing_people": closed.missing_people,
            "cancel_reason": closed.cancel_reason,
            "events": self._history.summary(closed.id),
        })
        logger.info(
            "Mustering session %s: id=%s, safe=%d/%d, missing=%d",
            outcome, closed.id, closed.safe_people, closed.total_people,
            closed.missing_people,
        )

    def _on_countdown_complete(self) -> None:
        session_id = self._session.id if self._session is not None else None
        self._history.record_event("countdown_complete", session_id, {
            "seconds": self._countdown_seconds,
        })
        logger.info("Drill countdown complete: session=%s", session_id)

    def _publish_gauges(self) -> None:
        stats = self.get_statistics()
        PEOPLE_BY_STATUS.labels(status="safe").set(stats.safe)
        PEOPLE_BY_STATUS.labels(status="missing").set(stats.missing)
        PEOPLE_BY_STATUS.labels(status="unknown").set(stats.unknown)
        ACCOUNTED_FOR.set(stats.percentage)

    # ── Storage (failures degrade to memory) ──

    def _save_roster(self) -> None:
        self._save("save_roster", lambda: self._gateway.save_roster(
            [p.to_record() for p in self._people]
        ))

    def _save_zones(self) -> None:
        self._save("save_zones", lambda: self._gateway.save_zones(
            [z.to_record() for z in self._zones]
        ))

    def _save_session(self) -> None:
        if self._session is not None:
            self._save("save_session", lambda: self._gateway.save_session(
                self._session.to_record()
            ))

    def _save(self, operation: str, write: Callable[[], None]) -> bool:
        try:
            write()
        except StorageUnavailable as exc:
            self._storage_failed(operation, exc)
            return False
        if self._degraded:
            self._degraded = False
            logger.info("Storage available again, leaving degraded mode")
        return True

    def _load(self, operation: str, read: Callable[[], Any]) -> Any:
        try:
            return read()
        except StorageUnavailable as exc:
            self._storage_failed(operation, exc)
            return None

    def _storage_failed(self, operation: str, exc: StorageUnavailable) -> None:
        STORAGE_FAILURES.labels(operation=operation).inc()
        if not self._degraded:
            logger.warning("Continuing in memory only: %s", exc)
        self._degraded = True

    # ── External changes (other tabs / processes) ──

    def _on_external_change(self, key: str, payload: Any) -> None:
        """Adopt snapshots written elsewhere; last write wins."""
        try:
            if key == ROSTER_KEY:
                self._adopt_roster(payload)
            elif key == SESSION_KEY:
                self._adopt_session(payload)
        except ValidationError as exc:
            logger.warning("Ignoring malformed external %s snapshot: %s", key, exc)

    def _adopt_roster(self, payload: list[dict[str, Any]]) -> None:
        if payload == [p.to_record() for p in self._people]:
            return
        self._people = tuple(Person.model_validate(r) for r in payload)
        if self._session is not None and self._session.is_active:
            self._recompute()
        else:
            self._zones = self._registry.recompute_aggregates(self._people, previous=self._zones)
        self._publish_gauges()
        logger.info("Adopted external roster: people=%d", len(self._people))

    def _adopt_session(self, payload: dict[str, Any]) -> None:
        if self._session is not None and payload == self._session.to_record():
            return
        incoming = MusterSession.model_validate(payload)
        was_active = self._session is not None and self._session.is_active
        self._session = incoming
        self._zones = incoming.zones or self._zones
        if incoming.is_active and not was_active:
            self._clock.start(self.tick)
        elif incoming.is_terminal:
            if was_active:
                self._clock.cancel()
            self._history.archive(incoming)
        SESSION_ACTIVE.set(1 if incoming.is_active else 0)
        logger.info("Adopted external session: id=%s, status=%s", incoming.id, incoming.status)
