# type: ignore
# pyright: reportMissingImports=false, reportGeneralTypeErrors=false

"""
Tests for the mustering session lifecycle (MusterSessionService).
Run:  pytest test_muster_session.py -v
"""

import random
from unittest.mock import MagicMock, patch

import httpx
import pytest

from mustering.core.config import settings
from mustering.core.errors import (
    AlreadyActiveError,
    ConfigError,
    NoActiveSessionError,
    NotFoundError,
    StorageUnavailable,
    TerminalStateError,
)
from mustering.models.domain import MusterSession, Person, ZoneConfig
from mustering.repositories.gateway import ROSTER_KEY, SESSION_KEY, ZONES_KEY
from mustering.repositories.history_repository import SessionHistoryRepository
from mustering.repositories.memory_gateway import InMemoryGateway
from mustering.services.muster_service import MusterSessionService
from mustering.services.notification_client import NotificationClient
from mustering.services.roster_store import RosterStore
from mustering.services.session_clock import ManualSessionClock
from mustering.services.zone_registry import ZoneRegistry


# ============================================
# Fixtures
# ============================================
class FlakyGateway(InMemoryGateway):
    """In-memory gateway whose writes fail while ``down`` is set."""

    def __init__(self) -> None:
        super().__init__()
        self.down = False

    def _write(self, key, payload):
        if self.down:
            raise StorageUnavailable(f"save {key}", ConnectionError("db offline"))
        super()._write(key, payload)

    def _read(self, key):
        if self.down:
            raise StorageUnavailable(f"load {key}", ConnectionError("db offline"))
        return super()._read(key)


PRODUCTION = [ZoneConfig(id="production", name="Production Floor", muster_point="Main Exit", capacity=150)]
SITE_ZONES = PRODUCTION + [
    ZoneConfig(id="warehouse", name="Warehouse A", muster_point="Loading Dock", capacity=80),
    ZoneConfig(id="office", name="Office Building", muster_point="Front Entrance", capacity=100),
]


def _person(pid, zone="production", status="unknown", kind="staff"):
    return Person(id=pid, name=f"Person {pid}", company="VSTS Corp", type=kind,
                  last_known_zone=zone, status=status)


def _three_in_production():
    return [_person("p1"), _person("p2"), _person("p3")]


@pytest.fixture
def clock():
    return ManualSessionClock(refresh_interval=5)


@pytest.fixture
def gateway():
    return FlakyGateway()


@pytest.fixture
def history():
    return SessionHistoryRepository()


@pytest.fixture
def notifier():
    client = MagicMock(spec=NotificationClient)
    client.notify.return_value = 0
    return client


@pytest.fixture
def service(gateway, clock, history, notifier):
    return MusterSessionService(
        zone_registry=ZoneRegistry(),
        roster_store=RosterStore(default_zone="office"),
        gateway=gateway,
        clock=clock,
        history_repo=history,
        notification_client=notifier,
        countdown_seconds=10,
    )


@pytest.fixture
def drill(service):
    """Scenario A: one production zone, three people, drill activated."""
    service.activate("drill", "Safety Officer", roster=_three_in_production(), zones=PRODUCTION)
    return service


def _stats(service):
    return service.get_statistics().model_dump()


# ============================================
# Scenarios
# ============================================
class TestScenarios:
    def test_a_activation_starts_with_everyone_unknown(self, drill):
        assert _stats(drill) == {"total": 3, "safe": 0, "missing": 0, "unknown": 3, "percentage": 0}

    def test_b_mark_safe_rounds_percentage(self, drill):
        drill.mark_safe("p1", "production")
        assert _stats(drill) == {"total": 3, "safe": 1, "missing": 0, "unknown": 2, "percentage": 33}

    def test_c_deactivate_with_missing_people_warns(self, drill):
        drill.mark_safe("p1", "production")
        session = drill.mark_missing("p2")
        assert session.missing_people == 1

        result = drill.deactivate()
        assert result.missing_at_close == 1
        assert result.unknown_at_close == 1
        assert result.warning is not None
        assert result.session.status == "completed"
        assert result.session.end_time is not None
        assert drill.state == "completed"

    def test_d_activate_while_active_fails_and_keeps_session(self, drill):
        drill.mark_safe("p1")
        before = drill.current_session
        with pytest.raises(AlreadyActiveError):
            drill.activate("actual", "Someone Else")
        assert drill.current_session == before
        assert drill.current_session.type == "drill"
        assert _stats(drill)["safe"] == 1

    def test_e_mark_safe_on_completed_session_fails(self, drill):
        drill.deactivate()
        with pytest.raises(TerminalStateError):
            drill.mark_safe("p1", "production")

    def test_empty_roster_percentage_is_zero(self, service):
        service.activate("actual", "Admin", roster=[], zones=PRODUCTION)
        stats = _stats(service)
        assert stats == {"total": 0, "safe": 0, "missing": 0, "unknown": 0, "percentage": 0}
        assert service.current_session.accounted_for_percentage == 0


# ============================================
# State machine
# ============================================
class TestStateMachine:
    def test_initial_state_is_idle(self, service):
        assert service.state == "idle"
        assert service.current_session is None

    @pytest.mark.parametrize("call", [
        lambda s: s.mark_safe("p1"),
        lambda s: s.mark_missing("p1"),
        lambda s: s.refresh(),
        lambda s: s.deactivate(),
        lambda s: s.cancel(),
    ])
    def test_mutations_while_idle_fail(self, service, call):
        with pytest.raises(NoActiveSessionError):
            call(service)

    def test_deactivate_twice_raises_terminal_error(self, drill):
        first = drill.deactivate()
        with pytest.raises(TerminalStateError):
            drill.deactivate()
        assert drill.current_session.end_time == first.session.end_time

    def test_deactivate_without_missing_has_no_warning(self, drill):
        for pid in ("p1", "p2", "p3"):
            drill.mark_safe(pid)
        result = drill.deactivate()
        assert result.warning is None
        assert result.missing_at_close == 0
        assert result.session.accounted_for_percentage == 100

    def test_cancel_marks_session_cancelled(self, drill, history):
        session = drill.cancel("False alarm")
        assert session.status == "cancelled"
        assert session.cancel_reason == "False alarm"
        assert session.end_time is not None
        assert history.get_sessions()[-1].id == session.id
        with pytest.raises(TerminalStateError):
            drill.mark_missing("p1")
        with pytest.raises(TerminalStateError):
            drill.deactivate()

    def test_new_session_after_completion(self, drill, history):
        first = drill.deactivate().session
        second = drill.activate("actual", "Admin")
        assert second.id != first.id
        assert second.is_active
        assert [s.id for s in history.get_sessions()] == [first.id]

    def test_session_ids_unique_across_fast_activations(self, service):
        ids = set()
        for _ in range(5):
            ids.add(service.activate("actual", "Admin", roster=[], zones=PRODUCTION).id)
            service.deactivate()
        assert len(ids) == 5
        assert all(i.startswith("emergency-") for i in ids)

    def test_activation_resets_every_status(self, service):
        roster = [_person("p1", status="safe"), _person("p2", status="missing"), _person("p3")]
        session = service.activate("actual", "Admin", roster=roster, zones=PRODUCTION)
        assert {p.status for p in service.people} == {"unknown"}
        assert session.safe_people == 0
        assert session.missing_people == 0
        assert session.total_people == 3

    def test_completed_session_is_immutable(self, drill):
        closed = drill.deactivate().session
        with pytest.raises(Exception):
            closed.status = "active"

    def test_invalid_session_type(self, service):
        with pytest.raises(Exception):
            service.activate("rehearsal", "Admin", roster=[], zones=PRODUCTION)
        assert service.state == "idle"


# ============================================
# Status changes & aggregates
# ============================================
class TestStatusChanges:
    def test_mark_safe_moves_person_to_muster_zone(self, service):
        service.activate("actual", "Admin", roster=_three_in_production(), zones=SITE_ZONES)
        service.mark_safe("p1", "warehouse")
        zones = {z.id: z for z in service.get_zone_summaries()}
        assert zones["production"].current_count == 2
        assert zones["warehouse"].current_count == 1
        assert zones["warehouse"].safe_count == 1

    def test_mark_safe_defaults_to_last_known_zone(self, drill):
        drill.mark_safe("p2")
        person = RosterStore.find(drill.people, "p2")
        assert person.last_known_zone == "production"
        assert person.status == "safe"

    def test_mark_missing_keeps_zone(self, service):
        service.activate("actual", "Admin", roster=[_person("p1", zone="warehouse")], zones=SITE_ZONES)
        service.mark_missing("p1")
        person = RosterStore.find(service.people, "p1")
        assert person.last_known_zone == "warehouse"
        assert person.status == "missing"

    def test_mark_safe_twice_is_harmless(self, drill):
        first = drill.mark_safe("p1")
        second = drill.mark_safe("p1")
        assert second.safe_people == first.safe_people == 1

    def test_missing_then_safe(self, drill):
        drill.mark_missing("p1")
        session = drill.mark_safe("p1")
        assert session.missing_people == 0
        assert session.safe_people == 1

    def test_unknown_person_raises_not_found(self, drill):
        with pytest.raises(NotFoundError):
            drill.mark_safe("ghost", "production")
        with pytest.raises(NotFoundError):
            drill.mark_missing("ghost")
        assert _stats(drill)["unknown"] == 3

    def test_unknown_zone_raises_not_found(self, drill):
        with pytest.raises(NotFoundError):
            drill.mark_safe("p1", "rooftop")
        assert RosterStore.find(drill.people, "p1").status == "unknown"

    def test_two_thirds_rounds_up(self, drill):
        drill.mark_safe("p1")
        drill.mark_safe("p2")
        assert _stats(drill)["percentage"] == 67

    def test_session_snapshot_tracks_roster(self, drill):
        drill.mark_safe("p1")
        session = drill.mark_missing("p3")
        assert (session.total_people, session.safe_people, session.missing_people) == (3, 1, 1)
        assert session.unknown_people == 1
        zone = session.zones[0]
        assert (zone.current_count, zone.safe_count, zone.missing_count) == (3, 1, 1)

    def test_refresh_is_idempotent(self, drill):
        drill.mark_safe("p1")
        first = drill.refresh()
        zones_first = drill.get_zone_summaries()
        second = drill.refresh()
        assert first == second
        assert zones_first == drill.get_zone_summaries()

    def test_zone_invariants_hold_for_random_operations(self, service):
        rng = random.Random(42)
        zone_ids = [z.id for z in SITE_ZONES]
        roster = [_person(f"p{i}", zone=rng.choice(zone_ids)) for i in range(30)]
        service.activate("actual", "Admin", roster=roster, zones=SITE_ZONES)
        for _ in range(200):
            pid = f"p{rng.randrange(30)}"
            if rng.random() < 0.6:
                service.mark_safe(pid, rng.choice(zone_ids))
            else:
                service.mark_missing(pid)
            zones = service.get_zone_summaries()
            for zone in zones:
                assert zone.safe_count + zone.missing_count <= zone.current_count
            assert sum(z.current_count for z in zones) == service.current_session.total_people

    def test_people_in_zone(self, service):
        roster = [_person("p1"), _person("p2", zone="office"), _person("p3", zone="office")]
        service.activate("actual", "Admin", roster=roster, zones=SITE_ZONES)
        assert [p.id for p in service.get_people_in_zone("office")] == ["p2", "p3"]
        assert len(service.get_people_in_zone()) == 3
        assert service.get_people_in_zone("parking") == []


# ============================================
# Session clock
# ============================================
class TestClock:
    def test_drill_starts_countdown(self, drill, clock):
        assert clock.running
        assert clock.countdown_remaining == 10

    def test_actual_has_no_countdown(self, service, clock):
        service.activate("actual", "Admin", roster=[], zones=PRODUCTION)
        assert clock.running
        assert clock.countdown_remaining == 0

    def test_countdown_completion_is_recorded(self, drill, clock, history):
        clock.advance(9)
        assert history.get_events(event_type="countdown_complete") == []
        clock.advance(1)
        events = history.get_events(event_type="countdown_complete")
        assert len(events) == 1
        assert events[0]["session_id"] == drill.current_session.id
        assert drill.state == "active"

    def test_periodic_refresh(self, drill, clock):
        clock.advance(11)
        assert clock.ticks == 2

    def test_deactivate_stops_clock(self, drill, clock, history):
        clock.advance(3)
        drill.deactivate()
        assert not clock.running
        assert clock.countdown_remaining == 0
        clock.advance(20)
        assert clock.ticks == 0
        assert history.get_events(event_type="countdown_complete") == []

    def test_reactivation_restarts_countdown(self, drill, clock):
        clock.advance(4)
        drill.cancel()
        drill.activate("drill", "Admin")
        assert clock.countdown_remaining == 10


    def test_zero_countdown_is_respected(self, gateway, clock, history, notifier):
        service = MusterSessionService(
            ZoneRegistry(), RosterStore(), gateway, clock, history, notifier,
            countdown_seconds=0,
        )
        service.activate("drill", "Admin", roster=[], zones=PRODUCTION)
        assert clock.countdown_remaining == 0
        assert clock.running

    def test_explicit_refresh_interval_is_kept(self, monkeypatch):
        monkeypatch.setattr(settings, "REFRESH_INTERVAL_SECONDS", 5)
        assert ManualSessionClock(refresh_interval=0.5).refresh_interval == 0.5
        assert ManualSessionClock(refresh_interval=0).refresh_interval == 0
        assert ManualSessionClock().refresh_interval == 5

    def test_bootstrap_starts_storage_watch(self, service, clock):
        service.bootstrap()
        assert clock.watching
        assert not clock.running
        clock.advance(10)
        assert clock.polls == 2
        assert clock.ticks == 0

    def test_watch_survives_session_close(self, service, clock):
        service.bootstrap()
        service.activate("actual", "Admin")
        service.deactivate()
        assert clock.watching
        service.shutdown()
        assert not clock.watching


class TestAutoRefresh:
    def test_pause_stops_ticks_and_resume_restarts_them(self, drill, clock, history):
        clock.advance(5)
        assert clock.ticks == 1

        status = drill.set_auto_refresh(False)
        assert status["auto_refresh"] is False
        clock.advance(8)
        assert clock.ticks == 1

        status = drill.set_auto_refresh(True)
        assert status["auto_refresh"] is True
        clock.advance(5)
        assert clock.ticks == 2
        types = [e["event_type"] for e in history.get_events(session_id=drill.current_session.id)]
        assert "auto_refresh_paused" in types
        assert "auto_refresh_resumed" in types

    def test_pause_keeps_countdown_running(self, drill, clock, history):
        drill.set_auto_refresh(False)
        assert clock.countdown_remaining == 10
        clock.advance(10)
        assert len(history.get_events(event_type="countdown_complete")) == 1

    def test_repeated_pause_is_recorded_once(self, drill, history):
        drill.set_auto_refresh(False)
        drill.set_auto_refresh(False)
        assert len(history.get_events(event_type="auto_refresh_paused")) == 1

    def test_requires_active_session(self, service, drill):
        drill.deactivate()
        with pytest.raises(TerminalStateError):
            drill.set_auto_refresh(True)

    def test_idle_service_rejects_toggle(self, service):
        with pytest.raises(NoActiveSessionError):
            service.set_auto_refresh(False)


# ============================================
# Persistence & degraded mode
# ============================================
class TestPersistence:
    def test_snapshots_are_saved_with_camel_case_fields(self, drill, gateway):
        drill.mark_safe("p1")
        stored = gateway.store[SESSION_KEY]
        assert stored["safePeople"] == 1
        assert stored["status"] == "active"
        assert gateway.store[ROSTER_KEY][0]["lastKnownZone"] == "production"
        assert gateway.store[ZONES_KEY][0]["musterPoint"] == "Main Exit"

    def test_storage_outage_never_reaches_caller(self, service, gateway):
        gateway.down = True
        session = service.activate("drill", "Admin", roster=_three_in_production(), zones=PRODUCTION)
        service.mark_safe("p1")
        assert service.degraded
        assert session.is_active
        assert _stats(service)["safe"] == 1
        assert SESSION_KEY not in gateway.store

    def test_recovers_when_storage_returns(self, service, gateway):
        gateway.down = True
        service.activate("drill", "Admin", roster=_three_in_production(), zones=PRODUCTION)
        gateway.down = False
        service.mark_missing("p2")
        assert not service.degraded
        assert gateway.store[SESSION_KEY]["missingPeople"] == 1

    def test_bootstrap_with_storage_down_uses_defaults(self, service, gateway, monkeypatch):
        monkeypatch.setattr(settings, "SEED_DEFAULT_ZONES", True)
        monkeypatch.setattr(settings, "SEED_DEMO_STAFF", True)
        gateway.down = True
        service.bootstrap()
        assert service.degraded
        assert service.state == "idle"
        assert len(service.get_zone_summaries()) == 5
        assert len(service.people) == 4

    def test_bootstrap_replaces_invalid_stored_zones(self, service, gateway, monkeypatch):
        monkeypatch.setattr(settings, "SEED_DEFAULT_ZONES", True)
        gateway.store[ZONES_KEY] = [{"id": "yard", "name": "Yard", "capacity": 0}]
        service.bootstrap()
        assert [z.id for z in service.get_zone_summaries()] == [
            "production", "warehouse", "office", "cafeteria", "parking",
        ]

    def test_bootstrap_without_seeding(self, service, monkeypatch):
        monkeypatch.setattr(settings, "SEED_DEFAULT_ZONES", False)
        monkeypatch.setattr(settings, "SEED_DEMO_STAFF", False)
        service.bootstrap()
        assert service.get_zone_summaries() == []
        assert service.people == ()

    def test_bootstrap_resumes_active_session(self, drill, gateway, clock, history, notifier):
        drill.mark_safe("p1")
        restarted_clock = ManualSessionClock(refresh_interval=5)
        restarted = MusterSessionService(
            ZoneRegistry(), RosterStore(), gateway, restarted_clock,
            SessionHistoryRepository(), notifier,
        )
        restarted.bootstrap()
        assert restarted.state == "active"
        assert restarted.current_session.id == drill.current_session.id
        assert restarted_clock.running
        assert _stats(restarted)["safe"] == 1
        restarted.mark_safe("p2")
        assert _stats(restarted)["safe"] == 2

    def test_bootstrap_archives_closed_session(self, drill, gateway, notifier):
        closed = drill.deactivate().session
        archive = SessionHistoryRepository()
        restarted = MusterSessionService(
            ZoneRegistry(), RosterStore(), gateway, ManualSessionClock(),
            archive, notifier,
        )
        restarted.bootstrap()
        assert restarted.state == "completed"
        assert archive.get_sessions()[0].id == closed.id
        with pytest.raises(TerminalStateError):
            restarted.mark_safe("p1")


# ============================================
# External changes (other tabs / processes)
# ============================================
class TestExternalChanges:
    def test_external_roster_is_adopted(self, drill, gateway):
        records = [p.to_record() for p in drill.people]
        records[0]["status"] = "safe"
        gateway.inject(ROSTER_KEY, records)
        assert _stats(drill)["safe"] == 1
        assert drill.current_session.safe_people == 1

    def test_external_close_stops_local_clock(self, drill, gateway, clock):
        closed = drill.current_session.model_copy(update={"status": "completed", "end_time": "2026-01-01T00:00:00+00:00"})
        gateway.inject(SESSION_KEY, closed.to_record())
        assert drill.state == "completed"
        assert not clock.running

    def test_external_activation_starts_clock(self, service, gateway, clock):
        service.configure_zones(PRODUCTION)
        session = MusterSession(
            id="emergency-1", start_time="2026-01-01T00:00:00+00:00",
            type="actual", activated_by="Other Tab",
        )
        gateway.inject(SESSION_KEY, session.to_record())
        assert service.state == "active"
        assert clock.running
        with pytest.raises(AlreadyActiveError):
            service.activate("drill", "Admin")

    def test_malformed_external_snapshot_is_ignored(self, drill, gateway):
        gateway.inject(ROSTER_KEY, [{"id": "x"}])
        assert _stats(drill)["total"] == 3


# ============================================
# Roster, zones, notifications
# ============================================
class TestManagement:
    def test_import_roster(self, service):
        service.configure_zones(SITE_ZONES)
        people = service.import_roster(
            [{"id": "v1", "fullName": "Ann Visitor", "company": "Acme"}],
            [{"id": "s1", "name": "Sam Staff", "lastKnownZone": "warehouse"}],
        )
        assert [p.id for p in people] == ["v1", "s1"]
        zones = {z.id: z for z in service.get_zone_summaries()}
        assert zones["office"].current_count == 1
        assert zones["warehouse"].current_count == 1

    def test_import_roster_during_session_fails(self, drill):
        with pytest.raises(AlreadyActiveError):
            drill.import_roster([], [])

    def test_configure_zones_rejects_bad_capacity(self, service):
        with pytest.raises(ConfigError):
            service.configure_zones([ZoneConfig(id="a", name="A", capacity=0)])

    def test_notify_known_people(self, drill, notifier):
        notifier.notify.return_value = 2
        result = drill.notify(["p1", "p2"], "Report to muster point")
        notifier.notify.assert_called_once_with(
            ["p1", "p2"], "Report to muster point", drill.current_session.id
        )
        assert result["delivered"] == 2

    def test_notify_unknown_person(self, drill, notifier):
        with pytest.raises(NotFoundError):
            drill.notify(["p1", "ghost"], "hello")
        notifier.notify.assert_not_called()

    def test_announce_targets_people_not_yet_safe(self, drill, notifier):
        drill.mark_safe("p1")
        result = drill.announce("Evacuate now")
        args = notifier.notify.call_args[0]
        assert sorted(args[0]) == ["p2", "p3"]
        assert result["recipients"] == 2

    def test_history_records_lifecycle(self, drill, history):
        drill.mark_safe("p1")
        drill.mark_missing("p2")
        drill.deactivate()
        types = [e["event_type"] for e in history.get_events()]
        assert types == ["session_activated", "person_safe", "person_missing", "session_completed"]
        closing = history.get_events(event_type="session_completed")[0]
        assert closing["details"]["events"] == {
            "session_activated": 1, "person_safe": 1, "person_missing": 1,
        }


class TestNotificationClient:
    def test_counts_accepted_deliveries(self):
        with patch("mustering.services.notification_client.httpx.Client") as client_cls:
            http = client_cls.return_value.__enter__.return_value
            http.post.return_value = MagicMock(status_code=202)
            delivered = NotificationClient(base_url="http://notify").notify(["a", "b"], "msg", "emergency-1")
        assert delivered == 2
        first_call = http.post.call_args_list[0]
        assert first_call.args[0] == "http://notify/api/v1/notify"
        assert first_call.kwargs["json"]["recipient"] == "a"
        assert first_call.kwargs["json"]["incident_id"] == "emergency-1"

    def test_failures_are_swallowed(self):
        with patch("mustering.services.notification_client.httpx.Client") as client_cls:
            http = client_cls.return_value.__enter__.return_value
            http.post.side_effect = httpx.ConnectError("refused")
            assert NotificationClient().notify(["a"], "msg") == 0

    def test_empty_recipient_list(self):
        with patch("mustering.services.notification_client.httpx.Client") as client_cls:
            assert NotificationClient().notify([], "msg") == 0
            client_cls.assert_not_called()
