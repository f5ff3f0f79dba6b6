# type: ignore
# pyright: reportMissingImports=false, reportGeneralTypeErrors=false
"""
FastAPI dependency injection: wires repositories and services.
"""

from mustering.core.database import engine
from mustering.repositories.gateway import PersistenceGateway
from mustering.repositories.history_repository import SessionHistoryRepository
from mustering.repositories.memory_gateway import InMemoryGateway
from mustering.repositories.sql_gateway import SqlGateway
from mustering.services.muster_service import MusterSessionService
from mustering.services.notification_client import NotificationClient
from mustering.services.roster_store import RosterStore
from mustering.services.session_clock import AsyncioSessionClock
from mustering.services.zone_registry import ZoneRegistry

# ── Singleton instances ──
_gateway: PersistenceGateway = SqlGateway(engine) if engine is not None else InMemoryGateway()
_history_repo = SessionHistoryRepository()
_notification_client = NotificationClient()
_clock = AsyncioSessionClock()

# ── Service instance (with injected dependencies) ──
_muster_service = MusterSessionService(
    zone_registry=ZoneRegistry(),
    roster_store=RosterStore(),
    gateway=_gateway,
    clock=_clock,
    history_repo=_history_repo,
    notification_client=_notification_client,
)


# ── FastAPI dependency functions ──
def get_muster_service() -> MusterSessionService:
    return _muster_service


def get_history_repo() -> SessionHistoryRepository:
    return _history_repo


def get_gateway() -> PersistenceGateway:
    return _gateway


def get_notification_client() -> NotificationClient:
    return _notification_client
