# type: ignore
# pyright: reportMissingImports=false, reportGeneralTypeErrors=false
"""
Controller: Mustering session, people, roster, zones, notifications, history.
Thin HTTP layer: delegates ALL logic to MusterSessionService.

Handlers are ``async def`` so every mutation runs on the event loop thread,
one at a time, alongside the session clock tasks.
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from starlette.concurrency import run_in_threadpool

from mustering.core.dependencies import get_history_repo, get_muster_service
from mustering.core.errors import (
    ConfigError,
    DataError,
    MusterError,
    NotFoundError,
    SessionStateError,
)
from mustering.repositories.history_repository import SessionHistoryRepository
from mustering.schemas.muster import (
    ActivateRequest,
    AutoRefreshRequest,
    AnnounceRequest,
    CancelRequest,
    MarkSafeRequest,
    NotifyRequest,
    RosterImportRequest,
    ZoneConfigRequest,
    session_out,
)
from mustering.services.muster_service import MusterSessionService

router = APIRouter(prefix="/api/v1/muster", tags=["Mustering"])


def _http_error(exc: MusterError) -> HTTPException:
    if isinstance(exc, NotFoundError):
        status = 404
    elif isinstance(exc, SessionStateError):
        status = 409
    elif isinstance(exc, (ConfigError, DataError)):
        status = 422
    else:
        status = 500
    return HTTPException(
        status_code=status,
        detail={"error": exc.error_code, "message": exc.message},
    )


# ── Session ──

@router.get("/session")
async def get_session(service: MusterSessionService = Depends(get_muster_service)):
    """Current session, machine state and countdown."""
    status = service.status()
    status["session"] = session_out(status["session"])
    status["statistics"] = service.get_statistics().model_dump()
    return status


@router.post("/session/activate", status_code=201)
async def activate_session(
    payload: ActivateRequest,
    service: MusterSessionService = Depends(get_muster_service),
):
    """Start an emergency or drill session."""
    try:
        session = service.activate(payload.type, payload.activated_by)
    except MusterError as e:
        raise _http_error(e)
    return session_out(session)


@router.post("/session/refresh")
async def refresh_session(service: MusterSessionService = Depends(get_muster_service)):
    try:
        return session_out(service.refresh())
    except MusterError as e:
        raise _http_error(e)


@router.post("/session/deactivate")
async def deactivate_session(service: MusterSessionService = Depends(get_muster_service)):
    """End the active session. Unresolved missing people come back as a warning."""
    try:
        result = service.deactivate()
    except MusterError as e:
        raise _http_error(e)
    return {
        "session": session_out(result.session),
        "missingAtClose": result.missing_at_close,
        "unknownAtClose": result.unknown_at_close,
        "warning": result.warning,
    }


@router.post("/session/cancel")
async def cancel_session(
    payload: Optional[CancelRequest] = None,
    service: MusterSessionService = Depends(get_muster_service),
):
    """Abort the active session (false alarm)."""
    try:
        session = service.cancel(payload.reason if payload else None)
    except MusterError as e:
        raise _http_error(e)
    return session_out(session)


@router.post("/session/auto-refresh")
async def set_auto_refresh(
    payload: AutoRefreshRequest,
    service: MusterSessionService = Depends(get_muster_service),
):
    """Pause or resume the periodic refresh of the active session."""
    try:
        status = service.set_auto_refresh(payload.enabled)
    except MusterError as e:
        raise _http_error(e)
    status["session"] = session_out(status["session"])
    return status


@router.get("/sessions")
async def list_sessions(
    limit: int = Query(default=None, ge=1, description="Max results"),
    service: MusterSessionService = Depends(get_muster_service),
):
    """Archive of completed and cancelled sessions."""
    return [session_out(s) for s in service.list_sessions(limit)]


# ── People ──

@router.post("/people/{person_id}/safe")
async def mark_person_safe(
    person_id: str,
    payload: Optional[MarkSafeRequest] = None,
    service: MusterSessionService = Depends(get_muster_service),
):
    try:
        session = service.mark_safe(person_id, payload.zone_id if payload else None)
    except MusterError as e:
        raise _http_error(e)
    return session_out(session)


@router.post("/people/{person_id}/missing")
async def mark_person_missing(
    person_id: str,
    service: MusterSessionService = Depends(get_muster_service),
):
    try:
        session = service.mark_missing(person_id)
    except MusterError as e:
        raise _http_error(e)
    return session_out(session)


@router.get("/people")
async def list_people(
    zone: Optional[str] = Query(default=None, description="Filter by last known zone"),
    service: MusterSessionService = Depends(get_muster_service),
):
    return [p.to_record() for p in service.get_people_in_zone(zone)]


@router.put("/roster")
async def import_roster(
    payload: RosterImportRequest,
    service: MusterSessionService = Depends(get_muster_service),
):
    """Replace the roster from visitor records and the staff directory."""
    try:
        people = service.import_roster(payload.visitors, payload.staff)
    except MusterError as e:
        raise _http_error(e)
    return {"total": len(people), "people": [p.to_record() for p in people]}


# ── Zones & Statistics ──

@router.get("/zones")
async def list_zones(service: MusterSessionService = Depends(get_muster_service)):
    return [z.to_record() for z in service.get_zone_summaries()]


@router.put("/zones")
async def configure_zones(
    payload: ZoneConfigRequest,
    service: MusterSessionService = Depends(get_muster_service),
):
    try:
        zones = service.configure_zones(payload.zones)
    except MusterError as e:
        raise _http_error(e)
    return [z.to_record() for z in zones]


@router.get("/statistics")
async def get_statistics(service: MusterSessionService = Depends(get_muster_service)):
    return service.get_statistics().model_dump()


# ── Notifications ──

@router.post("/notify", status_code=202)
async def notify_people(
    payload: NotifyRequest,
    service: MusterSessionService = Depends(get_muster_service),
):
    try:
        return await run_in_threadpool(service.notify, payload.person_ids, payload.message)
    except MusterError as e:
        raise _http_error(e)


@router.post("/announce", status_code=202)
async def announce(
    payload: AnnounceRequest,
    service: MusterSessionService = Depends(get_muster_service),
):
    """Broadcast to everyone not yet confirmed safe."""
    return await run_in_threadpool(service.announce, payload.message)


# ── History ──

@router.get("/history")
async def get_history(
    session_id: Optional[str] = None,
    event_type: Optional[str] = None,
    limit: int = Query(default=None, ge=1, description="Max results"),
    history_repo: SessionHistoryRepository = Depends(get_history_repo),
):
    """Audit log for all mustering events."""
    return history_repo.get_events(session_id=session_id, event_type=event_type, limit=limit)
