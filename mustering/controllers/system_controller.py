# type: ignore
# pyright: reportMissingImports=false, reportGeneralTypeErrors=false
"""
Controller: Liveness, readiness and Prometheus scrape endpoints.
"""

from datetime import datetime, timezone

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from starlette.responses import Response

from mustering.core.config import settings
from mustering.core.dependencies import get_gateway, get_muster_service
from mustering.repositories.gateway import PersistenceGateway
from mustering.repositories.sql_gateway import SqlGateway
from mustering.services.muster_service import MusterSessionService

router = APIRouter(tags=["System"])


@router.get("/health")
def health_check(service: MusterSessionService = Depends(get_muster_service)):
    session = service.current_session
    return {
        "status": "ok",
        "service": settings.SERVICE_NAME,
        "version": settings.SERVICE_VERSION,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "session_state": service.state,
        "session_id": session.id if session is not None else None,
        "people_count": len(service.people),
    }


@router.get("/health/ready")
def readiness_check(
    service: MusterSessionService = Depends(get_muster_service),
    gateway: PersistenceGateway = Depends(get_gateway),
):
    """
    Ready once a zone catalogue is loaded. A degraded store does not make
    the service unready: mustering keeps working from memory.
    """
    zones = len(service.get_zone_summaries())
    body = {
        "status": "ready" if zones else "not_ready",
        "service": settings.SERVICE_NAME,
        "zones_loaded": zones > 0,
        "storage": "sql" if isinstance(gateway, SqlGateway) else "memory",
        "degraded": service.degraded,
    }
    return JSONResponse(status_code=200 if zones else 503, content=body)


@router.get("/metrics")
def prometheus_metrics():
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
