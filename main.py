# type: ignore
# pyright: reportGeneralTypeIssues=false
# pyright: reportOptionalMemberAccess=false
"""
Emergency Mustering Service
===========================
Tracks people, zones and safety status during an emergency or a drill.

Session state-machine:
    idle ─► active ─► completed
                 └──► cancelled   (false alarm)

At most one session is active. Storage outages degrade to in-memory
operation; the service stays usable offline.

Port: 8005
"""
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from mustering.controllers import muster_controller, system_controller
from mustering.core.config import settings
from mustering.core.dependencies import get_muster_service
from mustering.core.logging import get_logger
from mustering.middleware import MetricsMiddleware, RequestIDMiddleware
from mustering.schemas.muster import ErrorResponse

logger = get_logger("muster-service")


# ── Lifespan ──────────────────────────────────────────────────────────────
@asynccontextmanager
async def lifespan(application: FastAPI):
    """Load stored state on startup; stop session timers on shutdown."""
    service = get_muster_service()
    service.bootstrap()
    logger.info("Mustering service started: state=%s", service.state)
    yield
    service.shutdown()


# ── FastAPI App ───────────────────────────────────────────────────────────
app = FastAPI(
    title="Emergency Mustering Service",
    description="Tracks people, zones and safety status during emergencies and drills.",
    version=settings.SERVICE_VERSION,
    lifespan=lifespan,
    responses={
        422: {"model": ErrorResponse, "description": "Validation error"},
        500: {"model": ErrorResponse, "description": "Internal server error"},
    },
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(MetricsMiddleware)
app.add_middleware(RequestIDMiddleware)


# ── Global exception handler ─────────────────────────────────────────────
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    req_id = getattr(request.state, "request_id", None)
    logger.exception("Unhandled exception", extra={"request_id": req_id})
    return JSONResponse(
        status_code=500,
        content={"error": "internal_server_error", "detail": str(exc), "request_id": req_id},
    )


app.include_router(system_controller.router)
app.include_router(muster_controller.router)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=settings.SERVICE_PORT, log_level="info")
