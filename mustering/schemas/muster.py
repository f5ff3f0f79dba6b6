# type: ignore
# pyright: reportMissingImports=false, reportGeneralTypeErrors=false
"""
Request / Response schemas for the HTTP API.
These are Pydantic models used ONLY at the controller (HTTP) boundary.
"""

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from mustering.models.domain import MusterSession, ZoneConfig


class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ── Session Schemas ──

class ActivateRequest(ApiModel):
    type: str = Field(
        default="drill",
        pattern="^(drill|actual)$",
        description="Session type: drill or actual",
    )
    activated_by: str = Field(..., min_length=1, max_length=255)


class AutoRefreshRequest(ApiModel):
    enabled: bool


class CancelRequest(ApiModel):
    reason: Optional[str] = Field(default=None, max_length=500)


class MarkSafeRequest(ApiModel):
    zone_id: Optional[str] = Field(
        default=None,
        min_length=1,
        description="Muster zone; defaults to the person's last known zone",
    )


# ── Roster & Zone Schemas ──

class RosterImportRequest(ApiModel):
    visitors: list[dict[str, Any]] = Field(default_factory=list)
    staff: list[dict[str, Any]] = Field(default_factory=list)


class ZoneConfigRequest(ApiModel):
    zones: list[ZoneConfig] = Field(..., min_length=1)


# ── Notification Schemas ──

class NotifyRequest(ApiModel):
    person_ids: list[str] = Field(..., min_length=1)
    message: str = Field(..., min_length=1, max_length=1000)


class AnnounceRequest(ApiModel):
    message: str = Field(..., min_length=1, max_length=1000)


class ErrorResponse(BaseModel):
    error: str
    detail: Optional[str] = None
    request_id: Optional[str] = None


# ── Response helpers ──

def session_out(session: Optional[MusterSession]) -> Optional[dict[str, Any]]:
    """Session record plus the derived headcount fields."""
    if session is None:
        return None
    data = session.to_record()
    data["unknownPeople"] = session.unknown_people
    data["accountedForPercentage"] = session.accounted_for_percentage
    return data
