# type: ignore
# pyright: reportMissingImports=false, reportGeneralTypeErrors=false
"""
Domain exceptions. Controllers map them to HTTP status codes;
services never import FastAPI.
"""


class MusterError(Exception):
    """Base class for every mustering failure."""

    error_code: str = "MUSTER_ERROR"

    def __init__(self, message: str, error_code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        if error_code:
            self.error_code = error_code

    def __str__(self) -> str:
        return self.message


class ConfigError(MusterError):
    """Invalid zone catalogue (duplicate id, non-positive capacity)."""

    error_code = "CONFIG_ERROR"


class DataError(MusterError):
    """Malformed roster input."""

    error_code = "DATA_ERROR"


class NotFoundError(MusterError):
    """Person or zone id is not known."""

    error_code = "NOT_FOUND"


class StorageUnavailable(MusterError):
    """Persistence gateway could not serve the request. Always recoverable."""

    error_code = "STORAGE_UNAVAILABLE"

    def __init__(self, operation: str, cause: Exception | None = None) -> None:
        detail = f"Storage unavailable during '{operation}'"
        if cause is not None:
            detail = f"{detail}: {cause}"
        super().__init__(detail)
        self.operation = operation


# ── Session state machine ──

class SessionStateError(MusterError):
    """Operation not allowed in the current session state."""

    error_code = "INVALID_SESSION_STATE"


class AlreadyActiveError(SessionStateError):
    error_code = "SESSION_ALREADY_ACTIVE"

    def __init__(self, session_id: str) -> None:
        super().__init__(f"Mustering session '{session_id}' is already active")
        self.session_id = session_id


class TerminalStateError(SessionStateError):
    error_code = "SESSION_TERMINAL"

    def __init__(self, session_id: str, status: str) -> None:
        super().__init__(
            f"Mustering session '{session_id}' is {status}; no further changes allowed"
        )
        self.session_id = session_id
        self.status = status


class NoActiveSessionError(SessionStateError):
    error_code = "NO_ACTIVE_SESSION"

    def __init__(self) -> None:
        super().__init__("No mustering session has been activated")
