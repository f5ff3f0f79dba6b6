# type: ignore
# pyright: reportMissingImports=false, reportGeneralTypeErrors=false
"""Repository package: persistence gateways and the session history log."""
from mustering.repositories.gateway import PersistenceGateway
from mustering.repositories.history_repository import SessionHistoryRepository
from mustering.repositories.memory_gateway import InMemoryGateway
from mustering.repositories.sql_gateway import SqlGateway

__all__ = [
    "PersistenceGateway",
    "SessionHistoryRepository",
    "InMemoryGateway",
    "SqlGateway",
]
