# type: ignore
# pyright: reportMissingImports=false, reportGeneralTypeErrors=false
"""
Repository: In-memory persistence gateway.
Used when no DATABASE_URL is configured, and by the tests.
"""

import copy
from typing import Any

from mustering.repositories.gateway import PersistenceGateway


class InMemoryGateway(PersistenceGateway):
    """Dict-backed gateway. Payloads are deep-copied in and out."""

    def __init__(self) -> None:
        super().__init__()
        self._store: dict[str, Any] = {}

    def _read(self, key: str) -> Any:
        return copy.deepcopy(self._store.get(key))

    def _write(self, key: str, payload: Any) -> None:
        self._store[key] = copy.deepcopy(payload)
        self._publish(key, copy.deepcopy(payload))

    def inject(self, key: str, payload: Any) -> None:
        """Simulate a write made by another client (e.g. a second browser tab)."""
        self._write(key, payload)

    # ── Bulk / internal ──

    def clear(self) -> None:
        self._store.clear()

    @property
    def store(self) -> dict[str, Any]:
        """Direct access for tests."""
        return self._store
