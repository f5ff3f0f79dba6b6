# type: ignore
# pyright: reportMissingImports=false, reportGeneralTypeErrors=false
"""
Repository: Durable persistence gateway on SQLAlchemy.
One row per snapshot key, JSON payload, monotonically increasing version.
"""

import json
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Iterator

from sqlalchemy import text
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError

from mustering.core.errors import StorageUnavailable
from mustering.core.logging import get_logger
from mustering.repositories.gateway import PersistenceGateway

logger = get_logger(__name__)

CREATE_TABLE = """
    CREATE TABLE IF NOT EXISTS muster_store (
        key        VARCHAR(64) PRIMARY KEY,
        value      TEXT        NOT NULL,
        version    INTEGER     NOT NULL,
        updated_at VARCHAR(40) NOT NULL
    )
"""


class SqlGateway(PersistenceGateway):
    """Gateway storing each snapshot as a JSON row in ``muster_store``."""

    def __init__(self, engine: Engine) -> None:
        super().__init__()
        self._engine = engine
        self._schema_ready = False
        self._seen_versions: dict[str, int] = {}

    @contextmanager
    def _transaction(self) -> Iterator[Connection]:
        """Transaction that creates the table on first use."""
        with self._engine.begin() as conn:
            if not self._schema_ready:
                conn.execute(text(CREATE_TABLE))
            yield conn
        # Reached only after commit; a rolled-back DDL must run again.
        self._schema_ready = True

    # ── Backend ──

    def _read(self, key: str) -> Any:
        try:
            with self._transaction() as conn:
                row = conn.execute(
                    text("SELECT value, version FROM muster_store WHERE key = :key"),
                    {"key": key},
                ).fetchone()
        except SQLAlchemyError as exc:
            raise StorageUnavailable(f"load {key}", exc) from exc
        if row is None:
            return None
        self._seen_versions[key] = row[1]
        return json.loads(row[0])

    def _write(self, key: str, payload: Any) -> None:
        params = {
            "key": key,
            "value": json.dumps(payload),
            "ts": datetime.now(timezone.utc).isoformat(),
        }
        try:
            with self._transaction() as conn:
                updated = conn.execute(
                    text("""
                        UPDATE muster_store
                        SET value = :value, version = version + 1, updated_at = :ts
                        WHERE key = :key
                    """),
                    params,
                ).rowcount
                if not updated:
                    conn.execute(
                        text("""
                            INSERT INTO muster_store (key, value, version, updated_at)
                            VALUES (:key, :value, 1, :ts)
                        """),
                        params,
                    )
                version = conn.execute(
                    text("SELECT version FROM muster_store WHERE key = :key"),
                    {"key": key},
                ).scalar()
        except SQLAlchemyError as exc:
            raise StorageUnavailable(f"save {key}", exc) from exc
        self._seen_versions[key] = version
        self._publish(key, payload)

    def poll(self) -> int:
        """Publish rows whose version moved since this gateway last saw them."""
        try:
            with self._transaction() as conn:
                rows = conn.execute(
                    text("SELECT key, value, version FROM muster_store")
                ).fetchall()
        except SQLAlchemyError as exc:
            raise StorageUnavailable("poll", exc) from exc
        changed = 0
        for key, value, version in rows:
            if version > self._seen_versions.get(key, 0):
                self._seen_versions[key] = version
                changed += 1
                logger.info("External change detected: key=%s, version=%d", key, version)
                self._publish(key, json.loads(value))
        return changed

    def close(self) -> None:
        self._engine.dispose()
