from __future__ import annotations

import json
import logging
import os
import threading
import time
import uuid
from collections.abc import Iterable, Mapping
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import duckdb

from authorizer.errors import ConfigStoreError, ConfigurationError
from authorizer.models import AuthorizationRecord

logger = logging.getLogger(__name__)


class ConfigStore:
    """Durable key-value authorization record, one per storage name."""

    DB_PATH_ENV = "AUTHORIZER_DB_PATH"

    def __init__(self, name: str, db_path: str | os.PathLike[str] | None = None) -> None:
        if not isinstance(name, str) or not name.strip():
            raise ConfigurationError("config store requires a non-empty name")

        self._name = name
        self._db_path = str(self._resolve_db_path(db_path))
        self._lock = threading.RLock()
        self._conn = duckdb.connect(self._db_path)

        self._initialize()

    @property
    def name(self) -> str:
        return self._name

    @property
    def path(self) -> str:
        return self._db_path

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def __enter__(self) -> ConfigStore:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def get_all(self) -> AuthorizationRecord:
        with self._lock:
            try:
                rows = self._conn.execute(
                    """
                    SELECT entry_key, entry_value
                    FROM config_entries
                    WHERE store_name = ?
                    ORDER BY seq
                    """,
                    [self._name],
                ).fetchall()
            except duckdb.Error as exc:
                self._fail(operation="get", actor="system", keys=[], exc=exc)
                raise ConfigStoreError(f"failed to read config '{self._name}': {exc}") from exc

        return {key: json.loads(value) for key, value in rows}

    def set(self, partial: Mapping[str, Any], actor: str = "system") -> None:
        """Merge ``partial`` into the stored record in a single transaction."""
        if not isinstance(partial, Mapping):
            raise ConfigStoreError("config values must be supplied as a mapping")

        encoded = [(self._validate_key(key), self._encode(key, value)) for key, value in partial.items()]
        keys = [key for key, _ in encoded]
        now = int(time.time())

        with self._lock:
            try:
                self._conn.begin()
                for key, value in encoded:
                    self._conn.execute(
                        """
                        INSERT INTO config_entries (
                            store_name,
                            entry_key,
                            entry_value,
                            created_at,
                            updated_at
                        ) VALUES (?, ?, ?, ?, ?)
                        ON CONFLICT (store_name, entry_key) DO UPDATE SET
                            entry_value = excluded.entry_value,
                            updated_at = excluded.updated_at
                        """,
                        [self._name, key, value, now, now],
                    )
                self._conn.commit()
            except duckdb.Error as exc:
                self._fail(operation="set", actor=actor, keys=keys, exc=exc, rollback=True)
                raise ConfigStoreError(f"failed to write config '{self._name}': {exc}") from exc

            self._audit(operation="set", actor=actor, status="ok", keys=keys)
        logger.debug("stored keys %s in config '%s'", keys, self._name)

    def delete(self, key: str, actor: str = "system") -> bool:
        return self.delete_many([key], actor=actor) == 1

    def delete_many(self, keys: Iterable[str], actor: str = "system") -> int:
        """Remove every named key in one transaction and return how many existed."""
        doomed = [self._validate_key(key) for key in keys]
        deleted = 0

        with self._lock:
            try:
                self._conn.begin()
                for key in doomed:
                    row = self._conn.execute(
                        """
                        DELETE FROM config_entries
                        WHERE store_name = ? AND entry_key = ?
                        RETURNING 1
                        """,
                        [self._name, key],
                    ).fetchone()
                    if row is not None:
                        deleted += 1
                self._conn.commit()
            except duckdb.Error as exc:
                self._fail(operation="delete", actor=actor, keys=doomed, exc=exc, rollback=True)
                raise ConfigStoreError(f"failed to delete from config '{self._name}': {exc}") from exc

            self._audit(
                operation="delete",
                actor=actor,
                status="ok" if deleted else "miss",
                keys=doomed,
            )
        logger.debug("deleted %d of %s from config '%s'", deleted, doomed, self._name)
        return deleted

    def clear(self, actor: str = "system") -> int:
        return self.delete_many(list(self.get_all()), actor=actor)

    def audit_events(self, limit: int = 50) -> list[dict[str, Any]]:
        with self._lock:
            try:
                rows = self._conn.execute(
                    """
                    SELECT operation, actor, status, entry_keys, error, created_at
                    FROM audit_log
                    WHERE store_name = ?
                    ORDER BY created_at DESC, seq DESC
                    LIMIT ?
                    """,
                    [self._name, limit],
                ).fetchall()
            except duckdb.Error as exc:
                raise ConfigStoreError(f"failed to read audit log for '{self._name}': {exc}") from exc

        return [
            {
                "operation": row[0],
                "actor": row[1],
                "status": row[2],
                "keys": json.loads(row[3]),
                "error": row[4],
                "created_at": datetime.fromtimestamp(row[5], tz=UTC),
            }
            for row in rows
        ]

    def _initialize(self) -> None:
        with self._lock:
            self._conn.execute("CREATE SEQUENCE IF NOT EXISTS config_entry_seq")
            self._conn.execute("CREATE SEQUENCE IF NOT EXISTS audit_log_seq")
            self._conn.execute(
                """
                CREATE TABLE IF NOT EXISTS config_entries (
                    store_name TEXT NOT NULL,
                    entry_key TEXT NOT NULL,
                    entry_value TEXT NOT NULL,
                    seq BIGINT NOT NULL DEFAULT nextval('config_entry_seq'),
                    created_at BIGINT NOT NULL,
                    updated_at BIGINT NOT NULL,
                    UNIQUE(store_name, entry_key)
                )
                """
            )
            self._conn.execute(
                """
                CREATE TABLE IF NOT EXISTS audit_log (
                    event_id TEXT PRIMARY KEY,
                    seq BIGINT NOT NULL DEFAULT nextval('audit_log_seq'),
                    operation TEXT NOT NULL,
                    store_name TEXT NOT NULL,
                    actor TEXT NOT NULL,
                    status TEXT NOT NULL,
                    entry_keys TEXT NOT NULL,
                    error TEXT,
                    created_at BIGINT NOT NULL
                )
                """
            )

    def _fail(
        self,
        *,
        operation: str,
        actor: str,
        keys: list[str],
        exc: duckdb.Error,
        rollback: bool = False,
    ) -> None:
        # The connection itself may be what failed, so the audit row is best effort.
        if rollback:
            try:
                self._conn.rollback()
            except duckdb.Error as rollback_exc:
                logger.warning("rollback of %s on config '%s' failed: %s", operation, self._name, rollback_exc)
        try:
            self._audit(operation=operation, actor=actor, status="error", keys=keys, error=str(exc))
        except duckdb.Error as audit_exc:
            logger.warning("could not audit failed %s on config '%s': %s", operation, self._name, audit_exc)

    def _audit(
        self,
        *,
        operation: str,
        actor: str,
        status: str,
        keys: list[str],
        error: str | None = None,
    ) -> None:
        with self._lock:
            self._conn.execute(
                """
                INSERT INTO audit_log (
                    event_id,
                    operation,
                    store_name,
                    actor,
                    status,
                    entry_keys,
                    error,
                    created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    str(uuid.uuid4()),
                    operation,
                    self._name,
                    actor,
                    status,
                    json.dumps(keys),
                    error,
                    int(time.time()),
                ],
            )

    @classmethod
    def _resolve_db_path(cls, db_path: str | os.PathLike[str] | None) -> Path:
        if db_path is not None:
            return Path(db_path)

        env_path = os.getenv(cls.DB_PATH_ENV)
        if env_path:
            return Path(env_path)

        default = Path.home() / ".config" / "authorizer" / "config.duckdb"
        default.parent.mkdir(parents=True, exist_ok=True)
        return default

    @staticmethod
    def _validate_key(key: Any) -> str:
        if not isinstance(key, str) or not key:
            raise ConfigStoreError(f"config keys must be non-empty strings, got {key!r}")
        return key

    @staticmethod
    def _encode(key: str, value: Any) -> str:
        try:
            return json.dumps(value, separators=(",", ":"))
        except (TypeError, ValueError) as exc:
            raise ConfigStoreError(f"value for '{key}' is not JSON serializable") from exc
