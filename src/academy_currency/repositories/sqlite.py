"""SQLite implementations of repository interfaces."""

from __future__ import annotations

import contextlib
import json
import sqlite3
import threading
from collections.abc import Iterable, Iterator, Mapping, Sequence
from datetime import UTC, datetime
from decimal import Decimal
from pathlib import Path
from uuid import UUID, uuid4

from academy_currency.domain.conversions import (
    ConversionLog,
    ConversionStatistics,
    ConversionStatus,
    CurrencyHistory,
    EntityType,
    RateSource,
    split_field_path,
)
from academy_currency.exceptions import DatabaseError
from academy_currency.repositories.interfaces import (
    ConversionLogRepository,
    CurrencyHistoryRepository,
    Document,
    DocumentDatabase,
    DocumentRepository,
)


def _iso(value: datetime) -> str:
    # One fixed format so stored timestamps compare correctly as text
    return value.astimezone(UTC).isoformat(timespec="microseconds")


# Tenant ids compare as text, like Postgres' ->> operator
_TENANT_MATCH = (
    "(CAST(json_extract(data, '$.tenantId') AS TEXT) = ?"
    " OR CAST(json_extract(data, '$.academyId') AS TEXT) = ?)"
)


def _json_path(field_path: str) -> str:
    return "$." + ".".join(split_field_path(field_path))


class SQLiteDatabase(DocumentDatabase):
    """SQLite document store connection manager.

    The connection runs in autocommit mode; ``transaction()`` opens an
    explicit ``BEGIN IMMEDIATE`` so the write lock is held for the whole unit.

    One connection is shared by every thread. Each statement and each
    transaction holds ``_lock``, so a transaction only ever contains the
    statements of the thread that opened it; other threads wait for it to
    commit or roll back.
    """

    def __init__(
        self, path: str | Path = ":memory:", check_same_thread: bool = True
    ) -> None:
        self._path = str(path)
        self._check_same_thread = check_same_thread
        self._connection: sqlite3.Connection | None = None
        self._lock = threading.RLock()

    def get_connection(self) -> sqlite3.Connection:
        """Get or create the database connection."""
        with self._lock:
            if self._connection is None:
                self._connection = sqlite3.connect(
                    self._path,
                    check_same_thread=self._check_same_thread,
                    isolation_level=None,
                )
                self._connection.row_factory = sqlite3.Row
            return self._connection

    @contextlib.contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        """Hold the shared connection for the enclosed statements."""
        with self._lock:
            yield self.get_connection()

    def initialize(self) -> None:
        """Create all database tables."""
        with self.connection() as conn:
            conn.executescript(
                """
                -- Schema-flexible business documents, one row per document
                CREATE TABLE IF NOT EXISTS documents (
                    collection TEXT NOT NULL,
                    id TEXT NOT NULL,
                    data TEXT NOT NULL,
                    PRIMARY KEY (collection, id)
                );
                CREATE INDEX IF NOT EXISTS idx_documents_tenant
                    ON documents(collection, CAST(json_extract(data, '$.tenantId') AS TEXT));
                CREATE INDEX IF NOT EXISTS idx_documents_academy
                    ON documents(collection, CAST(json_extract(data, '$.academyId') AS TEXT));

                -- One row per conversion attempt
                CREATE TABLE IF NOT EXISTS currency_conversion_logs (
                    id TEXT PRIMARY KEY,
                    tenant_id TEXT NOT NULL,
                    from_currency TEXT NOT NULL,
                    to_currency TEXT NOT NULL,
                    exchange_rate TEXT NOT NULL,
                    converted_by TEXT NOT NULL,
                    converted_by_id TEXT NOT NULL,
                    role TEXT NOT NULL,
                    ip_address TEXT,
                    user_agent TEXT,
                    status TEXT NOT NULL,
                    statistics TEXT NOT NULL,
                    rate_source TEXT,
                    error_message TEXT,
                    reverses_conversion_id TEXT,
                    timestamp TEXT NOT NULL
                );
                CREATE INDEX IF NOT EXISTS idx_conversion_logs_cooldown
                    ON currency_conversion_logs(tenant_id, status, timestamp);
                CREATE INDEX IF NOT EXISTS idx_conversion_logs_reverses
                    ON currency_conversion_logs(reverses_conversion_id);

                -- Append-only per-document snapshots
                CREATE TABLE IF NOT EXISTS currency_history (
                    id TEXT PRIMARY KEY,
                    tenant_id TEXT NOT NULL,
                    conversion_id TEXT NOT NULL,
                    entity_type TEXT NOT NULL,
                    entity_id TEXT NOT NULL,
                    original_values TEXT NOT NULL,
                    converted_values TEXT NOT NULL,
                    from_currency TEXT NOT NULL,
                    to_currency TEXT NOT NULL,
                    exchange_rate TEXT NOT NULL,
                    created_at TEXT NOT NULL
                );
                CREATE INDEX IF NOT EXISTS idx_currency_history_conversion
                    ON currency_history(conversion_id);
                CREATE INDEX IF NOT EXISTS idx_currency_history_entity
                    ON currency_history(entity_type, entity_id);
                """
            )

    @contextlib.contextmanager
    def transaction(self) -> Iterator[None]:
        with self.connection() as conn:
            if conn.in_transaction:
                # Only the lock holder can have a transaction open, so join it
                yield
                return
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield
                conn.commit()
            except BaseException:
                conn.rollback()
                raise

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            if self._connection is not None:
                self._connection.close()
                self._connection = None


class SQLiteDocumentRepository(DocumentRepository):
    """Documents of one collection stored as JSON text."""

    def __init__(self, database: SQLiteDatabase, collection: str) -> None:
        self._db = database
        self.collection = collection

    def add(self, document: Document) -> str:
        data = dict(document)
        document_id = str(data.pop("_id", None) or uuid4())
        with self._db.connection() as conn:
            conn.execute(
                "INSERT INTO documents (collection, id, data) VALUES (?, ?, ?)",
                (self.collection, document_id, json.dumps(data)),
            )
        return document_id

    def get(self, document_id: str) -> Document | None:
        with self._db.connection() as conn:
            row = conn.execute(
                "SELECT id, data FROM documents WHERE collection = ? AND id = ?",
                (self.collection, document_id),
            ).fetchone()
            if row is None:
                return None
            return self._row_to_document(row)

    def list_by_tenant(self, tenant_id: str) -> Iterable[Document]:
        with self._db.connection() as conn:
            rows = conn.execute(
                f"""
                SELECT id, data FROM documents
                WHERE collection = ? AND {_TENANT_MATCH}
                ORDER BY id
                """,
                (self.collection, tenant_id, tenant_id),
            ).fetchall()
            return [self._row_to_document(row) for row in rows]

    def find_eligible(
        self, tenant_id: str, fields: Sequence[str]
    ) -> Iterator[Document]:
        if not fields:
            return
        clauses = []
        params: list[str] = [self.collection, tenant_id, tenant_id]
        for field_path in fields:
            path = _json_path(field_path)
            clauses.append(
                "(json_type(data, ?) IN ('integer', 'real') AND json_extract(data, ?) > 0)"
            )
            params.extend([path, path])

        with self._db.connection() as conn:
            rows = conn.execute(
                f"""
                SELECT id, data FROM documents
                WHERE collection = ? AND {_TENANT_MATCH}
                  AND ({" OR ".join(clauses)})
                """,
                params,
            ).fetchall()
        # Rows are fetched up front so the connection is free between yields
        for row in rows:
            yield self._row_to_document(row)

    def update_fields(
        self, document_id: str, updates: Mapping[str, int | float]
    ) -> None:
        if not updates:
            return
        assignments: list[str | int | float] = []
        for field_path, value in updates.items():
            assignments.extend([_json_path(field_path), value])
        placeholders = ", ".join("?" for _ in assignments)

        with self._db.connection() as conn:
            cursor = conn.execute(
                f"""
                UPDATE documents SET data = json_set(data, {placeholders})
                WHERE collection = ? AND id = ?
                """,
                [*assignments, self.collection, document_id],
            )
            if cursor.rowcount == 0:
                raise DatabaseError(
                    f"Document not found: {self.collection}/{document_id}",
                    context={"collection": self.collection, "document_id": document_id},
                )

    def _row_to_document(self, row: sqlite3.Row) -> Document:
        document = json.loads(row["data"])
        document["_id"] = row["id"]
        return document


class SQLiteConversionLogRepository(ConversionLogRepository):
    def __init__(self, database: SQLiteDatabase) -> None:
        self._db = database

    def add(self, log: ConversionLog) -> None:
        with self._db.connection() as conn:
            conn.execute(
                """
                INSERT INTO currency_conversion_logs (
                    id, tenant_id, from_currency, to_currency, exchange_rate,
                    converted_by, converted_by_id, role, ip_address, user_agent,
                    status, statistics, rate_source, error_message,
                    reverses_conversion_id, timestamp
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    str(log.id),
                    log.tenant_id,
                    log.from_currency,
                    log.to_currency,
                    str(log.exchange_rate),
                    log.converted_by,
                    log.converted_by_id,
                    log.role,
                    log.ip_address,
                    log.user_agent,
                    log.status.value,
                    json.dumps(log.statistics.to_dict()),
                    log.rate_source.value if log.rate_source else None,
                    log.error_message,
                    str(log.reverses_conversion_id) if log.reverses_conversion_id else None,
                    _iso(log.timestamp),
                ),
            )

    def update(self, log: ConversionLog) -> None:
        with self._db.connection() as conn:
            conn.execute(
                """
                UPDATE currency_conversion_logs SET
                    status = ?,
                    statistics = ?,
                    error_message = ?
                WHERE id = ?
                """,
                (
                    log.status.value,
                    json.dumps(log.statistics.to_dict()),
                    log.error_message,
                    str(log.id),
                ),
            )

    def get(self, log_id: UUID) -> ConversionLog | None:
        with self._db.connection() as conn:
            row = conn.execute(
                "SELECT * FROM currency_conversion_logs WHERE id = ?", (str(log_id),)
            ).fetchone()
            if row is None:
                return None
            return self._row_to_log(row)

    def get_latest_success_since(
        self, tenant_id: str, since: datetime
    ) -> ConversionLog | None:
        with self._db.connection() as conn:
            row = conn.execute(
                """
                SELECT * FROM currency_conversion_logs
                WHERE tenant_id = ? AND status = ? AND timestamp >= ?
                ORDER BY timestamp DESC
                LIMIT 1
                """,
                (tenant_id, ConversionStatus.SUCCESS.value, _iso(since)),
            ).fetchone()
            if row is None:
                return None
            return self._row_to_log(row)

    def get_successful_reversal(self, conversion_id: UUID) -> ConversionLog | None:
        with self._db.connection() as conn:
            row = conn.execute(
                """
                SELECT * FROM currency_conversion_logs
                WHERE reverses_conversion_id = ? AND status = ?
                LIMIT 1
                """,
                (str(conversion_id), ConversionStatus.SUCCESS.value),
            ).fetchone()
            if row is None:
                return None
            return self._row_to_log(row)

    def list_by_tenant(self, tenant_id: str, limit: int = 50) -> list[ConversionLog]:
        with self._db.connection() as conn:
            rows = conn.execute(
                """
                SELECT * FROM currency_conversion_logs
                WHERE tenant_id = ?
                ORDER BY timestamp DESC
                LIMIT ?
                """,
                (tenant_id, limit),
            ).fetchall()
            return [self._row_to_log(row) for row in rows]

    def _row_to_log(self, row: sqlite3.Row) -> ConversionLog:
        return ConversionLog(
            id=UUID(row["id"]),
            tenant_id=row["tenant_id"],
            from_currency=row["from_currency"],
            to_currency=row["to_currency"],
            exchange_rate=Decimal(row["exchange_rate"]),
            converted_by=row["converted_by"],
            converted_by_id=row["converted_by_id"],
            role=row["role"],
            ip_address=row["ip_address"],
            user_agent=row["user_agent"],
            status=ConversionStatus(row["status"]),
            statistics=ConversionStatistics.from_dict(json.loads(row["statistics"])),
            rate_source=RateSource(row["rate_source"]) if row["rate_source"] else None,
            error_message=row["error_message"],
            reverses_conversion_id=(
                UUID(row["reverses_conversion_id"])
                if row["reverses_conversion_id"]
                else None
            ),
            timestamp=datetime.fromisoformat(row["timestamp"]),
        )


class SQLiteCurrencyHistoryRepository(CurrencyHistoryRepository):
    def __init__(self, database: SQLiteDatabase) -> None:
        self._db = database

    def add(self, history: CurrencyHistory) -> None:
        with self._db.connection() as conn:
            conn.execute(
                """
                INSERT INTO currency_history (
                    id, tenant_id, conversion_id, entity_type, entity_id,
                    original_values, converted_values, from_currency, to_currency,
                    exchange_rate, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    str(history.id),
                    history.tenant_id,
                    str(history.conversion_id),
                    history.entity_type.value,
                    history.entity_id,
                    json.dumps(history.original_values),
                    json.dumps(history.converted_values),
                    history.from_currency,
                    history.to_currency,
                    str(history.exchange_rate),
                    _iso(history.created_at),
                ),
            )

    def list_by_conversion(
        self, tenant_id: str, conversion_id: UUID
    ) -> list[CurrencyHistory]:
        with self._db.connection() as conn:
            rows = conn.execute(
                """
                SELECT * FROM currency_history
                WHERE tenant_id = ? AND conversion_id = ?
                ORDER BY created_at, id
                """,
                (tenant_id, str(conversion_id)),
            ).fetchall()
            return [self._row_to_history(row) for row in rows]

    def list_by_entity(
        self, tenant_id: str, entity_type: EntityType, entity_id: str
    ) -> list[CurrencyHistory]:
        with self._db.connection() as conn:
            rows = conn.execute(
                """
                SELECT * FROM currency_history
                WHERE tenant_id = ? AND entity_type = ? AND entity_id = ?
                ORDER BY created_at, id
                """,
                (tenant_id, entity_type.value, entity_id),
            ).fetchall()
            return [self._row_to_history(row) for row in rows]

    def _row_to_history(self, row: sqlite3.Row) -> CurrencyHistory:
        return CurrencyHistory(
            id=UUID(row["id"]),
            tenant_id=row["tenant_id"],
            conversion_id=UUID(row["conversion_id"]),
            entity_type=EntityType(row["entity_type"]),
            entity_id=row["entity_id"],
            original_values=json.loads(row["original_values"]),
            converted_values=json.loads(row["converted_values"]),
            from_currency=row["from_currency"],
            to_currency=row["to_currency"],
            exchange_rate=Decimal(row["exchange_rate"]),
            created_at=datetime.fromisoformat(row["created_at"]),
        )
