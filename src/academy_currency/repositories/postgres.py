"""PostgreSQL implementations of repository interfaces."""

from __future__ import annotations

import contextlib
import json
import threading
from collections.abc import Iterable, Iterator, Mapping, Sequence
from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

import psycopg2
import psycopg2.extras

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


class PostgresDatabase(DocumentDatabase):
    """PostgreSQL document store connection manager.

    Each thread gets its own connection, so a transaction belongs to the
    thread that opened it. Connections run in autocommit mode outside
    ``transaction()``.
    """

    def __init__(self, connection_string: str) -> None:
        self._connection_string = connection_string
        self._local = threading.local()
        self._connections: list[psycopg2.extensions.connection] = []
        self._lock = threading.Lock()

    def get_connection(self) -> psycopg2.extensions.connection:
        """Get or create the calling thread's connection."""
        conn = getattr(self._local, "connection", None)
        if conn is None or conn.closed:
            conn = psycopg2.connect(
                self._connection_string,
                cursor_factory=psycopg2.extras.RealDictCursor,
            )
            conn.autocommit = True
            self._local.connection = conn
            with self._lock:
                self._connections.append(conn)
        return conn

    def initialize(self) -> None:
        """Create all database tables."""
        conn = self.get_connection()
        with conn.cursor() as cur:
            cur.execute(
                """
                -- Schema-flexible business documents, one row per document
                CREATE TABLE IF NOT EXISTS documents (
                    collection TEXT NOT NULL,
                    id TEXT NOT NULL,
                    data JSONB NOT NULL,
                    PRIMARY KEY (collection, id)
                );
                CREATE INDEX IF NOT EXISTS idx_documents_tenant
                    ON documents(collection, (data->>'tenantId'));
                CREATE INDEX IF NOT EXISTS idx_documents_academy
                    ON documents(collection, (data->>'academyId'));

                -- One row per conversion attempt
                CREATE TABLE IF NOT EXISTS currency_conversion_logs (
                    id TEXT PRIMARY KEY,
                    tenant_id TEXT NOT NULL,
                    from_currency TEXT NOT NULL,
                    to_currency TEXT NOT NULL,
                    exchange_rate NUMERIC NOT NULL,
                    converted_by TEXT NOT NULL,
                    converted_by_id TEXT NOT NULL,
                    role TEXT NOT NULL,
                    ip_address TEXT,
                    user_agent TEXT,
                    status TEXT NOT NULL,
                    statistics JSONB NOT NULL,
                    rate_source TEXT,
                    error_message TEXT,
                    reverses_conversion_id TEXT,
                    timestamp TIMESTAMPTZ NOT NULL
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
                    original_values JSONB NOT NULL,
                    converted_values JSONB NOT NULL,
                    from_currency TEXT NOT NULL,
                    to_currency TEXT NOT NULL,
                    exchange_rate NUMERIC NOT NULL,
                    created_at TIMESTAMPTZ NOT NULL
                );
                CREATE INDEX IF NOT EXISTS idx_currency_history_conversion
                    ON currency_history(conversion_id);
                CREATE INDEX IF NOT EXISTS idx_currency_history_entity
                    ON currency_history(entity_type, entity_id);
                """
            )

    @contextlib.contextmanager
    def transaction(self) -> Iterator[None]:
        conn = self.get_connection()
        if not conn.autocommit:
            # Join this thread's open transaction
            yield
            return
        conn.autocommit = False
        try:
            yield
            conn.commit()
        except BaseException:
            conn.rollback()
            raise
        finally:
            conn.autocommit = True

    def close(self) -> None:
        """Close every connection opened by this database."""
        with self._lock:
            connections, self._connections = self._connections, []
        for conn in connections:
            if not conn.closed:
                conn.close()
        self._local = threading.local()


class PostgresDocumentRepository(DocumentRepository):
    """Documents of one collection stored as JSONB."""

    def __init__(self, database: PostgresDatabase, collection: str) -> None:
        self._db = database
        self.collection = collection

    def add(self, document: Document) -> str:
        data = dict(document)
        document_id = str(data.pop("_id", None) or uuid4())
        conn = self._db.get_connection()
        with conn.cursor() as cur:
            cur.execute(
                "INSERT INTO documents (collection, id, data) VALUES (%s, %s, %s)",
                (self.collection, document_id, psycopg2.extras.Json(data)),
            )
        return document_id

    def get(self, document_id: str) -> Document | None:
        conn = self._db.get_connection()
        with conn.cursor() as cur:
            cur.execute(
                "SELECT id, data FROM documents WHERE collection = %s AND id = %s",
                (self.collection, document_id),
            )
            row = cur.fetchone()
        if row is None:
            return None
        return self._row_to_document(row)

    def list_by_tenant(self, tenant_id: str) -> Iterable[Document]:
        conn = self._db.get_connection()
        with conn.cursor() as cur:
            cur.execute(
                """
                SELECT id, data FROM documents
                WHERE collection = %s
                  AND (data->>'tenantId' = %s OR data->>'academyId' = %s)
                ORDER BY id
                """,
                (self.collection, tenant_id, tenant_id),
            )
            rows = cur.fetchall()
        return [self._row_to_document(row) for row in rows]

    def find_eligible(
        self, tenant_id: str, fields: Sequence[str]
    ) -> Iterator[Document]:
        if not fields:
            return
        clauses = []
        params: list[Any] = [self.collection, tenant_id, tenant_id]
        for field_path in fields:
            path = list(split_field_path(field_path))
            # CASE keeps the numeric cast away from non-number values
            clauses.append(
                "CASE WHEN jsonb_typeof(data #> %s::text[]) = 'number' "
                "THEN (data #>> %s::text[])::numeric > 0 ELSE false END"
            )
            params.extend([path, path])

        conn = self._db.get_connection()
        with conn.cursor() as cur:
            # Row locks keep concurrent writers from losing updates
            cur.execute(
                f"""
                SELECT id, data FROM documents
                WHERE collection = %s
                  AND (data->>'tenantId' = %s OR data->>'academyId' = %s)
                  AND ({" OR ".join(clauses)})
                FOR UPDATE
                """,
                params,
            )
            for row in cur:
                yield self._row_to_document(row)

    def update_fields(
        self, document_id: str, updates: Mapping[str, int | float]
    ) -> None:
        if not updates:
            return
        expression = "data"
        params: list[Any] = []
        for field_path, value in updates.items():
            expression = f"jsonb_set({expression}, %s::text[], to_jsonb(%s::numeric))"
            params.extend([list(split_field_path(field_path)), value])

        conn = self._db.get_connection()
        with conn.cursor() as cur:
            cur.execute(
                f"UPDATE documents SET data = {expression} "
                "WHERE collection = %s AND id = %s",
                [*params, self.collection, document_id],
            )
            updated = cur.rowcount
        if updated == 0:
            raise DatabaseError(
                f"Document not found: {self.collection}/{document_id}",
                context={"collection": self.collection, "document_id": document_id},
            )

    def _row_to_document(self, row: dict[str, Any]) -> Document:
        document = dict(row["data"])
        document["_id"] = row["id"]
        return document


class PostgresConversionLogRepository(ConversionLogRepository):
    def __init__(self, database: PostgresDatabase) -> None:
        self._db = database

    def add(self, log: ConversionLog) -> None:
        conn = self._db.get_connection()
        with conn.cursor() as cur:
            cur.execute(
                """
                INSERT INTO currency_conversion_logs (
                    id, tenant_id, from_currency, to_currency, exchange_rate,
                    converted_by, converted_by_id, role, ip_address, user_agent,
                    status, statistics, rate_source, error_message,
                    reverses_conversion_id, timestamp
                ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                """,
                (
                    str(log.id),
                    log.tenant_id,
                    log.from_currency,
                    log.to_currency,
                    log.exchange_rate,
                    log.converted_by,
                    log.converted_by_id,
                    log.role,
                    log.ip_address,
                    log.user_agent,
                    log.status.value,
                    psycopg2.extras.Json(log.statistics.to_dict()),
                    log.rate_source.value if log.rate_source else None,
                    log.error_message,
                    (
                        str(log.reverses_conversion_id)
                        if log.reverses_conversion_id
                        else None
                    ),
                    log.timestamp,
                ),
            )

    def update(self, log: ConversionLog) -> None:
        conn = self._db.get_connection()
        with conn.cursor() as cur:
            cur.execute(
                """
                UPDATE currency_conversion_logs SET
                    status = %s,
                    statistics = %s,
                    error_message = %s
                WHERE id = %s
                """,
                (
                    log.status.value,
                    psycopg2.extras.Json(log.statistics.to_dict()),
                    log.error_message,
                    str(log.id),
                ),
            )

    def get(self, log_id: UUID) -> ConversionLog | None:
        conn = self._db.get_connection()
        with conn.cursor() as cur:
            cur.execute(
                "SELECT * FROM currency_conversion_logs WHERE id = %s", (str(log_id),)
            )
            row = cur.fetchone()
        if row is None:
            return None
        return self._row_to_log(row)

    def get_latest_success_since(
        self, tenant_id: str, since: datetime
    ) -> ConversionLog | None:
        conn = self._db.get_connection()
        with conn.cursor() as cur:
            cur.execute(
                """
                SELECT * FROM currency_conversion_logs
                WHERE tenant_id = %s AND status = %s AND timestamp >= %s
                ORDER BY timestamp DESC
                LIMIT 1
                """,
                (tenant_id, ConversionStatus.SUCCESS.value, since),
            )
            row = cur.fetchone()
        if row is None:
            return None
        return self._row_to_log(row)

    def get_successful_reversal(self, conversion_id: UUID) -> ConversionLog | None:
        conn = self._db.get_connection()
        with conn.cursor() as cur:
            cur.execute(
                """
                SELECT * FROM currency_conversion_logs
                WHERE reverses_conversion_id = %s AND status = %s
                LIMIT 1
                """,
                (str(conversion_id), ConversionStatus.SUCCESS.value),
            )
            row = cur.fetchone()
        if row is None:
            return None
        return self._row_to_log(row)

    def list_by_tenant(self, tenant_id: str, limit: int = 50) -> list[ConversionLog]:
        conn = self._db.get_connection()
        with conn.cursor() as cur:
            cur.execute(
                """
                SELECT * FROM currency_conversion_logs
                WHERE tenant_id = %s
                ORDER BY timestamp DESC
                LIMIT %s
                """,
                (tenant_id, limit),
            )
            rows = cur.fetchall()
        return [self._row_to_log(row) for row in rows]

    def _row_to_log(self, row: dict[str, Any]) -> ConversionLog:
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
            statistics=ConversionStatistics.from_dict(row["statistics"]),
            rate_source=RateSource(row["rate_source"]) if row["rate_source"] else None,
            error_message=row["error_message"],
            reverses_conversion_id=(
                UUID(row["reverses_conversion_id"])
                if row["reverses_conversion_id"]
                else None
            ),
            timestamp=row["timestamp"],
        )


class PostgresCurrencyHistoryRepository(CurrencyHistoryRepository):
    def __init__(self, database: PostgresDatabase) -> None:
        self._db = database

    def add(self, history: CurrencyHistory) -> None:
        conn = self._db.get_connection()
        with conn.cursor() as cur:
            cur.execute(
                """
                INSERT INTO currency_history (
                    id, tenant_id, conversion_id, entity_type, entity_id,
                    original_values, converted_values, from_currency, to_currency,
                    exchange_rate, created_at
                ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
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
                    history.exchange_rate,
                    history.created_at,
                ),
            )

    def list_by_conversion(
        self, tenant_id: str, conversion_id: UUID
    ) -> list[CurrencyHistory]:
        conn = self._db.get_connection()
        with conn.cursor() as cur:
            cur.execute(
                """
                SELECT * FROM currency_history
                WHERE tenant_id = %s AND conversion_id = %s
                ORDER BY created_at, id
                """,
                (tenant_id, str(conversion_id)),
            )
            rows = cur.fetchall()
        return [self._row_to_history(row) for row in rows]

    def list_by_entity(
        self, tenant_id: str, entity_type: EntityType, entity_id: str
    ) -> list[CurrencyHistory]:
        conn = self._db.get_connection()
        with conn.cursor() as cur:
            cur.execute(
                """
                SELECT * FROM currency_history
                WHERE tenant_id = %s AND entity_type = %s AND entity_id = %s
                ORDER BY created_at, id
                """,
                (tenant_id, entity_type.value, entity_id),
            )
            rows = cur.fetchall()
        return [self._row_to_history(row) for row in rows]

    def _row_to_history(self, row: dict[str, Any]) -> CurrencyHistory:
        return CurrencyHistory(
            id=UUID(row["id"]),
            tenant_id=row["tenant_id"],
            conversion_id=UUID(row["conversion_id"]),
            entity_type=EntityType(row["entity_type"]),
            entity_id=row["entity_id"],
            original_values=dict(row["original_values"]),
            converted_values=dict(row["converted_values"]),
            from_currency=row["from_currency"],
            to_currency=row["to_currency"],
            exchange_rate=Decimal(row["exchange_rate"]),
            created_at=row["created_at"],
        )
