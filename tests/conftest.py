from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Any

import httpx
import pytest

from academy_currency.domain.conversions import (
    CONVERTIBLE_COLLECTIONS,
    ConversionContext,
    EntityType,
)
from academy_currency.repositories.sqlite import (
    SQLiteConversionLogRepository,
    SQLiteCurrencyHistoryRepository,
    SQLiteDatabase,
    SQLiteDocumentRepository,
)
from academy_currency.services.audit import InMemoryAuditLogger
from academy_currency.services.conversion import CurrencyConversionServiceImpl
from academy_currency.services.conversion_history import ConversionHistoryWriter
from academy_currency.services.conversion_log import ConversionLogService
from academy_currency.services.exchange_rates import (
    ExchangeRateResolver,
    create_default_resolver,
)
from academy_currency.services.reversal import ConversionReversalServiceImpl

PRIMARY_URL = "https://primary.fx.test"
SECONDARY_URL = "https://secondary.fx.test"


class FrozenClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now = self.now + timedelta(**kwargs)


class FakeFxServer:
    """Serves both provider APIs from one rate table.

    Set ``primary_status`` / ``secondary_status`` to make a provider fail.
    """

    def __init__(self, rates: dict[tuple[str, str], float]) -> None:
        self.rates = rates
        self.primary_status = 200
        self.secondary_status = 200
        self.requests: list[httpx.Request] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.host == httpx.URL(PRIMARY_URL).host:
            if self.primary_status != 200:
                return httpx.Response(self.primary_status, json={"error": "down"})
            base = request.url.path.rsplit("/", 1)[-1]
            table = {to: rate for (frm, to), rate in self.rates.items() if frm == base}
            return httpx.Response(200, json={"base": base, "rates": table})

        if self.secondary_status != 200:
            return httpx.Response(self.secondary_status, json={"message": "down"})
        frm = request.url.params["from"]
        to = request.url.params["to"]
        if (frm, to) not in self.rates:
            return httpx.Response(404, json={"message": "not found"})
        return httpx.Response(
            200, json={"amount": 1.0, "base": frm, "rates": {to: self.rates[(frm, to)]}}
        )


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(datetime(2025, 1, 15, 12, 0, tzinfo=UTC))


@pytest.fixture
def fx_server() -> FakeFxServer:
    return FakeFxServer({("USD", "EUR"): 0.9, ("USD", "JPY"): 150.0})


@pytest.fixture
def fx_client(fx_server: FakeFxServer) -> httpx.Client:
    client = httpx.Client(transport=httpx.MockTransport(fx_server.handler))
    yield client
    client.close()


@pytest.fixture
def rate_resolver(fx_client: httpx.Client) -> ExchangeRateResolver:
    return create_default_resolver(
        fx_client, PRIMARY_URL, SECONDARY_URL, cache_ttl_seconds=0
    )


@pytest.fixture
def db() -> SQLiteDatabase:
    database = SQLiteDatabase(":memory:", check_same_thread=False)
    database.initialize()
    yield database
    database.close()


@pytest.fixture
def document_repos(db: SQLiteDatabase) -> dict[EntityType, SQLiteDocumentRepository]:
    return {
        c.entity_type: SQLiteDocumentRepository(db, c.collection)
        for c in CONVERTIBLE_COLLECTIONS
    }


@pytest.fixture
def log_repo(db: SQLiteDatabase) -> SQLiteConversionLogRepository:
    return SQLiteConversionLogRepository(db)


@pytest.fixture
def history_repo(db: SQLiteDatabase) -> SQLiteCurrencyHistoryRepository:
    return SQLiteCurrencyHistoryRepository(db)


@pytest.fixture
def log_service(log_repo: SQLiteConversionLogRepository) -> ConversionLogService:
    return ConversionLogService(log_repo, cooldown_hours=24)


@pytest.fixture
def history_writer(
    history_repo: SQLiteCurrencyHistoryRepository,
) -> ConversionHistoryWriter:
    return ConversionHistoryWriter(history_repo)


@pytest.fixture
def audit() -> InMemoryAuditLogger:
    return InMemoryAuditLogger()


@pytest.fixture
def conversion_service(
    db: SQLiteDatabase,
    document_repos: dict[EntityType, SQLiteDocumentRepository],
    log_service: ConversionLogService,
    history_writer: ConversionHistoryWriter,
    rate_resolver: ExchangeRateResolver,
    audit: InMemoryAuditLogger,
    clock: FrozenClock,
) -> CurrencyConversionServiceImpl:
    return CurrencyConversionServiceImpl(
        database=db,
        document_repos=document_repos,
        log_service=log_service,
        history_writer=history_writer,
        rate_resolver=rate_resolver,
        audit_logger=audit,
        clock=clock,
    )


@pytest.fixture
def reversal_service(
    db: SQLiteDatabase,
    document_repos: dict[EntityType, SQLiteDocumentRepository],
    log_service: ConversionLogService,
    history_writer: ConversionHistoryWriter,
    audit: InMemoryAuditLogger,
    clock: FrozenClock,
) -> ConversionReversalServiceImpl:
    return ConversionReversalServiceImpl(
        database=db,
        document_repos=document_repos,
        log_service=log_service,
        history_writer=history_writer,
        audit_logger=audit,
        clock=clock,
    )


@pytest.fixture
def context() -> ConversionContext:
    return ConversionContext(
        tenant_id="academy-1",
        user_id="user-1",
        role="admin",
        user_email="owner@academy.test",
        ip_address="203.0.113.7",
        user_agent="pytest",
    )


@pytest.fixture
def seed(
    document_repos: dict[EntityType, SQLiteDocumentRepository],
) -> Callable[..., str]:
    """Insert a document for a tenant and return its id."""

    def _seed(entity_type: EntityType, tenant_id: str = "academy-1", **fields: Any) -> str:
        document = {"tenantId": tenant_id, **fields}
        return document_repos[entity_type].add(document)

    return _seed
