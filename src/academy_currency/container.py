"""Dependency injection container for Academy Currency.

Provides centralized dependency management using a simple container pattern.
Services are built lazily from settings and cached for reuse, which keeps
tests free to swap in their own settings or a fresh container.

Usage:
    from academy_currency.container import get_container

    container = get_container()
    result = container.conversion_service.convert(context, "USD", "EUR")
"""

from functools import cached_property, lru_cache
from typing import TYPE_CHECKING

import httpx

from academy_currency.config import DatabaseType, Settings, get_settings
from academy_currency.domain.conversions import CONVERTIBLE_COLLECTIONS, EntityType
from academy_currency.logging_config import get_logger

if TYPE_CHECKING:
    from academy_currency.repositories.interfaces import (
        ConversionLogRepository,
        CurrencyHistoryRepository,
        DocumentDatabase,
        DocumentRepository,
    )
    from academy_currency.services.audit import AuditLogger
    from academy_currency.services.conversion import CurrencyConversionServiceImpl
    from academy_currency.services.conversion_history import ConversionHistoryWriter
    from academy_currency.services.conversion_log import ConversionLogService
    from academy_currency.services.exchange_rates import ExchangeRateResolver
    from academy_currency.services.reversal import ConversionReversalServiceImpl
    from academy_currency.services.session import SessionTokenService

logger = get_logger(__name__)


class Container:
    """Dependency injection container.

    The container can be configured with custom settings for testing:

        test_settings = Settings(database_type=DatabaseType.SQLITE, sqlite_path=":memory:")
        container = Container(settings=test_settings)
    """

    def __init__(self, settings: Settings | None = None) -> None:
        self._settings = settings or get_settings()
        logger.debug(
            "container_created",
            database_type=self._settings.database_type.value,
            environment=self._settings.environment.value,
        )

    @property
    def settings(self) -> Settings:
        return self._settings

    @cached_property
    def database(self) -> "DocumentDatabase":
        """Get the document store, initialized on first access.

        - SQLite for development/testing
        - PostgreSQL for production
        """
        if self._settings.database_type == DatabaseType.POSTGRES:
            return self._create_postgres_database()
        return self._create_sqlite_database()

    def _create_sqlite_database(self) -> "DocumentDatabase":
        from academy_currency.repositories.sqlite import SQLiteDatabase

        db_path = str(self._settings.sqlite_path)
        logger.info("initializing_sqlite_database", path=db_path)

        # API routes run on a worker threadpool
        db = SQLiteDatabase(db_path, check_same_thread=False)
        db.initialize()
        return db

    def _create_postgres_database(self) -> "DocumentDatabase":
        from academy_currency.repositories.postgres import PostgresDatabase

        url = self._settings.database_url
        if not url:
            raise ValueError("database_url must be set when database_type is postgres")

        logger.info(
            "initializing_postgres_database",
            # Don't log the full URL as it may contain credentials
            host=url.split("@")[-1].split("/")[0] if "@" in url else "localhost",
        )

        db = PostgresDatabase(url)
        db.initialize()
        return db

    @cached_property
    def document_repositories(self) -> "dict[EntityType, DocumentRepository]":
        """One repository per convertible collection, keyed by entity type."""
        if self._settings.database_type == DatabaseType.POSTGRES:
            from academy_currency.repositories.postgres import (
                PostgresDocumentRepository as repository_class,
            )
        else:
            from academy_currency.repositories.sqlite import (
                SQLiteDocumentRepository as repository_class,
            )
        return {
            c.entity_type: repository_class(self.database, c.collection)  # type: ignore[arg-type]
            for c in CONVERTIBLE_COLLECTIONS
        }

    @cached_property
    def conversion_log_repository(self) -> "ConversionLogRepository":
        if self._settings.database_type == DatabaseType.POSTGRES:
            from academy_currency.repositories.postgres import (
                PostgresConversionLogRepository,
            )

            return PostgresConversionLogRepository(self.database)  # type: ignore[arg-type]
        from academy_currency.repositories.sqlite import SQLiteConversionLogRepository

        return SQLiteConversionLogRepository(self.database)  # type: ignore[arg-type]

    @cached_property
    def currency_history_repository(self) -> "CurrencyHistoryRepository":
        if self._settings.database_type == DatabaseType.POSTGRES:
            from academy_currency.repositories.postgres import (
                PostgresCurrencyHistoryRepository,
            )

            return PostgresCurrencyHistoryRepository(self.database)  # type: ignore[arg-type]
        from academy_currency.repositories.sqlite import (
            SQLiteCurrencyHistoryRepository,
        )

        return SQLiteCurrencyHistoryRepository(self.database)  # type: ignore[arg-type]

    @cached_property
    def http_client(self) -> httpx.Client:
        """Shared HTTP client for exchange rate providers."""
        return httpx.Client(
            timeout=self._settings.fx_timeout_seconds,
            headers={"User-Agent": f"{self._settings.app_name}/{self._settings.app_version}"},
        )

    @cached_property
    def rate_resolver(self) -> "ExchangeRateResolver":
        from academy_currency.services.exchange_rates import create_default_resolver

        return create_default_resolver(
            self.http_client,
            primary_url=self._settings.fx_primary_url,
            secondary_url=self._settings.fx_secondary_url,
            cache_ttl_seconds=self._settings.fx_cache_ttl_seconds,
        )

    @cached_property
    def conversion_log_service(self) -> "ConversionLogService":
        from academy_currency.services.conversion_log import ConversionLogService

        return ConversionLogService(
            self.conversion_log_repository,
            cooldown_hours=self._settings.conversion_cooldown_hours,
        )

    @cached_property
    def history_writer(self) -> "ConversionHistoryWriter":
        from academy_currency.services.conversion_history import (
            ConversionHistoryWriter,
        )

        return ConversionHistoryWriter(self.currency_history_repository)

    @cached_property
    def audit_logger(self) -> "AuditLogger":
        from academy_currency.services.audit import StructlogAuditLogger

        return StructlogAuditLogger()

    @cached_property
    def conversion_service(self) -> "CurrencyConversionServiceImpl":
        """Get the tenant-wide currency conversion service."""
        from academy_currency.services.conversion import CurrencyConversionServiceImpl

        return CurrencyConversionServiceImpl(
            database=self.database,
            document_repos=self.document_repositories,
            log_service=self.conversion_log_service,
            history_writer=self.history_writer,
            rate_resolver=self.rate_resolver,
            audit_logger=self.audit_logger,
        )

    @cached_property
    def reversal_service(self) -> "ConversionReversalServiceImpl":
        """Get the service that undoes a successful conversion."""
        from academy_currency.services.reversal import ConversionReversalServiceImpl

        return ConversionReversalServiceImpl(
            database=self.database,
            document_repos=self.document_repositories,
            log_service=self.conversion_log_service,
            history_writer=self.history_writer,
            audit_logger=self.audit_logger,
        )

    @cached_property
    def session_service(self) -> "SessionTokenService":
        from academy_currency.services.session import SessionTokenService

        return SessionTokenService(
            self._settings.secret_key,
            expire_minutes=self._settings.session_token_expire_minutes,
        )

    def close(self) -> None:
        """Close all resources held by the container.

        Should be called during application shutdown.
        """
        if "http_client" in self.__dict__:
            self.http_client.close()
        if "database" in self.__dict__:
            logger.info("closing_database_connection")
            self.database.close()

    def __enter__(self) -> "Container":
        return self

    def __exit__(self, *args: object) -> None:
        self.close()


# Module-level container instance
_container: Container | None = None


@lru_cache
def get_container() -> Container:
    """Get the global container singleton.

    For testing, create a Container directly with custom settings instead
    of using this function.
    """
    global _container
    if _container is None:
        _container = Container()
    return _container


def reset_container() -> None:
    """Reset the global container.

    Used primarily for testing to ensure a fresh container state.
    """
    global _container
    if _container is not None:
        _container.close()
        _container = None
    get_container.cache_clear()


# FastAPI dependency functions
def get_conversion_service() -> "CurrencyConversionServiceImpl":
    """FastAPI dependency for the conversion service."""
    return get_container().conversion_service


def get_reversal_service() -> "ConversionReversalServiceImpl":
    """FastAPI dependency for the reversal service."""
    return get_container().reversal_service


def get_conversion_log_service() -> "ConversionLogService":
    """FastAPI dependency for conversion log queries."""
    return get_container().conversion_log_service


def get_history_writer() -> "ConversionHistoryWriter":
    """FastAPI dependency for conversion history queries."""
    return get_container().history_writer


def get_rate_resolver() -> "ExchangeRateResolver":
    """FastAPI dependency for rate previews."""
    return get_container().rate_resolver


def get_session_service() -> "SessionTokenService":
    """FastAPI dependency for session token verification."""
    return get_container().session_service
