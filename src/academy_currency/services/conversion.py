"""Tenant-wide currency re-denomination.

A conversion rewrites every allow-listed monetary field of a tenant's
documents at one exchange rate, inside a single transaction:

1. Reject if the tenant converted successfully within the cooldown window.
2. Resolve the rate (live providers, failing open to 1).
3. Write a PARTIAL log, convert each collection in a fixed order and
   append a history snapshot per changed document.
4. Mark the log SUCCESS and commit.

Any failure inside the transaction rolls everything back, including the
PARTIAL log, and a FAILED log is written separately afterwards.
"""

from __future__ import annotations

import re
from collections.abc import Callable, Mapping
from datetime import UTC, datetime
from decimal import Decimal

from academy_currency.domain.conversions import (
    CONVERTIBLE_COLLECTIONS,
    ConversionContext,
    ConversionLog,
    ConversionPhase,
    ConversionResult,
    ConversionStatistics,
    EntityType,
    RateSource,
)
from academy_currency.exceptions import (
    AuthenticationError,
    ConversionCooldownError,
    ConversionFailedError,
    InvalidCurrencyError,
    MissingCurrencyError,
)
from academy_currency.logging_config import LogContext, get_logger
from academy_currency.repositories.interfaces import DocumentDatabase, DocumentRepository
from academy_currency.services.audit import AuditLogger, StructlogAuditLogger
from academy_currency.services.conversion_history import ConversionHistoryWriter
from academy_currency.services.conversion_log import ConversionLogService
from academy_currency.services.exchange_rates import ExchangeRateResolver, RateQuote
from academy_currency.services.field_converter import convert_fields
from academy_currency.services.interfaces import CurrencyConversionService

logger = get_logger(__name__)

_CURRENCY_CODE = re.compile(r"^[A-Z]{3}$")


def utc_now() -> datetime:
    return datetime.now(UTC)


def normalize_currency_code(code: str) -> str:
    """Trim and upper-case a currency code, rejecting anything but three letters."""
    normalized = code.strip().upper()
    if not _CURRENCY_CODE.match(normalized):
        raise InvalidCurrencyError(code)
    return normalized


def normalize_currency_pair(
    from_currency: str | None, to_currency: str | None
) -> tuple[str, str]:
    from_value = (from_currency or "").strip()
    to_value = (to_currency or "").strip()
    missing = [
        name
        for name, value in (("fromCurrency", from_value), ("toCurrency", to_value))
        if not value
    ]
    if missing:
        raise MissingCurrencyError(missing)
    return normalize_currency_code(from_value), normalize_currency_code(to_value)


def require_context(context: ConversionContext) -> None:
    if not (context.tenant_id and context.user_id and context.role):
        raise AuthenticationError()


class CurrencyConversionServiceImpl(CurrencyConversionService):
    def __init__(
        self,
        database: DocumentDatabase,
        document_repos: Mapping[EntityType, DocumentRepository],
        log_service: ConversionLogService,
        history_writer: ConversionHistoryWriter,
        rate_resolver: ExchangeRateResolver,
        audit_logger: AuditLogger | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        missing = [
            c.entity_type.value
            for c in CONVERTIBLE_COLLECTIONS
            if c.entity_type not in document_repos
        ]
        if missing:
            raise ValueError(f"No document repository for: {', '.join(missing)}")
        self._db = database
        self._documents = document_repos
        self._logs = log_service
        self._history = history_writer
        self._rates = rate_resolver
        self._audit = audit_logger or StructlogAuditLogger()
        self._clock = clock

    def convert(
        self,
        context: ConversionContext,
        from_currency: str | None,
        to_currency: str | None,
    ) -> ConversionResult:
        require_context(context)
        from_code, to_code = normalize_currency_pair(from_currency, to_currency)

        if from_code == to_code:
            logger.info(
                "currency_conversion_not_needed",
                tenant_id=context.tenant_id,
                currency=from_code,
            )
            return ConversionResult(
                from_currency=from_code,
                to_currency=to_code,
                exchange_rate=Decimal("1"),
                rate_source=RateSource.IDENTITY,
            )

        with LogContext(
            tenant_id=context.tenant_id,
            from_currency=from_code,
            to_currency=to_code,
        ):
            logger.info("currency_conversion_requested", user_id=context.user_id)
            now = self._clock()
            try:
                self._logs.ensure_no_cooldown(context.tenant_id, now)
            except ConversionCooldownError as e:
                logger.info("currency_conversion_rejected_cooldown", **e.context)
                self._audit.record(
                    "currency_conversion_rejected_cooldown",
                    context,
                    from_currency=from_code,
                    to_currency=to_code,
                    previous_conversion=e.context,
                )
                raise

            quote = self._rates.quote(from_code, to_code)
            return self._run(context, quote, now)

    def _run(
        self, context: ConversionContext, quote: RateQuote, now: datetime
    ) -> ConversionResult:
        phase = ConversionPhase.TRANSACTION_OPEN
        try:
            with self._db.transaction():
                log = self._logs.start(
                    context,
                    quote.from_currency,
                    quote.to_currency,
                    quote.rate,
                    rate_source=quote.source,
                    timestamp=now,
                )
                logger.info(
                    "currency_conversion_started",
                    conversion_id=str(log.id),
                    rate=str(quote.rate),
                    rate_source=quote.source.value,
                )
                phase = ConversionPhase.PROCESSING
                statistics = self._convert_collections(context, log, quote)
                phase = ConversionPhase.COMMITTING
                self._logs.complete(log, statistics)
        except Exception as e:
            self._abort(context, quote, phase, e)
            raise ConversionFailedError(str(e), phase=phase.value) from e

        logger.info(
            "currency_conversion_succeeded",
            conversion_id=str(log.id),
            **statistics.to_dict(),
        )
        self._audit.record(
            "currency_conversion_succeeded",
            context,
            conversion_id=str(log.id),
            from_currency=quote.from_currency,
            to_currency=quote.to_currency,
            exchange_rate=str(quote.rate),
            rate_source=quote.source.value,
            total_records_updated=statistics.total_records_updated,
        )
        return ConversionResult(
            from_currency=quote.from_currency,
            to_currency=quote.to_currency,
            exchange_rate=quote.rate,
            rate_source=quote.source,
            conversion_id=log.id,
            statistics=statistics,
        )

    def _convert_collections(
        self, context: ConversionContext, log: ConversionLog, quote: RateQuote
    ) -> ConversionStatistics:
        statistics = ConversionStatistics()
        for collection in CONVERTIBLE_COLLECTIONS:
            repo = self._documents[collection.entity_type]
            # Read the whole candidate set before writing any of it back
            candidates = list(repo.find_eligible(context.tenant_id, collection.fields))
            for document in candidates:
                conversion = convert_fields(document, collection.fields, quote.rate)
                if conversion.is_empty:
                    continue
                repo.update_fields(document["_id"], conversion.updates)
                self._history.record(
                    tenant_id=context.tenant_id,
                    conversion_id=log.id,
                    entity_type=collection.entity_type,
                    entity_id=document["_id"],
                    original_values=conversion.original_values,
                    converted_values=conversion.updates,
                    from_currency=quote.from_currency,
                    to_currency=quote.to_currency,
                    exchange_rate=quote.rate,
                )
                statistics.increment(collection.entity_type)
            logger.debug(
                "collection_converted",
                collection=collection.collection,
                candidates=len(candidates),
                updated=statistics.count_for(collection.entity_type),
            )
        return statistics

    def _abort(
        self,
        context: ConversionContext,
        quote: RateQuote,
        phase: ConversionPhase,
        error: Exception,
    ) -> None:
        logger.error(
            "currency_conversion_failed",
            phase=phase.value,
            error=str(error),
            error_type=type(error).__name__,
        )
        failed = self._logs.record_failure(
            context,
            quote.from_currency,
            quote.to_currency,
            quote.rate,
            error_message=str(error),
            rate_source=quote.source,
            timestamp=self._clock(),
        )
        if failed is not None:
            logger.info(
                "currency_conversion_failure_logged",
                phase=ConversionPhase.FAILED_LOGGED.value,
                conversion_id=str(failed.id),
            )
        self._audit.record(
            "currency_conversion_failed",
            context,
            from_currency=quote.from_currency,
            to_currency=quote.to_currency,
            phase=phase.value,
            error=str(error),
        )
