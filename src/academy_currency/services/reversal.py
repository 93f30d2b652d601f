"""Undo a successful conversion from its history trail."""

from __future__ import annotations

from collections.abc import Callable, Mapping
from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from academy_currency.domain.conversions import (
    ConversionContext,
    ConversionLog,
    ConversionPhase,
    ConversionStatistics,
    ConversionStatus,
    CurrencyHistory,
    EntityType,
    RateSource,
    ReversalResult,
)
from academy_currency.exceptions import (
    ConversionAlreadyReversedError,
    ConversionFailedError,
    ConversionNotReversibleError,
)
from academy_currency.logging_config import LogContext, get_logger
from academy_currency.repositories.interfaces import DocumentDatabase, DocumentRepository
from academy_currency.services.audit import AuditLogger, StructlogAuditLogger
from academy_currency.services.conversion import require_context, utc_now
from academy_currency.services.conversion_history import ConversionHistoryWriter
from academy_currency.services.conversion_log import ConversionLogService
from academy_currency.services.field_converter import read_path
from academy_currency.services.interfaces import ConversionReversalService

logger = get_logger(__name__)


def _belongs_to(document: Mapping[str, Any], tenant_id: str) -> bool:
    return tenant_id in (document.get("tenantId"), document.get("academyId"))


class ConversionReversalServiceImpl(ConversionReversalService):
    """Restores the original values of a SUCCESS conversion.

    A field is restored only while it still holds the value the conversion
    wrote; fields edited since then are skipped and counted. The reversal is
    not subject to the cooldown, but its own SUCCESS log starts a new one.
    """

    def __init__(
        self,
        database: DocumentDatabase,
        document_repos: Mapping[EntityType, DocumentRepository],
        log_service: ConversionLogService,
        history_writer: ConversionHistoryWriter,
        audit_logger: AuditLogger | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._db = database
        self._documents = document_repos
        self._logs = log_service
        self._history = history_writer
        self._audit = audit_logger or StructlogAuditLogger()
        self._clock = clock

    def reverse(
        self, context: ConversionContext, conversion_id: UUID
    ) -> ReversalResult:
        require_context(context)
        original = self._logs.get_for_tenant(context.tenant_id, conversion_id)
        if original.is_reversal:
            raise ConversionNotReversibleError(
                conversion_id, "conversion is itself a reversal"
            )
        if original.status != ConversionStatus.SUCCESS:
            raise ConversionNotReversibleError(
                conversion_id, f"status is {original.status.value}"
            )
        existing = self._logs.find_reversal(original.id)
        if existing is not None:
            raise ConversionAlreadyReversedError(conversion_id, existing.id)

        rate = Decimal("1") / original.exchange_rate
        with LogContext(
            tenant_id=context.tenant_id, reversed_conversion_id=str(original.id)
        ):
            phase = ConversionPhase.TRANSACTION_OPEN
            now = self._clock()
            try:
                with self._db.transaction():
                    log = self._logs.start(
                        context,
                        original.to_currency,
                        original.from_currency,
                        rate,
                        rate_source=RateSource.REVERSAL,
                        timestamp=now,
                        reverses_conversion_id=original.id,
                    )
                    phase = ConversionPhase.PROCESSING
                    statistics, skipped = self._restore(context, original, log)
                    phase = ConversionPhase.COMMITTING
                    self._logs.complete(log, statistics)
            except Exception as e:
                logger.error(
                    "currency_reversal_failed",
                    phase=phase.value,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                self._logs.record_failure(
                    context,
                    original.to_currency,
                    original.from_currency,
                    rate,
                    error_message=str(e),
                    rate_source=RateSource.REVERSAL,
                    timestamp=self._clock(),
                    reverses_conversion_id=original.id,
                )
                self._audit.record(
                    "currency_reversal_failed",
                    context,
                    reversed_conversion_id=str(original.id),
                    phase=phase.value,
                    error=str(e),
                )
                raise ConversionFailedError(str(e), phase=phase.value) from e

            logger.info(
                "currency_reversal_succeeded",
                conversion_id=str(log.id),
                fields_skipped=skipped,
                **statistics.to_dict(),
            )
            self._audit.record(
                "currency_reversal_succeeded",
                context,
                conversion_id=str(log.id),
                reversed_conversion_id=str(original.id),
                total_records_updated=statistics.total_records_updated,
                fields_skipped=skipped,
            )
        return ReversalResult(
            conversion_id=log.id,
            reversed_conversion_id=original.id,
            from_currency=log.from_currency,
            to_currency=log.to_currency,
            exchange_rate=log.exchange_rate,
            statistics=statistics,
            fields_skipped=skipped,
        )

    def _restore(
        self,
        context: ConversionContext,
        original: ConversionLog,
        log: ConversionLog,
    ) -> tuple[ConversionStatistics, int]:
        statistics = ConversionStatistics()
        skipped = 0
        for history in self._history.list_for_conversion(context.tenant_id, original.id):
            restored, current, missed = self._restorable(context.tenant_id, history)
            skipped += missed
            if not restored:
                continue
            self._documents[history.entity_type].update_fields(
                history.entity_id, restored
            )
            self._history.record(
                tenant_id=context.tenant_id,
                conversion_id=log.id,
                entity_type=history.entity_type,
                entity_id=history.entity_id,
                original_values=current,
                converted_values=restored,
                from_currency=log.from_currency,
                to_currency=log.to_currency,
                exchange_rate=log.exchange_rate,
            )
            statistics.increment(history.entity_type)
        return statistics, skipped

    def _restorable(
        self, tenant_id: str, history: CurrencyHistory
    ) -> tuple[dict[str, int | float], dict[str, int | float], int]:
        document = self._documents[history.entity_type].get(history.entity_id)
        if document is None or not _belongs_to(document, tenant_id):
            logger.warning(
                "reversal_document_missing",
                entity_type=history.entity_type.value,
                entity_id=history.entity_id,
            )
            return {}, {}, len(history.converted_values)

        restored: dict[str, int | float] = {}
        current: dict[str, int | float] = {}
        for path, converted in history.converted_values.items():
            value = read_path(document, path)
            if isinstance(value, bool) or value != converted:
                continue
            restored[path] = history.original_values[path]
            current[path] = value
        return restored, current, len(history.converted_values) - len(restored)
