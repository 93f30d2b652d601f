"""Conversion attempt log: cooldown lookups and status transitions."""

from __future__ import annotations

from datetime import datetime, timedelta
from decimal import Decimal
from uuid import UUID

from academy_currency.domain.conversions import (
    ConversionContext,
    ConversionLog,
    ConversionStatistics,
    ConversionStatus,
    RateSource,
)
from academy_currency.exceptions import ConversionCooldownError, ConversionNotFoundError
from academy_currency.logging_config import get_logger
from academy_currency.repositories.interfaces import ConversionLogRepository

logger = get_logger(__name__)


class ConversionLogService:
    def __init__(
        self, log_repo: ConversionLogRepository, cooldown_hours: int = 24
    ) -> None:
        self._repo = log_repo
        self.cooldown_hours = cooldown_hours

    @property
    def cooldown(self) -> timedelta:
        return timedelta(hours=self.cooldown_hours)

    def find_active_cooldown(
        self, tenant_id: str, now: datetime
    ) -> ConversionLog | None:
        """Most recent SUCCESS conversion for the tenant inside the window."""
        if self.cooldown_hours <= 0:
            return None
        return self._repo.get_latest_success_since(tenant_id, now - self.cooldown)

    def ensure_no_cooldown(self, tenant_id: str, now: datetime) -> None:
        """Raise ConversionCooldownError when the tenant converted too recently."""
        recent = self.find_active_cooldown(tenant_id, now)
        if recent is None:
            return
        raise ConversionCooldownError(
            from_currency=recent.from_currency,
            to_currency=recent.to_currency,
            timestamp=recent.timestamp,
            converted_by=recent.converted_by,
            cooldown_hours=self.cooldown_hours,
        )

    def start(
        self,
        context: ConversionContext,
        from_currency: str,
        to_currency: str,
        exchange_rate: Decimal,
        rate_source: RateSource,
        timestamp: datetime,
        reverses_conversion_id: UUID | None = None,
    ) -> ConversionLog:
        """Write a PARTIAL log with zeroed statistics. Call inside the transaction."""
        log = ConversionLog.for_context(
            context,
            from_currency,
            to_currency,
            exchange_rate,
            rate_source=rate_source,
            reverses_conversion_id=reverses_conversion_id,
            timestamp=timestamp,
        )
        self._repo.add(log)
        return log

    def complete(
        self, log: ConversionLog, statistics: ConversionStatistics
    ) -> ConversionLog:
        log.status = ConversionStatus.SUCCESS
        log.statistics = statistics
        self._repo.update(log)
        return log

    def record_failure(
        self,
        context: ConversionContext,
        from_currency: str,
        to_currency: str,
        exchange_rate: Decimal,
        error_message: str,
        rate_source: RateSource | None = None,
        timestamp: datetime | None = None,
        reverses_conversion_id: UUID | None = None,
    ) -> ConversionLog | None:
        """Write a standalone FAILED log outside any transaction.

        Best effort: a failure here is logged and swallowed so the caller can
        still report the original error.
        """
        kwargs = {"timestamp": timestamp} if timestamp is not None else {}
        try:
            log = ConversionLog.for_context(
                context,
                from_currency,
                to_currency,
                exchange_rate,
                status=ConversionStatus.FAILED,
                rate_source=rate_source,
                error_message=error_message,
                reverses_conversion_id=reverses_conversion_id,
                **kwargs,
            )
            self._repo.add(log)
        except Exception as e:
            logger.error(
                "conversion_failure_log_not_written",
                tenant_id=context.tenant_id,
                error=str(e),
                original_error=error_message,
            )
            return None
        return log

    def find_reversal(self, conversion_id: UUID) -> ConversionLog | None:
        return self._repo.get_successful_reversal(conversion_id)

    def list_for_tenant(self, tenant_id: str, limit: int = 50) -> list[ConversionLog]:
        return self._repo.list_by_tenant(tenant_id, limit=limit)

    def get_for_tenant(self, tenant_id: str, conversion_id: UUID) -> ConversionLog:
        log = self._repo.get(conversion_id)
        if log is None or log.tenant_id != tenant_id:
            raise ConversionNotFoundError(conversion_id)
        return log
