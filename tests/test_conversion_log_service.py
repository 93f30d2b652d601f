from datetime import UTC, datetime, timedelta
from decimal import Decimal
from uuid import uuid4

import pytest
from structlog.testing import capture_logs

from academy_currency.domain.conversions import (
    ConversionStatistics,
    ConversionStatus,
    RateSource,
)
from academy_currency.exceptions import ConversionCooldownError, ConversionNotFoundError
from academy_currency.repositories.sqlite import SQLiteConversionLogRepository
from academy_currency.services.conversion_log import ConversionLogService

NOW = datetime(2025, 1, 15, 12, 0, tzinfo=UTC)


class BrokenLogRepository(SQLiteConversionLogRepository):
    def add(self, log):
        raise RuntimeError("log store unavailable")


def _succeed(service: ConversionLogService, context, at: datetime):
    log = service.start(
        context, "USD", "EUR", Decimal("0.9"), RateSource.EXCHANGERATE_API, at
    )
    return service.complete(log, ConversionStatistics(courses_updated=1))


class TestCooldown:
    def test_no_history_means_no_cooldown(self, log_service, context) -> None:
        assert log_service.find_active_cooldown(context.tenant_id, NOW) is None
        log_service.ensure_no_cooldown(context.tenant_id, NOW)

    def test_success_within_window_blocks(self, log_service, context) -> None:
        _succeed(log_service, context, NOW - timedelta(hours=1))

        with pytest.raises(ConversionCooldownError) as exc_info:
            log_service.ensure_no_cooldown(context.tenant_id, NOW)

        error = exc_info.value
        assert error.status_code == 429
        assert error.context["fromCurrency"] == "USD"
        assert error.context["toCurrency"] == "EUR"
        assert error.context["convertedBy"] == "owner@academy.test"
        assert error.context["cooldownHours"] == 24

    def test_success_outside_window_allows(self, log_service, context) -> None:
        _succeed(log_service, context, NOW - timedelta(hours=25))
        log_service.ensure_no_cooldown(context.tenant_id, NOW)

    def test_failed_and_partial_logs_do_not_block(self, log_service, context) -> None:
        log_service.start(
            context, "USD", "EUR", Decimal("0.9"), RateSource.FRANKFURTER, NOW
        )
        log_service.record_failure(
            context, "USD", "EUR", Decimal("0.9"), "boom", timestamp=NOW
        )
        log_service.ensure_no_cooldown(context.tenant_id, NOW)

    def test_cooldown_is_per_tenant(self, log_service, context) -> None:
        _succeed(log_service, context, NOW - timedelta(minutes=5))
        log_service.ensure_no_cooldown("academy-2", NOW)

    def test_zero_hours_disables_cooldown(self, log_repo, context) -> None:
        service = ConversionLogService(log_repo, cooldown_hours=0)
        _succeed(service, context, NOW)
        assert service.find_active_cooldown(context.tenant_id, NOW) is None


class TestStatusTransitions:
    def test_start_writes_partial_log(self, log_service, log_repo, context) -> None:
        log = log_service.start(
            context, "USD", "EUR", Decimal("0.9"), RateSource.EXCHANGERATE_API, NOW
        )

        stored = log_repo.get(log.id)
        assert stored.status == ConversionStatus.PARTIAL
        assert stored.statistics == ConversionStatistics()
        assert stored.converted_by_id == "user-1"
        assert stored.ip_address == "203.0.113.7"
        assert stored.user_agent == "pytest"

    def test_complete_marks_success(self, log_service, log_repo, context) -> None:
        log = _succeed(log_service, context, NOW)

        stored = log_repo.get(log.id)
        assert stored.status == ConversionStatus.SUCCESS
        assert stored.statistics.courses_updated == 1

    def test_record_failure(self, log_service, log_repo, context) -> None:
        log = log_service.record_failure(
            context,
            "USD",
            "EUR",
            Decimal("0.9"),
            "disk full",
            rate_source=RateSource.FALLBACK,
            timestamp=NOW,
        )

        stored = log_repo.get(log.id)
        assert stored.status == ConversionStatus.FAILED
        assert stored.error_message == "disk full"
        assert stored.rate_source == RateSource.FALLBACK
        assert stored.statistics.total_records_updated == 0

    def test_record_failure_is_best_effort(self, db, context) -> None:
        service = ConversionLogService(BrokenLogRepository(db))

        with capture_logs() as logs:
            result = service.record_failure(
                context, "USD", "EUR", Decimal("0.9"), "original problem"
            )

        assert result is None
        assert logs[0]["event"] == "conversion_failure_log_not_written"
        assert logs[0]["original_error"] == "original problem"


class TestLookups:
    def test_get_for_tenant(self, log_service, context) -> None:
        log = _succeed(log_service, context, NOW)
        assert log_service.get_for_tenant(context.tenant_id, log.id).id == log.id

    def test_other_tenants_log_is_not_found(self, log_service, context) -> None:
        log = _succeed(log_service, context, NOW)

        with pytest.raises(ConversionNotFoundError):
            log_service.get_for_tenant("academy-2", log.id)
        with pytest.raises(ConversionNotFoundError):
            log_service.get_for_tenant(context.tenant_id, uuid4())

    def test_list_for_tenant(self, log_service, context) -> None:
        first = _succeed(log_service, context, NOW - timedelta(days=3))
        second = _succeed(log_service, context, NOW)

        listed = log_service.list_for_tenant(context.tenant_id, limit=10)

        assert [log.id for log in listed] == [second.id, first.id]
