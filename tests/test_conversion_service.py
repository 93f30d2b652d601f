"""Tests for tenant-wide currency conversion."""

import threading
from decimal import Decimal

import pytest
from structlog.testing import capture_logs

from academy_currency.domain.conversions import (
    ConversionContext,
    ConversionStatus,
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
from academy_currency.repositories.sqlite import SQLiteDocumentRepository
from academy_currency.services.conversion import (
    CurrencyConversionServiceImpl,
    normalize_currency_code,
    normalize_currency_pair,
)


class ExplodingRepository(SQLiteDocumentRepository):
    """Fails while reading candidates, after earlier collections were written."""

    def find_eligible(self, tenant_id, fields):
        raise RuntimeError("subscription store unavailable")


class BlockingRepository(SQLiteDocumentRepository):
    """Keeps the conversion transaction open until released, then fails."""

    def __init__(self, database, collection):
        super().__init__(database, collection)
        self.entered = threading.Event()
        self.release = threading.Event()

    def find_eligible(self, tenant_id, fields):
        self.entered.set()
        self.release.wait(timeout=5)
        raise RuntimeError("payment store unavailable")


class TestCurrencyValidation:
    def test_normalizes_case_and_whitespace(self) -> None:
        assert normalize_currency_code(" usd ") == "USD"
        assert normalize_currency_pair("eur", "Jpy") == ("EUR", "JPY")

    @pytest.mark.parametrize("code", ["US", "USDX", "U5D", "€", ""])
    def test_rejects_malformed_codes(self, code) -> None:
        with pytest.raises(InvalidCurrencyError):
            normalize_currency_code(code)

    @pytest.mark.parametrize(
        ("from_currency", "to_currency", "missing"),
        [
            (None, "EUR", ["fromCurrency"]),
            ("USD", "", ["toCurrency"]),
            ("  ", None, ["fromCurrency", "toCurrency"]),
        ],
    )
    def test_missing_currencies(self, from_currency, to_currency, missing) -> None:
        with pytest.raises(MissingCurrencyError) as exc_info:
            normalize_currency_pair(from_currency, to_currency)
        assert exc_info.value.context["missing"] == missing
        assert exc_info.value.status_code == 400


class TestConvert:
    def test_end_to_end(
        self, conversion_service, context, seed, document_repos, log_repo, history_writer
    ) -> None:
        priced = seed(EntityType.COURSE, price=100, name="Guitar")
        free = seed(EntityType.COURSE, price=0)
        payment = seed(EntityType.PAYMENT, courseFee=50, outstandingAmount=0)

        result = conversion_service.convert(context, "USD", "EUR")

        assert result.exchange_rate == Decimal("0.9")
        assert result.rate_source == RateSource.EXCHANGERATE_API
        stats = result.statistics.to_dict()
        assert stats["coursesUpdated"] == 1
        assert stats["paymentsUpdated"] == 1
        assert stats["totalRecordsUpdated"] == 2

        courses = document_repos[EntityType.COURSE]
        payments = document_repos[EntityType.PAYMENT]
        assert courses.get(priced)["price"] == 90
        assert courses.get(priced)["name"] == "Guitar"
        assert courses.get(free)["price"] == 0
        assert payments.get(payment)["courseFee"] == 45
        assert payments.get(payment)["outstandingAmount"] == 0

        log = log_repo.get(result.conversion_id)
        assert log.status == ConversionStatus.SUCCESS
        assert log.exchange_rate == Decimal("0.9")
        assert log.statistics == result.statistics
        assert log.converted_by == "owner@academy.test"

        history = history_writer.list_for_conversion(context.tenant_id, log.id)
        by_entity = {h.entity_id: h for h in history}
        assert set(by_entity) == {priced, payment}
        assert by_entity[priced].original_values == {"price": 100}
        assert by_entity[priced].converted_values == {"price": 90}
        assert by_entity[payment].original_values == {"courseFee": 50}
        assert by_entity[payment].converted_values == {"courseFee": 45}
        assert by_entity[payment].entity_type == EntityType.PAYMENT

    def test_every_collection_is_converted(
        self, conversion_service, context, seed, document_repos
    ) -> None:
        ids = {
            EntityType.COURSE: seed(EntityType.COURSE, price=10),
            EntityType.PAYMENT: seed(EntityType.PAYMENT, receivedAmount=10),
            EntityType.PRODUCT: seed(EntityType.PRODUCT, price=10),
            EntityType.MONTHLY_SUBSCRIPTION: seed(
                EntityType.MONTHLY_SUBSCRIPTION, totalExpectedAmount=10, remainingAmount=20
            ),
            EntityType.SCHEDULE: seed(EntityType.SCHEDULE, price=10),
            EntityType.NOTIFICATION: seed(
                EntityType.NOTIFICATION, metadata={"amount": 10, "dueAmount": 0}
            ),
            EntityType.INCOME: seed(EntityType.INCOME, amount=10, totalAmount=30),
            EntityType.EXPENSE: seed(EntityType.EXPENSE, totalAmount=10),
        }

        result = conversion_service.convert(context, "USD", "JPY")

        assert result.statistics.total_records_updated == 8
        for entity_type in ids:
            assert result.statistics.count_for(entity_type) == 1
        subscription = document_repos[EntityType.MONTHLY_SUBSCRIPTION].get(
            ids[EntityType.MONTHLY_SUBSCRIPTION]
        )
        assert subscription["totalExpectedAmount"] == 1500
        assert subscription["remainingAmount"] == 3000
        notification = document_repos[EntityType.NOTIFICATION].get(
            ids[EntityType.NOTIFICATION]
        )
        assert notification["metadata"] == {"amount": 1500, "dueAmount": 0}
        income = document_repos[EntityType.INCOME].get(ids[EntityType.INCOME])
        assert (income["amount"], income["totalAmount"]) == (1500, 4500)

    def test_academy_id_documents_are_included(
        self, conversion_service, context, document_repos
    ) -> None:
        doc_id = document_repos[EntityType.PRODUCT].add(
            {"academyId": context.tenant_id, "price": 20}
        )

        result = conversion_service.convert(context, "USD", "EUR")

        assert result.statistics.products_updated == 1
        assert document_repos[EntityType.PRODUCT].get(doc_id)["price"] == 18

    def test_other_tenants_are_untouched(
        self, conversion_service, context, seed, document_repos
    ) -> None:
        mine = seed(EntityType.COURSE, price=100)
        theirs = seed(EntityType.COURSE, tenant_id="academy-2", price=100)
        theirs_by_academy = document_repos[EntityType.COURSE].add(
            {"academyId": "academy-2", "price": 100}
        )

        result = conversion_service.convert(context, "USD", "EUR")

        courses = document_repos[EntityType.COURSE]
        assert courses.get(mine)["price"] == 90
        assert courses.get(theirs)["price"] == 100
        assert courses.get(theirs_by_academy)["price"] == 100
        assert result.statistics.total_records_updated == 1

    def test_non_numeric_and_unlisted_fields_are_ignored(
        self, conversion_service, context, seed, document_repos
    ) -> None:
        doc_id = seed(
            EntityType.PAYMENT,
            courseFee="50",
            receivedAmount=None,
            discount=40,
            outstandingAmount=-5,
        )

        result = conversion_service.convert(context, "USD", "EUR")

        assert result.statistics.total_records_updated == 0
        assert document_repos[EntityType.PAYMENT].get(doc_id) == {
            "_id": doc_id,
            "tenantId": "academy-1",
            "courseFee": "50",
            "receivedAmount": None,
            "discount": 40,
            "outstandingAmount": -5,
        }

    def test_empty_tenant_still_logs_success(
        self, conversion_service, context, log_repo
    ) -> None:
        result = conversion_service.convert(context, "USD", "EUR")

        assert result.statistics.total_records_updated == 0
        assert log_repo.get(result.conversion_id).status == ConversionStatus.SUCCESS

    def test_lowercase_codes_are_normalized(
        self, conversion_service, context, log_repo
    ) -> None:
        result = conversion_service.convert(context, "usd", " eur")

        log = log_repo.get(result.conversion_id)
        assert (log.from_currency, log.to_currency) == ("USD", "EUR")

    def test_same_currency_is_a_no_op(
        self, conversion_service, context, seed, document_repos, log_repo, fx_server
    ) -> None:
        doc_id = seed(EntityType.COURSE, price=100)

        result = conversion_service.convert(context, "EUR", "eur")

        assert result.exchange_rate == Decimal("1")
        assert result.rate_source == RateSource.IDENTITY
        assert result.conversion_id is None
        assert result.statistics is None
        assert document_repos[EntityType.COURSE].get(doc_id)["price"] == 100
        assert log_repo.list_by_tenant(context.tenant_id) == []
        assert fx_server.requests == []

    def test_missing_currency_is_rejected_before_any_work(
        self, conversion_service, context, log_repo, fx_server
    ) -> None:
        with pytest.raises(MissingCurrencyError):
            conversion_service.convert(context, "USD", None)
        assert log_repo.list_by_tenant(context.tenant_id) == []
        assert fx_server.requests == []

    def test_requires_a_complete_context(self, conversion_service) -> None:
        anonymous = ConversionContext(tenant_id="", user_id="u1", role="admin")
        with pytest.raises(AuthenticationError):
            conversion_service.convert(anonymous, "USD", "EUR")


class TestCooldown:
    def test_second_conversion_within_window_is_rejected(
        self, conversion_service, context, seed, document_repos, log_repo, clock
    ) -> None:
        doc_id = seed(EntityType.COURSE, price=100)
        conversion_service.convert(context, "USD", "EUR")
        clock.advance(hours=1)

        with pytest.raises(ConversionCooldownError) as exc_info:
            conversion_service.convert(context, "EUR", "USD")

        assert exc_info.value.status_code == 429
        assert exc_info.value.context["fromCurrency"] == "USD"
        assert exc_info.value.context["toCurrency"] == "EUR"
        assert document_repos[EntityType.COURSE].get(doc_id)["price"] == 90
        assert len(log_repo.list_by_tenant(context.tenant_id)) == 1

    def test_conversion_after_window_proceeds(
        self, conversion_service, context, seed, document_repos, clock
    ) -> None:
        doc_id = seed(EntityType.COURSE, price=100)
        conversion_service.convert(context, "USD", "EUR")
        clock.advance(hours=25)

        result = conversion_service.convert(context, "USD", "JPY")

        assert result.statistics.courses_updated == 1
        assert document_repos[EntityType.COURSE].get(doc_id)["price"] == 13500

    def test_cooldown_does_not_touch_rate_providers(
        self, conversion_service, context, fx_server, clock
    ) -> None:
        conversion_service.convert(context, "USD", "EUR")
        requests_after_first = len(fx_server.requests)
        clock.advance(minutes=10)

        with pytest.raises(ConversionCooldownError):
            conversion_service.convert(context, "USD", "JPY")

        assert len(fx_server.requests) == requests_after_first

    def test_failed_conversion_does_not_start_cooldown(
        self, conversion_service, context, log_service, clock
    ) -> None:
        log_service.record_failure(
            context, "USD", "EUR", Decimal("0.9"), "earlier failure", timestamp=clock()
        )

        result = conversion_service.convert(context, "USD", "EUR")

        assert result.conversion_id is not None


class TestAtomicity:
    @pytest.fixture
    def failing_service(
        self, db, document_repos, log_service, history_writer, rate_resolver, audit, clock
    ) -> CurrencyConversionServiceImpl:
        repos = dict(document_repos)
        repos[EntityType.MONTHLY_SUBSCRIPTION] = ExplodingRepository(
            db, "monthlysubscriptions"
        )
        return CurrencyConversionServiceImpl(
            database=db,
            document_repos=repos,
            log_service=log_service,
            history_writer=history_writer,
            rate_resolver=rate_resolver,
            audit_logger=audit,
            clock=clock,
        )

    def test_failure_rolls_back_everything(
        self, failing_service, context, seed, document_repos, log_repo, history_repo
    ) -> None:
        course = seed(EntityType.COURSE, price=100)
        payment = seed(EntityType.PAYMENT, courseFee=50)
        product = seed(EntityType.PRODUCT, price=30)

        with pytest.raises(ConversionFailedError) as exc_info:
            failing_service.convert(context, "USD", "EUR")

        error = exc_info.value
        assert error.status_code == 500
        assert error.context["phase"] == "processing"
        assert "subscription store unavailable" in error.details
        assert document_repos[EntityType.COURSE].get(course)["price"] == 100
        assert document_repos[EntityType.PAYMENT].get(payment)["courseFee"] == 50
        assert document_repos[EntityType.PRODUCT].get(product)["price"] == 30

        logs = log_repo.list_by_tenant(context.tenant_id)
        assert [log.status for log in logs] == [ConversionStatus.FAILED]
        assert logs[0].error_message == "subscription store unavailable"
        assert logs[0].statistics.total_records_updated == 0
        assert history_repo.list_by_conversion(context.tenant_id, logs[0].id) == []
        for entity_id in (course, payment, product):
            for entity_type in (EntityType.COURSE, EntityType.PAYMENT, EntityType.PRODUCT):
                assert history_repo.list_by_entity(
                    context.tenant_id, entity_type, entity_id
                ) == []

    def test_failure_does_not_start_cooldown(
        self, failing_service, conversion_service, context, seed, document_repos
    ) -> None:
        doc_id = seed(EntityType.COURSE, price=100)
        with pytest.raises(ConversionFailedError):
            failing_service.convert(context, "USD", "EUR")

        conversion_service.convert(context, "USD", "EUR")

        assert document_repos[EntityType.COURSE].get(doc_id)["price"] == 90

    def test_failure_is_logged_and_audited(
        self, failing_service, context, audit
    ) -> None:
        with capture_logs() as logs:
            with pytest.raises(ConversionFailedError):
                failing_service.convert(context, "USD", "EUR")

        events = [e["event"] for e in logs]
        assert "currency_conversion_failed" in events
        assert "currency_conversion_failure_logged" in events
        assert audit.event_names() == ["currency_conversion_failed"]

    def test_missing_repository_is_a_configuration_error(
        self, db, document_repos, log_service, history_writer, rate_resolver
    ) -> None:
        repos = dict(document_repos)
        del repos[EntityType.EXPENSE]
        with pytest.raises(ValueError, match="Expense"):
            CurrencyConversionServiceImpl(
                database=db,
                document_repos=repos,
                log_service=log_service,
                history_writer=history_writer,
                rate_resolver=rate_resolver,
            )


class TestConcurrentConversions:
    def test_rollback_leaves_other_tenant_conversion_committed(
        self,
        db,
        document_repos,
        log_service,
        history_writer,
        rate_resolver,
        audit,
        clock,
        conversion_service,
        context,
        seed,
        log_repo,
    ) -> None:
        blocking = BlockingRepository(db, "payments")
        repos = dict(document_repos)
        repos[EntityType.PAYMENT] = blocking
        stalled_service = CurrencyConversionServiceImpl(
            database=db,
            document_repos=repos,
            log_service=log_service,
            history_writer=history_writer,
            rate_resolver=rate_resolver,
            audit_logger=audit,
            clock=clock,
        )
        course_a = seed(EntityType.COURSE, price=100)
        course_b = seed(EntityType.COURSE, tenant_id="academy-2", price=100)
        other_tenant = ConversionContext(
            tenant_id="academy-2", user_id="user-2", role="admin"
        )
        failures = []
        results = {}

        def convert_first_tenant():
            try:
                stalled_service.convert(context, "USD", "EUR")
            except ConversionFailedError as e:
                failures.append(e)

        def convert_second_tenant():
            results["academy-2"] = conversion_service.convert(other_tenant, "USD", "EUR")

        first = threading.Thread(target=convert_first_tenant)
        first.start()
        assert blocking.entered.wait(timeout=5)
        second = threading.Thread(target=convert_second_tenant)
        second.start()
        second.join(timeout=0.2)
        blocking.release.set()
        first.join(timeout=5)
        second.join(timeout=5)

        assert not first.is_alive()
        assert not second.is_alive()
        assert len(failures) == 1
        assert results["academy-2"].statistics.total_records_updated == 1

        courses = document_repos[EntityType.COURSE]
        assert courses.get(course_a)["price"] == 100
        assert courses.get(course_b)["price"] == 90
        assert [log.status for log in log_repo.list_by_tenant("academy-2")] == [
            ConversionStatus.SUCCESS
        ]
        assert [log.status for log in log_repo.list_by_tenant("academy-1")] == [
            ConversionStatus.FAILED
        ]


class TestRateFallback:
    def test_both_providers_down_converts_at_one(
        self, conversion_service, context, seed, document_repos, log_repo, fx_server
    ) -> None:
        fx_server.primary_status = 503
        fx_server.secondary_status = 503
        doc_id = seed(EntityType.COURSE, price=100)

        with capture_logs() as logs:
            result = conversion_service.convert(context, "USD", "EUR")

        assert result.exchange_rate == Decimal("1")
        assert result.rate_source == RateSource.FALLBACK
        assert result.statistics.courses_updated == 1
        assert document_repos[EntityType.COURSE].get(doc_id)["price"] == 100
        log = log_repo.get(result.conversion_id)
        assert log.status == ConversionStatus.SUCCESS
        assert log.rate_source == RateSource.FALLBACK
        assert "exchange_rate_fallback" in [
            e["event"] for e in logs if e["log_level"] == "warning"
        ]

    def test_secondary_provider_rate_is_recorded(
        self, conversion_service, context, log_repo, fx_server
    ) -> None:
        fx_server.primary_status = 500

        result = conversion_service.convert(context, "USD", "EUR")

        assert result.rate_source == RateSource.FRANKFURTER
        assert log_repo.get(result.conversion_id).rate_source == RateSource.FRANKFURTER


class TestAudit:
    def test_success_is_audited(self, conversion_service, context, seed, audit) -> None:
        seed(EntityType.COURSE, price=100)

        result = conversion_service.convert(context, "USD", "EUR")

        assert audit.event_names() == ["currency_conversion_succeeded"]
        _, audited_context, details = audit.events[0]
        assert audited_context == context
        assert details["conversion_id"] == str(result.conversion_id)
        assert details["total_records_updated"] == 1
        assert details["rate_source"] == "exchangerate-api"

    def test_cooldown_rejection_is_audited(
        self, conversion_service, context, audit, clock
    ) -> None:
        conversion_service.convert(context, "USD", "EUR")
        clock.advance(hours=2)

        with pytest.raises(ConversionCooldownError):
            conversion_service.convert(context, "USD", "EUR")

        assert audit.event_names() == [
            "currency_conversion_succeeded",
            "currency_conversion_rejected_cooldown",
        ]
