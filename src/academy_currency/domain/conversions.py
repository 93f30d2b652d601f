"""Currency conversion domain models."""

from __future__ import annotations

import re
from dataclasses import dataclass, field, fields
from datetime import UTC, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from academy_currency.exceptions import InvalidMonetaryFieldError


def _utc_now() -> datetime:
    """Return current UTC datetime."""
    return datetime.now(UTC)


class ConversionStatus(str, Enum):
    PARTIAL = "PARTIAL"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


class ConversionPhase(str, Enum):
    """Orchestrator progress, reported alongside failures."""

    IDLE = "idle"
    COOLDOWN_CHECK = "cooldown_check"
    RATE_RESOLUTION = "rate_resolution"
    TRANSACTION_OPEN = "transaction_open"
    PROCESSING = "processing"
    COMMITTING = "committing"
    SUCCESS = "success"
    ABORTING = "aborting"
    FAILED_LOGGED = "failed_logged"


class EntityType(str, Enum):
    COURSE = "Course"
    PAYMENT = "Payment"
    PRODUCT = "Product"
    MONTHLY_SUBSCRIPTION = "MonthlySubscription"
    SCHEDULE = "Schedule"
    NOTIFICATION = "Notification"
    INCOME = "Income"
    EXPENSE = "Expense"


class RateSource(str, Enum):
    """Where a conversion's exchange rate came from."""

    EXCHANGERATE_API = "exchangerate-api"
    FRANKFURTER = "frankfurter"
    CACHE = "cache"
    IDENTITY = "identity"
    FALLBACK = "fallback"
    REVERSAL = "reversal"


@dataclass(frozen=True, slots=True)
class ConvertibleCollection:
    """A document collection and the monetary fields rewritten in it."""

    entity_type: EntityType
    collection: str
    statistic: str
    fields: tuple[str, ...]


# Processing order is fixed so statistics and tests are reproducible.
CONVERTIBLE_COLLECTIONS: tuple[ConvertibleCollection, ...] = (
    ConvertibleCollection(
        EntityType.COURSE, "courses", "courses_updated", ("price",)
    ),
    ConvertibleCollection(
        EntityType.PAYMENT,
        "payments",
        "payments_updated",
        (
            "courseFee",
            "courseRegistrationFee",
            "studentRegistrationFee",
            "outstandingAmount",
            "receivedAmount",
        ),
    ),
    ConvertibleCollection(
        EntityType.PRODUCT, "products", "products_updated", ("price",)
    ),
    ConvertibleCollection(
        EntityType.MONTHLY_SUBSCRIPTION,
        "monthlysubscriptions",
        "subscriptions_updated",
        (
            "courseFee",
            "registrationFee",
            "originalMonthlyAmount",
            "discountedMonthlyAmount",
            "totalPaidAmount",
            "totalExpectedAmount",
            "remainingAmount",
        ),
    ),
    ConvertibleCollection(
        EntityType.SCHEDULE, "schedules", "schedules_updated", ("price",)
    ),
    ConvertibleCollection(
        EntityType.NOTIFICATION,
        "notifications",
        "notifications_updated",
        ("metadata.amount", "metadata.dueAmount"),
    ),
    ConvertibleCollection(
        EntityType.INCOME, "incomes", "incomes_updated", ("amount", "totalAmount")
    ),
    ConvertibleCollection(
        EntityType.EXPENSE, "expenses", "expenses_updated", ("amount", "totalAmount")
    ),
)

COLLECTIONS_BY_ENTITY_TYPE: dict[EntityType, ConvertibleCollection] = {
    c.entity_type: c for c in CONVERTIBLE_COLLECTIONS
}

_FIELD_PATH = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)?$")


def split_field_path(path: str) -> tuple[str, ...]:
    """Split a monetary field name into its parts, allowing one level of nesting."""
    if not _FIELD_PATH.match(path):
        raise InvalidMonetaryFieldError(path)
    return tuple(path.split("."))


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.capitalize() for part in rest)


@dataclass
class ConversionStatistics:
    courses_updated: int = 0
    payments_updated: int = 0
    products_updated: int = 0
    subscriptions_updated: int = 0
    schedules_updated: int = 0
    notifications_updated: int = 0
    incomes_updated: int = 0
    expenses_updated: int = 0

    @property
    def total_records_updated(self) -> int:
        return sum(getattr(self, f.name) for f in fields(self))

    def increment(self, entity_type: EntityType, by: int = 1) -> None:
        name = COLLECTIONS_BY_ENTITY_TYPE[entity_type].statistic
        setattr(self, name, getattr(self, name) + by)

    def count_for(self, entity_type: EntityType) -> int:
        return getattr(self, COLLECTIONS_BY_ENTITY_TYPE[entity_type].statistic)

    def to_dict(self) -> dict[str, int]:
        data = {_camel(f.name): getattr(self, f.name) for f in fields(self)}
        data["totalRecordsUpdated"] = self.total_records_updated
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> ConversionStatistics:
        if not data:
            return cls()
        return cls(**{f.name: int(data.get(_camel(f.name), 0)) for f in fields(cls)})


@dataclass(frozen=True, slots=True)
class ConversionContext:
    """Who is converting, for which tenant, and from where.

    Resolved by the session layer and passed explicitly to every call.
    """

    tenant_id: str
    user_id: str
    role: str
    user_email: str | None = None
    ip_address: str | None = None
    user_agent: str | None = None

    @property
    def operator(self) -> str:
        return self.user_email or self.user_id


@dataclass
class ConversionLog:
    tenant_id: str
    from_currency: str
    to_currency: str
    exchange_rate: Decimal
    converted_by: str
    converted_by_id: str
    role: str
    id: UUID = field(default_factory=uuid4)
    status: ConversionStatus = ConversionStatus.PARTIAL
    statistics: ConversionStatistics = field(default_factory=ConversionStatistics)
    rate_source: RateSource | None = None
    ip_address: str | None = None
    user_agent: str | None = None
    error_message: str | None = None
    reverses_conversion_id: UUID | None = None
    timestamp: datetime = field(default_factory=_utc_now)

    def __post_init__(self) -> None:
        if not isinstance(self.exchange_rate, Decimal):
            self.exchange_rate = Decimal(str(self.exchange_rate))
        if self.exchange_rate <= 0:
            raise ValueError(
                f"Exchange rate must be positive, got {self.exchange_rate}"
            )

    @classmethod
    def for_context(
        cls,
        context: ConversionContext,
        from_currency: str,
        to_currency: str,
        exchange_rate: Decimal,
        **kwargs: Any,
    ) -> ConversionLog:
        return cls(
            tenant_id=context.tenant_id,
            from_currency=from_currency,
            to_currency=to_currency,
            exchange_rate=exchange_rate,
            converted_by=context.operator,
            converted_by_id=context.user_id,
            role=context.role,
            ip_address=context.ip_address,
            user_agent=context.user_agent,
            **kwargs,
        )

    @property
    def is_reversal(self) -> bool:
        return self.reverses_conversion_id is not None


@dataclass(frozen=True, slots=True)
class CurrencyHistory:
    """Before/after snapshot of one converted document.

    Carries its own currencies and rate so it can reverse the document alone.
    """

    tenant_id: str
    conversion_id: UUID
    entity_type: EntityType
    entity_id: str
    original_values: dict[str, int | float]
    converted_values: dict[str, int | float]
    from_currency: str
    to_currency: str
    exchange_rate: Decimal
    id: UUID = field(default_factory=uuid4)
    created_at: datetime = field(default_factory=_utc_now)

    def __post_init__(self) -> None:
        if set(self.original_values) != set(self.converted_values):
            raise ValueError(
                "original_values and converted_values must have the same fields"
            )
        if not self.original_values:
            raise ValueError("History record must contain at least one field")
        if not isinstance(self.exchange_rate, Decimal):
            object.__setattr__(self, "exchange_rate", Decimal(str(self.exchange_rate)))


@dataclass(frozen=True)
class ConversionResult:
    from_currency: str
    to_currency: str
    exchange_rate: Decimal
    rate_source: RateSource
    conversion_id: UUID | None = None
    statistics: ConversionStatistics | None = None


@dataclass(frozen=True)
class ReversalResult:
    conversion_id: UUID
    reversed_conversion_id: UUID
    from_currency: str
    to_currency: str
    exchange_rate: Decimal
    statistics: ConversionStatistics
    fields_skipped: int = 0
