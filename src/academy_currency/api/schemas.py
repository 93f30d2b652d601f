"""Pydantic schemas for API request/response validation.

Wire names are camelCase; Python attributes stay snake_case.
"""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from academy_currency.domain.conversions import (
    ConversionLog,
    ConversionStatistics,
    CurrencyHistory,
)


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class HealthResponse(BaseModel):
    """Schema for health check response."""

    status: str
    version: str = "0.1.0"


class ConvertCurrencyRequest(CamelModel):
    """Schema for a tenant-wide conversion request.

    Both fields are optional here so a missing currency is reported as a
    400 by the service rather than a generic 422.
    """

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, str_strip_whitespace=True
    )

    from_currency: str | None = None
    to_currency: str | None = None


class ConversionStatisticsResponse(CamelModel):
    courses_updated: int = 0
    payments_updated: int = 0
    products_updated: int = 0
    subscriptions_updated: int = 0
    schedules_updated: int = 0
    notifications_updated: int = 0
    incomes_updated: int = 0
    expenses_updated: int = 0
    total_records_updated: int = 0

    @classmethod
    def from_statistics(
        cls, statistics: ConversionStatistics
    ) -> "ConversionStatisticsResponse":
        return cls.model_validate(statistics.to_dict())


class ConvertCurrencyResponse(CamelModel):
    """Schema for conversion outcome."""

    success: bool = True
    message: str | None = None
    exchange_rate: float
    from_currency: str
    to_currency: str
    rate_source: str
    conversion_id: UUID | None = None
    statistics: ConversionStatisticsResponse | None = None


class RateQuoteResponse(CamelModel):
    from_currency: str
    to_currency: str
    rate: float
    source: str


class ConversionLogResponse(CamelModel):
    """Schema for one conversion attempt."""

    id: UUID
    from_currency: str
    to_currency: str
    exchange_rate: float
    converted_by: str
    converted_by_id: str
    role: str
    ip_address: str | None = None
    user_agent: str | None = None
    status: str
    statistics: ConversionStatisticsResponse
    rate_source: str | None = None
    error_message: str | None = None
    reverses_conversion_id: UUID | None = None
    timestamp: datetime

    @classmethod
    def from_log(cls, log: ConversionLog) -> "ConversionLogResponse":
        return cls(
            id=log.id,
            from_currency=log.from_currency,
            to_currency=log.to_currency,
            exchange_rate=float(log.exchange_rate),
            converted_by=log.converted_by,
            converted_by_id=log.converted_by_id,
            role=log.role,
            ip_address=log.ip_address,
            user_agent=log.user_agent,
            status=log.status.value,
            statistics=ConversionStatisticsResponse.from_statistics(log.statistics),
            rate_source=log.rate_source.value if log.rate_source else None,
            error_message=log.error_message,
            reverses_conversion_id=log.reverses_conversion_id,
            timestamp=log.timestamp,
        )


class ConversionLogListResponse(CamelModel):
    conversions: list[ConversionLogResponse]
    total: int


class CurrencyHistoryResponse(CamelModel):
    """Schema for one document's before/after snapshot."""

    id: UUID
    conversion_id: UUID
    entity_type: str
    entity_id: str
    original_values: dict[str, Any]
    converted_values: dict[str, Any]
    from_currency: str
    to_currency: str
    exchange_rate: float
    created_at: datetime

    @classmethod
    def from_history(cls, history: CurrencyHistory) -> "CurrencyHistoryResponse":
        return cls(
            id=history.id,
            conversion_id=history.conversion_id,
            entity_type=history.entity_type.value,
            entity_id=history.entity_id,
            original_values=history.original_values,
            converted_values=history.converted_values,
            from_currency=history.from_currency,
            to_currency=history.to_currency,
            exchange_rate=float(history.exchange_rate),
            created_at=history.created_at,
        )


class CurrencyHistoryListResponse(CamelModel):
    history: list[CurrencyHistoryResponse]
    total: int


class ReversalResponse(CamelModel):
    success: bool = True
    conversion_id: UUID
    reversed_conversion_id: UUID
    from_currency: str
    to_currency: str
    exchange_rate: float
    statistics: ConversionStatisticsResponse
    fields_skipped: int = Field(default=0, ge=0)
