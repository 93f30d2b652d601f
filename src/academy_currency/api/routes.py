"""API route handlers for currency conversion."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Query

from academy_currency.api.dependencies import CurrencyPair, CurrentContext
from academy_currency.api.schemas import (
    ConversionLogListResponse,
    ConversionLogResponse,
    ConversionStatisticsResponse,
    ConvertCurrencyResponse,
    CurrencyHistoryListResponse,
    CurrencyHistoryResponse,
    HealthResponse,
    RateQuoteResponse,
    ReversalResponse,
)
from academy_currency.container import (
    get_conversion_log_service,
    get_conversion_service,
    get_history_writer,
    get_rate_resolver,
    get_reversal_service,
)
from academy_currency.domain.conversions import RateSource
from academy_currency.services.conversion import (
    CurrencyConversionServiceImpl,
    normalize_currency_pair,
)
from academy_currency.services.conversion_history import ConversionHistoryWriter
from academy_currency.services.conversion_log import ConversionLogService
from academy_currency.services.exchange_rates import ExchangeRateResolver
from academy_currency.services.reversal import ConversionReversalServiceImpl

IDENTITY_MESSAGE = "No conversion needed - currencies are the same"

health_router = APIRouter(tags=["health"])
currency_router = APIRouter(prefix="/currency", tags=["currency"])


# Health endpoint
@health_router.get("/health", response_model=HealthResponse)
def health_check() -> HealthResponse:
    """Health check endpoint."""
    return HealthResponse(status="healthy")


# Conversion endpoints
@currency_router.post("/convert", response_model=ConvertCurrencyResponse)
def convert_currency(
    payload: CurrencyPair,
    context: CurrentContext,
    service: Annotated[CurrencyConversionServiceImpl, Depends(get_conversion_service)],
) -> ConvertCurrencyResponse:
    """Re-denominate every monetary field of the caller's tenant."""
    result = service.convert(context, payload.from_currency, payload.to_currency)
    return ConvertCurrencyResponse(
        message=IDENTITY_MESSAGE if result.rate_source == RateSource.IDENTITY else None,
        exchange_rate=float(result.exchange_rate),
        from_currency=result.from_currency,
        to_currency=result.to_currency,
        rate_source=result.rate_source.value,
        conversion_id=result.conversion_id,
        statistics=(
            ConversionStatisticsResponse.from_statistics(result.statistics)
            if result.statistics is not None
            else None
        ),
    )


@currency_router.get("/rates", response_model=RateQuoteResponse)
def preview_rate(
    context: CurrentContext,
    resolver: Annotated[ExchangeRateResolver, Depends(get_rate_resolver)],
    from_currency: Annotated[str | None, Query(alias="from")] = None,
    to_currency: Annotated[str | None, Query(alias="to")] = None,
) -> RateQuoteResponse:
    """Preview the rate a conversion would use; nothing is persisted."""
    from_code, to_code = normalize_currency_pair(from_currency, to_currency)
    quote = resolver.quote(from_code, to_code)
    return RateQuoteResponse(
        from_currency=quote.from_currency,
        to_currency=quote.to_currency,
        rate=float(quote.rate),
        source=quote.source.value,
    )


@currency_router.get("/conversions", response_model=ConversionLogListResponse)
def list_conversions(
    context: CurrentContext,
    logs: Annotated[ConversionLogService, Depends(get_conversion_log_service)],
    limit: Annotated[int, Query(ge=1, le=200)] = 50,
) -> ConversionLogListResponse:
    """List the tenant's conversion attempts, newest first."""
    conversions = logs.list_for_tenant(context.tenant_id, limit=limit)
    return ConversionLogListResponse(
        conversions=[ConversionLogResponse.from_log(log) for log in conversions],
        total=len(conversions),
    )


@currency_router.get(
    "/conversions/{conversion_id}", response_model=ConversionLogResponse
)
def get_conversion(
    conversion_id: UUID,
    context: CurrentContext,
    logs: Annotated[ConversionLogService, Depends(get_conversion_log_service)],
) -> ConversionLogResponse:
    """Get one conversion attempt by ID."""
    return ConversionLogResponse.from_log(
        logs.get_for_tenant(context.tenant_id, conversion_id)
    )


@currency_router.get(
    "/conversions/{conversion_id}/history",
    response_model=CurrencyHistoryListResponse,
)
def get_conversion_history(
    conversion_id: UUID,
    context: CurrentContext,
    logs: Annotated[ConversionLogService, Depends(get_conversion_log_service)],
    history: Annotated[ConversionHistoryWriter, Depends(get_history_writer)],
) -> CurrencyHistoryListResponse:
    """List the per-document snapshots written by a conversion."""
    log = logs.get_for_tenant(context.tenant_id, conversion_id)
    records = history.list_for_conversion(context.tenant_id, log.id)
    return CurrencyHistoryListResponse(
        history=[CurrencyHistoryResponse.from_history(h) for h in records],
        total=len(records),
    )


@currency_router.post(
    "/conversions/{conversion_id}/reverse", response_model=ReversalResponse
)
def reverse_conversion(
    conversion_id: UUID,
    context: CurrentContext,
    service: Annotated[ConversionReversalServiceImpl, Depends(get_reversal_service)],
) -> ReversalResponse:
    """Restore the values a successful conversion replaced."""
    result = service.reverse(context, conversion_id)
    return ReversalResponse(
        conversion_id=result.conversion_id,
        reversed_conversion_id=result.reversed_conversion_id,
        from_currency=result.from_currency,
        to_currency=result.to_currency,
        exchange_rate=float(result.exchange_rate),
        statistics=ConversionStatisticsResponse.from_statistics(result.statistics),
        fields_skipped=result.fields_skipped,
    )
