from academy_currency.services.audit import (
    AuditLogger,
    InMemoryAuditLogger,
    StructlogAuditLogger,
)
from academy_currency.services.conversion import CurrencyConversionServiceImpl
from academy_currency.services.conversion_history import ConversionHistoryWriter
from academy_currency.services.conversion_log import ConversionLogService
from academy_currency.services.exchange_rates import (
    ExchangeRateApiProvider,
    ExchangeRateProvider,
    ExchangeRateResolver,
    FrankfurterProvider,
    RateQuote,
)
from academy_currency.services.field_converter import (
    FieldConversion,
    convert_fields,
    monetary_value,
)
from academy_currency.services.interfaces import (
    ConversionReversalService,
    CurrencyConversionService,
)
from academy_currency.services.reversal import ConversionReversalServiceImpl
from academy_currency.services.session import SessionTokenService

__all__ = [
    "AuditLogger",
    "ConversionHistoryWriter",
    "ConversionLogService",
    "ConversionReversalService",
    "ConversionReversalServiceImpl",
    "CurrencyConversionService",
    "CurrencyConversionServiceImpl",
    "ExchangeRateApiProvider",
    "ExchangeRateProvider",
    "ExchangeRateResolver",
    "FieldConversion",
    "FrankfurterProvider",
    "InMemoryAuditLogger",
    "RateQuote",
    "SessionTokenService",
    "StructlogAuditLogger",
    "convert_fields",
    "monetary_value",
]
