from academy_currency.domain.conversions import (
    ConversionContext,
    ConversionLog,
    ConversionResult,
    ConversionStatistics,
    ConversionStatus,
    CurrencyHistory,
    EntityType,
)

__all__ = [
    "ConversionContext",
    "ConversionLog",
    "ConversionResult",
    "ConversionStatistics",
    "ConversionStatus",
    "CurrencyHistory",
    "EntityType",
]

__version__ = "0.1.0"
