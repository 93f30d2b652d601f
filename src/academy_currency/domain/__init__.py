from academy_currency.domain.conversions import (
    COLLECTIONS_BY_ENTITY_TYPE,
    CONVERTIBLE_COLLECTIONS,
    ConversionContext,
    ConversionLog,
    ConversionPhase,
    ConversionResult,
    ConversionStatistics,
    ConversionStatus,
    ConvertibleCollection,
    CurrencyHistory,
    EntityType,
    RateSource,
    ReversalResult,
    split_field_path,
)
from academy_currency.domain.session import SessionClaims

__all__ = [
    "COLLECTIONS_BY_ENTITY_TYPE",
    "CONVERTIBLE_COLLECTIONS",
    "ConversionContext",
    "ConversionLog",
    "ConversionPhase",
    "ConversionResult",
    "ConversionStatistics",
    "ConversionStatus",
    "ConvertibleCollection",
    "CurrencyHistory",
    "EntityType",
    "RateSource",
    "ReversalResult",
    "SessionClaims",
    "split_field_path",
]
