from __future__ import annotations

from abc import ABC, abstractmethod
from uuid import UUID

from academy_currency.domain.conversions import (
    ConversionContext,
    ConversionResult,
    ReversalResult,
)


class CurrencyConversionService(ABC):
    @abstractmethod
    def convert(
        self,
        context: ConversionContext,
        from_currency: str | None,
        to_currency: str | None,
    ) -> ConversionResult:
        """Re-denominate every monetary field of the tenant in one transaction."""
        pass


class ConversionReversalService(ABC):
    @abstractmethod
    def reverse(
        self, context: ConversionContext, conversion_id: UUID
    ) -> ReversalResult:
        """Restore the fields rewritten by a successful conversion."""
        pass
