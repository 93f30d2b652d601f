from __future__ import annotations

from collections.abc import Mapping
from decimal import Decimal
from uuid import UUID

from academy_currency.domain.conversions import CurrencyHistory, EntityType
from academy_currency.repositories.interfaces import CurrencyHistoryRepository


class ConversionHistoryWriter:
    """Appends one snapshot per mutated document, inside the caller's transaction."""

    def __init__(self, history_repo: CurrencyHistoryRepository) -> None:
        self._repo = history_repo

    def record(
        self,
        tenant_id: str,
        conversion_id: UUID,
        entity_type: EntityType,
        entity_id: str,
        original_values: Mapping[str, int | float],
        converted_values: Mapping[str, int | float],
        from_currency: str,
        to_currency: str,
        exchange_rate: Decimal,
    ) -> CurrencyHistory:
        history = CurrencyHistory(
            tenant_id=tenant_id,
            conversion_id=conversion_id,
            entity_type=entity_type,
            entity_id=entity_id,
            original_values=dict(original_values),
            converted_values=dict(converted_values),
            from_currency=from_currency,
            to_currency=to_currency,
            exchange_rate=exchange_rate,
        )
        self._repo.add(history)
        return history

    def list_for_conversion(
        self, tenant_id: str, conversion_id: UUID
    ) -> list[CurrencyHistory]:
        return self._repo.list_by_conversion(tenant_id, conversion_id)

    def list_for_entity(
        self, tenant_id: str, entity_type: EntityType, entity_id: str
    ) -> list[CurrencyHistory]:
        return self._repo.list_by_entity(tenant_id, entity_type, entity_id)
