"""Audit trail of who converted what, when and from where."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from academy_currency.domain.conversions import ConversionContext
from academy_currency.logging_config import get_logger


class AuditLogger(ABC):
    @abstractmethod
    def record(self, event: str, context: ConversionContext, **details: Any) -> None:
        pass


class StructlogAuditLogger(AuditLogger):
    """Emits each audit event as one structured log line."""

    def __init__(self, logger_name: str = "academy_currency.audit") -> None:
        self._logger = get_logger(logger_name)

    def record(self, event: str, context: ConversionContext, **details: Any) -> None:
        self._logger.info(
            event,
            audit=True,
            tenant_id=context.tenant_id,
            user_id=context.user_id,
            user_email=context.user_email,
            role=context.role,
            ip_address=context.ip_address,
            user_agent=context.user_agent,
            **details,
        )


class InMemoryAuditLogger(AuditLogger):
    """Keeps events in a list for inspection."""

    def __init__(self) -> None:
        self.events: list[tuple[str, ConversionContext, dict[str, Any]]] = []

    def record(self, event: str, context: ConversionContext, **details: Any) -> None:
        self.events.append((event, context, details))

    def event_names(self) -> list[str]:
        return [event for event, _, _ in self.events]
