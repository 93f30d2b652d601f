from abc import ABC, abstractmethod
from collections.abc import Iterable, Iterator, Mapping, Sequence
from contextlib import AbstractContextManager
from datetime import datetime
from typing import Any
from uuid import UUID

from academy_currency.domain.conversions import (
    ConversionLog,
    CurrencyHistory,
    EntityType,
)

Document = dict[str, Any]


class DocumentDatabase(ABC):
    """Document store connection with multi-statement transactions."""

    @abstractmethod
    def initialize(self) -> None:
        """Create storage for documents, conversion logs and history."""
        pass

    @abstractmethod
    def transaction(self) -> AbstractContextManager[None]:
        """Run the enclosed statements as one atomic unit.

        Commits on normal exit, rolls back and re-raises on any exception.
        Writes issued outside a transaction commit immediately. A transaction
        belongs to the calling thread; only that thread's statements join it.
        """
        pass

    @abstractmethod
    def close(self) -> None:
        pass


class DocumentRepository(ABC):
    """Schema-flexible documents of one collection, scoped by tenant.

    Documents are plain dicts; their id is exposed under ``_id``.
    """

    collection: str

    @abstractmethod
    def add(self, document: Document) -> str:
        """Insert a document, assigning an ``_id`` when absent. Returns the id."""
        pass

    @abstractmethod
    def get(self, document_id: str) -> Document | None:
        pass

    @abstractmethod
    def list_by_tenant(self, tenant_id: str) -> Iterable[Document]:
        pass

    @abstractmethod
    def find_eligible(
        self, tenant_id: str, fields: Sequence[str]
    ) -> Iterator[Document]:
        """Yield the tenant's documents with at least one positive listed field.

        A document belongs to the tenant when its ``tenantId`` or legacy
        ``academyId`` equals tenant_id. Field names may be dotted
        (``metadata.amount``). Iteration order is unspecified.
        """
        pass

    @abstractmethod
    def update_fields(
        self, document_id: str, updates: Mapping[str, int | float]
    ) -> None:
        """Set the given (possibly dotted) fields, leaving the rest untouched."""
        pass


class ConversionLogRepository(ABC):
    @abstractmethod
    def add(self, log: ConversionLog) -> None:
        pass

    @abstractmethod
    def update(self, log: ConversionLog) -> None:
        pass

    @abstractmethod
    def get(self, log_id: UUID) -> ConversionLog | None:
        pass

    @abstractmethod
    def get_latest_success_since(
        self, tenant_id: str, since: datetime
    ) -> ConversionLog | None:
        """Most recent SUCCESS log for the tenant with timestamp >= since."""
        pass

    @abstractmethod
    def get_successful_reversal(self, conversion_id: UUID) -> ConversionLog | None:
        pass

    @abstractmethod
    def list_by_tenant(self, tenant_id: str, limit: int = 50) -> list[ConversionLog]:
        """Tenant's logs, newest first."""
        pass


class CurrencyHistoryRepository(ABC):
    """Append-only store of per-document conversion snapshots."""

    @abstractmethod
    def add(self, history: CurrencyHistory) -> None:
        pass

    @abstractmethod
    def list_by_conversion(
        self, tenant_id: str, conversion_id: UUID
    ) -> list[CurrencyHistory]:
        pass

    @abstractmethod
    def list_by_entity(
        self, tenant_id: str, entity_type: EntityType, entity_id: str
    ) -> list[CurrencyHistory]:
        pass
