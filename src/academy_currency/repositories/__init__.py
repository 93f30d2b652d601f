from academy_currency.repositories.interfaces import (
    ConversionLogRepository,
    CurrencyHistoryRepository,
    Document,
    DocumentDatabase,
    DocumentRepository,
)
from academy_currency.repositories.sqlite import (
    SQLiteConversionLogRepository,
    SQLiteCurrencyHistoryRepository,
    SQLiteDatabase,
    SQLiteDocumentRepository,
)

__all__ = [
    "ConversionLogRepository",
    "CurrencyHistoryRepository",
    "Document",
    "DocumentDatabase",
    "DocumentRepository",
    "SQLiteConversionLogRepository",
    "SQLiteCurrencyHistoryRepository",
    "SQLiteDatabase",
    "SQLiteDocumentRepository",
]
