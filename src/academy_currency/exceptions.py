"""Domain exception hierarchy for Academy Currency.

All domain-specific exceptions inherit from AcademyCurrencyError.
This allows catching all application errors with a single base class
while preserving specificity for individual error types.
"""

from datetime import datetime
from typing import Any
from uuid import UUID


class AcademyCurrencyError(Exception):
    """Base exception for all Academy Currency errors.

    Includes optional error_code for API responses and extra context.
    """

    error_code: str = "ACX_ERROR"
    status_code: int = 500

    def __init__(
        self,
        message: str,
        *,
        error_code: str | None = None,
        status_code: int | None = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if error_code:
            self.error_code = error_code
        if status_code:
            self.status_code = status_code
        self.context = context or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for API responses."""
        return {
            "error": self.error_code,
            "message": self.message,
            "context": self.context,
        }


# =============================================================================
# Validation Errors
# =============================================================================


class ValidationError(AcademyCurrencyError):
    """Base exception for validation errors."""

    error_code = "VALIDATION_ERROR"
    status_code = 422


class MissingCurrencyError(ValidationError):
    """Raised when a conversion request lacks a source or target currency."""

    error_code = "MISSING_CURRENCY"
    status_code = 400

    def __init__(self, missing: list[str]) -> None:
        super().__init__(
            "Missing currency parameters",
            context={"missing": missing},
        )


class InvalidCurrencyError(ValidationError):
    """Raised when an invalid currency code is provided."""

    error_code = "INVALID_CURRENCY"
    status_code = 400

    def __init__(self, currency_code: str) -> None:
        super().__init__(
            f"Invalid currency code: {currency_code}",
            context={"currency_code": currency_code},
        )


class InvalidMonetaryFieldError(ValidationError):
    """Raised when a field path cannot address a monetary field."""

    error_code = "INVALID_MONETARY_FIELD"
    status_code = 400

    def __init__(self, field_path: str) -> None:
        super().__init__(
            f"Invalid monetary field path: {field_path}",
            context={"field": field_path},
        )


# =============================================================================
# Authentication Errors
# =============================================================================


class AuthenticationError(AcademyCurrencyError):
    """Raised when the caller has no valid session."""

    error_code = "AUTHENTICATION_ERROR"
    status_code = 401

    def __init__(self, message: str = "Unauthorized") -> None:
        super().__init__(message)


# =============================================================================
# Conversion Errors
# =============================================================================


class ConversionError(AcademyCurrencyError):
    """Base exception for currency conversion errors."""

    error_code = "CONVERSION_ERROR"
    status_code = 400


class ConversionCooldownError(ConversionError):
    """Raised when the tenant converted successfully inside the cooldown window."""

    error_code = "CONVERSION_COOLDOWN"
    status_code = 429

    def __init__(
        self,
        from_currency: str,
        to_currency: str,
        timestamp: datetime,
        converted_by: str,
        cooldown_hours: int,
    ) -> None:
        super().__init__(
            f"Currency was already converted in the last {cooldown_hours} hours",
            context={
                "fromCurrency": from_currency,
                "toCurrency": to_currency,
                "timestamp": timestamp.isoformat(),
                "convertedBy": converted_by,
                "cooldownHours": cooldown_hours,
            },
        )


class ConversionFailedError(ConversionError):
    """Raised when a conversion transaction was rolled back."""

    error_code = "CONVERSION_FAILED"
    status_code = 500

    def __init__(self, details: str, *, phase: str | None = None) -> None:
        context: dict[str, Any] = {}
        if phase is not None:
            context["phase"] = phase
        super().__init__("Failed to convert currency", context=context)
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["details"] = self.details
        return data


class ConversionNotFoundError(ConversionError):
    """Raised when a conversion cannot be found for the tenant."""

    error_code = "CONVERSION_NOT_FOUND"
    status_code = 404

    def __init__(self, conversion_id: UUID | str) -> None:
        super().__init__(
            f"Conversion not found: {conversion_id}",
            context={"conversion_id": str(conversion_id)},
        )


class ConversionNotReversibleError(ConversionError):
    """Raised when a conversion is not in a state that can be reversed."""

    error_code = "CONVERSION_NOT_REVERSIBLE"
    status_code = 409

    def __init__(self, conversion_id: UUID | str, reason: str) -> None:
        super().__init__(
            f"Conversion {conversion_id} cannot be reversed: {reason}",
            context={"conversion_id": str(conversion_id), "reason": reason},
        )


class ConversionAlreadyReversedError(ConversionNotReversibleError):
    """Raised when a conversion already has a successful reversal."""

    error_code = "CONVERSION_ALREADY_REVERSED"

    def __init__(self, conversion_id: UUID | str, reversal_id: UUID | str) -> None:
        super().__init__(conversion_id, "already reversed")
        self.context["reversal_id"] = str(reversal_id)


# =============================================================================
# Exchange Rate Errors
# =============================================================================


class ExchangeRateProviderError(AcademyCurrencyError):
    """Raised when a single FX provider cannot produce a rate."""

    error_code = "EXCHANGE_RATE_PROVIDER_ERROR"
    status_code = 502

    def __init__(self, provider: str, reason: str) -> None:
        super().__init__(
            f"{provider} could not provide a rate: {reason}",
            context={"provider": provider, "reason": reason},
        )


# =============================================================================
# Database Errors
# =============================================================================


class DatabaseError(AcademyCurrencyError):
    """Base exception for document store errors."""

    error_code = "DATABASE_ERROR"
    status_code = 500
