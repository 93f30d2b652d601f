"""Live exchange rate lookup with provider failover.

Providers are tried in order. When every provider fails the resolver
falls back to a rate of 1 and logs a warning rather than raising, so a
conversion can still proceed (and is recorded with source ``fallback``).
"""

from __future__ import annotations

import math
import threading
import time
from abc import ABC, abstractmethod
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

import httpx

from academy_currency.domain.conversions import RateSource
from academy_currency.exceptions import ExchangeRateProviderError
from academy_currency.logging_config import get_logger

logger = get_logger(__name__)

FALLBACK_RATE = Decimal("1")


@dataclass(frozen=True)
class RateQuote:
    from_currency: str
    to_currency: str
    rate: Decimal
    source: RateSource


def _read_rate(provider: str, payload: Any, to_currency: str) -> Decimal:
    if not isinstance(payload, dict) or not isinstance(payload.get("rates"), dict):
        raise ExchangeRateProviderError(provider, "response has no rates table")
    value = payload["rates"].get(to_currency)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ExchangeRateProviderError(provider, f"no numeric rate for {to_currency}")
    if not math.isfinite(value) or value <= 0:
        raise ExchangeRateProviderError(provider, f"invalid rate {value!r}")
    return Decimal(str(value))


class ExchangeRateProvider(ABC):
    """One upstream FX source."""

    source: RateSource

    def __init__(self, client: httpx.Client, base_url: str) -> None:
        self._client = client
        self._base_url = base_url.rstrip("/")

    @property
    def name(self) -> str:
        return self.source.value

    @abstractmethod
    def build_request(self, from_currency: str, to_currency: str) -> tuple[str, dict[str, str]]:
        """Return the URL and query parameters for a lookup."""
        pass

    def fetch_rate(self, from_currency: str, to_currency: str) -> Decimal:
        """Fetch ``to_currency`` units per one ``from_currency``.

        Raises:
            ExchangeRateProviderError: on any transport, status or payload problem
        """
        url, params = self.build_request(from_currency, to_currency)
        try:
            response = self._client.get(url, params=params or None)
        except httpx.HTTPError as e:
            raise ExchangeRateProviderError(self.name, str(e)) from e
        if not response.is_success:
            raise ExchangeRateProviderError(
                self.name, f"HTTP {response.status_code}"
            )
        try:
            payload = response.json()
        except ValueError as e:
            raise ExchangeRateProviderError(self.name, "invalid JSON body") from e
        return _read_rate(self.name, payload, to_currency)


class ExchangeRateApiProvider(ExchangeRateProvider):
    """exchangerate-api.com: latest rates for a base currency."""

    source = RateSource.EXCHANGERATE_API

    def build_request(self, from_currency: str, to_currency: str) -> tuple[str, dict[str, str]]:
        return f"{self._base_url}/v4/latest/{from_currency}", {}


class FrankfurterProvider(ExchangeRateProvider):
    """frankfurter.app: ECB reference rates."""

    source = RateSource.FRANKFURTER

    def build_request(self, from_currency: str, to_currency: str) -> tuple[str, dict[str, str]]:
        return f"{self._base_url}/latest", {"from": from_currency, "to": to_currency}


class ExchangeRateResolver:
    """Resolve a live rate from ordered providers, failing open to 1.

    Successful lookups are cached per currency pair for ``cache_ttl_seconds``.
    Fallback results are never cached.
    """

    def __init__(
        self,
        providers: Sequence[ExchangeRateProvider],
        cache_ttl_seconds: float = 3600,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._providers = list(providers)
        self._cache_ttl = cache_ttl_seconds
        self._clock = clock
        self._cache: dict[tuple[str, str], tuple[Decimal, float]] = {}
        self._lock = threading.Lock()

    def resolve_rate(self, from_currency: str, to_currency: str) -> Decimal:
        return self.quote(from_currency, to_currency).rate

    def quote(self, from_currency: str, to_currency: str) -> RateQuote:
        if from_currency == to_currency:
            return RateQuote(from_currency, to_currency, Decimal("1"), RateSource.IDENTITY)

        cached = self._cached(from_currency, to_currency)
        if cached is not None:
            logger.debug(
                "exchange_rate_cache_hit",
                from_currency=from_currency,
                to_currency=to_currency,
            )
            return RateQuote(from_currency, to_currency, cached, RateSource.CACHE)

        for provider in self._providers:
            try:
                rate = provider.fetch_rate(from_currency, to_currency)
            except ExchangeRateProviderError as e:
                logger.error(
                    "exchange_rate_provider_failed",
                    provider=provider.name,
                    from_currency=from_currency,
                    to_currency=to_currency,
                    reason=e.context.get("reason"),
                )
                continue
            logger.info(
                "exchange_rate_resolved",
                provider=provider.name,
                from_currency=from_currency,
                to_currency=to_currency,
                rate=str(rate),
            )
            self._store(from_currency, to_currency, rate)
            return RateQuote(from_currency, to_currency, rate, provider.source)

        logger.warning(
            "exchange_rate_fallback",
            from_currency=from_currency,
            to_currency=to_currency,
            rate=str(FALLBACK_RATE),
        )
        return RateQuote(from_currency, to_currency, FALLBACK_RATE, RateSource.FALLBACK)

    def clear_cache(self) -> None:
        with self._lock:
            self._cache.clear()

    def _cached(self, from_currency: str, to_currency: str) -> Decimal | None:
        if self._cache_ttl <= 0:
            return None
        with self._lock:
            entry = self._cache.get((from_currency, to_currency))
            if entry is None:
                return None
            rate, stored_at = entry
            if self._clock() - stored_at >= self._cache_ttl:
                del self._cache[(from_currency, to_currency)]
                return None
            return rate

    def _store(self, from_currency: str, to_currency: str, rate: Decimal) -> None:
        if self._cache_ttl <= 0:
            return
        with self._lock:
            self._cache[(from_currency, to_currency)] = (rate, self._clock())


def create_default_resolver(
    client: httpx.Client,
    primary_url: str,
    secondary_url: str,
    cache_ttl_seconds: float = 3600,
) -> ExchangeRateResolver:
    """Primary exchangerate-api with Frankfurter as the secondary provider."""
    return ExchangeRateResolver(
        [
            ExchangeRateApiProvider(client, primary_url),
            FrankfurterProvider(client, secondary_url),
        ],
        cache_ttl_seconds=cache_ttl_seconds,
    )
