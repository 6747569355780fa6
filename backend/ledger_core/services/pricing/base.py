# backend/ledger_core/services/pricing/base.py
"""
Abstract interface for daily price sources.

This module defines the contract that all price sources must follow.
Using an abstract base class allows for:
- Easy addition of new sources (exchange APIs, broker feeds, etc.)
- Mock implementations for testing
- Consistent retry behavior across all sources

The backfill job only ever asks a source for ONE price on ONE day;
batching and caching are its own concern.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any, Callable, TypeVar

from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
    before_sleep_log,
)

from ledger_core.services.exceptions import (
    ProviderUnavailableError,
    RateLimitError,
)

logger = logging.getLogger(__name__)

# Type variable for generic return type in retry method
T = TypeVar('T')


# =============================================================================
# DATA CLASSES
# =============================================================================

@dataclass(frozen=True)
class PriceRequest:
    """
    One day's price lookup, resolved from an asset price mapping.

    Attributes:
        symbol: Asset symbol in the ledger (e.g., "BTC")
        currency: Quote currency (e.g., "USD")
        date: Day to price
        provider_id: The source's own identifier (e.g., "bitcoin", "BTC-USD")
        api_endpoint: URL template (HTTP source only)
        api_config: Method, headers, auth and query params (HTTP source only)
        response_path: Dotted path to the price in the JSON body (HTTP source only)
    """

    symbol: str
    currency: str
    date: date
    provider_id: str
    api_endpoint: str | None = None
    api_config: dict[str, Any] = field(default_factory=dict, hash=False, compare=False)
    response_path: str | None = None

    @classmethod
    def from_mapping(cls, mapping, symbol: str, day: date) -> "PriceRequest":
        """Build a request from an AssetPriceMapping row."""
        return cls(
            symbol=symbol.upper(),
            currency=mapping.quote_currency.upper(),
            date=day,
            provider_id=mapping.provider_id,
            api_endpoint=mapping.api_endpoint,
            api_config=dict(mapping.api_config or {}),
            response_path=mapping.response_path,
        )


@dataclass(frozen=True)
class DailyPrice:
    """
    A single day's price for a (symbol, currency) pair.

    This is the unit written into the price cache.
    """

    symbol: str
    currency: str
    date: date
    price: Decimal
    source: str

    def __post_init__(self) -> None:
        if self.price <= 0:
            raise ValueError(f"price must be positive, got {self.price}")


# =============================================================================
# ABSTRACT BASE CLASS
# =============================================================================

class PriceSource(ABC):
    """
    Abstract base class for daily price sources.

    Retry Behavior:
        The base class provides a `_execute_with_retry` method that implements
        exponential backoff retry logic. Subclasses can override the retry
        configuration by setting class attributes:

        - MAX_RETRY_ATTEMPTS: Total attempts (default: 3)
        - RETRY_MIN_WAIT: Minimum wait in seconds (default: 1)
        - RETRY_MAX_WAIT: Maximum wait in seconds (default: 10)
        - RETRY_MULTIPLIER: Exponential multiplier (default: 1)

    Retryable Exceptions:
        - ProviderUnavailableError: Network issues, timeouts, server errors
        - RateLimitError: API rate limit exceeded

    Non-Retryable Exceptions:
        - TickerNotFoundError: The source does not know the symbol
        - PriceNotAvailableError: No price for that day
    """

    MAX_RETRY_ATTEMPTS: int = 3
    RETRY_MIN_WAIT: int = 1
    RETRY_MAX_WAIT: int = 10
    RETRY_MULTIPLIER: int = 1

    @property
    @abstractmethod
    def name(self) -> str:
        """
        Unique identifier for this source.

        Stored as AssetPrice.source for every price it produces.
        """
        pass

    @abstractmethod
    def get_daily_price(self, request: PriceRequest) -> DailyPrice:
        """
        Fetch the price for one symbol on one day.

        Raises:
            TickerNotFoundError: Symbol unknown to the source
            PriceNotAvailableError: Symbol known, no price for that day
            ProviderUnavailableError: Network or API error (retried)
            RateLimitError: Rate limit exceeded (retried)
        """
        pass

    def _execute_with_retry(
            self,
            func: Callable[..., T],
            *args: Any,
            **kwargs: Any,
    ) -> T:
        """
        Execute a function with retry logic for transient failures.

        Uses exponential backoff for ProviderUnavailableError and
        RateLimitError. Any other exception propagates immediately.

        Raises:
            The last exception if all retries fail
        """

        @retry(
            stop=stop_after_attempt(self.MAX_RETRY_ATTEMPTS),
            wait=wait_exponential(
                multiplier=self.RETRY_MULTIPLIER,
                min=self.RETRY_MIN_WAIT,
                max=self.RETRY_MAX_WAIT,
            ),
            retry=retry_if_exception_type((ProviderUnavailableError, RateLimitError)),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        def _inner() -> T:
            return func(*args, **kwargs)

        return _inner()
