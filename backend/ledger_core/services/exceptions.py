# backend/ledger_core/services/exceptions.py
"""
Service layer exceptions.

These exceptions represent domain-specific errors and contain NO HTTP knowledge.
The exception handlers in main.py map each kind to a stable HTTP response.

Exception Hierarchy:
    ServiceError (base)
    ├── ValidationError
    ├── DomainInvariantError
    │   ├── InsufficientQuantityError
    │   ├── InsufficientSharesError
    │   ├── PricingModeError
    │   ├── NegativePriceError
    │   ├── VaultStateError
    │   └── JobStateError
    ├── NotFoundError
    │   ├── TransactionNotFoundError
    │   ├── PositionNotFoundError
    │   ├── VaultNotFoundError
    │   ├── AssetNotFoundError
    │   ├── PriceMappingNotFoundError
    │   └── JobNotFoundError
    └── MarketDataError
        ├── ProviderUnavailableError
        ├── TickerNotFoundError
        ├── RateLimitError
        ├── PriceNotAvailableError
        └── QuoteNotFoundError

Every operation validates before it mutates, so any of these leaves the
aggregate it was called on unchanged.
"""

from datetime import date
from decimal import Decimal


class ServiceError(Exception):
    """
    Base exception for all service layer errors.

    Attributes:
        message: Human-readable error description
    """

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(self.message)

    def __str__(self) -> str:
        return self.message


# =============================================================================
# VALIDATION ERRORS
# =============================================================================


class ValidationError(ServiceError):
    """
    Raised when input is malformed or out of range.

    This is for programmatic validation (non-positive amounts, missing
    required fields, invalid enum values), in addition to request-shape
    validation done by Pydantic.

    Attributes:
        field: The field that failed validation (optional)
    """

    def __init__(self, message: str, field: str | None = None) -> None:
        self.field = field
        super().__init__(message)


# =============================================================================
# DOMAIN INVARIANT ERRORS
# =============================================================================


class DomainInvariantError(ServiceError):
    """
    Raised when an operation would violate an aggregate invariant.

    Attributes:
        rule: Short machine-readable name of the violated rule
    """

    def __init__(self, message: str, rule: str | None = None) -> None:
        self.rule = rule
        super().__init__(message)


class InsufficientQuantityError(DomainInvariantError):
    """Raised when a withdrawal exceeds the remaining quantity of a lot."""

    def __init__(self, requested: Decimal, available: Decimal) -> None:
        self.requested = requested
        self.available = available
        super().__init__(
            f"Cannot withdraw {requested}: only {available} remaining",
            rule="remaining_quantity_non_negative",
        )


class InsufficientSharesError(DomainInvariantError):
    """Raised when burning more shares than a holder (or the vault) owns."""

    def __init__(self, requested: Decimal, available: Decimal) -> None:
        self.requested = requested
        self.available = available
        super().__init__(
            f"Cannot burn {requested} shares: only {available} available",
            rule="share_balance_non_negative",
        )


class PricingModeError(DomainInvariantError):
    """Raised when an operation is not allowed in the vault's current pricing mode or kind."""

    def __init__(self, vault_id: int | None, mode: str, message: str) -> None:
        self.vault_id = vault_id
        self.mode = mode
        super().__init__(message, rule="pricing_mode")


class NegativePriceError(DomainInvariantError):
    """Raised when a manually declared share price is below zero."""

    def __init__(self, price: Decimal) -> None:
        self.price = price
        super().__init__(f"Share price cannot be negative: {price}", rule="price_non_negative")


class VaultStateError(DomainInvariantError):
    """Raised when a vault's status or limits reject an operation."""

    def __init__(self, vault_id: int | None, message: str) -> None:
        self.vault_id = vault_id
        super().__init__(message, rule="vault_state")


class JobStateError(DomainInvariantError):
    """Raised when a backfill job cannot move to the requested state."""

    def __init__(self, job_id: int, status: str, message: str | None = None) -> None:
        self.job_id = job_id
        self.status = status
        super().__init__(
            message or f"Job {job_id} is {status} and cannot be run",
            rule="job_state",
        )


# =============================================================================
# NOT FOUND ERRORS
# =============================================================================


class NotFoundError(ServiceError):
    """
    Base exception for resource not found errors.

    Attributes:
        resource_type: Type of resource (e.g., "Vault", "Investment")
        resource_id: Identifier of the resource
    """

    def __init__(
            self,
            message: str,
            resource_type: str | None = None,
            resource_id: int | str | None = None,
    ) -> None:
        self.resource_type = resource_type
        self.resource_id = resource_id
        super().__init__(message)


class TransactionNotFoundError(NotFoundError):
    def __init__(self, transaction_id: int) -> None:
        super().__init__(
            f"Transaction {transaction_id} not found",
            resource_type="Transaction",
            resource_id=transaction_id,
        )


class PositionNotFoundError(NotFoundError):
    """Raised when a lot cannot be found, by id or by (asset, account)."""

    def __init__(self, position_id: int | None = None, message: str | None = None) -> None:
        super().__init__(
            message or f"Position {position_id} not found",
            resource_type="Investment",
            resource_id=position_id,
        )


class VaultNotFoundError(NotFoundError):
    def __init__(self, vault_id: int) -> None:
        self.vault_id = vault_id
        super().__init__(
            f"Vault {vault_id} not found",
            resource_type="Vault",
            resource_id=vault_id,
        )


class AssetNotFoundError(NotFoundError):
    def __init__(self, asset_ref: int | str) -> None:
        super().__init__(
            f"Asset {asset_ref} not found",
            resource_type="Asset",
            resource_id=asset_ref,
        )


class PriceMappingNotFoundError(NotFoundError):
    def __init__(self, mapping_id: int) -> None:
        super().__init__(
            f"Price mapping {mapping_id} not found",
            resource_type="AssetPriceMapping",
            resource_id=mapping_id,
        )


class JobNotFoundError(NotFoundError):
    def __init__(self, job_id: int) -> None:
        super().__init__(
            f"Price population job {job_id} not found",
            resource_type="PricePopulationJob",
            resource_id=job_id,
        )


# =============================================================================
# MARKET DATA PROVIDER ERRORS
# =============================================================================


class MarketDataError(ServiceError):
    """
    Base exception for price provider failures.

    Attributes:
        provider: Name of the provider that failed
    """

    def __init__(self, message: str, provider: str | None = None) -> None:
        self.provider = provider
        super().__init__(message)


class ProviderUnavailableError(MarketDataError):
    """
    Raised when a price provider is temporarily unavailable.

    Examples: network timeout, 5xx responses, maintenance.
    This is a retryable error.
    """

    def __init__(self, provider: str, reason: str) -> None:
        message = f"Provider '{provider}' is unavailable: {reason}"
        super().__init__(message, provider=provider)
        self.reason = reason


class TickerNotFoundError(MarketDataError):
    """
    Raised when the provider does not know the symbol at all.

    This is NOT a retryable error.
    """

    def __init__(self, symbol: str, provider: str) -> None:
        message = f"Symbol '{symbol}' not found by {provider}"
        super().__init__(message, provider=provider)
        self.symbol = symbol


class RateLimitError(MarketDataError):
    """
    Raised when the provider's rate limit has been exceeded.

    This is a retryable error (with backoff).

    Attributes:
        retry_after: Seconds to wait before retrying (if provided by API)
    """

    def __init__(self, provider: str, retry_after: int | None = None) -> None:
        message = f"Rate limit exceeded for provider '{provider}'"
        if retry_after:
            message += f" (retry after {retry_after}s)"
        super().__init__(message, provider=provider)
        self.retry_after = retry_after


class PriceNotAvailableError(MarketDataError):
    """
    Raised when the symbol exists but the provider has no price for the day
    (weekends, holidays, dates before listing).

    Backfill records such days as skipped instead of failing the job.
    """

    def __init__(self, symbol: str, currency: str, price_date: date, provider: str) -> None:
        self.symbol = symbol
        self.currency = currency
        self.date = price_date
        super().__init__(
            f"No {symbol}/{currency} price from {provider} on {price_date}",
            provider=provider,
        )


class QuoteNotFoundError(MarketDataError):
    """
    Raised when no cached quote exists for a pair within the fallback window.

    Attributes:
        symbol: Base symbol or currency
        currency: Quote currency
        date: Requested date (None for latest)
    """

    def __init__(self, symbol: str, currency: str, quote_date: date | None = None) -> None:
        self.symbol = symbol
        self.currency = currency
        self.date = quote_date
        when = f" on {quote_date}" if quote_date else ""
        super().__init__(f"No quote found for {symbol}/{currency}{when}", provider="cache")
