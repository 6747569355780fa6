# backend/ledger_core/services/pricing/quotes.py
"""
Quote lookups for FX snapshots and valuation.

=============================================================================
QUOTE CONVENTION
=============================================================================

    quote(symbol, currency).price = "1 symbol = X currency"

Example:
    get_daily(db, "USD", "VND", day).price == 25000  →  1 USD = 25,000 VND

A transaction's fx_snapshot stores, per reporting currency, the price of
ONE unit of the local currency in that reporting currency:

    snapshot["USD"] = get_daily(db, local_currency, "USD", day).price

so a reporting amount is simply amount_local × snapshot rate.

=============================================================================

Lookup order for get_daily():
    1. symbol == currency → 1
    2. direct pair (symbol, currency), exact day, then back up to
       fx_fallback_days calendar days
    3. inverse pair (currency, symbol) within the same window → 1 / price

The service only reads the price cache; the backfill job fills it.
"""

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from sqlalchemy.orm import Session

from ledger_core.models import AssetPrice
from ledger_core.services.constants import ONE
from ledger_core.services.exceptions import QuoteNotFoundError
from ledger_core.services.pricing.cache import PriceCache

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Quote:
    """
    A resolved price.

    Attributes:
        symbol: Base symbol
        currency: Quote currency
        price: 1 symbol = price currency
        source: Where the price came from ("identity", "yahoo", "http", ...)
        as_of: Date of the cached row actually used
        is_exact: as_of equals the requested date
    """

    symbol: str
    currency: str
    price: Decimal
    source: str
    as_of: date | None
    is_exact: bool = True


class QuoteService:
    """
    FX and price quote collaborator backed by the price cache.

    Args:
        cache: PriceCache instance
        fallback_days: Calendar days to look back for a missing day
    """

    def __init__(self, cache: PriceCache | None = None, fallback_days: int = 7) -> None:
        self._cache = cache or PriceCache()
        self._fallback_days = fallback_days

    def get_daily(self, db: Session, symbol: str, currency: str, day: date) -> Quote:
        """
        Quote for a specific day, with fallback to earlier days.

        Raises:
            QuoteNotFoundError: Nothing cached in the window, in either direction
        """
        symbol = symbol.upper().strip()
        currency = currency.upper().strip()

        if symbol == currency:
            return Quote(symbol, currency, ONE, "identity", day)

        row = self._cache.find_on_or_before(db, symbol, currency, day, self._fallback_days)
        if row is not None:
            return self._to_quote(row, symbol, currency, day)

        inverse = self._cache.find_on_or_before(db, currency, symbol, day, self._fallback_days)
        if inverse is not None:
            logger.debug(f"Using inverse quote {currency}/{symbol} for {symbol}/{currency} on {day}")
            return Quote(
                symbol=symbol,
                currency=currency,
                price=ONE / inverse.price,
                source=inverse.source,
                as_of=inverse.date,
                is_exact=inverse.date == day,
            )

        raise QuoteNotFoundError(symbol, currency, day)

    def get_latest(self, db: Session, symbol: str, currency: str) -> Quote:
        """
        Most recent cached quote.

        Raises:
            QuoteNotFoundError: Nothing cached for the pair
        """
        symbol = symbol.upper().strip()
        currency = currency.upper().strip()

        if symbol == currency:
            return Quote(symbol, currency, ONE, "identity", None)

        row = self._cache.latest(db, symbol, currency)
        if row is not None:
            return self._to_quote(row, symbol, currency, row.date)

        inverse = self._cache.latest(db, currency, symbol)
        if inverse is not None:
            return Quote(symbol, currency, ONE / inverse.price, inverse.source, inverse.date)

        raise QuoteNotFoundError(symbol, currency)

    def get_daily_or_none(self, db: Session, symbol: str, currency: str, day: date) -> Quote | None:
        """Same as get_daily() but returns None instead of raising."""
        try:
            return self.get_daily(db, symbol, currency, day)
        except QuoteNotFoundError:
            return None

    @staticmethod
    def _to_quote(row: AssetPrice, symbol: str, currency: str, requested: date) -> Quote:
        return Quote(
            symbol=symbol,
            currency=currency,
            price=row.price,
            source=row.source,
            as_of=row.date,
            is_exact=row.date == requested,
        )
