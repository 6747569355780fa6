# backend/ledger_core/services/pricing/yahoo_source.py
"""
Yahoo Finance price source.

Uses yfinance for daily closes. The mapping's provider_id is the Yahoo
symbol itself ("BTC-USD", "AAPL", "EURUSD=X"), so no exchange suffix
logic is needed here.

Notes:
- Yahoo's end date is exclusive, so one day is requested as [day, day + 1)
- Weekends and holidays return an empty frame for stocks and FX;
  those days surface as PriceNotAvailableError and are skipped by backfill
"""

import logging
import math
from datetime import timedelta
from decimal import Decimal
from typing import Any

import yfinance as yf

from ledger_core.services.exceptions import (
    PriceNotAvailableError,
    ProviderUnavailableError,
    RateLimitError,
    TickerNotFoundError,
)
from ledger_core.services.pricing.base import DailyPrice, PriceRequest, PriceSource

logger = logging.getLogger(__name__)


class YahooPriceSource(PriceSource):
    """Daily close prices from Yahoo Finance."""

    def __init__(self, timeout: int = 10) -> None:
        self._timeout = timeout
        logger.info(f"YahooPriceSource initialized (timeout={timeout}s)")

    @property
    def name(self) -> str:
        return "yahoo"

    def get_daily_price(self, request: PriceRequest) -> DailyPrice:
        return self._execute_with_retry(self._fetch_daily_price, request)

    def _fetch_daily_price(self, request: PriceRequest) -> DailyPrice:
        yahoo_symbol = request.provider_id.strip().upper()
        logger.debug(f"Fetching {yahoo_symbol} close for {request.date}")

        try:
            yf_ticker = yf.Ticker(yahoo_symbol)
            df = yf_ticker.history(
                start=request.date.isoformat(),
                end=(request.date + timedelta(days=1)).isoformat(),
                interval="1d",
                auto_adjust=False,
                timeout=self._timeout,
            )

            if df.empty:
                if not self._is_valid_ticker_info(yf_ticker.info):
                    raise TickerNotFoundError(symbol=yahoo_symbol, provider=self.name)
                raise PriceNotAvailableError(request.symbol, request.currency, request.date, self.name)

            close = self._to_decimal(df["Close"].iloc[-1])
            if close is None or close <= 0:
                raise PriceNotAvailableError(request.symbol, request.currency, request.date, self.name)

            return DailyPrice(
                symbol=request.symbol,
                currency=request.currency,
                date=request.date,
                price=close,
                source=self.name,
            )

        except (TickerNotFoundError, PriceNotAvailableError):
            raise
        except Exception as e:
            error_str = str(e).lower()

            if "not found" in error_str or "delisted" in error_str:
                raise TickerNotFoundError(symbol=yahoo_symbol, provider=self.name)
            if "rate limit" in error_str or "too many requests" in error_str:
                raise RateLimitError(provider=self.name)

            logger.error(f"Yahoo Finance error for {yahoo_symbol}: {e}")
            raise ProviderUnavailableError(provider=self.name, reason=str(e))

    @staticmethod
    def _to_decimal(value: Any) -> Decimal | None:
        """Convert a value to Decimal, returning None for NaN/None."""
        if value is None:
            return None
        try:
            if math.isnan(float(value)):
                return None
            return Decimal(str(value))
        except (TypeError, ValueError):
            return None

    @staticmethod
    def _is_valid_ticker_info(info: dict | None) -> bool:
        """Yahoo returns an info dict even for unknown symbols, just without names or prices."""
        if not info:
            return False
        return bool(
            info.get("regularMarketPrice")
            or info.get("shortName")
            or info.get("longName")
        )
