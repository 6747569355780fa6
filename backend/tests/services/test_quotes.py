# backend/tests/services/test_quotes.py
"""
Tests for the price cache and the quote collaborator.

Test Coverage:
- PriceCache: upsert by natural key, windowed lookups, counts
- QuoteService: identity, exact day, fallback window, inverse pairs, latest
"""

from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from ledger_core.models import AssetPrice
from ledger_core.services.exceptions import QuoteNotFoundError
from ledger_core.services.pricing import DailyPrice, PriceCache, QuoteService
from tests.conftest import assert_decimal, cache_price


DAY = date(2024, 6, 10)


# =============================================================================
# CACHE
# =============================================================================

class TestPriceCache:
    """Tests for the asset_prices upsert and reads."""

    def test_put_twice_keeps_one_row(self, db):
        """Writing the same (symbol, currency, date) again updates in place."""
        cache = PriceCache()
        cache.put(db, DailyPrice("BTC", "USD", DAY, Decimal("60000"), "yahoo"))
        cache.put(db, DailyPrice("BTC", "USD", DAY, Decimal("61000"), "http"))
        db.commit()

        rows = db.scalars(select(AssetPrice)).all()
        assert len(rows) == 1
        assert_decimal(rows[0].price, "61000")
        assert rows[0].source == "http"

    def test_keys_are_uppercased(self, db):
        cache = PriceCache()
        cache.put(db, DailyPrice("btc", "usd", DAY, Decimal("1"), "test"))
        cache.put(db, DailyPrice("BTC", "USD", DAY, Decimal("2"), "test"))
        db.commit()

        assert db.scalar(select(func.count(AssetPrice.id))) == 1
        assert cache.get(db, "Btc", "Usd", DAY) is not None

    def test_find_on_or_before_respects_window(self, db):
        cache_price(db, "BTC", "USD", date(2024, 6, 1), "50000")
        cache = PriceCache()

        assert cache.find_on_or_before(db, "BTC", "USD", DAY, max_days_back=9).date == date(2024, 6, 1)
        assert cache.find_on_or_before(db, "BTC", "USD", DAY, max_days_back=8) is None

    def test_find_on_or_before_prefers_latest(self, db):
        cache_price(db, "BTC", "USD", date(2024, 6, 8), "1")
        cache_price(db, "BTC", "USD", date(2024, 6, 9), "2")
        cache_price(db, "BTC", "USD", date(2024, 6, 11), "3")

        row = PriceCache().find_on_or_before(db, "BTC", "USD", DAY, max_days_back=7)
        assert row.date == date(2024, 6, 9)

    def test_count(self, db):
        for day in (1, 2, 5):
            cache_price(db, "ETH", "USD", date(2024, 6, day), "3000")

        assert PriceCache().count(db, "ETH", "USD", date(2024, 6, 1), date(2024, 6, 3)) == 2

    def test_daily_price_rejects_non_positive(self):
        with pytest.raises(ValueError):
            DailyPrice("BTC", "USD", DAY, Decimal("0"), "test")


# =============================================================================
# QUOTES
# =============================================================================

class TestQuoteService:
    """Tests for daily and latest quotes."""

    @pytest.fixture
    def quotes(self) -> QuoteService:
        return QuoteService(fallback_days=3)

    def test_identity(self, db, quotes):
        quote = quotes.get_daily(db, "usd", "USD", DAY)
        assert quote.price == Decimal("1")
        assert quote.source == "identity"

    def test_exact_day(self, db, quotes):
        cache_price(db, "USD", "VND", DAY, "25000", source="http")

        quote = quotes.get_daily(db, "usd", "vnd", DAY)

        assert_decimal(quote.price, "25000")
        assert quote.source == "http"
        assert quote.is_exact is True
        assert quote.as_of == DAY

    def test_fallback_marks_not_exact(self, db, quotes):
        cache_price(db, "USD", "VND", date(2024, 6, 7), "24900")

        quote = quotes.get_daily(db, "USD", "VND", DAY)

        assert quote.is_exact is False
        assert quote.as_of == date(2024, 6, 7)

    def test_outside_window_not_found(self, db, quotes):
        cache_price(db, "USD", "VND", date(2024, 6, 6), "24900")

        with pytest.raises(QuoteNotFoundError):
            quotes.get_daily(db, "USD", "VND", DAY)
        assert quotes.get_daily_or_none(db, "USD", "VND", DAY) is None

    def test_inverse_pair(self, db, quotes):
        cache_price(db, "EUR", "USD", DAY, "1.25")

        quote = quotes.get_daily(db, "USD", "EUR", DAY)

        assert_decimal(quote.price, "0.8")
        assert quote.symbol == "USD"
        assert quote.currency == "EUR"

    def test_direct_pair_wins_over_inverse(self, db, quotes):
        cache_price(db, "EUR", "USD", DAY, "1.25")
        cache_price(db, "USD", "EUR", DAY, "0.9")

        assert_decimal(quotes.get_daily(db, "USD", "EUR", DAY).price, "0.9")

    def test_latest(self, db, quotes):
        cache_price(db, "BTC", "USD", date(2024, 1, 1), "40000")
        cache_price(db, "BTC", "USD", date(2024, 5, 1), "60000")

        quote = quotes.get_latest(db, "btc", "usd")

        assert_decimal(quote.price, "60000")
        assert quote.as_of == date(2024, 5, 1)

    def test_latest_inverse(self, db, quotes):
        cache_price(db, "EUR", "USD", DAY, "1.25")
        assert_decimal(quotes.get_latest(db, "USD", "EUR").price, "0.8")

    def test_latest_not_found(self, db, quotes):
        with pytest.raises(QuoteNotFoundError):
            quotes.get_latest(db, "DOGE", "USD")
