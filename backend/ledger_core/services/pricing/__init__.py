# backend/ledger_core/services/pricing/__init__.py
"""
Price sources, price cache and quote lookups.

Usage:
    from ledger_core.services.pricing import QuoteService, PriceCache

    quote = QuoteService().get_daily(db, "USD", "VND", date(2024, 1, 15))
"""

from ledger_core.services.pricing.base import DailyPrice, PriceRequest, PriceSource
from ledger_core.services.pricing.cache import PriceCache
from ledger_core.services.pricing.http_source import HttpPriceSource
from ledger_core.services.pricing.quotes import Quote, QuoteService
from ledger_core.services.pricing.registry import PriceSourceRegistry
from ledger_core.services.pricing.yahoo_source import YahooPriceSource

__all__ = [
    "DailyPrice",
    "PriceRequest",
    "PriceSource",
    "PriceCache",
    "HttpPriceSource",
    "YahooPriceSource",
    "PriceSourceRegistry",
    "Quote",
    "QuoteService",
]
