# backend/tests/services/test_price_sources.py
"""
Tests for the price sources and the source registry.

Test Coverage:
- HttpPriceSource: templating, auth, response paths, status handling, retries
- YahooPriceSource: close extraction and error classification (yfinance mocked)
- PriceSourceRegistry lookups

Note: No test makes a network call. The HTTP source runs on
httpx.MockTransport and yfinance is patched.
"""

from datetime import date
from decimal import Decimal
from unittest.mock import MagicMock, patch

import httpx
import pytest

from ledger_core.models import PriceProvider
from ledger_core.services.exceptions import (
    MarketDataError,
    PriceNotAvailableError,
    ProviderUnavailableError,
    RateLimitError,
    TickerNotFoundError,
    ValidationError,
)
from ledger_core.services.pricing import (
    HttpPriceSource,
    PriceRequest,
    PriceSourceRegistry,
    YahooPriceSource,
)
from ledger_core.services.pricing.http_source import expand_env_vars
from tests.conftest import MockPriceSource


DAY = date(2024, 1, 15)


class FastHttpSource(HttpPriceSource):
    """No waiting between retries."""
    RETRY_MIN_WAIT = 0
    RETRY_MAX_WAIT = 0


class FastYahooSource(YahooPriceSource):
    RETRY_MIN_WAIT = 0
    RETRY_MAX_WAIT = 0


def _request(**kwargs) -> PriceRequest:
    values = dict(
        symbol="BTC",
        currency="USD",
        date=DAY,
        provider_id="bitcoin",
        api_endpoint="https://api.example.com/coins/{provider_id}/history?date={date_ddmmyyyy}",
        response_path="market_data.current_price.{currency_lower}",
    )
    values.update(kwargs)
    return PriceRequest(**values)


def _source(handler) -> tuple[FastHttpSource, list[httpx.Request]]:
    seen: list[httpx.Request] = []

    def recording(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return handler(request)

    return FastHttpSource(transport=httpx.MockTransport(recording)), seen


# =============================================================================
# HTTP SOURCE
# =============================================================================

class TestHttpPriceSource:
    """Tests for the configurable JSON HTTP source."""

    def test_fetches_price_from_nested_path(self):
        source, seen = _source(
            lambda r: httpx.Response(200, json={"market_data": {"current_price": {"usd": 42123.45}}})
        )

        price = source.get_daily_price(_request())

        assert price.price == Decimal("42123.45")
        assert price.source == "http"
        assert price.date == DAY
        assert seen[0].url.path == "/coins/bitcoin/history"
        assert seen[0].url.params["date"] == "15-01-2024"

    def test_list_index_in_path(self):
        source, _ = _source(lambda r: httpx.Response(200, json={"data": [{"close": "1.0842"}]}))
        price = source.get_daily_price(_request(response_path="data.0.close"))
        assert price.price == Decimal("1.0842")

    def test_default_response_path(self):
        source, _ = _source(lambda r: httpx.Response(200, json={"price": 3}))
        assert source.get_daily_price(_request(response_path=None)).price == Decimal("3")

    def test_query_params_and_method(self):
        source, seen = _source(lambda r: httpx.Response(200, json={"price": 1}))
        config = {"method": "post", "query_params": {"vs": "{currency_lower}", "ts": "{date_unix}"}}

        source.get_daily_price(_request(api_config=config, response_path="price"))

        assert seen[0].method == "POST"
        assert seen[0].url.params["vs"] == "usd"
        assert seen[0].url.params["ts"] == "1705276800"

    def test_bearer_auth_from_env(self, monkeypatch):
        monkeypatch.setenv("PRICE_API_TOKEN", "s3cret")
        source, seen = _source(lambda r: httpx.Response(200, json={"price": 1}))
        config = {"auth_type": "bearer", "auth_value": "${PRICE_API_TOKEN}", "headers": {"Accept": "application/json"}}

        source.get_daily_price(_request(api_config=config, response_path="price"))

        assert seen[0].headers["Authorization"] == "Bearer s3cret"
        assert seen[0].headers["Accept"] == "application/json"

    def test_apikey_auth(self):
        source, seen = _source(lambda r: httpx.Response(200, json={"price": 1}))
        source.get_daily_price(_request(api_config={"auth_type": "apikey", "auth_value": "k"}, response_path="price"))
        assert seen[0].headers["X-API-Key"] == "k"

    def test_missing_path_is_not_available(self):
        source, _ = _source(lambda r: httpx.Response(200, json={"market_data": {}}))
        with pytest.raises(PriceNotAvailableError):
            source.get_daily_price(_request())

    def test_null_price_is_not_available(self):
        source, _ = _source(lambda r: httpx.Response(200, json={"price": None}))
        with pytest.raises(PriceNotAvailableError):
            source.get_daily_price(_request(response_path="price"))

    def test_non_numeric_price(self):
        source, _ = _source(lambda r: httpx.Response(200, json={"price": "n/a"}))
        with pytest.raises(MarketDataError):
            source.get_daily_price(_request(response_path="price"))

    def test_404_is_not_available(self):
        source, _ = _source(lambda r: httpx.Response(404))
        with pytest.raises(PriceNotAvailableError):
            source.get_daily_price(_request())

    def test_429_retried_then_raised(self):
        source, seen = _source(lambda r: httpx.Response(429, headers={"Retry-After": "30"}))

        with pytest.raises(RateLimitError) as exc_info:
            source.get_daily_price(_request())

        assert exc_info.value.retry_after == 30
        assert len(seen) == FastHttpSource.MAX_RETRY_ATTEMPTS

    def test_server_error_recovers_on_retry(self):
        responses = iter([httpx.Response(503), httpx.Response(200, json={"price": 5})])
        source, seen = _source(lambda r: next(responses))

        assert source.get_daily_price(_request(response_path="price")).price == Decimal("5")
        assert len(seen) == 2

    def test_client_error_not_retried(self):
        source, seen = _source(lambda r: httpx.Response(400, text="bad request"))

        with pytest.raises(MarketDataError):
            source.get_daily_price(_request())
        assert len(seen) == 1

    def test_network_error_is_unavailable(self):
        def fail(request):
            raise httpx.ConnectError("connection refused", request=request)

        source, _ = _source(fail)
        with pytest.raises(ProviderUnavailableError):
            source.get_daily_price(_request())

    def test_invalid_json(self):
        source, _ = _source(lambda r: httpx.Response(200, content=b"<html>"))
        with pytest.raises(MarketDataError):
            source.get_daily_price(_request())

    def test_missing_endpoint(self):
        source, _ = _source(lambda r: httpx.Response(200, json={}))
        with pytest.raises(MarketDataError):
            source.get_daily_price(_request(api_endpoint=None))

    def test_placeholders(self):
        replacements = HttpPriceSource.build_replacements(_request())
        template = "{symbol}/{currency}/{date}/{date_yyyymmdd}/{date_yyyy}-{date_mm}-{date_dd}"

        assert HttpPriceSource.fill_placeholders(template, replacements) == "BTC/USD/2024-01-15/20240115/2024-01-15"

    def test_unknown_env_var_left_as_is(self, monkeypatch):
        monkeypatch.delenv("NOT_SET_ANYWHERE", raising=False)
        assert expand_env_vars("key=${NOT_SET_ANYWHERE}") == "key=${NOT_SET_ANYWHERE}"


# =============================================================================
# YAHOO SOURCE
# =============================================================================

def _frame(close) -> MagicMock:
    df = MagicMock()
    df.empty = False
    df.__getitem__.return_value.iloc.__getitem__.return_value = close
    return df


class TestYahooPriceSource:
    """Tests for the yfinance-backed source."""

    def test_provider_name(self):
        assert YahooPriceSource().name == "yahoo"

    @patch("ledger_core.services.pricing.yahoo_source.yf")
    def test_returns_close(self, mock_yf):
        mock_ticker = MagicMock()
        mock_ticker.history.return_value = _frame(42000.5)
        mock_yf.Ticker.return_value = mock_ticker

        price = FastYahooSource().get_daily_price(_request(provider_id="btc-usd"))

        assert price.price == Decimal("42000.5")
        assert price.source == "yahoo"
        mock_yf.Ticker.assert_called_once_with("BTC-USD")
        kwargs = mock_ticker.history.call_args.kwargs
        assert kwargs["start"] == "2024-01-15"
        assert kwargs["end"] == "2024-01-16"

    @patch("ledger_core.services.pricing.yahoo_source.yf")
    def test_empty_frame_for_known_ticker(self, mock_yf):
        mock_ticker = MagicMock(info={"shortName": "Apple Inc."})
        mock_ticker.history.return_value = MagicMock(empty=True)
        mock_yf.Ticker.return_value = mock_ticker

        with pytest.raises(PriceNotAvailableError):
            FastYahooSource().get_daily_price(_request(provider_id="AAPL"))

    @patch("ledger_core.services.pricing.yahoo_source.yf")
    def test_empty_frame_for_unknown_ticker(self, mock_yf):
        mock_ticker = MagicMock(info={})
        mock_ticker.history.return_value = MagicMock(empty=True)
        mock_yf.Ticker.return_value = mock_ticker

        with pytest.raises(TickerNotFoundError):
            FastYahooSource().get_daily_price(_request(provider_id="NOPE"))

    @patch("ledger_core.services.pricing.yahoo_source.yf")
    def test_nan_close_is_not_available(self, mock_yf):
        mock_ticker = MagicMock()
        mock_ticker.history.return_value = _frame(float("nan"))
        mock_yf.Ticker.return_value = mock_ticker

        with pytest.raises(PriceNotAvailableError):
            FastYahooSource().get_daily_price(_request(provider_id="AAPL"))

    @patch("ledger_core.services.pricing.yahoo_source.yf")
    def test_rate_limit_classified(self, mock_yf):
        mock_yf.Ticker.side_effect = Exception("Too Many Requests. Rate limited.")

        with pytest.raises(RateLimitError):
            FastYahooSource().get_daily_price(_request(provider_id="AAPL"))
        assert mock_yf.Ticker.call_count == FastYahooSource.MAX_RETRY_ATTEMPTS

    @patch("ledger_core.services.pricing.yahoo_source.yf")
    def test_other_errors_unavailable(self, mock_yf):
        mock_yf.Ticker.side_effect = Exception("connection reset")

        with pytest.raises(ProviderUnavailableError):
            FastYahooSource().get_daily_price(_request(provider_id="AAPL"))


# =============================================================================
# REGISTRY
# =============================================================================

class TestPriceSourceRegistry:
    def test_get_registered(self, mock_source):
        registry = PriceSourceRegistry({PriceProvider.HTTP: mock_source})
        assert registry.get("http") is mock_source
        assert registry.providers == [PriceProvider.HTTP]

    def test_register_replaces(self, mock_source):
        registry = PriceSourceRegistry({PriceProvider.YAHOO: mock_source})
        other = MockPriceSource(name="other")
        registry.register(PriceProvider.YAHOO, other)
        assert registry.get(PriceProvider.YAHOO) is other

    def test_missing_provider(self):
        with pytest.raises(ValidationError):
            PriceSourceRegistry().get(PriceProvider.YAHOO)

    def test_unknown_provider_string(self, mock_source):
        with pytest.raises(ValidationError):
            PriceSourceRegistry({PriceProvider.HTTP: mock_source}).get("bloomberg")

    def test_request_from_mapping(self):
        mapping = MagicMock(
            quote_currency="usd",
            provider_id="bitcoin",
            api_endpoint="https://x/{symbol}",
            api_config={"method": "GET"},
            response_path="price",
        )
        request = PriceRequest.from_mapping(mapping, "btc", DAY)

        assert request.symbol == "BTC"
        assert request.currency == "USD"
        assert request.api_config == {"method": "GET"}
