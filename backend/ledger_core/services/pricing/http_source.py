# backend/ledger_core/services/pricing/http_source.py
"""
Generic HTTP price source driven by per-mapping configuration.

A mapping supplies:
- api_endpoint: URL template, e.g.
  "https://api.example.com/coins/{provider_id}/history?date={date_ddmmyyyy}"
- api_config: {"method", "headers", "auth_type", "auth_value", "query_params"}
- response_path: dotted path to the price, e.g. "market_data.current_price.{currency_lower}"
  (list indexes are plain integers: "data.0.close")

Placeholders in the URL, query params and response path:
    {symbol} {provider_id} {currency} {currency_lower} {currency_upper}
    {date} {date_yyyymmdd} {date_ddmmyyyy} {date_unix}
    {date_yyyy} {date_mm} {date_dd}

Header, auth and query values may reference environment variables as
${VAR_NAME}; unknown variables are left as-is.
"""

import logging
import os
import re
from decimal import Decimal, InvalidOperation
from typing import Any

import httpx

from ledger_core.services.constants import DEFAULT_RESPONSE_PATH
from ledger_core.services.exceptions import (
    MarketDataError,
    PriceNotAvailableError,
    ProviderUnavailableError,
    RateLimitError,
)
from ledger_core.services.pricing.base import DailyPrice, PriceRequest, PriceSource
from ledger_core.utils.date_utils import to_unix_timestamp

logger = logging.getLogger(__name__)

_ENV_VAR_PATTERN = re.compile(r"\$\{([^}]+)\}")


class HttpPriceSource(PriceSource):
    """
    Price source for arbitrary JSON HTTP APIs.

    Args:
        timeout: Request timeout in seconds
        transport: Optional httpx transport (tests pass httpx.MockTransport)
    """

    def __init__(
            self,
            timeout: float = 10,
            transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._timeout = timeout
        self._transport = transport
        logger.info(f"HttpPriceSource initialized (timeout={timeout}s)")

    @property
    def name(self) -> str:
        return "http"

    def get_daily_price(self, request: PriceRequest) -> DailyPrice:
        return self._execute_with_retry(self._fetch_daily_price, request)

    # =========================================================================
    # FETCH
    # =========================================================================

    def _fetch_daily_price(self, request: PriceRequest) -> DailyPrice:
        if not request.api_endpoint:
            raise MarketDataError(
                f"No API endpoint configured for {request.symbol}",
                provider=self.name,
            )

        config = request.api_config or {}
        replacements = self.build_replacements(request)

        url = self.fill_placeholders(request.api_endpoint, replacements)
        method = (config.get("method") or "GET").upper()
        headers = self._build_headers(config)
        params = {
            key: expand_env_vars(self.fill_placeholders(str(value), replacements))
            for key, value in (config.get("query_params") or {}).items()
        }

        logger.debug(f"Fetching {request.symbol}/{request.currency} for {request.date} from {url}")

        try:
            with httpx.Client(timeout=self._timeout, transport=self._transport) as client:
                response = client.request(method, url, headers=headers, params=params or None)
        except httpx.TimeoutException as e:
            raise ProviderUnavailableError(provider=self.name, reason=f"timeout: {e}")
        except httpx.HTTPError as e:
            raise ProviderUnavailableError(provider=self.name, reason=str(e))

        self._raise_for_status(response, request)

        try:
            payload = response.json()
        except ValueError as e:
            raise MarketDataError(f"Invalid JSON from {url}: {e}", provider=self.name)

        path = self.fill_placeholders(request.response_path or DEFAULT_RESPONSE_PATH, replacements)
        price = self._extract_price(payload, path, request)

        return DailyPrice(
            symbol=request.symbol,
            currency=request.currency,
            date=request.date,
            price=price,
            source=self.name,
        )

    def _raise_for_status(self, response: httpx.Response, request: PriceRequest) -> None:
        status = response.status_code
        if status == 200:
            return

        if status == 429:
            retry_after = response.headers.get("Retry-After")
            raise RateLimitError(
                provider=self.name,
                retry_after=int(retry_after) if retry_after and retry_after.isdigit() else None,
            )
        if status == 404:
            raise PriceNotAvailableError(request.symbol, request.currency, request.date, self.name)
        if status >= 500:
            raise ProviderUnavailableError(provider=self.name, reason=f"HTTP {status}")

        raise MarketDataError(
            f"API returned status {status}: {response.text[:200]}",
            provider=self.name,
        )

    def _build_headers(self, config: dict[str, Any]) -> dict[str, str]:
        headers = {key: expand_env_vars(str(value)) for key, value in (config.get("headers") or {}).items()}

        auth_type = (config.get("auth_type") or "").lower()
        if auth_type:
            auth_value = expand_env_vars(str(config.get("auth_value") or ""))
            if auth_type == "bearer":
                headers["Authorization"] = f"Bearer {auth_value}"
            elif auth_type == "apikey":
                headers["X-API-Key"] = auth_value
            else:
                logger.warning(f"Unknown auth_type '{auth_type}', sending request without auth")

        return headers

    def _extract_price(self, payload: Any, path: str, request: PriceRequest) -> Decimal:
        current = payload
        for part in path.split("."):
            if isinstance(current, dict):
                if part not in current:
                    logger.debug(f"Path element '{part}' missing in response for {request.symbol}")
                    raise PriceNotAvailableError(request.symbol, request.currency, request.date, self.name)
                current = current[part]
            elif isinstance(current, list) and part.isdigit():
                index = int(part)
                if index >= len(current):
                    raise PriceNotAvailableError(request.symbol, request.currency, request.date, self.name)
                current = current[index]
            else:
                raise MarketDataError(
                    f"Cannot navigate path '{path}' at '{part}'",
                    provider=self.name,
                )

        if current is None:
            raise PriceNotAvailableError(request.symbol, request.currency, request.date, self.name)
        if isinstance(current, bool) or not isinstance(current, (int, float, str)):
            raise MarketDataError(
                f"Price value is not a number: {type(current).__name__}",
                provider=self.name,
            )

        try:
            price = Decimal(str(current))
        except InvalidOperation:
            raise MarketDataError(f"Price value is not a number: {current!r}", provider=self.name)

        if not price.is_finite() or price <= 0:
            raise PriceNotAvailableError(request.symbol, request.currency, request.date, self.name)

        return price

    # =========================================================================
    # TEMPLATE HELPERS
    # =========================================================================

    @staticmethod
    def build_replacements(request: PriceRequest) -> dict[str, str]:
        day = request.date
        return {
            "{symbol}": request.symbol,
            "{provider_id}": request.provider_id,
            "{currency}": request.currency,
            "{currency_lower}": request.currency.lower(),
            "{currency_upper}": request.currency.upper(),
            "{date}": day.isoformat(),
            "{date_yyyymmdd}": day.strftime("%Y%m%d"),
            "{date_ddmmyyyy}": day.strftime("%d-%m-%Y"),
            "{date_unix}": str(to_unix_timestamp(day)),
            "{date_yyyy}": day.strftime("%Y"),
            "{date_mm}": day.strftime("%m"),
            "{date_dd}": day.strftime("%d"),
        }

    @staticmethod
    def fill_placeholders(template: str, replacements: dict[str, str]) -> str:
        for placeholder, value in replacements.items():
            template = template.replace(placeholder, value)
        return template


def expand_env_vars(value: str) -> str:
    """Replace ${VAR} with the environment value; unknown variables stay as written."""
    return _ENV_VAR_PATTERN.sub(lambda m: os.environ.get(m.group(1)) or m.group(0), value)
