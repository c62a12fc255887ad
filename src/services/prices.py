# src/services/prices.py

import re
from decimal import Decimal, InvalidOperation
from typing import List, Mapping, Optional, Tuple

import httpx

from src.config import DEFAULT_SYMBOL_ALIASES, Settings
from src.core.models import PRICE_UNAVAILABLE, AssetKind
from src.utils.retry import RETRYABLE_HTTP_ERRORS, raise_for_status, retry_with_backoff
from src.utils.tracing import setup_logger_with_tracing

LOGGER = setup_logger_with_tracing(__name__, service_name="price-resolver")

# Highcharts config embedded in the chart page: series: [{ ..., data: [ [d("2025-04-16"), 44.1], ... ] }
SERIES_BLOCK_RE = re.compile(r"series\s*:\s*\[\{.*?data\s*:\s*\[([\s\S]+?)\]\s*\}", re.DOTALL)
DATE_PRICE_RE = re.compile(r'\[d\("([^"]+)"\)\s*,\s*([\d.]+)\]')


class PriceSourceError(Exception):
    """Raised inside the resolver when one upstream page or feed cannot be used."""


def canonical_symbol(symbol: str, aliases: Optional[Mapping[str, str]] = None) -> str:
    """
    Map a ledger/token symbol to the code the equity price source lists it under.

    Symbols not in the table pass through unchanged.

    Example:
        canonical_symbol("I&M") -> "IMH"
        canonical_symbol("KCB") -> "KCB"
    """
    table = DEFAULT_SYMBOL_ALIASES if aliases is None else aliases
    return table.get(symbol.strip().upper(), symbol)


def parse_chart_series(html: str) -> List[Tuple[str, Decimal]]:
    """
    Extract every (date, price) pair from the chart page's series data.

    Raises:
        PriceSourceError: the series block is missing or holds no pairs
    """
    block = SERIES_BLOCK_RE.search(html)
    if not block:
        raise PriceSourceError("Could not find chart series data array")

    pairs = []
    for date, price in DATE_PRICE_RE.findall(block.group(1)):
        try:
            pairs.append((date, Decimal(price)))
        except InvalidOperation:
            continue

    if not pairs:
        raise PriceSourceError("No data points parsed")
    return pairs


class PriceResolver:
    """
    Resolves a current unit price, in the reporting currency, for one asset.

    Read path: every failure is logged and turned into PRICE_UNAVAILABLE.
    """

    def __init__(self, http: httpx.AsyncClient, settings: Settings):
        self.http = http
        self.settings = settings

    async def _get(self, url: str, **kwargs) -> httpx.Response:
        async def fetch():
            response = await self.http.get(url, timeout=self.settings.http_timeout_seconds, **kwargs)
            return raise_for_status(response)

        return await retry_with_backoff(
            fetch,
            max_retries=self.settings.read_retries,
            base_delay=self.settings.retry_base_delay,
            retry_on=RETRYABLE_HTTP_ERRORS,
        )

    async def resolve_price(self, asset_symbol: str, asset_kind: AssetKind) -> Decimal:
        if asset_kind == AssetKind.NATIVE:
            return await self.native_price(asset_symbol)
        return await self.equity_price(asset_symbol)

    async def equity_price(self, symbol: str) -> Decimal:
        """Last close from the equity chart page, or PRICE_UNAVAILABLE."""
        code = canonical_symbol(symbol, self.settings.symbol_aliases)
        if code != symbol:
            LOGGER.info(f"Mapped {symbol} to {code}")

        url = f"{self.settings.equity_chart_url}/{code}"
        try:
            response = await self._get(url)
            pairs = parse_chart_series(response.text)
        except (httpx.HTTPError, PriceSourceError) as e:
            LOGGER.error(f"Error scraping price for {symbol} ({code}): {e}")
            return PRICE_UNAVAILABLE

        date, price = pairs[-1]
        LOGGER.info(f"{code} last traded at {price} on {date}")
        return price

    async def crypto_usd_price(self, symbol: str) -> Decimal:
        """Spot price of `symbol` against USDT. Raises PriceSourceError."""
        pair = f"{symbol.upper()}USDT"
        try:
            response = await self._get(self.settings.crypto_ticker_url, params={"symbol": pair})
            data = response.json()
            price = Decimal(str(data["price"]))
        except (httpx.HTTPError, ValueError, KeyError, TypeError, InvalidOperation) as e:
            raise PriceSourceError(f"Ticker lookup for {pair} failed: {e}") from e
        if not price.is_finite() or price < 0:
            raise PriceSourceError(f"Ticker returned an unusable price {price} for {pair}")
        return price

    async def exchange_rate(self) -> Decimal:
        """USD -> reporting currency rate: last 24h average, or the configured fallback."""
        fallback = self.settings.fx_fallback_rate
        try:
            response = await self._get(self.settings.fx_rate_url)
            rate = Decimal(str(response.json()["last1Days"]["average"]))
        except (httpx.HTTPError, ValueError, KeyError, TypeError, InvalidOperation) as e:
            LOGGER.warning(f"Exchange rate unavailable ({e}); using fallback {fallback}")
            return fallback
        if not rate.is_finite() or rate <= 0:
            LOGGER.warning(f"Exchange rate {rate} is not usable; using fallback {fallback}")
            return fallback
        return rate

    async def native_price(self, symbol: str) -> Decimal:
        """Reserve-currency or settlement-token price converted to the reporting currency."""
        try:
            usd_price = await self.crypto_usd_price(symbol)
        except PriceSourceError as e:
            LOGGER.error(f"Error fetching native price for {symbol}: {e}")
            return PRICE_UNAVAILABLE

        rate = await self.exchange_rate()
        return usd_price * rate

