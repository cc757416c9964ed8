"""
Price Oracle — current and historical USD prices for supported assets.

CoinGeckoOracle queries the public CoinGecko API with a short in-memory
cache. Failures never raise: current_price returns 0.0 and price_history
returns an empty list, so callers must treat 0 as "unknown".

CoinGecko docs: https://docs.coingecko.com/reference/simple-price
"""
import threading
import time
from abc import ABC, abstractmethod

import requests
from loguru import logger

from config import (
    COINGECKO_API, COINGECKO_IDS, HTTP_TIMEOUT,
    PRICE_CACHE_SECONDS, SUPPORTED_SYMBOLS,
)


class PriceOracle(ABC):

    @abstractmethod
    def current_price(self, symbol: str) -> float:
        """Latest USD price, or 0.0 if unknown."""

    @abstractmethod
    def price_history(self, symbol: str, days: int = 1) -> list[dict]:
        """Ordered [{'timestamp': ms, 'price': float}], empty if unavailable."""

    def snapshot(self, symbols=None) -> dict[str, float]:
        """Current prices keyed by symbol. Unknown (0) prices are left out."""
        prices = {}
        for sym in symbols or SUPPORTED_SYMBOLS:
            price = self.current_price(sym)
            if price > 0:
                prices[sym] = price
        return prices


class CoinGeckoOracle(PriceOracle):

    def __init__(
        self,
        api_url: str = COINGECKO_API,
        cache_seconds: float = PRICE_CACHE_SECONDS,
        timeout: float = HTTP_TIMEOUT,
    ):
        self.api_url   = api_url.rstrip('/')
        self._cache_s  = cache_seconds
        self._timeout  = timeout
        self._cache: dict[str, tuple[float, float]] = {}   # symbol → (price, fetched_at)
        self._lock     = threading.Lock()
        self._session  = requests.Session()
        self._session.headers.update({'Accept': 'application/json'})

    def _cached(self, symbol: str) -> float:
        with self._lock:
            entry = self._cache.get(symbol)
            if not entry:
                return 0.0
            price, fetched_at = entry
            if time.time() - fetched_at > self._cache_s:
                del self._cache[symbol]
                return 0.0
            return price

    def current_price(self, symbol: str) -> float:
        cached = self._cached(symbol)
        if cached > 0:
            return cached

        coin_id = COINGECKO_IDS.get(symbol)
        if not coin_id:
            logger.error(f'[ORACLE] Unsupported asset: {symbol}')
            return 0.0

        try:
            resp = self._session.get(
                f'{self.api_url}/simple/price',
                params={'ids': coin_id, 'vs_currencies': 'usd'},
                timeout=self._timeout,
            )
            if resp.status_code != 200:
                logger.warning(f'[ORACLE] CoinGecko error {resp.status_code} for {symbol}')
                return 0.0
            body = resp.json()
            quote = body.get(coin_id) if isinstance(body, dict) else None
            price = float(quote.get('usd') or 0) if isinstance(quote, dict) else 0.0
        except (requests.RequestException, ValueError, TypeError) as e:
            logger.warning(f'[ORACLE] Price fetch failed for {symbol}: {e}')
            return 0.0

        if price <= 0:
            logger.warning(f'[ORACLE] No price data for {symbol}')
            return 0.0

        with self._lock:
            self._cache[symbol] = (price, time.time())
        return price

    def price_history(self, symbol: str, days: int = 1) -> list[dict]:
        coin_id = COINGECKO_IDS.get(symbol)
        if not coin_id:
            logger.error(f'[ORACLE] Unsupported asset: {symbol}')
            return []

        try:
            resp = self._session.get(
                f'{self.api_url}/coins/{coin_id}/market_chart',
                params={'vs_currency': 'usd', 'days': days},
                timeout=self._timeout,
            )
            resp.raise_for_status()
            body = resp.json()
            points = body.get('prices', []) if isinstance(body, dict) else []
            return [{'timestamp': int(ts), 'price': float(px)} for ts, px in points]
        except (requests.RequestException, ValueError, TypeError) as e:
            logger.warning(f'[ORACLE] History fetch failed for {symbol}: {e}')
            return []


class StaticPriceOracle(PriceOracle):
    """Fixed prices — paper sessions and tests. Prices can be moved with set_price()."""

    def __init__(self, prices: dict = None):
        self._prices = dict(prices or {})
        self._lock = threading.Lock()

    def set_price(self, symbol: str, price: float):
        with self._lock:
            self._prices[symbol] = price

    def current_price(self, symbol: str) -> float:
        with self._lock:
            return float(self._prices.get(symbol, 0.0))

    def price_history(self, symbol: str, days: int = 1) -> list[dict]:
        price = self.current_price(symbol)
        if price <= 0:
            return []
        now_ms = int(time.time() * 1000)
        return [{'timestamp': now_ms, 'price': price}]
