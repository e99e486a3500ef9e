"""
Price Service
USD price lookups with caching, request coalescing and batched CoinGecko calls.
Stale entries are kept as a fallback until the eviction pass removes them.
"""

import asyncio
import logging
import time
from dataclasses import dataclass

import aiohttp

from services.errors import PriceRateLimitError

logger = logging.getLogger("PriceCache")


class CoinGeckoOracle:
    """Batch USD price fetcher for the CoinGecko simple/price endpoint."""

    def __init__(self, api_url, timeout=10):
        self.api_url = api_url
        self.timeout = timeout
        self._session = None

    async def get_session(self):
        """Get or create a persistent aiohttp session"""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                headers={"Accept": "application/json", "User-Agent": "Auto-Sweep-Bot/1.0"}
            )
        return self._session

    async def fetch_prices(self, symbols):
        """Return {symbol: usd_price} for the symbols the oracle knows about."""
        if not symbols:
            return {}

        session = await self.get_session()
        params = {"symbols": ",".join(symbols), "vs_currencies": "usd"}
        async with session.get(
            self.api_url, params=params, timeout=aiohttp.ClientTimeout(total=self.timeout)
        ) as r:
            if r.status == 429:
                raise PriceRateLimitError("CoinGecko rate limit reached")
            r.raise_for_status()
            data = await r.json()

        prices = {}
        for symbol, price_data in data.items():
            usd = (price_data or {}).get("usd")
            if usd:
                prices[symbol.lower()] = float(usd)
        return prices

    async def close(self):
        if self._session is not None and not self._session.closed:
            await self._session.close()


@dataclass
class PriceCacheEntry:
    symbol: str
    usd_price: float
    fetched_at: float


class PriceCache:
    """
    Converts token symbols into USD unit prices while keeping oracle calls low.

    - fresh entries (younger than `ttl`) are served without a network call
    - concurrent lookups of the same symbol share one in-flight request
    - misses are queued and fetched in batches of `batch_size`, at most one
      request every `rate_limit_delay` seconds
    - on failure the last known price is served even if stale; a symbol that
      was never priced resolves to 0.0, which callers must read as "unknown"
    """

    def __init__(self, oracle, ttl=1800, rate_limit_delay=2.0, batch_size=30,
                 max_retries=3, retry_delay=5.0, evict_after=24 * 3600, clock=time.time):
        self.oracle = oracle
        self.ttl = ttl
        self.rate_limit_delay = rate_limit_delay
        self.batch_size = batch_size
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.evict_after = evict_after
        self._clock = clock

        self._cache = {}    # symbol -> PriceCacheEntry
        self._pending = {}  # symbol -> asyncio.Future
        self._queue = []    # symbols waiting for the next batch
        self._worker = None
        self._last_request = None

    def _is_fresh(self, entry):
        return self._clock() - entry.fetched_at < self.ttl

    async def get_price(self, symbol):
        if not symbol:
            return 0.0
        symbol = symbol.lower()

        entry = self._cache.get(symbol)
        if entry and self._is_fresh(entry):
            return entry.usd_price

        future = self._pending.get(symbol)
        if future is None:
            future = asyncio.get_running_loop().create_future()
            self._pending[symbol] = future
            self._queue.append(symbol)
            self._ensure_worker()

        try:
            return await asyncio.shield(future)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            stale = self.get_stale_price(symbol)
            if stale is not None:
                logger.warning(f"[Price] Using stale cached price for {symbol} due to fetch error: ${stale}")
                return stale
            logger.warning(f"[Price] No price available for {symbol}: {e}")
            return 0.0

    async def get_prices(self, symbols):
        """Price many symbols at once; only stale or missing ones reach the oracle."""
        normalized = []
        for s in symbols or ():
            if s and s.lower() not in normalized:
                normalized.append(s.lower())

        results = {}
        needs_refresh = []
        for symbol in normalized:
            entry = self._cache.get(symbol)
            if entry and self._is_fresh(entry):
                results[symbol] = entry.usd_price
            else:
                needs_refresh.append(symbol)

        if needs_refresh:
            prices = await asyncio.gather(*(self.get_price(s) for s in needs_refresh))
            results.update(zip(needs_refresh, prices))
        return results

    async def warm_up(self, symbols):
        logger.info(f"[Price] Pre-warming price cache with {len(symbols)} symbols...")
        prices = await self.get_prices(symbols)
        known = sum(1 for p in prices.values() if p > 0)
        logger.info(f"[Price] Price cache pre-warmed ({known}/{len(symbols)} priced)")
        return prices

    # --- Batch worker ---

    def _ensure_worker(self):
        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(self._process_queue())

    async def _process_queue(self):
        while self._queue:
            await self._respect_rate_limit()

            batch = self._queue[:self.batch_size]
            del self._queue[:self.batch_size]

            try:
                prices = await self._batch_fetch(batch)
            except Exception as e:
                logger.exception(f"[Price] Batch processing failed for {', '.join(batch)}")
                for symbol in batch:
                    future = self._pending.pop(symbol, None)
                    if future is not None and not future.done():
                        future.set_exception(e)
                continue

            for symbol in batch:
                future = self._pending.pop(symbol, None)
                if future is not None and not future.done():
                    future.set_result(prices.get(symbol, 0.0))

    async def _respect_rate_limit(self):
        if self._last_request is None:
            return
        elapsed = asyncio.get_running_loop().time() - self._last_request
        if elapsed < self.rate_limit_delay:
            await asyncio.sleep(self.rate_limit_delay - elapsed)

    async def _batch_fetch(self, symbols):
        """Fetch one batch, retrying with exponential backoff; never raises for oracle errors."""
        loop = asyncio.get_running_loop()

        for attempt in range(1, self.max_retries + 1):
            logger.info(f"[Price] Fetching prices for {len(symbols)} symbols: {', '.join(symbols)}")
            try:
                prices = await self.oracle.fetch_prices(symbols)
            except PriceRateLimitError:
                self._last_request = loop.time()
                logger.warning("[Price] Oracle rate limited, using cached data to avoid delays")
                return self._cached_prices(symbols)
            except Exception as e:
                self._last_request = loop.time()
                logger.warning(f"[Price] Fetch error (attempt {attempt}/{self.max_retries}): {e}")
                if attempt < self.max_retries:
                    delay = self.retry_delay * (2 ** (attempt - 1))
                    logger.info(f"[Price] Retrying in {delay}s...")
                    await asyncio.sleep(delay)
                continue

            self._last_request = loop.time()
            now = self._clock()
            for symbol, price in prices.items():
                if price and price > 0:
                    self._cache[symbol] = PriceCacheEntry(symbol, float(price), now)
            logger.info(f"[Price] Cached {len(prices)} price(s)")

            result = self._cached_prices([s for s in symbols if s not in prices])
            result.update({s: p for s, p in prices.items() if s in symbols})
            return result

        logger.error(f"[Price] Final failure fetching prices for: {', '.join(symbols)} - falling back to cached data")
        return self._cached_prices(symbols)

    def _cached_prices(self, symbols):
        result = {}
        now = self._clock()
        for symbol in symbols:
            entry = self._cache.get(symbol)
            if entry:
                result[symbol] = entry.usd_price
                logger.info(f"[Price] Using cached price for {symbol}: ${entry.usd_price} (age: {int(now - entry.fetched_at)}s)")
        return result

    # --- Maintenance ---

    def clear_expired(self):
        """Evict entries older than the long eviction horizon; returns the number removed."""
        now = self._clock()
        expired = [s for s, e in self._cache.items() if now - e.fetched_at > self.evict_after]
        for symbol in expired:
            del self._cache[symbol]
        if expired:
            logger.info(f"[Price] Evicted {len(expired)} expired price(s)")
        return len(expired)

    def has_cached_price(self, symbol):
        return symbol.lower() in self._cache

    def get_stale_price(self, symbol):
        entry = self._cache.get(symbol.lower())
        return entry.usd_price if entry else None

    def stats(self):
        return {
            "size": len(self._cache),
            "pending": len(self._pending),
            "queued": len(self._queue),
        }

    async def close(self):
        if self._worker is not None and not self._worker.done():
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
        for future in self._pending.values():
            if not future.done():
                future.cancel()
        self._pending.clear()
        self._queue.clear()
        await self.oracle.close()
