"""
Price Cache

Short-TTL cache of the last bid/ask per canonical symbol, fed by pull
queries and push subscriptions. Serves the last known quote when a live
fetch fails.
"""

import itertools
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from loguru import logger

from ..errors import GatewayUnavailableError
from ..live.broker_interface import PriceListener, PriceQuote
from ..live.dispatcher import SubscriberChannel
from ..live.gateway_client import GatewayClient
from ..utils.helpers import normalize_symbol, safe_float, to_utc_datetime, utc_now
from .symbol_resolver import SymbolResolver, has_quote


@dataclass
class FetchResult:
    """Outcome of a live price fetch: exactly one of quote / error is set"""
    quote: Optional[PriceQuote] = None
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.quote is not None


@dataclass
class _CachedQuote:
    quote: PriceQuote
    stored_at: float
    generation: int


@dataclass
class _Subscription:
    canonical_symbol: str
    broker_symbol: str
    handle: object
    channel: SubscriberChannel


class _PriceListener(PriceListener):
    """Gateway listener that feeds one subscription"""

    def __init__(self, cache: "PriceCache", canonical_symbol: str, broker_symbol: str, generation: int):
        self.cache = cache
        self.canonical_symbol = canonical_symbol
        self.broker_symbol = broker_symbol
        self.generation = generation
        self.channel: Optional[SubscriberChannel] = None

    def on_symbol_price_updated(self, price: Dict):
        if not isinstance(price, dict) or price.get("symbol") != self.broker_symbol:
            return
        quote = self.cache.store(self.canonical_symbol, self.broker_symbol, price, self.generation)
        if self.channel is not None:
            self.channel.publish(quote)


def quote_from_payload(canonical_symbol: str, broker_symbol: str, price: Dict) -> PriceQuote:
    """Build a PriceQuote from a raw gateway price record"""
    bid = safe_float(price.get("bid"))
    ask = safe_float(price.get("ask"))
    spread = ask - bid if bid is not None and ask is not None else 0.0
    return PriceQuote(
        canonical_symbol=canonical_symbol,
        broker_symbol=broker_symbol,
        bid=bid,
        ask=ask,
        last=safe_float(price.get("last")),
        spread=spread,
        observed_at=to_utc_datetime(price.get("time")) or utc_now(),
    )


class PriceCache:
    """
    Last-known quotes per canonical symbol

    Features:
    - TTL-bounded cache hits with no gateway call
    - Stale fallback when the live fetch fails
    - Push subscriptions with bounded per-subscriber delivery
    """

    def __init__(
        self,
        client: GatewayClient,
        resolver: SymbolResolver,
        ttl: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
        queue_size: int = 100,
    ):
        """
        Initialize price cache

        Args:
            client: Gateway client
            resolver: Symbol resolver shared with the executor
            ttl: Freshness window in seconds
            clock: Monotonic clock (injectable for tests)
            queue_size: Max pending updates per subscriber
        """
        self.client = client
        self.resolver = resolver
        self.ttl = ttl
        self.clock = clock
        self.queue_size = queue_size

        self._lock = threading.Lock()
        self._quotes: Dict[str, _CachedQuote] = {}
        self._subscriptions: Dict[str, _Subscription] = {}
        self._counter = itertools.count(1)

    def get_current_price(self, symbol: str) -> PriceQuote:
        """
        Get the current quote for a canonical symbol

        Args:
            symbol: Canonical symbol (e.g., 'XAUUSD')

        Returns:
            Fresh quote, or the last known quote if the live fetch fails

        Raises:
            The live fetch error when no quote was ever cached
        """
        canonical = normalize_symbol(symbol)
        cached = self._get(canonical)

        if cached is not None and self.clock() - cached.stored_at < self.ttl:
            return cached.quote

        result = self.fetch_live(canonical)
        if result.ok:
            return result.quote

        if cached is not None:
            age_ms = (self.clock() - cached.stored_at) * 1000
            logger.warning(
                f"[PRICE] Using cached price for {canonical} ({age_ms:.0f}ms old): {result.error}"
            )
            return cached.quote

        logger.error(f"[PRICE] Failed to get price for {canonical}: {result.error}")
        raise result.error

    def fetch_live(self, symbol: str) -> FetchResult:
        """
        Fetch a quote from the gateway, bypassing the TTL

        A symbol with a cached resolution costs exactly one gateway call; a
        transport failure on that call is returned, not re-probed. Only an
        empty quote sends the symbol back through variant resolution.
        """
        canonical = normalize_symbol(symbol)
        generation = self.resolver.generation
        broker_symbol = self.resolver.get_cached(None, canonical)
        try:
            if broker_symbol is not None:
                price = self.client.call("get_symbol_price", broker_symbol, timeout=self.resolver.probe_timeout)
                if has_quote(price):
                    return FetchResult(quote=self.store(canonical, broker_symbol, price, generation))
                logger.debug(f"[PRICE] {broker_symbol} returned no quote, re-resolving {canonical}")

            resolution = self.resolver.resolve_with_quote(None, canonical)
        except Exception as e:
            return FetchResult(error=e)

        quote = self.store(canonical, resolution.broker_symbol, resolution.quote, resolution.generation)
        return FetchResult(quote=quote)

    def store(
        self,
        canonical_symbol: str,
        broker_symbol: str,
        price: Dict,
        generation: Optional[int] = None,
    ) -> PriceQuote:
        """
        Overwrite the cache entry for a symbol. Last writer wins.

        Args:
            generation: Resolver generation the price was fetched under
                (current if None). A quote fetched before an account switch
                is returned to the caller but not cached.
        """
        quote = quote_from_payload(canonical_symbol, broker_symbol, price)
        if generation is None:
            generation = self.resolver.generation

        with self._lock:
            if generation != self.resolver.generation:
                logger.debug(f"[PRICE] Dropping {canonical_symbol} quote fetched before an account switch")
                return quote
            self._quotes[canonical_symbol] = _CachedQuote(quote, self.clock(), generation)
        return quote

    def peek(self, symbol: str) -> Optional[PriceQuote]:
        """Cached quote regardless of age, without any gateway call"""
        entry = self._get(normalize_symbol(symbol))
        return entry.quote if entry else None

    def subscribe(self, symbol: str, callback: Optional[Callable[[PriceQuote], None]] = None) -> str:
        """
        Subscribe to streamed prices for a canonical symbol

        Args:
            symbol: Canonical symbol
            callback: Called with each PriceQuote on the subscriber's own thread

        Returns:
            Subscription ID, unique per call
        """
        canonical = normalize_symbol(symbol)
        generation = self.resolver.generation
        broker_symbol = self.resolver.resolve(None, canonical)
        subscription_id = f"price-{canonical}-{next(self._counter)}"

        listener = _PriceListener(self, canonical, broker_symbol, generation)
        channel = SubscriberChannel(subscription_id, callback or _ignore, maxsize=self.queue_size)
        listener.channel = channel

        try:
            handle = self.client.call("add_synchronization_listener", listener)
            self.client.call("subscribe_to_market_data", broker_symbol)
        except Exception as e:
            channel.close()
            logger.error(f"[MARKET] Failed to subscribe to {canonical} prices: {e}")
            raise

        with self._lock:
            self._subscriptions[subscription_id] = _Subscription(canonical, broker_symbol, handle, channel)

        logger.info(f"[MARKET] Subscribed to {canonical} ({broker_symbol}) prices - ID: {subscription_id}")
        return subscription_id

    def unsubscribe(self, subscription_id: str) -> bool:
        """Remove a subscription. Unknown IDs are ignored."""
        with self._lock:
            subscription = self._subscriptions.pop(subscription_id, None)

        if subscription is None:
            return False

        try:
            self.client.call("remove_synchronization_listener", subscription.handle)
        except GatewayUnavailableError as e:
            logger.warning(f"[MARKET] Gateway unavailable while unsubscribing {subscription_id}: {e}")
        finally:
            subscription.channel.close()

        logger.info(f"[MARKET] Unsubscribed from {subscription.canonical_symbol} - ID: {subscription_id}")
        return True

    def unsubscribe_all(self):
        with self._lock:
            subscription_ids = list(self._subscriptions)
        for subscription_id in subscription_ids:
            self.unsubscribe(subscription_id)

    @property
    def subscription_ids(self):
        with self._lock:
            return list(self._subscriptions)

    def clear(self):
        with self._lock:
            self._quotes.clear()

    def stats(self) -> Dict:
        generation = self.resolver.generation
        with self._lock:
            return {
                "cached_prices": sum(1 for e in self._quotes.values() if e.generation == generation),
                "active_subscriptions": len(self._subscriptions),
            }

    def _get(self, canonical: str) -> Optional[_CachedQuote]:
        with self._lock:
            entry = self._quotes.get(canonical)
            if entry is None:
                return None
            if entry.generation != self.resolver.generation:
                # Quote belongs to a previous account
                del self._quotes[canonical]
                return None
            return entry


def _ignore(_quote):
    pass
