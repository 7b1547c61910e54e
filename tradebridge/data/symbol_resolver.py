"""
Symbol Resolver

Maps canonical instrument symbols (XAUUSD) to the symbol a broker account
actually trades (GOLD, XAUUSDm, ...) by probing naming variants in order.

Successful resolutions are cached per (account, symbol). The cache is scoped
to a generation counter: switching account bumps the generation, which
invalidates every older entry without blocking readers on a full clear.
"""

import threading
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from loguru import logger

from ..errors import GatewayTimeoutError, GatewayUnavailableError, SymbolResolutionError, ValidationError
from ..live.gateway_client import GatewayClient
from ..utils.config import DEFAULT_SYMBOL_VARIANTS
from ..utils.helpers import normalize_symbol


@dataclass(frozen=True)
class ResolvedSymbolEntry:
    """Cached broker symbol for one canonical symbol on one account"""
    account_id: Optional[str]
    canonical_symbol: str
    broker_symbol: str
    generation: int


@dataclass(frozen=True)
class Resolution:
    """Resolved broker symbol plus the raw quote returned by the probe"""
    broker_symbol: str
    quote: Dict
    # Account generation the resolution ran under
    generation: int = 0


def has_quote(price) -> bool:
    """A probe succeeds when at least one side of the book is present"""
    return isinstance(price, dict) and bool(price.get("bid") or price.get("ask"))


class SymbolResolver:
    """
    Resolve canonical symbols to broker symbols with fallback variants

    Features:
    - Ordered variant lists per canonical symbol
    - Per-account resolution cache with lazy eviction
    - Generation-based invalidation on account switch
    """

    def __init__(
        self,
        client: GatewayClient,
        variants: Optional[Dict[str, List[str]]] = None,
        account_id: Optional[str] = None,
        probe_timeout: Optional[float] = None,
    ):
        """
        Initialize resolver

        Args:
            client: Gateway client used for price probes
            variants: Canonical symbol -> ordered broker naming variants
            account_id: Account the cache is initially scoped to
            probe_timeout: Timeout per probe in seconds (client default if None)
        """
        self.client = client
        source = variants if variants is not None else DEFAULT_SYMBOL_VARIANTS
        self.variants = {normalize_symbol(k): list(v) for k, v in source.items()}
        self.probe_timeout = probe_timeout

        self._lock = threading.Lock()
        self._entries: Dict[Tuple[Optional[str], str], ResolvedSymbolEntry] = {}
        self._account_id = account_id
        self._generation = 0

    @property
    def account_id(self) -> Optional[str]:
        return self._account_id

    @property
    def generation(self) -> int:
        return self._generation

    def variants_for(self, symbol: str) -> List[str]:
        """Ordered variants to try; unknown symbols only try themselves"""
        canonical = normalize_symbol(symbol)
        return list(self.variants.get(canonical, [canonical]))

    def switch_account(self, account_id: Optional[str]) -> bool:
        """
        Scope the cache to a new account

        Returns:
            True if the account changed and older resolutions were invalidated
        """
        with self._lock:
            if account_id == self._account_id:
                return False
            previous = self._account_id
            self._account_id = account_id
            self._generation += 1

        logger.info(f"[SYMBOL] Account switched {previous} -> {account_id}, resolution cache invalidated")
        return True

    def clear(self):
        """Drop every cached resolution"""
        with self._lock:
            self._generation += 1
            self._entries = {}
        logger.debug("[SYMBOL] Resolution cache cleared")

    def resolve(self, account_id: Optional[str], symbol: str) -> str:
        """
        Resolve a canonical symbol to the broker symbol for an account

        Args:
            account_id: Trading account (None = current account)
            symbol: Canonical symbol, case-insensitive

        Returns:
            Broker symbol string

        Raises:
            SymbolResolutionError: Every variant failed to quote
            GatewayUnavailableError: Gateway is not connected
        """
        return self.resolve_with_quote(account_id, symbol).broker_symbol

    def resolve_with_quote(self, account_id: Optional[str], symbol: str) -> Resolution:
        """Resolve and return the quote obtained by the successful probe"""
        if not symbol or not symbol.strip():
            raise ValidationError("Symbol is required")

        canonical = normalize_symbol(symbol)
        account, generation = self._scope(account_id)
        key = (account, canonical)

        tried: List[str] = []
        cached = self._lookup(key, generation)
        if cached is not None:
            quote = self._probe(cached.broker_symbol)
            if quote is not None:
                logger.debug(f"[SYMBOL] Using cached resolution: {canonical} -> {cached.broker_symbol}")
                return Resolution(cached.broker_symbol, quote, generation)

            logger.warning(
                f"[SYMBOL] Cached symbol {cached.broker_symbol} for {canonical} stopped quoting, re-probing"
            )
            self._evict(key, cached)
            tried.append(cached.broker_symbol)

        for variant in self.variants_for(canonical):
            if variant in tried:
                continue
            tried.append(variant)
            logger.debug(f"[SYMBOL] Trying symbol variant: {variant}")
            quote = self._probe(variant)
            if quote is None:
                continue

            self._store(ResolvedSymbolEntry(account, canonical, variant, generation))
            logger.info(f"[SYMBOL] Symbol {canonical} resolved to broker symbol: {variant}")
            return Resolution(variant, quote, generation)

        raise SymbolResolutionError(canonical, tried)

    def get_cached(self, account_id: Optional[str], symbol: str) -> Optional[str]:
        """Currently valid cached broker symbol, without probing"""
        with self._lock:
            account = self._account_id if account_id is None else account_id
            if account != self._account_id:
                return None
            entry = self._entries.get((account, normalize_symbol(symbol)))
            if entry is None or entry.generation != self._generation:
                return None
            return entry.broker_symbol

    def stats(self) -> Dict:
        with self._lock:
            live = sum(1 for e in self._entries.values() if e.generation == self._generation)
            return {
                "account_id": self._account_id,
                "generation": self._generation,
                "resolved_symbols": live,
            }

    def _scope(self, account_id: Optional[str]) -> Tuple[Optional[str], int]:
        if account_id is not None and account_id != self._account_id:
            self.switch_account(account_id)
        with self._lock:
            return self._account_id, self._generation

    def _lookup(self, key, generation: int) -> Optional[ResolvedSymbolEntry]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if entry.generation != generation or generation != self._generation:
                # Stale generation, purge lazily
                if self._entries.get(key) is entry:
                    del self._entries[key]
                return None
            return entry

    def _store(self, entry: ResolvedSymbolEntry):
        with self._lock:
            # A switch that happened mid-probe makes this result belong to the old account
            if entry.generation != self._generation:
                return
            self._entries[(entry.account_id, entry.canonical_symbol)] = entry

    def _evict(self, key, entry: ResolvedSymbolEntry):
        with self._lock:
            if self._entries.get(key) is entry:
                del self._entries[key]

    def _probe(self, broker_symbol: str) -> Optional[Dict]:
        try:
            price = self.client.call("get_symbol_price", broker_symbol, timeout=self.probe_timeout)
        except GatewayTimeoutError as e:
            logger.debug(f"[SYMBOL] Symbol variant {broker_symbol} timed out: {e}")
            return None
        except GatewayUnavailableError:
            raise
        except Exception as e:
            logger.debug(f"[SYMBOL] Symbol variant {broker_symbol} failed: {e}")
            return None

        return price if has_quote(price) else None
