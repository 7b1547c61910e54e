"""
Candle Store

Fetches OHLCV series per symbol/timeframe through the account gateway and
keeps the most recent result per (symbol, timeframe).
"""

import threading
from concurrent.futures import ThreadPoolExecutor, FIRST_EXCEPTION, wait
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from loguru import logger

from ..errors import ValidationError
from ..live.broker_interface import Candle
from ..live.gateway_client import GatewayClient
from ..utils.config import DEFAULT_TIMEFRAMES
from ..utils.helpers import normalize_symbol, safe_float, to_utc_datetime
from .symbol_resolver import SymbolResolver


def candle_from_payload(bar: Dict) -> Candle:
    """Convert one raw gateway bar to a Candle"""
    volume = bar.get("volume", bar.get("tick_volume"))
    return Candle(
        open_time=to_utc_datetime(bar.get("time", bar.get("open_time"))),
        open=float(bar["open"]),
        high=float(bar["high"]),
        low=float(bar["low"]),
        close=float(bar["close"]),
        volume=safe_float(volume, 0.0),
        spread=safe_float(bar.get("spread")),
    )


class CandleStore:
    """
    OHLCV retrieval with a last-result cache

    Features:
    - Timestamp normalization to UTC
    - Ascending, immutable candle tuples
    - Cached fallback when a fetch fails
    - Concurrent, fail-fast multi-timeframe fetches
    """

    def __init__(
        self,
        client: GatewayClient,
        resolver: SymbolResolver,
        timeframes: Sequence[str] = DEFAULT_TIMEFRAMES,
        executor: Optional[ThreadPoolExecutor] = None,
        timeout: Optional[float] = None,
    ):
        """
        Initialize candle store

        Args:
            client: Gateway client
            resolver: Symbol resolver shared with the executor
            timeframes: Supported timeframe codes
            executor: Pool for multi-timeframe fan-out (one is created per call if None)
            timeout: Timeout per candle request in seconds (client default if None)
        """
        self.client = client
        self.resolver = resolver
        self.timeframes = tuple(tf.upper() for tf in timeframes)
        self.executor = executor
        self.timeout = timeout

        self._lock = threading.Lock()
        self._cache: Dict[Tuple[str, str], Tuple[Candle, ...]] = {}

    def get_candles(self, symbol: str, timeframe: str = "H1", count: int = 100) -> Tuple[Candle, ...]:
        """
        Get the most recent candles for a symbol

        Args:
            symbol: Canonical symbol
            timeframe: Timeframe code (M1, M5, M15, M30, H1, H4, D1)
            count: Number of candles

        Returns:
            Candles ordered ascending by open time

        Raises:
            ValidationError: Unknown timeframe or non-positive count
            Fetch error when nothing is cached for this key
        """
        canonical = normalize_symbol(symbol)
        tf = self._check_timeframe(timeframe)
        self._check_count(count)

        try:
            return self._fetch(canonical, tf, count)
        except Exception as e:
            with self._lock:
                cached = self._cache.get((canonical, tf))
            if cached is None:
                logger.error(f"[CANDLES] Failed to get candles for {canonical} ({tf}): {e}")
                raise
            logger.warning(f"[CANDLES] Using cached candles for {canonical} ({tf}): {e}")
            return cached

    def get_multi_timeframe(
        self,
        symbol: str,
        timeframes: Iterable[str] = ("M15", "H1", "H4"),
        count: int = 50,
    ) -> Dict[str, Tuple[Candle, ...]]:
        """
        Fetch several timeframes concurrently

        Any single failure fails the whole call; nothing partial is returned
        and cached series are never served in place of a failed fetch.
        """
        canonical = normalize_symbol(symbol)
        tfs = [self._check_timeframe(tf) for tf in timeframes]
        self._check_count(count)
        if not tfs:
            return {}

        # Resolve once up front so the fan-out does not probe variants N times
        self.resolver.resolve(None, canonical)

        pool = self.executor or ThreadPoolExecutor(max_workers=len(tfs), thread_name_prefix="candles")
        try:
            futures = {pool.submit(self._fetch, canonical, tf, count): tf for tf in tfs}
            done, pending = wait(futures, return_when=FIRST_EXCEPTION)
            for future in done:
                error = future.exception()
                if error is not None:
                    for other in pending:
                        other.cancel()
                    logger.error(f"[CANDLES] Multi-timeframe fetch for {symbol} aborted: {error}")
                    raise error
            return {futures[f]: f.result() for f in futures}
        finally:
            if self.executor is None:
                pool.shutdown(wait=False)

    def get_cached(self, symbol: str, timeframe: str) -> Optional[Tuple[Candle, ...]]:
        with self._lock:
            return self._cache.get((normalize_symbol(symbol), timeframe.upper()))

    def clear(self):
        with self._lock:
            self._cache.clear()

    def stats(self) -> Dict:
        with self._lock:
            return {"cached_candles": len(self._cache)}

    def _fetch(self, canonical: str, tf: str, count: int) -> Tuple[Candle, ...]:
        """Fetch from the gateway and overwrite the cache. Raises on any failure."""
        broker_symbol = self.resolver.resolve(None, canonical)
        raw = self.client.call("get_candles", broker_symbol, tf, count=count, timeout=self.timeout)
        candles = self._convert(raw or [], count)

        with self._lock:
            self._cache[(canonical, tf)] = candles

        logger.debug(f"[CANDLES] Fetched {len(candles)} {tf} candles for {canonical} ({broker_symbol})")
        return candles

    @staticmethod
    def _check_count(count: int):
        if not isinstance(count, int) or isinstance(count, bool) or count <= 0:
            raise ValidationError(f"Invalid candle count: {count}")

    def _check_timeframe(self, timeframe: str) -> str:
        tf = (timeframe or "").upper()
        if tf not in self.timeframes:
            raise ValidationError(
                f"Unsupported timeframe: {timeframe}",
                details={"supported": list(self.timeframes)},
            )
        return tf

    @staticmethod
    def _convert(raw: List[Dict], count: int) -> Tuple[Candle, ...]:
        candles = sorted((candle_from_payload(bar) for bar in raw), key=lambda c: c.open_time)
        return tuple(candles[-count:])
