"""Execution engine: the API strategies and UI layers call.

Owns one symbol resolver, price cache, candle store and order executor per
gateway. Nothing is shared at module level, so several engines (one per
account, or one per test) can live in the same process.
"""
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple, Union

from loguru import logger

from ..data.candle_store import CandleStore
from ..data.price_cache import PriceCache
from ..data.symbol_resolver import SymbolResolver
from ..strategies.indicators import calculate_indicator
from ..utils.config import ExecutionSettings
from ..utils.helpers import normalize_symbol, utc_now
from .broker_interface import (
    AccountGateway,
    Candle,
    CloseOutcome,
    HistoricalTrade,
    ModifyOutcome,
    OpenPosition,
    PriceQuote,
    TradeIntent,
    TradeOutcome,
)
from .gateway_client import GatewayClient
from .order_executor import OrderExecutor


class ExecutionEngine:
    """Trade execution and market data for one account gateway."""

    def __init__(
        self,
        gateway: AccountGateway,
        settings: Optional[ExecutionSettings] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.gateway = gateway
        self.settings = settings or ExecutionSettings()
        s = self.settings

        # Gateway RPCs and fan-out tasks run on separate pools so a full
        # task pool can never starve the calls its tasks are waiting on
        self.client = GatewayClient(gateway, default_timeout=s.read_timeout, max_workers=s.max_workers * 2)
        self._tasks = ThreadPoolExecutor(max_workers=s.max_workers, thread_name_prefix="tasks")

        self.resolver = SymbolResolver(
            self.client,
            variants=s.symbol_variants,
            account_id=s.account_id or gateway.account_id,
            probe_timeout=s.read_timeout,
        )
        self.prices = PriceCache(
            self.client, self.resolver, ttl=s.price_ttl, clock=clock, queue_size=s.subscriber_queue_size
        )
        self.candles = CandleStore(
            self.client, self.resolver, s.timeframes, executor=self._tasks, timeout=s.read_timeout
        )
        self.executor = OrderExecutor(self.client, self.resolver, self.prices, s, executor=self._tasks)
        self._closed = False

    # Trading

    def place_trade(self, intent: Union[TradeIntent, Dict]) -> TradeOutcome:
        return self.executor.place_trade(intent)

    def place_batch_trades(self, intents: Sequence[Union[TradeIntent, Dict]]) -> List[TradeOutcome]:
        return self.executor.place_batch_trades(intents)

    def close_trade(self, order_id: Union[str, int]) -> CloseOutcome:
        return self.executor.close_trade(order_id)

    def modify_trade(
        self,
        order_id: Union[str, int],
        stop_loss: Optional[float] = None,
        take_profit: Optional[float] = None,
    ) -> ModifyOutcome:
        return self.executor.modify_trade(order_id, stop_loss=stop_loss, take_profit=take_profit)

    def get_open_orders(self) -> List[OpenPosition]:
        return self.executor.get_open_orders()

    def get_trade_history(
        self,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        limit: int = 100,
    ) -> List[HistoricalTrade]:
        return self.executor.get_trade_history(start, end, limit)

    # Market data

    def get_current_price(self, symbol: str) -> PriceQuote:
        return self.prices.get_current_price(symbol)

    def get_candles(self, symbol: str, timeframe: str = "H1", count: int = 100) -> Tuple[Candle, ...]:
        return self.candles.get_candles(symbol, timeframe, count)

    def get_multi_timeframe_data(
        self,
        symbol: str,
        timeframes: Iterable[str] = ("M15", "H1", "H4"),
        count: int = 50,
    ) -> Dict:
        """
        Candles for several timeframes at once

        Returns:
            {'symbol', 'timeframes': {timeframe: candles}, 'timestamp'}
        """
        data = self.candles.get_multi_timeframe(symbol, timeframes, count)
        return {"symbol": normalize_symbol(symbol), "timeframes": data, "timestamp": utc_now()}

    def calculate_indicator(
        self,
        candles,
        indicator: str,
        params: Optional[Dict] = None,
        timeframe: str = "H1",
        count: int = 100,
    ):
        """
        Calculate an indicator over candles

        Args:
            candles: Candles / closes, or a canonical symbol to fetch candles for
            indicator: SMA, EMA, RSI, MACD or BB
            params: Indicator parameters
            timeframe: Timeframe used when candles is a symbol
            count: Number of candles fetched when candles is a symbol
        """
        if isinstance(candles, str):
            candles = self.get_candles(candles, timeframe, count)
        return calculate_indicator(candles, indicator, params)

    def subscribe_to_prices(self, symbol: str, callback: Optional[Callable[[PriceQuote], None]] = None) -> str:
        return self.prices.subscribe(symbol, callback)

    def unsubscribe_from_prices(self, subscription_id: str) -> bool:
        return self.prices.unsubscribe(subscription_id)

    # Cache and account management

    def clear_cache(self):
        self.prices.clear()
        self.candles.clear()
        self.resolver.clear()
        logger.info("[MARKET] Cache cleared")

    def get_cache_stats(self) -> Dict:
        resolver_stats = self.resolver.stats()
        return {
            **self.prices.stats(),
            **self.candles.stats(),
            "resolved_symbols": resolver_stats["resolved_symbols"],
            "account_id": resolver_stats["account_id"],
            "generation": resolver_stats["generation"],
        }

    def switch_account(self, account_id: Optional[str]) -> bool:
        """Scope caches to another account. Prior resolutions and quotes become invisible."""
        changed = self.resolver.switch_account(account_id)
        if changed:
            self.candles.clear()
        return changed

    def get_status(self) -> Dict:
        return {
            "connected": self.client.is_active(),
            "account_id": self.resolver.account_id,
            "subscriptions": len(self.prices.subscription_ids),
            "cache_stats": self.get_cache_stats(),
        }

    def health_check(self) -> bool:
        """True when the gateway is connected and answers a read call."""
        try:
            self.client.call("get_positions", timeout=self.settings.read_timeout)
        except Exception as e:
            logger.warning(f"Health check failed: {e}")
            return False
        return True

    def close(self, disconnect: bool = False):
        """Unsubscribe everything and stop the worker pools."""
        if self._closed:
            return
        self._closed = True

        self.prices.unsubscribe_all()
        self._tasks.shutdown(wait=False, cancel_futures=True)
        self.client.shutdown()
        if disconnect:
            self.gateway.disconnect()
        logger.info("Execution engine closed")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def __repr__(self) -> str:
        return f"ExecutionEngine(account={self.resolver.account_id}, connected={self.client.is_active()})"
