"""Simulated account gateway for paper trading. No real orders placed.

Keeps a catalog of broker symbols with quotes and specs, fills orders with
configurable slippage and tracks virtual positions, pending orders and
history. Candles are loaded with set_candles() or generated as a random
walk around the current price. Price events are pushed to listeners with
push_price().

Useful for validating the execution layer before going live, and as the
gateway used by the test suite.
"""
import itertools
import threading
import time
from collections import Counter
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import numpy as np
import pandas as pd

from .broker_interface import AccountGateway, GatewayConnection, PriceListener

TIMEFRAME_MINUTES = {"M1": 1, "M5": 5, "M15": 15, "M30": 30, "H1": 60, "H4": 240, "D1": 1440}


class SimulatedGateway(AccountGateway):
    """Paper trading account. Simulates order execution with configurable slippage."""

    def __init__(
        self,
        account_id: Optional[str] = "paper",
        slippage_points: float = 0.0,
        seed: Optional[int] = None,
        auto_connect: bool = True,
    ):
        self._account_id = account_id
        self.slippage_points = slippage_points
        self.connected = auto_connect

        self._lock = threading.RLock()
        self._rng = np.random.default_rng(seed)
        self._tickets = itertools.count(100001)
        self._handles = itertools.count(1)

        self.symbols: Dict[str, Dict] = {}
        self.positions: List[Dict] = []
        self.pending_orders: List[Dict] = []
        self.history: List[Dict] = []
        self.listeners: Dict[int, PriceListener] = {}
        self.market_data_subscriptions: set = set()

        self._candles: Dict[tuple, List[Dict]] = {}
        self._responses: Dict[str, Any] = {}
        self._errors: Dict[str, Exception] = {}
        self._latency: Dict[str, float] = {}

        self.calls: List[tuple] = []
        self.call_counts: Counter = Counter()
        self.connection = SimulatedConnection(self)

    # ------------------------------------------------------------------
    # AccountGateway
    # ------------------------------------------------------------------

    @property
    def account_id(self) -> Optional[str]:
        return self._account_id

    def switch_account(self, account_id: Optional[str]):
        self._account_id = account_id

    def connect(self) -> bool:
        self.connected = True
        return True

    def disconnect(self):
        self.connected = False

    def is_active(self) -> bool:
        return self.connected

    def get_connection(self) -> "SimulatedConnection":
        return self.connection

    # ------------------------------------------------------------------
    # Catalog and scripting
    # ------------------------------------------------------------------

    def add_symbol(
        self,
        broker_symbol: str,
        bid: Optional[float],
        ask: Optional[float],
        point: float = 0.01,
        digits: int = 2,
        min_lot: float = 0.01,
        max_lot: float = 100.0,
        lot_step: float = 0.01,
        contract_size: float = 100.0,
    ):
        """Make a broker symbol tradable with the given quote and spec."""
        with self._lock:
            self.symbols[broker_symbol] = {
                "bid": bid,
                "ask": ask,
                "spec": {
                    "symbol": broker_symbol,
                    "point": point,
                    "digits": digits,
                    "min_lot": min_lot,
                    "max_lot": max_lot,
                    "lot_step": lot_step,
                    "contract_size": contract_size,
                },
            }

    def remove_symbol(self, broker_symbol: str):
        with self._lock:
            self.symbols.pop(broker_symbol, None)

    def set_price(self, broker_symbol: str, bid: Optional[float], ask: Optional[float]):
        with self._lock:
            entry = self._symbol(broker_symbol)
            entry["bid"] = bid
            entry["ask"] = ask

    def push_price(self, broker_symbol: str, bid: float, ask: float):
        """Update a quote and notify listeners on the calling thread."""
        self.set_price(broker_symbol, bid, ask)
        event = {"symbol": broker_symbol, "bid": bid, "ask": ask, "time": datetime.now(timezone.utc)}
        with self._lock:
            listeners = list(self.listeners.values())
        for listener in listeners:
            listener.on_symbol_price_updated(dict(event))

    def set_candles(self, broker_symbol: str, timeframe: str, bars):
        """Load bars for a symbol/timeframe from a list of dicts or an OHLCV DataFrame."""
        if isinstance(bars, pd.DataFrame):
            df = bars.reset_index()
            if "time" not in df.columns:
                df = df.rename(columns={df.columns[0]: "time"})
            bars = df.to_dict("records")
        with self._lock:
            self._candles[(broker_symbol, timeframe.upper())] = [dict(b) for b in bars]

    def set_response(self, method: str, response: Any):
        """Return a fixed raw response from a connection method."""
        self._responses[method] = response

    def set_error(self, method: str, error: Exception):
        """Raise error from every call of a connection method."""
        self._errors[method] = error

    def set_latency(self, method: str, seconds: float):
        self._latency[method] = seconds

    def clear_faults(self):
        self._responses.clear()
        self._errors.clear()
        self._latency.clear()

    def call_count(self, method: str, *args) -> int:
        """Number of calls to method, optionally matching leading positional args."""
        if not args:
            return self.call_counts[method]
        return sum(1 for name, call_args in self.calls if name == method and call_args[: len(args)] == args)

    def reset_calls(self):
        self.calls.clear()
        self.call_counts.clear()

    # ------------------------------------------------------------------
    # Internals shared with the connection
    # ------------------------------------------------------------------

    def _record(self, method: str, *args):
        with self._lock:
            self.calls.append((method, args))
            self.call_counts[method] += 1
        delay = self._latency.get(method)
        if delay:
            time.sleep(delay)
        error = self._errors.get(method)
        if error is not None:
            raise error

    def _symbol(self, broker_symbol: str) -> Dict:
        entry = self.symbols.get(broker_symbol)
        if entry is None:
            raise RuntimeError(f"Symbol {broker_symbol} not found")
        return entry

    def _next_ticket(self) -> str:
        return str(next(self._tickets))

    def _generate_candles(self, broker_symbol: str, timeframe: str, count: int) -> List[Dict]:
        """Random walk ending at the current mid price."""
        entry = self._symbol(broker_symbol)
        mid = np.mean([p for p in (entry["bid"], entry["ask"]) if p is not None] or [1.0])
        point = entry["spec"]["point"]

        steps = self._rng.normal(0, 20 * point, size=count)
        closes = mid + np.cumsum(steps) - steps.sum()
        opens = np.concatenate([[closes[0] - steps[0]], closes[:-1]])
        wicks = np.abs(self._rng.normal(0, 10 * point, size=(2, count)))
        highs = np.maximum(opens, closes) + wicks[0]
        lows = np.minimum(opens, closes) - wicks[1]

        minutes = TIMEFRAME_MINUTES.get(timeframe, 60)
        end = pd.Timestamp.now(tz="UTC").floor(f"{minutes}min")
        times = pd.date_range(end=end, periods=count, freq=f"{minutes}min")

        return [
            {
                "time": int(t.timestamp()),
                "open": float(o),
                "high": float(h),
                "low": float(l),
                "close": float(c),
                "volume": int(v),
            }
            for t, o, h, l, c, v in zip(times, opens, highs, lows, closes, self._rng.integers(50, 500, size=count))
        ]


class SimulatedConnection(GatewayConnection):
    """Connection handle of a SimulatedGateway. Returns snake_case payload dicts."""

    def __init__(self, gateway: SimulatedGateway):
        self.gateway = gateway

    def get_symbol_price(self, symbol: str) -> Dict:
        g = self.gateway
        g._record("get_symbol_price", symbol)
        with g._lock:
            entry = g._symbol(symbol)
            return {
                "symbol": symbol,
                "bid": entry["bid"],
                "ask": entry["ask"],
                "last": entry["bid"],
                "time": datetime.now(timezone.utc),
            }

    def create_market_buy_order(self, symbol, volume, stop_loss=None, take_profit=None, options=None) -> Dict:
        self.gateway._record("create_market_buy_order", symbol, volume)
        return self._market_order(symbol, "buy", volume, stop_loss, take_profit, options, "create_market_buy_order")

    def create_market_sell_order(self, symbol, volume, stop_loss=None, take_profit=None, options=None) -> Dict:
        self.gateway._record("create_market_sell_order", symbol, volume)
        return self._market_order(symbol, "sell", volume, stop_loss, take_profit, options, "create_market_sell_order")

    def create_limit_buy_order(
        self, symbol, volume, open_price, stop_loss=None, take_profit=None, options=None
    ) -> Dict:
        self.gateway._record("create_limit_buy_order", symbol, volume)
        return self._limit_order(
            symbol, "buy", volume, open_price, stop_loss, take_profit, options, "create_limit_buy_order"
        )

    def create_limit_sell_order(
        self, symbol, volume, open_price, stop_loss=None, take_profit=None, options=None
    ) -> Dict:
        self.gateway._record("create_limit_sell_order", symbol, volume)
        return self._limit_order(
            symbol, "sell", volume, open_price, stop_loss, take_profit, options, "create_limit_sell_order"
        )

    def close_position(self, position_id: str) -> Dict:
        g = self.gateway
        g._record("close_position", position_id)
        if "close_position" in g._responses:
            return g._responses["close_position"]

        with g._lock:
            pos = next((p for p in g.positions if p["id"] == str(position_id)), None)
            if pos is None:
                raise RuntimeError(f"Position {position_id} not found")

            close_price = self._exit_price(pos)
            profit = self._profit(pos, close_price)

            trade = {
                **pos,
                "close_price": close_price,
                "close_time": datetime.now(timezone.utc),
                "profit": profit,
            }
            trade.pop("current_price", None)
            g.history.append(trade)
            g.positions.remove(pos)

        return {
            "order_id": g._next_ticket(),
            "position_id": pos["id"],
            "string_code": "TRADE_RETCODE_DONE",
            "numeric_code": 10009,
            "message": "Request completed",
            "price": close_price,
            "profit": profit,
        }

    def modify_order(self, order_id: str, stop_loss=None, take_profit=None, timeout=None) -> Dict:
        g = self.gateway
        g._record("modify_order", order_id, stop_loss, take_profit)
        if "modify_order" in g._responses:
            return g._responses["modify_order"]

        with g._lock:
            target = next(
                (p for p in g.positions + g.pending_orders if p["id"] == str(order_id)),
                None,
            )
            if target is None:
                raise RuntimeError(f"Order {order_id} not found")
            if stop_loss is not None:
                target["stop_loss"] = stop_loss
            if take_profit is not None:
                target["take_profit"] = take_profit

        return {"string_code": "TRADE_RETCODE_DONE", "numeric_code": 10009, "message": "Request completed"}

    def get_positions(self) -> List[Dict]:
        g = self.gateway
        g._record("get_positions")
        with g._lock:
            result = []
            for pos in g.positions:
                current = self._exit_price(pos)
                result.append({**pos, "current_price": current, "profit": self._profit(pos, current)})
            return result

    def get_candles(self, symbol: str, timeframe: str, count: int = 100) -> List[Dict]:
        g = self.gateway
        g._record("get_candles", symbol, timeframe)
        key = (symbol, timeframe.upper())
        with g._lock:
            if key not in g._candles:
                g._candles[key] = g._generate_candles(symbol, timeframe.upper(), max(count, 250))
            return [dict(b) for b in g._candles[key][-count:]]

    def get_symbol_specification(self, symbol: str) -> Dict:
        g = self.gateway
        g._record("get_symbol_specification", symbol)
        if "get_symbol_specification" in g._responses:
            return g._responses["get_symbol_specification"]
        with g._lock:
            return dict(g._symbol(symbol)["spec"])

    def get_history_orders_by_ticket(self, start=None, end=None, limit: int = 100) -> List[Dict]:
        g = self.gateway
        g._record("get_history_orders_by_ticket", start, end, limit)
        with g._lock:
            trades = [
                t for t in g.history
                if (start is None or t["close_time"] >= start) and (end is None or t["close_time"] <= end)
            ]
        return [dict(t) for t in trades[-limit:]]

    def subscribe_to_market_data(self, symbol: str):
        g = self.gateway
        g._record("subscribe_to_market_data", symbol)
        with g._lock:
            g._symbol(symbol)
            g.market_data_subscriptions.add(symbol)

    def add_synchronization_listener(self, listener: PriceListener) -> int:
        g = self.gateway
        g._record("add_synchronization_listener")
        with g._lock:
            handle = next(g._handles)
            g.listeners[handle] = listener
        return handle

    def remove_synchronization_listener(self, handle: Any):
        g = self.gateway
        g._record("remove_synchronization_listener", handle)
        with g._lock:
            g.listeners.pop(handle, None)

    # ------------------------------------------------------------------

    def _market_order(self, symbol, side, volume, stop_loss, take_profit, options, method) -> Dict:
        g = self.gateway
        if method in g._responses:
            return g._responses[method]

        with g._lock:
            entry = g._symbol(symbol)
            slip = g.slippage_points * entry["spec"]["point"]
            price = entry["ask"] if side == "buy" else entry["bid"]
            if price is None:
                raise RuntimeError(f"No price for {symbol}")
            fill_price = round(price + slip if side == "buy" else price - slip, entry["spec"]["digits"])

            ticket = g._next_ticket()
            g.positions.append({
                "id": ticket,
                "symbol": symbol,
                "side": side,
                "volume": volume,
                "open_price": fill_price,
                "stop_loss": stop_loss,
                "take_profit": take_profit,
                "open_time": datetime.now(timezone.utc),
                "commission": 0.0,
                "comment": (options or {}).get("comment"),
                "client_id": (options or {}).get("client_id"),
                "magic": (options or {}).get("magic"),
            })

        return {
            "order_id": ticket,
            "position_id": ticket,
            "string_code": "TRADE_RETCODE_DONE",
            "numeric_code": 10009,
            "message": "Request completed",
            "price": fill_price,
        }

    def _limit_order(self, symbol, side, volume, open_price, stop_loss, take_profit, options, method) -> Dict:
        g = self.gateway
        if method in g._responses:
            return g._responses[method]

        with g._lock:
            g._symbol(symbol)
            ticket = g._next_ticket()
            g.pending_orders.append({
                "id": ticket,
                "symbol": symbol,
                "side": side,
                "volume": volume,
                "open_price": open_price,
                "stop_loss": stop_loss,
                "take_profit": take_profit,
                "comment": (options or {}).get("comment"),
            })

        return {
            "order_id": ticket,
            "string_code": "TRADE_RETCODE_PLACED",
            "numeric_code": 10008,
            "message": "Request placed",
        }

    def _exit_price(self, pos: Dict) -> Optional[float]:
        entry = self.gateway.symbols.get(pos["symbol"])
        if entry is None:
            return pos["open_price"]
        return entry["bid"] if pos["side"] == "buy" else entry["ask"]

    def _profit(self, pos: Dict, exit_price: Optional[float]) -> float:
        if exit_price is None:
            return 0.0
        entry = self.gateway.symbols.get(pos["symbol"])
        contract_size = entry["spec"]["contract_size"] if entry else 1.0
        points = exit_price - pos["open_price"] if pos["side"] == "buy" else pos["open_price"] - exit_price
        return round(points * pos["volume"] * contract_size, 2)
