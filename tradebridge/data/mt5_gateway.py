"""
MetaTrader 5 (MT5) account gateway
Adapts the MT5 Python API to the AccountGateway interface
"""

import itertools
import threading
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import MetaTrader5 as mt5
from loguru import logger

from ..errors import GatewayUnavailableError
from ..live.broker_interface import AccountGateway, GatewayConnection, PriceListener
from ..utils.config import get_config

TIMEFRAMES = {
    "M1": mt5.TIMEFRAME_M1,
    "M5": mt5.TIMEFRAME_M5,
    "M15": mt5.TIMEFRAME_M15,
    "M30": mt5.TIMEFRAME_M30,
    "H1": mt5.TIMEFRAME_H1,
    "H4": mt5.TIMEFRAME_H4,
    "D1": mt5.TIMEFRAME_D1,
}

# MT5 rejects longer order comments
MAX_COMMENT_LENGTH = 31


def _price_or_zero(value: Optional[float]) -> float:
    return float(value) if value else 0.0


def _price_or_none(value: float) -> Optional[float]:
    return float(value) if value else None


def _from_epoch(seconds: int) -> datetime:
    return datetime.fromtimestamp(int(seconds), tz=timezone.utc)


class MT5Gateway(AccountGateway):
    """
    MT5 terminal connection for one trading account

    Features:
    - Connection management with reconnect on lost terminal
    - Order execution and position management
    - Price push emulated by polling subscribed symbols
    """

    def __init__(
        self,
        login: Optional[int] = None,
        password: Optional[str] = None,
        server: Optional[str] = None,
        poll_interval: float = 0.1,
    ):
        """
        Initialize MT5 gateway

        Args:
            login: MT5 account login (from config if not provided)
            password: MT5 account password (from config if not provided)
            server: MT5 server (from config if not provided)
            poll_interval: Seconds between tick polls for subscribed symbols
        """
        if login is None or password is None or server is None:
            config = get_config()
            login = login or config.mt5_login
            password = password or config.mt5_password
            server = server or config.mt5_server

        self.login = int(login)
        self.password = password
        self.server = server
        self.poll_interval = poll_interval

        self.connected = False
        self.connection = MT5Connection(self)

    @property
    def account_id(self) -> Optional[str]:
        return str(self.login)

    def connect(self) -> bool:
        """Establish connection to MT5 terminal"""
        if not mt5.initialize():
            error = mt5.last_error()
            raise GatewayUnavailableError(f"MT5 initialization failed: {error}")

        logger.info("MT5 initialized successfully")

        if not mt5.login(self.login, password=self.password, server=self.server):
            error = mt5.last_error()
            mt5.shutdown()
            raise GatewayUnavailableError(f"MT5 login failed: {error}")

        self.connected = True
        logger.info(f"Connected to MT5: {self.server}, Account: {self.login}")
        return True

    def disconnect(self):
        """Disconnect from MT5"""
        self.connection.stop_polling()
        if self.connected:
            mt5.shutdown()
            self.connected = False
            logger.info("Disconnected from MT5")

    def is_active(self) -> bool:
        return self.connected and mt5.terminal_info() is not None

    def get_connection(self) -> "MT5Connection":
        return self.connection

    def __enter__(self):
        """Context manager entry"""
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit"""
        self.disconnect()

    def __repr__(self) -> str:
        return f"MT5Gateway(server={self.server}, account={self.login}, connected={self.connected})"


class MT5Connection(GatewayConnection):
    """RPCs of an MT5 terminal session, returned as gateway payload dicts"""

    def __init__(self, gateway: MT5Gateway):
        self.gateway = gateway
        self._lock = threading.Lock()
        self._listeners: Dict[int, PriceListener] = {}
        self._handles = itertools.count(1)
        self._symbols: Dict[str, int] = {}
        self._poller: Optional[threading.Thread] = None
        self._stop = threading.Event()

    # Market data

    def get_symbol_price(self, symbol: str) -> Dict:
        if not mt5.symbol_select(symbol, True):
            raise RuntimeError(f"Failed to select symbol {symbol}: {mt5.last_error()}")

        tick = mt5.symbol_info_tick(symbol)
        if tick is None:
            raise RuntimeError(f"Failed to get tick for {symbol}: {mt5.last_error()}")

        return self._tick_payload(symbol, tick)

    def get_candles(self, symbol: str, timeframe: str, count: int = 100) -> List[Dict]:
        if not mt5.symbol_select(symbol, True):
            raise RuntimeError(f"Failed to select symbol {symbol}: {mt5.last_error()}")

        tf = TIMEFRAMES.get(timeframe.upper())
        if tf is None:
            raise ValueError(f"Unsupported MT5 timeframe: {timeframe}")

        rates = mt5.copy_rates_from_pos(symbol, tf, 0, count)
        if rates is None:
            raise RuntimeError(f"Failed to get candles for {symbol}: {mt5.last_error()}")

        return [
            {
                "time": int(r["time"]),
                "open": float(r["open"]),
                "high": float(r["high"]),
                "low": float(r["low"]),
                "close": float(r["close"]),
                "volume": int(r["tick_volume"]),
                "spread": int(r["spread"]),
            }
            for r in rates
        ]

    def get_symbol_specification(self, symbol: str) -> Dict:
        info = mt5.symbol_info(symbol)
        if info is None:
            raise RuntimeError(f"Failed to get symbol info for {symbol}: {mt5.last_error()}")

        return {
            "symbol": info.name,
            "point": info.point,
            "digits": info.digits,
            "min_lot": info.volume_min,
            "max_lot": info.volume_max,
            "lot_step": info.volume_step,
            "contract_size": info.trade_contract_size,
        }

    # Orders

    def create_market_buy_order(self, symbol, volume, stop_loss=None, take_profit=None, options=None) -> Dict:
        return self._market_order(symbol, mt5.ORDER_TYPE_BUY, volume, stop_loss, take_profit, options)

    def create_market_sell_order(self, symbol, volume, stop_loss=None, take_profit=None, options=None) -> Dict:
        return self._market_order(symbol, mt5.ORDER_TYPE_SELL, volume, stop_loss, take_profit, options)

    def create_limit_buy_order(
        self, symbol, volume, open_price, stop_loss=None, take_profit=None, options=None
    ) -> Dict:
        return self._limit_order(symbol, mt5.ORDER_TYPE_BUY_LIMIT, volume, open_price, stop_loss, take_profit, options)

    def create_limit_sell_order(
        self, symbol, volume, open_price, stop_loss=None, take_profit=None, options=None
    ) -> Dict:
        return self._limit_order(symbol, mt5.ORDER_TYPE_SELL_LIMIT, volume, open_price, stop_loss, take_profit, options)

    def close_position(self, position_id: str) -> Dict:
        positions = mt5.positions_get(ticket=int(position_id))
        if not positions:
            raise RuntimeError(f"Position {position_id} not found")
        pos = positions[0]

        tick = mt5.symbol_info_tick(pos.symbol)
        if tick is None:
            raise RuntimeError(f"Failed to get tick for {pos.symbol}: {mt5.last_error()}")

        closing_buy = pos.type == mt5.POSITION_TYPE_SELL
        request = {
            "action": mt5.TRADE_ACTION_DEAL,
            "position": pos.ticket,
            "symbol": pos.symbol,
            "volume": pos.volume,
            "type": mt5.ORDER_TYPE_BUY if closing_buy else mt5.ORDER_TYPE_SELL,
            "price": tick.ask if closing_buy else tick.bid,
            "magic": pos.magic,
            "type_time": mt5.ORDER_TIME_GTC,
            "type_filling": mt5.ORDER_FILLING_IOC,
        }
        result = self._send(request)
        result["profit"] = pos.profit
        return result

    def modify_order(self, order_id: str, stop_loss=None, take_profit=None, timeout=None) -> Dict:
        ticket = int(order_id)
        positions = mt5.positions_get(ticket=ticket)
        if positions:
            pos = positions[0]
            request = {
                "action": mt5.TRADE_ACTION_SLTP,
                "position": ticket,
                "symbol": pos.symbol,
                "sl": _price_or_zero(stop_loss if stop_loss is not None else pos.sl),
                "tp": _price_or_zero(take_profit if take_profit is not None else pos.tp),
            }
            return self._send(request)

        orders = mt5.orders_get(ticket=ticket)
        if not orders:
            raise RuntimeError(f"Order {order_id} not found")
        order = orders[0]
        request = {
            "action": mt5.TRADE_ACTION_MODIFY,
            "order": ticket,
            "symbol": order.symbol,
            "price": order.price_open,
            "sl": _price_or_zero(stop_loss if stop_loss is not None else order.sl),
            "tp": _price_or_zero(take_profit if take_profit is not None else order.tp),
            "type_time": order.type_time,
        }
        return self._send(request)

    def get_positions(self) -> List[Dict]:
        positions = mt5.positions_get()
        if positions is None:
            raise RuntimeError(f"Failed to get positions: {mt5.last_error()}")

        return [
            {
                "id": str(p.ticket),
                "symbol": p.symbol,
                "side": "buy" if p.type == mt5.POSITION_TYPE_BUY else "sell",
                "volume": p.volume,
                "open_price": p.price_open,
                "current_price": p.price_current,
                "stop_loss": _price_or_none(p.sl),
                "take_profit": _price_or_none(p.tp),
                "profit": p.profit,
                "open_time": _from_epoch(p.time),
                "commission": getattr(p, "commission", 0.0),
                "comment": p.comment,
            }
            for p in positions
        ]

    def get_history_orders_by_ticket(self, start=None, end=None, limit: int = 100) -> List[Dict]:
        end = end or datetime.now(timezone.utc)
        start = start or end - timedelta(days=30)

        deals = mt5.history_deals_get(start, end)
        if deals is None:
            raise RuntimeError(f"Failed to get trade history: {mt5.last_error()}")

        entries = {d.position_id: d for d in deals if d.entry == mt5.DEAL_ENTRY_IN}
        trades = []
        for deal in deals:
            if deal.entry != mt5.DEAL_ENTRY_OUT:
                continue
            opening = entries.get(deal.position_id)
            trades.append({
                "id": str(deal.position_id),
                "symbol": deal.symbol,
                # The closing deal runs opposite to the position
                "side": "sell" if deal.type == mt5.DEAL_TYPE_BUY else "buy",
                "volume": deal.volume,
                "open_price": opening.price if opening else None,
                "close_price": deal.price,
                "profit": deal.profit,
                "open_time": _from_epoch(opening.time) if opening else None,
                "close_time": _from_epoch(deal.time),
                "comment": deal.comment,
            })

        return trades[-limit:]

    # Streaming

    def subscribe_to_market_data(self, symbol: str):
        if not mt5.symbol_select(symbol, True):
            raise RuntimeError(f"Failed to select symbol {symbol}: {mt5.last_error()}")

        with self._lock:
            self._symbols.setdefault(symbol, 0)
            if self._poller is None or not self._poller.is_alive():
                self._stop.clear()
                self._poller = threading.Thread(target=self._poll, name="mt5-ticks", daemon=True)
                self._poller.start()

    def add_synchronization_listener(self, listener: PriceListener) -> int:
        with self._lock:
            handle = next(self._handles)
            self._listeners[handle] = listener
        return handle

    def remove_synchronization_listener(self, handle: Any):
        with self._lock:
            self._listeners.pop(handle, None)

    def stop_polling(self):
        self._stop.set()
        if self._poller is not None:
            self._poller.join(timeout=2 * self.gateway.poll_interval + 1)
            self._poller = None

    def _poll(self):
        while not self._stop.wait(self.gateway.poll_interval):
            with self._lock:
                symbols = dict(self._symbols)
                listeners = list(self._listeners.values())
            if not listeners:
                continue

            for symbol, last_seen in symbols.items():
                tick = mt5.symbol_info_tick(symbol)
                if tick is None or tick.time_msc == last_seen:
                    continue
                with self._lock:
                    self._symbols[symbol] = tick.time_msc

                payload = self._tick_payload(symbol, tick)
                for listener in listeners:
                    try:
                        listener.on_symbol_price_updated(dict(payload))
                    except Exception as e:
                        logger.error(f"[MARKET] Price listener failed for {symbol}: {e}")

    # Internals

    def _market_order(self, symbol, order_type, volume, stop_loss, take_profit, options) -> Dict:
        tick = mt5.symbol_info_tick(symbol)
        if tick is None:
            raise RuntimeError(f"Failed to get tick for {symbol}: {mt5.last_error()}")

        request = {
            "action": mt5.TRADE_ACTION_DEAL,
            "symbol": symbol,
            "volume": float(volume),
            "type": order_type,
            "price": tick.ask if order_type == mt5.ORDER_TYPE_BUY else tick.bid,
            "sl": _price_or_zero(stop_loss),
            "tp": _price_or_zero(take_profit),
            "type_time": mt5.ORDER_TIME_GTC,
            "type_filling": mt5.ORDER_FILLING_IOC,
        }
        request.update(self._order_options(options))
        return self._send(request)

    def _limit_order(self, symbol, order_type, volume, open_price, stop_loss, take_profit, options) -> Dict:
        request = {
            "action": mt5.TRADE_ACTION_PENDING,
            "symbol": symbol,
            "volume": float(volume),
            "type": order_type,
            "price": float(open_price),
            "sl": _price_or_zero(stop_loss),
            "tp": _price_or_zero(take_profit),
            "type_time": mt5.ORDER_TIME_GTC,
            "type_filling": mt5.ORDER_FILLING_RETURN,
        }
        request.update(self._order_options(options))
        return self._send(request)

    @staticmethod
    def _order_options(options: Optional[Dict]) -> Dict:
        options = options or {}
        return {
            "deviation": int(options.get("slippage", 0)),
            "magic": int(options.get("magic", 0)),
            "comment": str(options.get("comment", ""))[:MAX_COMMENT_LENGTH],
        }

    @staticmethod
    def _send(request: Dict) -> Dict:
        result = mt5.order_send(request)
        if result is None:
            raise RuntimeError(f"order_send failed: {mt5.last_error()}")

        return {
            "order_id": str(result.order) if result.order else None,
            # Hedging accounts open the position under the order ticket
            "position_id": str(result.order) if result.deal else None,
            "numeric_code": result.retcode,
            "message": result.comment,
            "price": result.price or None,
        }

    @staticmethod
    def _tick_payload(symbol: str, tick) -> Dict:
        return {
            "symbol": symbol,
            "bid": tick.bid or None,
            "ask": tick.ask or None,
            "last": tick.last or None,
            "time": int(tick.time_msc),
        }
