"""Abstract account gateway and the domain types of the execution layer."""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, asdict
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Union

import pandas as pd

from ..errors import InvalidRiskSpecError
from ..utils.helpers import utc_now, safe_float


class TradeStatus(str, Enum):
    """Terminal status of a trade intent."""
    FILLED = "FILLED"
    PENDING = "PENDING"
    FAILED = "FAILED"


class RiskKind(str, Enum):
    """How a stop-loss / take-profit value is expressed."""
    POINTS = "points"
    PERCENTAGE = "percentage"
    FIXED_PRICE = "fixed_price"

    @classmethod
    def parse(cls, value: Union[str, "RiskKind"]) -> "RiskKind":
        if isinstance(value, RiskKind):
            return value
        key = str(value).strip().lower()
        aliases = {"fixedprice": "fixed_price", "price": "fixed_price", "percent": "percentage"}
        key = aliases.get(key, key)
        try:
            return cls(key)
        except ValueError:
            raise InvalidRiskSpecError(
                f"Unknown stop/target kind: {value}",
                details={"kind": value, "supported": [k.value for k in cls]},
            ) from None


@dataclass(frozen=True)
class StopSpec:
    """Relative or absolute stop-loss / take-profit specification."""
    kind: RiskKind
    value: float

    @classmethod
    def from_value(cls, spec: Any) -> Optional["StopSpec"]:
        """Build from a StopSpec, a {'type'|'kind', 'value'} dict, or None."""
        if spec is None or isinstance(spec, StopSpec):
            return spec
        if isinstance(spec, dict):
            kind = spec.get("kind", spec.get("type"))
            if kind is None:
                raise InvalidRiskSpecError(f"Stop/target spec without kind: {spec}")
            return cls(RiskKind.parse(kind), float(spec.get("value") or 0))
        raise InvalidRiskSpecError(f"Unsupported stop/target spec: {spec!r}")


# Take-profit specs share the stop-loss shape
TargetSpec = StopSpec


@dataclass(frozen=True)
class SymbolSpec:
    """Tick and lot metadata of a broker symbol."""
    point: float = 0.0001
    digits: int = 4
    min_lot: float = 0.01
    max_lot: float = 100.0
    lot_step: float = 0.01

    @classmethod
    def default(cls) -> "SymbolSpec":
        return cls()

    @classmethod
    def from_payload(cls, payload: Dict) -> "SymbolSpec":
        """Map a gateway specification record, keeping defaults for missing fields."""
        base = cls.default()
        digits = payload.get("digits")
        return cls(
            point=safe_float(payload.get("point"), base.point) or base.point,
            digits=int(digits) if digits is not None else base.digits,
            min_lot=safe_float(payload.get("min_lot", payload.get("minLot")), base.min_lot),
            max_lot=safe_float(payload.get("max_lot", payload.get("maxLot")), base.max_lot),
            lot_step=safe_float(payload.get("lot_step", payload.get("lotStep")), base.lot_step),
        )


@dataclass(frozen=True)
class PriceQuote:
    """Last known bid/ask of a canonical symbol."""
    canonical_symbol: str
    broker_symbol: str
    bid: Optional[float]
    ask: Optional[float]
    last: Optional[float]
    spread: float
    observed_at: datetime

    @property
    def mid(self) -> Optional[float]:
        if self.bid is None or self.ask is None:
            return self.bid if self.ask is None else self.ask
        return (self.bid + self.ask) / 2


@dataclass(frozen=True)
class Candle:
    """One OHLCV bar."""
    open_time: datetime
    open: float
    high: float
    low: float
    close: float
    volume: float = 0.0
    spread: Optional[float] = None


def candles_to_frame(candles) -> pd.DataFrame:
    """Convert candles to an OHLCV DataFrame indexed by UTC open time."""
    df = pd.DataFrame(
        [asdict(c) for c in candles],
        columns=["open_time", "open", "high", "low", "close", "volume", "spread"],
    )
    df["open_time"] = pd.to_datetime(df["open_time"], utc=True)
    df.set_index("open_time", inplace=True)
    return df


@dataclass
class TradeIntent:
    """Abstract order request from a strategy or UI."""
    symbol: str
    side: str  # 'BUY' or 'SELL'
    volume: float
    order_kind: str = "market"  # 'market' or 'limit'
    entry_price: Optional[float] = None
    stop: Optional[StopSpec] = None
    target: Optional[StopSpec] = None
    comment: Optional[str] = None

    @classmethod
    def from_dict(cls, payload: Dict) -> "TradeIntent":
        """Accept both snake_case and the camelCase webhook payload."""
        return cls(
            symbol=payload.get("symbol") or "",
            side=payload.get("side", payload.get("type")) or "",
            volume=payload.get("volume"),
            order_kind=payload.get("order_kind", payload.get("orderType")) or "market",
            entry_price=payload.get("entry_price", payload.get("entryPrice")),
            stop=payload.get("stop", payload.get("stopLoss")),
            target=payload.get("target", payload.get("takeProfit")),
            comment=payload.get("comment"),
        )


@dataclass
class TradeOutcome:
    """Result of one trade intent. Produced exactly once per intent."""
    success: bool
    status: TradeStatus
    symbol: Optional[str] = None
    side: Optional[str] = None
    volume: Optional[float] = None
    broker_symbol: Optional[str] = None
    broker_order_id: Optional[str] = None
    filled_price: Optional[float] = None
    stop_price: Optional[float] = None
    target_price: Optional[float] = None
    execution_time_ms: int = 0
    error: Optional[str] = None
    error_type: Optional[str] = None
    error_details: Optional[Dict] = None
    timestamp: datetime = field(default_factory=utc_now)
    broker_response: Optional[Dict] = None


@dataclass
class CloseOutcome:
    """Result of closing a position."""
    success: bool
    order_id: str
    close_price: Optional[float] = None
    profit: Optional[float] = None
    profit_percent: Optional[float] = None
    closed_at: Optional[datetime] = None
    execution_time_ms: int = 0
    error: Optional[str] = None
    error_type: Optional[str] = None
    broker_response: Any = None


@dataclass
class ModifyOutcome:
    """Result of changing SL/TP of a position."""
    success: bool
    order_id: str
    stop_loss: Optional[float] = None
    take_profit: Optional[float] = None
    modified_at: Optional[datetime] = None
    execution_time_ms: int = 0
    error: Optional[str] = None
    error_type: Optional[str] = None


@dataclass
class BrokerAck:
    """Gateway order response normalised by the result adapter."""
    status: TradeStatus
    order_id: Optional[str]
    position_id: Optional[str] = None
    fill_price: Optional[float] = None
    code: Any = None
    message: Optional[str] = None
    raw: Optional[Dict] = None


def profit_percent(profit: Optional[float], open_price: Optional[float], volume: Optional[float]) -> float:
    """Profit relative to notional, in percent. 0.0 when undefined."""
    if not profit or not open_price or not volume:
        return 0.0
    return round(profit / (open_price * volume) * 100, 2)


@dataclass
class OpenPosition:
    """Open position as reported by the gateway."""
    id: str
    symbol: str
    side: str
    volume: float
    open_price: Optional[float]
    current_price: Optional[float]
    stop_loss: Optional[float]
    take_profit: Optional[float]
    profit: float
    profit_percent: float
    open_time: Optional[datetime]
    commission: float = 0.0

    @classmethod
    def from_payload(cls, pos: Dict) -> "OpenPosition":
        volume = safe_float(pos.get("volume"), 0.0)
        open_price = safe_float(pos.get("open_price"))
        profit = safe_float(pos.get("profit"), 0.0)
        return cls(
            id=str(pos.get("id")),
            symbol=pos.get("symbol"),
            side=_side_from_payload(pos.get("side")),
            volume=volume,
            open_price=open_price,
            current_price=safe_float(pos.get("current_price")),
            stop_loss=safe_float(pos.get("stop_loss")),
            take_profit=safe_float(pos.get("take_profit")),
            profit=profit,
            profit_percent=profit_percent(profit, open_price, volume),
            open_time=pos.get("open_time"),
            commission=safe_float(pos.get("commission"), 0.0),
        )


@dataclass
class HistoricalTrade:
    """Closed order from the gateway history."""
    order_id: str
    symbol: str
    side: str
    volume: float
    open_price: Optional[float]
    close_price: Optional[float]
    profit: float
    profit_percent: float
    open_time: Optional[datetime]
    close_time: Optional[datetime]
    comment: Optional[str] = None

    @classmethod
    def from_payload(cls, order: Dict) -> "HistoricalTrade":
        volume = safe_float(order.get("volume"), 0.0)
        open_price = safe_float(order.get("open_price"))
        profit = safe_float(order.get("profit"), 0.0)
        return cls(
            order_id=str(order.get("id")),
            symbol=order.get("symbol"),
            side=_side_from_payload(order.get("side")),
            volume=volume,
            open_price=open_price,
            close_price=safe_float(order.get("close_price")),
            profit=profit,
            profit_percent=profit_percent(profit, open_price, volume),
            open_time=order.get("open_time"),
            close_time=order.get("close_time"),
            comment=order.get("comment"),
        )


def _side_from_payload(side: Optional[str]) -> str:
    return "BUY" if str(side).lower() == "buy" else "SELL"


class PriceListener(ABC):
    """Receives streamed price events from a gateway connection."""

    @abstractmethod
    def on_symbol_price_updated(self, price: Dict):
        pass


class GatewayConnection(ABC):
    """Low-level RPCs of a connected trading account.

    All methods are blocking; payloads are plain dicts with snake_case keys.
    """

    @abstractmethod
    def get_symbol_price(self, symbol: str) -> Dict:
        """Returns {'symbol', 'bid', 'ask', 'last', 'time'}."""
        pass

    @abstractmethod
    def create_market_buy_order(
        self,
        symbol: str,
        volume: float,
        stop_loss: Optional[float] = None,
        take_profit: Optional[float] = None,
        options: Optional[Dict] = None,
    ) -> Dict:
        """Returns the raw order response (order_id, position_id, codes, message)."""
        pass

    @abstractmethod
    def create_market_sell_order(
        self,
        symbol: str,
        volume: float,
        stop_loss: Optional[float] = None,
        take_profit: Optional[float] = None,
        options: Optional[Dict] = None,
    ) -> Dict:
        pass

    @abstractmethod
    def create_limit_buy_order(
        self,
        symbol: str,
        volume: float,
        open_price: float,
        stop_loss: Optional[float] = None,
        take_profit: Optional[float] = None,
        options: Optional[Dict] = None,
    ) -> Dict:
        pass

    @abstractmethod
    def create_limit_sell_order(
        self,
        symbol: str,
        volume: float,
        open_price: float,
        stop_loss: Optional[float] = None,
        take_profit: Optional[float] = None,
        options: Optional[Dict] = None,
    ) -> Dict:
        pass

    @abstractmethod
    def close_position(self, position_id: str) -> Dict:
        pass

    @abstractmethod
    def modify_order(
        self,
        order_id: str,
        stop_loss: Optional[float] = None,
        take_profit: Optional[float] = None,
        timeout: Optional[float] = None,
    ) -> Dict:
        pass

    @abstractmethod
    def get_positions(self) -> List[Dict]:
        pass

    @abstractmethod
    def get_candles(self, symbol: str, timeframe: str, count: int = 100) -> List[Dict]:
        """Returns raw bars: {'time', 'open', 'high', 'low', 'close', 'volume', 'spread'}."""
        pass

    @abstractmethod
    def get_symbol_specification(self, symbol: str) -> Dict:
        pass

    @abstractmethod
    def get_history_orders_by_ticket(
        self,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        limit: int = 100,
    ) -> List[Dict]:
        pass

    @abstractmethod
    def subscribe_to_market_data(self, symbol: str):
        pass

    @abstractmethod
    def add_synchronization_listener(self, listener: PriceListener) -> Any:
        """Register a listener. Returns a handle for removal."""
        pass

    @abstractmethod
    def remove_synchronization_listener(self, handle: Any):
        pass


class AccountGateway(ABC):
    """Connection lifecycle of one trading account. Implement for each broker."""

    @property
    @abstractmethod
    def account_id(self) -> Optional[str]:
        pass

    @abstractmethod
    def connect(self) -> bool:
        """Connect to broker. Returns True if successful."""
        pass

    @abstractmethod
    def disconnect(self):
        pass

    @abstractmethod
    def is_active(self) -> bool:
        pass

    @abstractmethod
    def get_connection(self) -> GatewayConnection:
        pass
