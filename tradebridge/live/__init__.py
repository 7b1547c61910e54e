"""Trade execution for TradeBridge.

Modules:
- broker_interface: Abstract account gateway and domain types
- gateway_client: Timeout-bounded gateway calls
- result_adapter: Raw order response classification
- order_executor: Intent validation, pricing and submission
- execution_engine: Exposed API facade
- simulated_broker: Paper trading gateway
- dispatcher: Per-subscriber price delivery
"""
from .broker_interface import (
    AccountGateway, GatewayConnection, PriceListener,
    TradeIntent, TradeOutcome, TradeStatus, CloseOutcome, ModifyOutcome,
    StopSpec, TargetSpec, RiskKind, SymbolSpec, PriceQuote, Candle,
    OpenPosition, HistoricalTrade, BrokerAck, candles_to_frame,
)
from .gateway_client import GatewayClient
from .result_adapter import classify_order_result
from .order_executor import OrderExecutor
from .execution_engine import ExecutionEngine
from .simulated_broker import SimulatedGateway

__all__ = [
    'AccountGateway', 'GatewayConnection', 'PriceListener',
    'TradeIntent', 'TradeOutcome', 'TradeStatus', 'CloseOutcome', 'ModifyOutcome',
    'StopSpec', 'TargetSpec', 'RiskKind', 'SymbolSpec', 'PriceQuote', 'Candle',
    'OpenPosition', 'HistoricalTrade', 'BrokerAck', 'candles_to_frame',
    'GatewayClient', 'classify_order_result', 'OrderExecutor',
    'ExecutionEngine', 'SimulatedGateway',
]
