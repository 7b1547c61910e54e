"""
TradeBridge
Broker execution and market data layer: symbol resolution, price and candle
caching, indicators, SL/TP derivation and order execution.
"""

from .errors import (
    TradeBridgeError,
    ValidationError,
    SymbolResolutionError,
    GatewayUnavailableError,
    GatewayTimeoutError,
    BrokerRejectionError,
    InvalidRiskSpecError,
    UnsupportedIndicatorError,
)
from .live.execution_engine import ExecutionEngine
from .utils.config import ExecutionSettings

__version__ = "0.1.0"

__all__ = [
    'ExecutionEngine', 'ExecutionSettings',
    'TradeBridgeError', 'ValidationError', 'SymbolResolutionError',
    'GatewayUnavailableError', 'GatewayTimeoutError', 'BrokerRejectionError',
    'InvalidRiskSpecError', 'UnsupportedIndicatorError',
]
