"""
Error taxonomy for TradeBridge

Trade operations convert these into outcome objects; read paths raise them
when no cached fallback exists.
"""

from typing import Any, Dict, List, Optional


class TradeBridgeError(Exception):
    """Base class for all execution-layer errors"""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ValidationError(TradeBridgeError):
    """Trade intent or request parameters are malformed"""


class SymbolResolutionError(TradeBridgeError):
    """No broker naming variant of a canonical symbol returned a quote"""

    def __init__(self, symbol: str, tried: List[str]):
        super().__init__(
            f"Could not resolve broker symbol for {symbol}. Tried variants: {', '.join(tried)}",
            details={"symbol": symbol, "tried": list(tried)},
        )
        self.symbol = symbol
        self.tried = list(tried)


class GatewayUnavailableError(TradeBridgeError):
    """Account gateway is not connected"""


class GatewayTimeoutError(GatewayUnavailableError):
    """A gateway call did not complete within its timeout"""


class BrokerRejectionError(TradeBridgeError):
    """Gateway answered but did not accept the order"""

    def __init__(self, message: str, code: Any = None, response: Any = None):
        details = {"code": code} if code is not None else {}
        if response is not None:
            details["response"] = response
        super().__init__(message, details=details)
        self.code = code
        self.response = response


class InvalidRiskSpecError(TradeBridgeError):
    """Stop-loss / take-profit specification has an unknown kind"""


class UnsupportedIndicatorError(TradeBridgeError):
    """Indicator name is not implemented"""
