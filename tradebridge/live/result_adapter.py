"""Normalise raw gateway order responses into BrokerAck.

Gateways report success in different fields: an order id, a string return
code, a numeric return code, a position id. All of that sniffing lives here.
"""
from typing import Any, Dict, Optional

from ..errors import BrokerRejectionError
from ..utils.helpers import safe_float
from .broker_interface import BrokerAck, TradeStatus

# MT5 trade server return codes
RETCODE_PLACED = 10008
RETCODE_DONE = 10009
RETCODE_DONE_PARTIAL = 10010

SUCCESS_NUMERIC_CODES = {RETCODE_PLACED, RETCODE_DONE, RETCODE_DONE_PARTIAL}
SUCCESS_STRING_CODES = {
    "TRADE_RETCODE_PLACED",
    "TRADE_RETCODE_DONE",
    "TRADE_RETCODE_DONE_PARTIAL",
    "ERR_NO_ERROR",
}
FILLED_STRING_CODES = {"TRADE_RETCODE_DONE"}


def _field(raw: Dict, *names: str) -> Any:
    for name in names:
        value = raw.get(name)
        if value not in (None, ""):
            return value
    return None


def classify_order_result(raw: Any) -> BrokerAck:
    """
    Classify a raw order response.

    FILLED when the broker reports TRADE_RETCODE_DONE / 10009, or returns
    both an order id and a position id. PENDING for any other accepted
    response.

    Raises:
        BrokerRejectionError: Empty response, no order id or return code,
            or a return code outside the success set
    """
    if not isinstance(raw, dict) or not raw:
        raise BrokerRejectionError("Order creation failed: empty broker response", response=raw)

    order_id = _field(raw, "order_id", "orderId")
    position_id = _field(raw, "position_id", "positionId")
    string_code = _field(raw, "string_code", "stringCode")
    numeric_code = _field(raw, "numeric_code", "numericCode", "retcode")
    message = _field(raw, "message", "comment")

    if numeric_code is not None and int(numeric_code) not in SUCCESS_NUMERIC_CODES:
        raise BrokerRejectionError(
            f"Order rejected by broker: {message or numeric_code}",
            code=string_code or int(numeric_code),
            response=raw,
        )
    if string_code is not None and string_code not in SUCCESS_STRING_CODES:
        raise BrokerRejectionError(
            f"Order rejected by broker: {message or string_code}",
            code=string_code,
            response=raw,
        )
    if order_id is None and string_code is None:
        raise BrokerRejectionError(
            f"Order creation failed: {message or 'Unknown error'}",
            code=numeric_code,
            response=raw,
        )

    filled = (
        string_code in FILLED_STRING_CODES
        or (numeric_code is not None and int(numeric_code) == RETCODE_DONE)
        or (order_id is not None and position_id is not None)
    )

    return BrokerAck(
        status=TradeStatus.FILLED if filled else TradeStatus.PENDING,
        order_id=_as_id(order_id if order_id is not None else position_id),
        position_id=_as_id(position_id),
        fill_price=safe_float(_field(raw, "price", "open_price", "openPrice")),
        code=string_code if string_code is not None else numeric_code,
        message=message,
        raw=raw,
    )


def ensure_accepted(raw: Any) -> Any:
    """
    Check a close/modify response. Responses without return codes are taken
    as accepted; a code outside the success set raises BrokerRejectionError.
    """
    if not isinstance(raw, dict):
        return raw

    string_code = _field(raw, "string_code", "stringCode")
    numeric_code = _field(raw, "numeric_code", "numericCode", "retcode")
    message = _field(raw, "message", "comment")

    if numeric_code is not None and int(numeric_code) not in SUCCESS_NUMERIC_CODES:
        raise BrokerRejectionError(
            f"Request rejected by broker: {message or numeric_code}", code=int(numeric_code), response=raw
        )
    if string_code is not None and string_code not in SUCCESS_STRING_CODES:
        raise BrokerRejectionError(
            f"Request rejected by broker: {message or string_code}", code=string_code, response=raw
        )
    return raw


def _as_id(value: Any) -> Optional[str]:
    return None if value is None else str(value)
