"""
Risk Calculator

Turns stop-loss / take-profit specifications (points, percentage or fixed
price) into absolute prices, plus the P&L and sizing helpers that go with
them.
"""

from typing import Any, Dict, Optional

from loguru import logger

from ..errors import ValidationError
from ..live.broker_interface import RiskKind, StopSpec, SymbolSpec


def _check_side(side: str) -> str:
    side = (side or "").upper()
    if side not in ("BUY", "SELL"):
        raise ValidationError(f"Invalid order side: {side}")
    return side


def _offset(base_price: float, spec: StopSpec, symbol_spec: SymbolSpec) -> Optional[float]:
    if spec.kind == RiskKind.POINTS:
        return spec.value * symbol_spec.point
    if spec.kind == RiskKind.PERCENTAGE:
        return base_price * spec.value / 100
    return None


def _derive(base_price: float, spec: Any, side: str, symbol_spec: SymbolSpec, direction: int) -> Optional[float]:
    spec = StopSpec.from_value(spec)
    if spec is None or not spec.value:
        return None

    side = _check_side(side)
    symbol_spec = symbol_spec or SymbolSpec.default()

    if spec.kind == RiskKind.FIXED_PRICE:
        # Absolute price, passed through as given
        price = spec.value
    else:
        offset = _offset(base_price, spec, symbol_spec)
        sign = direction if side == "BUY" else -direction
        price = base_price + sign * offset

    return round(price, symbol_spec.digits)


def derive_stop(base_price: float, spec: Any, side: str, symbol_spec: SymbolSpec = None) -> Optional[float]:
    """
    Absolute stop-loss price

    Args:
        base_price: Entry or current price
        spec: StopSpec or {'type', 'value'} dict; None means no stop
        side: 'BUY' or 'SELL'
        symbol_spec: Tick metadata (defaults when None)

    Returns:
        Price below base for BUY, above for SELL; None when no stop is requested

    Raises:
        InvalidRiskSpecError: Unknown spec kind
    """
    return _derive(base_price, spec, side, symbol_spec, direction=-1)


def derive_target(base_price: float, spec: Any, side: str, symbol_spec: SymbolSpec = None) -> Optional[float]:
    """Absolute take-profit price: mirror of derive_stop"""
    return _derive(base_price, spec, side, symbol_spec, direction=+1)


def check_min_distance(
    base_price: float,
    price: Optional[float],
    min_points: float,
    symbol_spec: SymbolSpec,
    label: str = "Stop",
):
    """
    Ensure a derived price is at least min_points away from the base price

    Raises:
        ValidationError: Price is too close to the base price
    """
    if price is None or not min_points:
        return
    distance_points = abs(base_price - price) / symbol_spec.point
    # Tolerate float noise from the point conversion
    if distance_points + 1e-6 < min_points:
        raise ValidationError(
            f"{label} {price} is {distance_points:.1f} points from {base_price}, minimum is {min_points}",
            details={"price": price, "base_price": base_price, "min_points": min_points},
        )


def calculate_pnl(entry_price: float, exit_price: float, volume: float, side: str, contract_size: float = 100) -> Dict:
    """
    Profit/loss of a closed trade

    Returns:
        {'pnl', 'pnl_percent', 'pnl_points'}
    """
    if not entry_price or not exit_price or not volume:
        return {"pnl": 0.0, "pnl_percent": 0.0, "pnl_points": 0.0}

    side = _check_side(side)
    points = exit_price - entry_price if side == "BUY" else entry_price - exit_price
    pnl = points * volume * contract_size
    pnl_percent = pnl / (entry_price * volume * contract_size) * 100

    return {
        "pnl": round(pnl, 2),
        "pnl_percent": round(pnl_percent, 2),
        "pnl_points": round(points, 4),
    }


def risk_reward_ratio(entry_price: float, stop_price: float, target_price: float, side: str) -> float:
    """Reward / risk, 0.0 when undefined"""
    if not entry_price or not stop_price or not target_price:
        return 0.0

    _check_side(side)
    risk = abs(entry_price - stop_price)
    reward = abs(target_price - entry_price)
    if risk == 0:
        return 0.0
    return round(reward / risk, 2)


def position_size(balance: float, risk_percent: float, entry_price: float, stop_price: float) -> float:
    """
    Volume that risks risk_percent of balance between entry and stop

    Args:
        balance: Account balance
        risk_percent: Risk per trade, 0-100
        entry_price: Entry price
        stop_price: Stop-loss price

    Returns:
        Position size rounded to 2 decimals, 0.0 when undefined
    """
    if not balance or risk_percent <= 0 or not entry_price or not stop_price:
        return 0.0

    risk_amount = balance * risk_percent / 100
    risk_per_unit = abs(entry_price - stop_price)
    if risk_per_unit == 0:
        logger.warning("Stop equals entry price, position size undefined")
        return 0.0
    return round(risk_amount / risk_per_unit, 2)


def required_margin(volume: float, price: float, leverage: float = 100, contract_size: float = 100) -> float:
    """Margin needed to open volume at price, 0.0 when undefined"""
    if not volume or not price or not leverage:
        return 0.0
    return round(volume * price * contract_size / leverage, 2)


def validate_trade_params(
    side: str,
    volume: float,
    entry_price: float,
    stop_price: Optional[float] = None,
    target_price: Optional[float] = None,
    account: Optional[Dict] = None,
    contract_size: float = 100,
):
    """
    Pre-trade sanity checks

    Stops and targets are only checked when both are given. Margin is only
    checked when account carries a positive 'free_margin'.

    Args:
        side: 'BUY' or 'SELL'
        volume: Lots
        entry_price: Expected fill price
        stop_price: Absolute stop-loss
        target_price: Absolute take-profit
        account: {'free_margin', 'leverage'}
        contract_size: Units per lot

    Raises:
        ValidationError: Every failed check, listed in details['errors']
    """
    side = _check_side(side)
    errors = []

    if not volume or volume <= 0:
        errors.append("Volume must be greater than 0")

    if stop_price and target_price:
        if side == "BUY":
            if stop_price >= entry_price:
                errors.append("Stop must be below entry price for BUY orders")
            if target_price <= entry_price:
                errors.append("Target must be above entry price for BUY orders")
        else:
            if stop_price <= entry_price:
                errors.append("Stop must be above entry price for SELL orders")
            if target_price >= entry_price:
                errors.append("Target must be below entry price for SELL orders")

    free_margin = (account or {}).get("free_margin") or 0
    if free_margin > 0:
        margin = required_margin(volume, entry_price, account.get("leverage") or 100, contract_size)
        if margin > free_margin:
            errors.append(f"Insufficient margin. Required: {margin}, Available: {free_margin}")

    if errors:
        raise ValidationError("; ".join(errors), details={"errors": errors})


def format_price(price: Optional[float], digits: int = 4) -> str:
    """Display string for a price, 'N/A' when missing"""
    if price is None:
        return "N/A"
    return f"{price:.{digits}f}"
