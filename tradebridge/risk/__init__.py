"""Risk calculations: SL/TP derivation, P&L and position sizing"""
from .risk_calculator import (
    derive_stop, derive_target, check_min_distance,
    calculate_pnl, risk_reward_ratio, position_size,
    required_margin, validate_trade_params, format_price,
)

__all__ = [
    'derive_stop', 'derive_target', 'check_min_distance',
    'calculate_pnl', 'risk_reward_ratio', 'position_size',
    'required_margin', 'validate_trade_params', 'format_price',
]
