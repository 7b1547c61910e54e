"""
Helper utilities for TradeBridge
"""

import time
from decimal import Decimal, ROUND_HALF_UP
from datetime import datetime, timezone
from typing import Any, Optional
import pandas as pd


def utc_now() -> datetime:
    """Get current UTC time"""
    return datetime.now(timezone.utc)


def elapsed_ms(started: float) -> int:
    """Milliseconds since a time.perf_counter() reading"""
    return int(round((time.perf_counter() - started) * 1000))


def to_utc_datetime(value: Any) -> Optional[datetime]:
    """
    Normalize a broker timestamp to a timezone-aware UTC datetime

    Args:
        value: Epoch seconds or milliseconds, ISO string, datetime or pandas Timestamp

    Returns:
        UTC datetime, or None when value is None
    """
    if value is None:
        return None

    if isinstance(value, (int, float)) and not isinstance(value, bool):
        # Anything past year 33658 in seconds is really milliseconds
        unit = "ms" if abs(value) > 1e12 else "s"
        ts = pd.Timestamp(value, unit=unit, tz="UTC")
    else:
        ts = pd.Timestamp(value)
        ts = ts.tz_localize("UTC") if ts.tzinfo is None else ts.tz_convert("UTC")

    return ts.to_pydatetime()


def normalize_symbol(symbol: str) -> str:
    """
    Normalize a canonical symbol for lookups

    Args:
        symbol: Instrument identifier (e.g., "xauusd", " EURUSD ")

    Returns:
        Upper-cased, stripped symbol
    """
    return symbol.strip().upper()


def round_to_step(value: float, step: float) -> float:
    """Snap a value to the nearest multiple of step, ties rounding away from zero"""
    if not step or step <= 0:
        return value
    step_dec = Decimal(str(step))
    steps = (Decimal(str(value)) / step_dec).quantize(Decimal(1), rounding=ROUND_HALF_UP)
    return float(steps * step_dec)


def safe_float(value: Any, default: Optional[float] = None) -> Optional[float]:
    """Convert to float, returning default for None or garbage"""
    if value is None:
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        return default
