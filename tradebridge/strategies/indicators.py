"""
Technical Indicators

Indicator calculations over a closes series. Outputs are trimmed to the
values that are fully defined (no warm-up NaNs) and keep the index of the
input positions they belong to, so they line up with the source candles.
"""

from typing import Any, Dict, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd

from ..errors import UnsupportedIndicatorError, ValidationError
from ..live.broker_interface import Candle

SeriesLike = Union[pd.Series, Sequence[float], np.ndarray]


def _as_series(data: SeriesLike) -> pd.Series:
    if isinstance(data, pd.Series):
        return data.astype(float)
    return pd.Series(np.asarray(data, dtype=float))


def _check_period(data: pd.Series, period: int, minimum: int, name: str):
    if not isinstance(period, (int, np.integer)) or period <= 0:
        raise ValidationError(f"{name} period must be a positive integer, got {period}")
    if len(data) < minimum:
        raise ValidationError(
            f"{name}({period}) needs at least {minimum} values, got {len(data)}",
            details={"indicator": name, "period": period, "length": len(data)},
        )


def sma(data: SeriesLike, period: int) -> pd.Series:
    """
    Simple Moving Average.

    Args:
        data: Price series
        period: MA period

    Returns:
        SMA series of length len(data) - period + 1
    """
    s = _as_series(data)
    _check_period(s, period, period, "SMA")
    return s.rolling(window=period).mean().iloc[period - 1:]


def ema(data: SeriesLike, period: int) -> pd.Series:
    """
    Exponential Moving Average.

    Seeded with the SMA of the first `period` values, then
    ema = (price - prev) * 2 / (period + 1) + prev.

    Args:
        data: Price series
        period: EMA period

    Returns:
        EMA series of length len(data) - period + 1
    """
    s = _as_series(data)
    _check_period(s, period, period, "EMA")

    values = s.to_numpy()
    multiplier = 2.0 / (period + 1)
    out = np.empty(len(values) - period + 1)
    out[0] = values[:period].mean()
    for i in range(1, len(out)):
        out[i] = (values[period - 1 + i] - out[i - 1]) * multiplier + out[i - 1]

    return pd.Series(out, index=s.index[period - 1:])


def _rsi_value(avg_gain: float, avg_loss: float) -> float:
    # Zero average loss: all gains reads 100, a flat window reads neutral 50
    if avg_loss == 0:
        return 100.0 if avg_gain > 0 else 50.0
    rs = avg_gain / avg_loss
    return 100.0 - 100.0 / (1.0 + rs)


def rsi(close: SeriesLike, period: int = 14) -> pd.Series:
    """
    Relative Strength Index (RSI).

    Momentum oscillator (0-100) with Wilder's smoothing. The first `period`
    deltas seed the average gain/loss; one value is emitted per delta after
    the seed window.

    Args:
        close: Close prices
        period: RSI period (default: 14)

    Returns:
        RSI series of length len(close) - period - 1
    """
    s = _as_series(close)
    _check_period(s, period, period + 1, "RSI")

    deltas = np.diff(s.to_numpy())
    gains = np.where(deltas > 0, deltas, 0.0)
    losses = np.where(deltas < 0, -deltas, 0.0)

    avg_gain = gains[:period].mean()
    avg_loss = losses[:period].mean()

    out = []
    for i in range(period, len(deltas)):
        avg_gain = (avg_gain * (period - 1) + gains[i]) / period
        avg_loss = (avg_loss * (period - 1) + losses[i]) / period
        out.append(_rsi_value(avg_gain, avg_loss))

    return pd.Series(out, index=s.index[period + 1:], dtype=float)


def macd(
    close: SeriesLike, fast_period: int = 12, slow_period: int = 26, signal_period: int = 9
) -> Tuple[pd.Series, pd.Series, pd.Series]:
    """
    Moving Average Convergence Divergence (MACD).

    Args:
        close: Close prices
        fast_period: Fast EMA period (default: 12)
        slow_period: Slow EMA period (default: 26)
        signal_period: Signal line period (default: 9)

    Returns:
        Tuple of (macd_line, signal_line, histogram). The MACD line has the
        length of the slower EMA; signal and histogram are aligned to the
        signal line.
    """
    s = _as_series(close)
    longest = max(fast_period, slow_period)
    _check_period(s, longest, longest + signal_period - 1, "MACD")

    fast_ema = ema(s, fast_period)
    slow_ema = ema(s, slow_period)

    # Index alignment pairs both EMAs on the same input bar
    macd_line = (fast_ema - slow_ema).dropna()
    signal_line = ema(macd_line, signal_period)
    histogram = macd_line.loc[signal_line.index] - signal_line

    return macd_line, signal_line, histogram


def bollinger_bands(
    close: SeriesLike, period: int = 20, std_dev: float = 2.0
) -> Tuple[pd.Series, pd.Series, pd.Series]:
    """
    Bollinger Bands.

    Args:
        close: Close prices
        period: MA period (default: 20)
        std_dev: Standard deviation multiplier (default: 2.0)

    Returns:
        Tuple of (upper_band, middle_band, lower_band), population std
    """
    s = _as_series(close)
    middle = sma(s, period)
    std = s.rolling(window=period).std(ddof=0).iloc[period - 1:]

    upper = middle + (std * std_dev)
    lower = middle - (std * std_dev)

    return upper, middle, lower


def closes_of(candles: Any) -> pd.Series:
    """Extract a closes series from candles, an OHLCV DataFrame or plain numbers"""
    if isinstance(candles, pd.DataFrame):
        return candles["close"].astype(float)
    if isinstance(candles, pd.Series):
        return candles.astype(float)

    items = list(candles)
    if items and isinstance(items[0], Candle):
        return pd.Series(
            [c.close for c in items],
            index=pd.DatetimeIndex([c.open_time for c in items]),
            dtype=float,
        )
    if items and isinstance(items[0], dict):
        return pd.Series([float(c["close"]) for c in items])
    return pd.Series(items, dtype=float)


def calculate_indicator(candles: Any, indicator: str, params: Optional[Dict] = None):
    """
    Calculate an indicator by name.

    Args:
        candles: Candles, OHLCV DataFrame or closes
        indicator: SMA, EMA, RSI, MACD or BB (alias BOLLINGER), case-insensitive
        params: period / fast / slow / signal / std_dev overrides

    Returns:
        Series for SMA/EMA/RSI; dict of Series for MACD and BB

    Raises:
        UnsupportedIndicatorError: Unknown indicator name
    """
    params = params or {}
    name = (indicator or "").upper()
    closes = closes_of(candles)

    if name == "SMA":
        return sma(closes, int(params.get("period", 20)))
    if name == "EMA":
        return ema(closes, int(params.get("period", 20)))
    if name == "RSI":
        return rsi(closes, int(params.get("period", 14)))
    if name == "MACD":
        line, signal, hist = macd(
            closes,
            int(params.get("fast", 12)),
            int(params.get("slow", 26)),
            int(params.get("signal", 9)),
        )
        return {"macd": line, "signal": signal, "histogram": hist}
    if name in ("BB", "BOLLINGER", "BOLLINGER_BANDS"):
        upper, middle, lower = bollinger_bands(
            closes,
            int(params.get("period", 20)),
            float(params.get("std_dev", params.get("stdDev", 2.0))),
        )
        return {"upper": upper, "middle": middle, "lower": lower}

    raise UnsupportedIndicatorError(
        f"Unknown indicator: {indicator}",
        details={"supported": ["SMA", "EMA", "RSI", "MACD", "BB"]},
    )
