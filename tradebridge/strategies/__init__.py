"""Technical indicators"""
from .indicators import sma, ema, rsi, macd, bollinger_bands, calculate_indicator

__all__ = ['sma', 'ema', 'rsi', 'macd', 'bollinger_bands', 'calculate_indicator']
