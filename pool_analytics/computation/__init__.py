"""
Computation Module - Fixed-point time series and technical indicators

Modules:
- timeseries: windowed statistics, EMA, slopes, drawdown, z-score
- indicators: RSI, MACD, Bollinger Bands, ATR, volatility and trend regimes
"""

from pool_analytics.computation.indicators import (
    TechnicalIndicators,
    TrendRegime,
    VolatilityRegime,
    calculate_technical_indicators,
    classify_volatility_regime,
)

__all__ = [
    "TechnicalIndicators",
    "TrendRegime",
    "VolatilityRegime",
    "calculate_technical_indicators",
    "classify_volatility_regime",
]
