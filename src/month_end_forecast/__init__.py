"""Bayesian end-of-month forecasting from completed monthly totals and a month-to-date partial."""

from .backtest import BacktestConfig, BacktestResult, rolling_backtest
from .data import load_transactions, monthly_totals, split_at
from .models import ErrorKind, ForecastInputError, InsufficientHistoryError, InvalidTimeContextError
from .pipeline import ForecastConfig, ForecastError, ForecastResult, TimeContext, forecast

__all__ = [
    "BacktestConfig",
    "BacktestResult",
    "ErrorKind",
    "ForecastConfig",
    "ForecastError",
    "ForecastInputError",
    "ForecastResult",
    "InsufficientHistoryError",
    "InvalidTimeContextError",
    "TimeContext",
    "forecast",
    "load_transactions",
    "monthly_totals",
    "rolling_backtest",
    "split_at",
]

__version__ = "0.1.0"
