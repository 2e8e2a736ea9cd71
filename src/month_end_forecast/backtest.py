from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List

import numpy as np
import pandas as pd
from dateutil.relativedelta import relativedelta

from .data import monthly_totals
from .metrics import interval_coverage, wmape
from .pipeline import ForecastConfig, ForecastError, TimeContext, forecast


@dataclass
class BacktestConfig:
    as_of_day: int = 15
    min_history: int = 6
    forecast: ForecastConfig = field(default_factory=ForecastConfig)


@dataclass
class BacktestResult:
    metrics: pd.DataFrame
    summary: Dict[str, float]


def rolling_backtest(transactions: pd.DataFrame, config: BacktestConfig) -> BacktestResult:
    """Replay the estimator over every completed month with enough prior history.

    For each month the partial is what had accumulated by ``as_of_day`` (clamped
    to the month's length) and the realised monthly total is the target. A final
    month that the log does not cover through its last day is not scored.
    """
    records: List[dict] = []
    monthly = monthly_totals(transactions)
    if not monthly.empty:
        last_month_end = monthly["ds"].iloc[-1] + relativedelta(day=31)
        if transactions["ds"].max().normalize() < last_month_end:
            monthly = monthly.iloc[:-1]

    for idx in range(config.min_history, len(monthly)):
        month_start = monthly["ds"].iloc[idx]
        # relativedelta clamps the day to the month length.
        as_of = month_start + relativedelta(day=config.as_of_day)

        history = monthly["y"].iloc[:idx].to_numpy(dtype=float)
        actual = float(monthly["y"].iloc[idx])
        in_month = transactions[
            (transactions["ds"] >= month_start) & (transactions["ds"] < as_of + pd.Timedelta(days=1))
        ]
        partial = float(in_month["y"].sum())

        result = forecast(history, partial, TimeContext.from_date(as_of.date()), config.forecast)
        if isinstance(result, ForecastError):
            records.append(
                {
                    "month": month_start,
                    "as_of": as_of,
                    "partial": partial,
                    "actual": actual,
                    "expected": np.nan,
                    "lower": np.nan,
                    "upper": np.nan,
                    "abs_pct_error": np.nan,
                    "covered": False,
                    "error": result.message,
                }
            )
            continue

        records.append(
            {
                "month": month_start,
                "as_of": as_of,
                "partial": partial,
                "actual": actual,
                "expected": result.expected_total,
                "lower": result.lower,
                "upper": result.upper,
                "abs_pct_error": abs(actual - result.expected_total) / actual if actual else np.nan,
                "covered": result.lower <= actual <= result.upper,
                "error": "",
            }
        )

    metrics = pd.DataFrame.from_records(records)
    summary: Dict[str, float] = {"months": float(len(metrics))}
    if metrics.empty:
        return BacktestResult(metrics=metrics, summary=summary)

    valid = metrics[metrics["expected"].notna()]
    summary["errors"] = float(len(metrics) - len(valid))
    summary["wmape"] = wmape(valid["actual"], valid["expected"]) if not valid.empty else np.nan
    summary["coverage"] = (
        interval_coverage(valid["actual"], valid["lower"], valid["upper"]) if not valid.empty else np.nan
    )
    return BacktestResult(metrics=metrics, summary=summary)
