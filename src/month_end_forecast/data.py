from datetime import date
from pathlib import Path
from typing import Tuple

import numpy as np
import pandas as pd

from .pipeline import TimeContext


def load_transactions(
    path: Path,
    date_column: str = "date",
    amount_column: str = "amount",
) -> pd.DataFrame:
    df = pd.read_csv(path)
    missing = {date_column, amount_column} - set(df.columns)
    if missing:
        raise ValueError(f"Transaction data missing required columns: {sorted(missing)}")

    prepared = df[[date_column, amount_column]].copy()
    prepared[date_column] = prepared[date_column].astype(str).str[:10]
    prepared[date_column] = pd.to_datetime(prepared[date_column], errors="coerce")
    prepared[amount_column] = pd.to_numeric(prepared[amount_column], errors="coerce")
    prepared = prepared.dropna(subset=[date_column, amount_column])
    if prepared.empty:
        raise ValueError("No usable rows left after parsing dates and amounts. Check the source data.")

    prepared = prepared.rename(columns={date_column: "ds", amount_column: "y"})
    return prepared.sort_values("ds").reset_index(drop=True)


def monthly_totals(df: pd.DataFrame, fill_value: float = 0.0) -> pd.DataFrame:
    if df.empty:
        return pd.DataFrame({"ds": pd.Series(dtype="datetime64[ns]"), "y": pd.Series(dtype=float)})

    monthly = (
        df.assign(ds=df["ds"].dt.to_period("M").dt.to_timestamp())
        .groupby("ds")["y"]
        .sum()
        .asfreq("MS", fill_value=fill_value)
        .reset_index()
    )
    return monthly


def split_at(df: pd.DataFrame, as_of: date) -> Tuple[np.ndarray, float, TimeContext]:
    """Split a transaction log into completed monthly totals and the month-to-date amount.

    Months strictly before the month of ``as_of`` form the history; the partial is
    everything in ``as_of``'s month dated on or before ``as_of``.
    """
    as_of_ts = pd.Timestamp(as_of)
    month_start = as_of_ts.to_period("M").to_timestamp()

    completed = df[df["ds"] < month_start]
    history = monthly_totals(completed)["y"].to_numpy(dtype=float)

    in_month = df[(df["ds"] >= month_start) & (df["ds"] < as_of_ts + pd.Timedelta(days=1))]
    current_partial = float(in_month["y"].sum())

    return history, current_partial, TimeContext.from_date(as_of_ts.date())
