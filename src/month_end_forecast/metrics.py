import numpy as np
import pandas as pd


def wmape(actual: pd.Series | np.ndarray, predicted: pd.Series | np.ndarray) -> float:
    actual_arr = np.asarray(actual, dtype=float)
    predicted_arr = np.asarray(predicted, dtype=float)
    mask = ~(np.isnan(actual_arr) | np.isnan(predicted_arr))
    denom = np.abs(actual_arr[mask]).sum()
    if denom == 0:
        return np.nan
    return float(np.abs(actual_arr[mask] - predicted_arr[mask]).sum() / denom)


def interval_coverage(
    actual: pd.Series | np.ndarray,
    lower: pd.Series | np.ndarray,
    upper: pd.Series | np.ndarray,
) -> float:
    actual_arr = np.asarray(actual, dtype=float)
    lower_arr = np.asarray(lower, dtype=float)
    upper_arr = np.asarray(upper, dtype=float)
    mask = ~(np.isnan(actual_arr) | np.isnan(lower_arr) | np.isnan(upper_arr))
    if not mask.any():
        return np.nan
    inside = (actual_arr[mask] >= lower_arr[mask]) & (actual_arr[mask] <= upper_arr[mask])
    return float(inside.mean())
