from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, List, Optional

import numpy as np
from scipy.stats import norm
from statsmodels.stats.weightstats import DescrStatsW

logger = logging.getLogger(__name__)

INSUFFICIENT_UPDATE_WARNING = "Insufficient data for Bayesian update; using historical mean only."
VANISHED_POSTERIOR_WARNING = "Posterior mass vanished; using historical mean only."


class ErrorKind(str, Enum):
    INSUFFICIENT_HISTORY = "InsufficientHistory"
    INVALID_TIME_CONTEXT = "InvalidTimeContext"


class ForecastInputError(ValueError):
    kind: ErrorKind


class InsufficientHistoryError(ForecastInputError):
    kind = ErrorKind.INSUFFICIENT_HISTORY


class InvalidTimeContextError(ForecastInputError):
    kind = ErrorKind.INVALID_TIME_CONTEXT


@dataclass(frozen=True)
class Grid:
    """Evenly spaced candidate end-of-month totals plus the history moments used to build them."""

    points: np.ndarray
    bandwidth: float
    mean: float
    std: float
    std_substituted: bool = False

    @property
    def lower(self) -> float:
        return float(self.points[0])

    @property
    def upper(self) -> float:
        return float(self.points[-1])


@dataclass
class PosteriorSummary:
    expected: float
    lower: float
    upper: float
    width: float
    position: Optional[float]
    stddev: float
    mode: Optional[float]
    warnings: List[str]


def validate_history(historical: Iterable[float], min_history: int = 6) -> np.ndarray:
    values = np.asarray(list(historical), dtype=float)
    cleaned = values[values > 0]
    if cleaned.size < min_history:
        raise InsufficientHistoryError(
            f"Not enough valid historical data: {cleaned.size} positive totals, need at least {min_history}."
        )
    cleaned.setflags(write=False)
    return cleaned


def validate_time_context(elapsed: int, total: int) -> None:
    if elapsed <= 0 or total <= 0:
        raise InvalidTimeContextError(
            f"Time context must be positive, got elapsed={elapsed}, total={total}."
        )


def build_grid(
    history: np.ndarray,
    current_partial: float,
    stddev_range: float = 3,
    num_steps: int = 1000,
    noise_floor: float = 0.03,
) -> Grid:
    mean = float(np.mean(history))
    std = float(np.std(history))
    std_substituted = False
    if std == 0:
        std = max(mean * noise_floor, 1.0)
        std_substituted = True

    lower = min(mean - stddev_range * std, current_partial * 0.95, current_partial - mean * 0.25)
    upper = max(mean + stddev_range * std, current_partial * 1.25, current_partial + mean * 0.5)
    if lower > current_partial * 0.95:
        lower = current_partial * 0.95

    points = np.linspace(lower, upper, num_steps + 1)
    bandwidth = max((upper - lower) / points.size, 1.0)
    logger.debug("Grid [%.2f, %.2f] with %d points, bandwidth %.4f", lower, upper, points.size, bandwidth)
    return Grid(points=points, bandwidth=bandwidth, mean=mean, std=std, std_substituted=std_substituted)


def recency_weights(n: int, alpha: float = 0.5) -> np.ndarray:
    # Most recent observation (last index) gets weight 1.
    return alpha ** np.arange(n - 1, -1, -1, dtype=float)


def build_prior(grid: Grid, history: np.ndarray, alpha: float = 0.5, pseudocount: float = 0.1) -> np.ndarray:
    weights = recency_weights(history.size, alpha)
    support = np.abs(history[np.newaxis, :] - grid.points[:, np.newaxis]) <= grid.bandwidth / 2
    raw = support.astype(float) @ weights + pseudocount
    return raw / raw.sum()


def observation_noise(grid: Grid, progress: float, noise_floor: float = 0.03, std_mult: float = 1.0) -> float:
    return max(grid.std * progress * std_mult, grid.mean * noise_floor)


def bayesian_update(
    prior: np.ndarray,
    grid: Grid,
    current_partial: float,
    progress: float,
    noise_floor: float = 0.03,
    std_mult: float = 1.0,
) -> np.ndarray:
    """Combine the prior with a normal likelihood of the observed partial.

    Candidate totals below ``current_partial`` are truncated to zero mass. The
    product is formed in log space and shifted by its maximum before
    exponentiating, which leaves the normalized posterior unchanged.

    Returns an all-zero array when no candidate total is reachable or when the
    unshifted prior-times-likelihood mass underflows to zero, i.e. the partial
    is inconsistent with every candidate total.
    """
    noise = observation_noise(grid, progress, noise_floor, std_mult)
    feasible = grid.points >= current_partial
    posterior = np.zeros_like(grid.points)
    if not feasible.any():
        return posterior

    with np.errstate(divide="ignore"):
        log_prior = np.log(prior[feasible])
    log_likelihood = norm.logpdf(current_partial, loc=grid.points[feasible] * progress, scale=noise)
    log_posterior = log_prior + log_likelihood
    peak = np.max(log_posterior)
    if not np.isfinite(peak) or np.exp(log_posterior).sum() == 0:
        logger.debug("Posterior mass underflows (peak log density %.1f)", peak)
        return posterior

    posterior[feasible] = np.exp(log_posterior - peak)
    total = posterior.sum()
    logger.debug("Observation noise %.4f, progress %.4f", noise, progress)
    return posterior / total


def credible_bounds(points: np.ndarray, posterior: np.ndarray, lower_q: float, upper_q: float) -> tuple[float, float]:
    cumulative = np.cumsum(posterior)
    last = points.size - 1
    lower_idx = min(int(np.searchsorted(cumulative, lower_q, side="left")), last)
    upper_idx = min(int(np.searchsorted(cumulative, upper_q, side="left")), last)
    return float(points[lower_idx]), float(points[upper_idx])


def interval_warnings(expected: float, width: float, position: Optional[float]) -> List[str]:
    messages: List[str] = []
    if position is None:
        return messages
    if position < 0.10:
        messages.append("Forecast is near lower end of credible interval; possible regime change or outlier.")
    if position > 0.90:
        messages.append("Forecast is near upper end of credible interval; possible regime change or outlier.")
    if width > 2 * expected:
        messages.append("Forecast uncertainty is very high; interval is more than twice the mean. Use with caution.")
    if width <= 0.2 * expected:
        messages.append(
            "Forecast is precise: credible interval is narrow and can be used with high confidence for planning."
        )
    return messages


def summarize_posterior(
    grid: Grid,
    posterior: np.ndarray,
    lower_q: float = 0.05,
    upper_q: float = 0.95,
) -> PosteriorSummary:
    stats = DescrStatsW(grid.points, weights=posterior, ddof=0)
    expected = float(stats.mean)
    stddev = float(stats.std)
    mode = float(grid.points[int(np.argmax(posterior))])

    lower, upper = credible_bounds(grid.points, posterior, lower_q, upper_q)
    width = upper - lower
    position = (expected - lower) / width if width > 0 else None

    return PosteriorSummary(
        expected=expected,
        lower=lower,
        upper=upper,
        width=width,
        position=position,
        stddev=stddev,
        mode=mode,
        warnings=interval_warnings(expected, width, position),
    )


def historical_summary(grid: Grid, warning: str) -> PosteriorSummary:
    return PosteriorSummary(
        expected=grid.mean,
        lower=grid.mean - 2 * grid.std,
        upper=grid.mean + 2 * grid.std,
        width=4 * grid.std,
        position=0.5,
        stddev=grid.std,
        mode=None,
        warnings=[warning],
    )
