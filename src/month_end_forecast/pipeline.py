from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from typing import Dict, List, Optional, Sequence, Union

from dateutil.relativedelta import relativedelta

from .models import (
    INSUFFICIENT_UPDATE_WARNING,
    VANISHED_POSTERIOR_WARNING,
    ErrorKind,
    ForecastInputError,
    PosteriorSummary,
    bayesian_update,
    build_grid,
    build_prior,
    historical_summary,
    summarize_posterior,
    validate_history,
    validate_time_context,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ForecastConfig:
    # Reserved: the grid bounds are driven by stddev_range and the current partial.
    range_min_multiplier: float = 0.8
    range_max_multiplier: float = 1.2
    stddev_range: float = 3
    num_steps: int = 1000
    alpha_decay: float = 0.5
    pseudocount: float = 0.1
    credible_interval_lower: float = 0.05
    credible_interval_upper: float = 0.95
    obs_noise_min: float = 0.03
    obs_noise_std_mult: float = 1.0
    min_history: int = 6

    def __post_init__(self) -> None:
        if self.num_steps < 1:
            raise ValueError("num_steps must be at least 1.")
        if not 0 < self.alpha_decay <= 1:
            raise ValueError("alpha_decay must be in (0, 1].")
        if self.pseudocount < 0:
            raise ValueError("pseudocount must be non-negative.")
        if not 0 < self.credible_interval_lower < self.credible_interval_upper < 1:
            raise ValueError("Credible interval bounds must satisfy 0 < lower < upper < 1.")
        if self.obs_noise_min <= 0 or self.obs_noise_std_mult <= 0:
            raise ValueError("Observation noise settings must be positive.")
        if self.stddev_range <= 0:
            raise ValueError("stddev_range must be positive.")
        if self.min_history < 2:
            raise ValueError("min_history must be at least 2.")


@dataclass(frozen=True)
class TimeContext:
    elapsed: int
    total: int

    @property
    def progress(self) -> float:
        return self.elapsed / self.total

    @classmethod
    def from_date(cls, day: date) -> "TimeContext":
        month_end = day + relativedelta(day=31)
        return cls(elapsed=day.day, total=month_end.day)


@dataclass
class ForecastResult:
    expected_total: float
    lower: float
    upper: float
    interval_width: float
    position_in_interval: Optional[float]
    posterior_stddev: float
    posterior_mode: Optional[float] = None
    warnings: Optional[List[str]] = None

    @property
    def credible_interval(self) -> Dict[str, float]:
        return {"lower": self.lower, "upper": self.upper}

    @classmethod
    def from_summary(cls, summary: PosteriorSummary) -> "ForecastResult":
        return cls(
            expected_total=round(summary.expected, 2),
            lower=round(summary.lower, 2),
            upper=round(summary.upper, 2),
            interval_width=round(summary.width, 2),
            position_in_interval=round(summary.position, 3) if summary.position is not None else None,
            posterior_stddev=round(summary.stddev, 2),
            posterior_mode=round(summary.mode, 2) if summary.mode is not None else None,
            warnings=list(summary.warnings) or None,
        )

    def to_dict(self) -> dict:
        return {
            "expected_total": self.expected_total,
            "credible_interval": self.credible_interval,
            "interval_width": self.interval_width,
            "position_in_interval": self.position_in_interval,
            "posterior_stddev": self.posterior_stddev,
            "posterior_mode": self.posterior_mode,
            "warnings": self.warnings,
        }


@dataclass
class ForecastError:
    kind: ErrorKind
    message: str

    def to_dict(self) -> dict:
        return {"error": {"kind": self.kind.value, "message": self.message}}


def forecast(
    historical: Sequence[float],
    current_partial: float,
    time_context: TimeContext,
    config: Optional[ForecastConfig] = None,
) -> Union[ForecastResult, ForecastError]:
    """Estimate the end-of-month total from completed monthly totals and the month-to-date amount.

    Non-positive historical entries are dropped before the length check. Input
    problems come back as a :class:`ForecastError`; numerical fallbacks come
    back as a :class:`ForecastResult` whose ``warnings`` say what happened.
    """
    if config is None:
        config = ForecastConfig()

    try:
        history = validate_history(historical, config.min_history)
        validate_time_context(time_context.elapsed, time_context.total)
    except ForecastInputError as exc:
        logger.info("Forecast rejected: %s", exc)
        return ForecastError(kind=exc.kind, message=str(exc))

    grid = build_grid(
        history,
        current_partial,
        stddev_range=config.stddev_range,
        num_steps=config.num_steps,
        noise_floor=config.obs_noise_min,
    )

    if time_context.elapsed <= 1 or current_partial <= 0:
        logger.debug("Skipping Bayesian update (elapsed=%d, partial=%s)", time_context.elapsed, current_partial)
        summary = historical_summary(grid, INSUFFICIENT_UPDATE_WARNING)
    else:
        prior = build_prior(grid, history, alpha=config.alpha_decay, pseudocount=config.pseudocount)
        posterior = bayesian_update(
            prior,
            grid,
            current_partial,
            time_context.progress,
            noise_floor=config.obs_noise_min,
            std_mult=config.obs_noise_std_mult,
        )
        if posterior.sum() > 0:
            summary = summarize_posterior(
                grid,
                posterior,
                lower_q=config.credible_interval_lower,
                upper_q=config.credible_interval_upper,
            )
        else:
            logger.warning("Posterior has no mass; falling back to historical mean")
            summary = historical_summary(grid, VANISHED_POSTERIOR_WARNING)

    if grid.std_substituted:
        summary.warnings.append(
            f"Historical totals have zero variance; spread floored at {grid.std:.2f}."
        )
    return ForecastResult.from_summary(summary)
