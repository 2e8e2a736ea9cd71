"""Tests for the public forecast operation (pipeline.py).

Covers:
- Input rejection returned as ForecastError
- Mid-month forecast stays inside the grid and has positive spread
- Historical-mean fallback for early-month or empty partials
- Fallback warnings for zero variance and vanished posterior mass
- Recency bias shifts the forecast toward recent totals
- Config validation and calendar-derived time context
"""

from __future__ import annotations

from datetime import date

import numpy as np
import pytest

from month_end_forecast import pipeline
from month_end_forecast.models import (
    INSUFFICIENT_UPDATE_WARNING,
    VANISHED_POSTERIOR_WARNING,
    ErrorKind,
    build_grid,
    validate_history,
)
from month_end_forecast.pipeline import ForecastConfig, ForecastError, ForecastResult, TimeContext, forecast

HISTORY = [1000, 1200, 1500, 1600, 1700, 1800]
MID_MONTH = TimeContext(elapsed=15, total=30)


class TestRejections:
    def test_short_history(self) -> None:
        result = forecast([1000, 1200], 100, MID_MONTH)
        assert isinstance(result, ForecastError)
        assert result.kind is ErrorKind.INSUFFICIENT_HISTORY
        assert result.to_dict()["error"]["kind"] == "InsufficientHistory"

    def test_negative_entry_filtered_before_count(self) -> None:
        result = forecast([1000, -200, 1500, 1800, 1600, 1900], 100, MID_MONTH)
        assert isinstance(result, ForecastError)
        assert result.kind is ErrorKind.INSUFFICIENT_HISTORY

    def test_invalid_time_context(self) -> None:
        result = forecast(HISTORY, 900, TimeContext(elapsed=0, total=30))
        assert isinstance(result, ForecastError)
        assert result.kind is ErrorKind.INVALID_TIME_CONTEXT


class TestMidMonthForecast:
    def test_expected_total_inside_grid(self) -> None:
        result = forecast(HISTORY, 900, MID_MONTH)
        assert isinstance(result, ForecastResult)

        grid = build_grid(validate_history(HISTORY), 900)
        assert grid.lower < result.expected_total < grid.upper
        assert result.interval_width > 0
        assert result.posterior_stddev > 0
        assert "error" not in result.to_dict()

    def test_interval_contains_expected(self) -> None:
        result = forecast(HISTORY, 900, MID_MONTH)
        assert result.position_in_interval is not None
        assert result.lower <= result.expected_total <= result.upper
        assert 0 <= result.position_in_interval <= 1
        assert result.credible_interval == {"lower": result.lower, "upper": result.upper}

    def test_forecast_never_below_partial(self) -> None:
        result = forecast(HISTORY, 1400, TimeContext(elapsed=20, total=30))
        assert result.expected_total >= 1400
        assert result.lower >= 1400

    def test_mode_exposed(self) -> None:
        result = forecast(HISTORY, 900, MID_MONTH)
        assert result.posterior_mode is not None
        assert result.lower <= result.posterior_mode <= result.upper

    def test_to_dict_keys(self) -> None:
        payload = forecast(HISTORY, 900, MID_MONTH).to_dict()
        assert set(payload) == {
            "expected_total",
            "credible_interval",
            "interval_width",
            "position_in_interval",
            "posterior_stddev",
            "posterior_mode",
            "warnings",
        }


class TestHistoricalFallback:
    @pytest.mark.parametrize(
        "partial,context",
        [(900, TimeContext(elapsed=1, total=30)), (0, MID_MONTH)],
    )
    def test_uses_historical_mean(self, partial: float, context: TimeContext) -> None:
        mean = float(np.mean(HISTORY))
        std = float(np.std(HISTORY))

        result = forecast(HISTORY, partial, context)
        assert result.expected_total == round(mean, 2)
        assert result.lower == round(mean - 2 * std, 2)
        assert result.upper == round(mean + 2 * std, 2)
        assert result.interval_width == round(4 * std, 2)
        assert result.position_in_interval == 0.5
        assert result.posterior_stddev == round(std, 2)
        assert result.posterior_mode is None
        assert result.warnings == [INSUFFICIENT_UPDATE_WARNING]

    def test_zero_variance_is_reported(self) -> None:
        result = forecast([1000] * 6, 500, MID_MONTH)
        assert isinstance(result, ForecastResult)
        assert any("zero variance" in warning for warning in result.warnings)

    def test_vanished_posterior_falls_back(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(
            pipeline,
            "bayesian_update",
            lambda prior, grid, *args, **kwargs: np.zeros_like(grid.points),
        )
        result = forecast(HISTORY, 900, MID_MONTH)
        assert result.warnings == [VANISHED_POSTERIOR_WARNING]
        assert result.expected_total == round(float(np.mean(HISTORY)), 2)


    def test_inconsistent_partial_is_flagged_not_confident(self) -> None:
        result = forecast(HISTORY, 50_000, TimeContext(elapsed=2, total=30))
        assert isinstance(result, ForecastResult)
        assert result.warnings == [VANISHED_POSTERIOR_WARNING]
        assert result.expected_total == round(float(np.mean(HISTORY)), 2)
        assert result.interval_width > 0
        assert result.posterior_mode is None


class TestRecencyWeighting:
    def test_more_recency_bias_follows_upward_trend(self) -> None:
        trending = [1000, 1200, 1400, 1600, 1800, 2000]
        recent = forecast(trending, 1000, MID_MONTH, ForecastConfig(alpha_decay=0.05))
        flat = forecast(trending, 1000, MID_MONTH, ForecastConfig(alpha_decay=0.95))
        assert flat.expected_total < recent.expected_total


class TestForecastConfig:
    def test_defaults(self) -> None:
        config = ForecastConfig()
        assert config.num_steps == 1000
        assert config.alpha_decay == 0.5
        assert config.range_min_multiplier == 0.8
        assert config.range_max_multiplier == 1.2

    @pytest.mark.parametrize(
        "overrides",
        [
            {"num_steps": 0},
            {"alpha_decay": 0.0},
            {"alpha_decay": 1.5},
            {"pseudocount": -0.1},
            {"credible_interval_lower": 0.9, "credible_interval_upper": 0.1},
            {"obs_noise_min": 0.0},
            {"min_history": 1},
        ],
    )
    def test_invalid_values_rejected(self, overrides: dict) -> None:
        with pytest.raises(ValueError):
            ForecastConfig(**overrides)

    def test_coarser_grid_still_normalized(self) -> None:
        result = forecast(HISTORY, 900, MID_MONTH, ForecastConfig(num_steps=50))
        assert isinstance(result, ForecastResult)
        assert result.interval_width > 0


class TestTimeContext:
    def test_from_date_leap_february(self) -> None:
        assert TimeContext.from_date(date(2024, 2, 10)) == TimeContext(elapsed=10, total=29)

    def test_from_date_long_month(self) -> None:
        assert TimeContext.from_date(date(2026, 10, 19)) == TimeContext(elapsed=19, total=31)

    def test_progress(self) -> None:
        assert MID_MONTH.progress == pytest.approx(0.5)
