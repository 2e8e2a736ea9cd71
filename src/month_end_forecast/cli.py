from __future__ import annotations

import argparse
import json
import logging
import sys
from dataclasses import replace
from datetime import date
from pathlib import Path
from typing import List, Optional, Sequence

import pandas as pd

from .backtest import BacktestConfig, rolling_backtest
from .data import load_transactions, split_at
from .pipeline import ForecastConfig, ForecastError, ForecastResult, TimeContext, forecast

SAMPLE_HISTORY: Sequence[float] = (
    5121.11,
    7519.06,
    7781.19,
    8492.45,
    8372.08,
    9314.49,
    11273.61,
    8003.63,
    8177.52,
    8688.28,
    9644.96,
)
SAMPLE_PARTIAL = 4199.0


def parse_history(raw: str) -> List[float]:
    try:
        return [float(token) for token in raw.split(",") if token.strip()]
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"History must be comma-separated numbers: {exc}") from exc


def parse_date(raw: str) -> date:
    try:
        return date.fromisoformat(raw)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"Expected a YYYY-MM-DD date, got {raw!r}") from exc


def summarize_result(result: ForecastResult) -> str:
    lines = [
        f"Expected total:     {result.expected_total:.2f}",
        f"Credible interval:  [{result.lower:.2f}, {result.upper:.2f}] (width {result.interval_width:.2f})",
    ]
    if result.position_in_interval is not None:
        lines.append(f"Position in range:  {result.position_in_interval:.3f}")
    lines.append(f"Posterior stddev:   {result.posterior_stddev:.2f}")
    if result.posterior_mode is not None:
        lines.append(f"Posterior mode:     {result.posterior_mode:.2f}")
    if result.warnings:
        lines.append("\nWarnings:")
        lines.extend(f"- {warning}" for warning in result.warnings)
    return "\n".join(lines)


def summarize_backtest(metrics: pd.DataFrame, summary: dict) -> str:
    if metrics.empty:
        return "No backtest months were evaluated. Need more history?"

    lines = [
        f"Backtested months: {int(summary['months'])} ({int(summary['errors'])} rejected)",
        f"WMAPE:             {summary['wmape']:.4f}",
        f"Interval coverage: {summary['coverage']:.2%}",
    ]
    failed = metrics[metrics["error"].str.len().gt(0)]
    if not failed.empty:
        lines.append("\nRejected months:")
        for _, row in failed.iterrows():
            lines.append(f"- {row['month']:%Y-%m}: {row['error']}")
    return "\n".join(lines)


def build_argument_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Bayesian end-of-month forecast from completed monthly totals and the month-to-date amount.",
    )
    source = parser.add_mutually_exclusive_group(required=True)
    source.add_argument(
        "--history",
        type=parse_history,
        help="Comma-separated completed monthly totals, oldest first.",
    )
    source.add_argument(
        "--transactions-path",
        type=Path,
        help="Path to a transaction CSV (columns: date, amount).",
    )
    source.add_argument(
        "--sample",
        action="store_true",
        help="Use the built-in sample history and month-to-date amount.",
    )
    parser.add_argument(
        "--current",
        type=float,
        help="Amount accumulated so far this month (required with --history).",
    )
    parser.add_argument(
        "--as-of",
        type=parse_date,
        help="Observation date (default: today). Sets the time context and the transaction split.",
    )
    parser.add_argument("--elapsed", type=int, help="Elapsed days in the month (overrides --as-of).")
    parser.add_argument("--total", type=int, help="Days in the month (overrides --as-of).")
    parser.add_argument("--alpha-decay", type=float, help="Recency decay for the prior (default: 0.5).")
    parser.add_argument("--pseudocount", type=float, help="Smoothing mass per grid point (default: 0.1).")
    parser.add_argument("--num-steps", type=int, help="Number of grid steps (default: 1000).")
    parser.add_argument("--stddev-range", type=float, help="Grid half-width in stddevs (default: 3).")
    parser.add_argument("--json", action="store_true", help="Print the result as JSON.")
    parser.add_argument(
        "--backtest",
        action="store_true",
        help="Replay the estimator over past months of --transactions-path.",
    )
    parser.add_argument(
        "--backtest-day",
        type=int,
        default=15,
        help="Day of month at which the backtest observes the partial (default: 15).",
    )
    parser.add_argument(
        "--metrics-output",
        type=Path,
        help="Optional path to write month-level backtest metrics as CSV.",
    )
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging verbosity (default: WARNING).",
    )
    return parser


def build_config(args: argparse.Namespace) -> ForecastConfig:
    overrides = {
        "alpha_decay": args.alpha_decay,
        "pseudocount": args.pseudocount,
        "num_steps": args.num_steps,
        "stddev_range": args.stddev_range,
    }
    return replace(ForecastConfig(), **{key: value for key, value in overrides.items() if value is not None})


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_argument_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(level=args.log_level, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    if args.history is not None and args.current is None:
        parser.error("--current is required with --history")
    if args.current is not None and args.history is None:
        parser.error("--current is only valid with --history")
    if args.backtest and args.transactions_path is None:
        parser.error("--backtest requires --transactions-path")
    if (args.elapsed is None) != (args.total is None):
        parser.error("--elapsed and --total must be given together")

    try:
        config = build_config(args)
    except ValueError as exc:
        parser.error(str(exc))

    as_of = args.as_of or date.today()
    transactions = None
    if args.transactions_path is not None:
        transactions = load_transactions(args.transactions_path)
        history, current, time_context = split_at(transactions, as_of)
    elif args.sample:
        history, current, time_context = list(SAMPLE_HISTORY), SAMPLE_PARTIAL, TimeContext.from_date(as_of)
    else:
        history, current, time_context = args.history, args.current, TimeContext.from_date(as_of)

    if args.elapsed is not None:
        time_context = TimeContext(elapsed=args.elapsed, total=args.total)

    result = forecast(history, current, time_context, config)
    if args.json:
        print(json.dumps(result.to_dict(), indent=2))
    elif isinstance(result, ForecastError):
        print(f"Forecast failed ({result.kind.value}): {result.message}")
    else:
        print(summarize_result(result))

    if args.backtest:
        completed = transactions[transactions["ds"] < pd.Timestamp(as_of).to_period("M").to_timestamp()]
        backtest_result = rolling_backtest(
            completed,
            BacktestConfig(as_of_day=args.backtest_day, min_history=config.min_history, forecast=config),
        )
        print("\n" + summarize_backtest(backtest_result.metrics, backtest_result.summary))
        if args.metrics_output:
            backtest_result.metrics.to_csv(args.metrics_output, index=False)
            print(f"\nSaved metrics to {args.metrics_output}")

    return 1 if isinstance(result, ForecastError) else 0


if __name__ == "__main__":
    sys.exit(main())
