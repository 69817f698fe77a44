#!/usr/bin/env python3
"""
Strategy backtest CLI.

Replays hourly candles (from Upbit or a CSV file) through a strategy and
prints trades, win rate, profit and max drawdown.
"""
import argparse
import json
import sys
from pathlib import Path
from typing import Any, Dict, List

import pandas as pd

from engine.broker.upbit_client import UpbitClient
from engine.evaluation import BacktestResult, BacktestSimulator
from engine.shared.defaults import (
    BACKTEST_CANDLE_UNIT_MINUTES, BACKTEST_INITIAL_CAPITAL, BACKTEST_MAX_DAYS,
    DEFAULT_FEE_RATE, DEFAULT_MARKET,
)
from engine.shared.types import Candle, StrategyKind


CSV_COLUMNS = ("timestamp", "open", "high", "low", "close")


def load_candles_csv(csv_path: Path) -> List[Candle]:
    """
    Load candles from a CSV file.

    Expects columns timestamp, open, high, low, close and optionally volume
    (case-insensitive). Naive timestamps are taken as UTC.
    """
    df = pd.read_csv(csv_path)
    df.columns = [str(c).strip().lower() for c in df.columns]
    missing = [c for c in CSV_COLUMNS if c not in df.columns]
    if missing:
        raise ValueError(f"CSV {csv_path} is missing column(s): {', '.join(missing)}")

    df["timestamp"] = pd.to_datetime(df["timestamp"], utc=True)
    if "volume" not in df.columns:
        df["volume"] = 0.0
    df = df.sort_values("timestamp").drop_duplicates("timestamp", keep="last")

    return [
        Candle(
            timestamp=row.timestamp,
            open=float(row.open),
            high=float(row.high),
            low=float(row.low),
            close=float(row.close),
            volume=float(row.volume),
        )
        for row in df.itertuples(index=False)
    ]


def build_params(args: argparse.Namespace) -> Dict[str, Any]:
    params = {
        "buy_threshold": args.buy_threshold,
        "sell_threshold": args.sell_threshold,
        "target_amount": args.target_amount,
        "stop_loss_percent": args.stop_loss,
        "take_profit_percent": args.take_profit,
    }
    return {k: v for k, v in params.items() if v is not None}


def print_result(result: BacktestResult, show_trades: bool):
    print("=" * 80)
    print(f"BACKTEST: {result.strategy} on {result.market}")
    print("=" * 80)
    print(f"Candles evaluated:  {result.candles_evaluated}")
    print(f"Initial capital:    {result.initial_capital:,.0f} KRW")
    print(f"Final balance:      {result.final_balance:,.0f} KRW")
    print(f"Total profit:       {result.total_profit:+,.0f} KRW ({result.total_profit_pct:+.2f}%)")
    print(f"Trades:             {result.total_trades} ({result.win_trades} win / {result.loss_trades} loss)")
    print(f"Win rate:           {result.win_rate:.1f}%")
    print(f"Max drawdown:       {result.max_drawdown:.2f}%")

    if show_trades and result.trades:
        print()
        print(f"{'Entry':<26} {'Exit':<26} {'Entry px':>14} {'Exit px':>14} {'Profit':>12}  Exit reason")
        for trade in result.trades:
            print(
                f"{trade.entry_timestamp.isoformat():<26} {trade.exit_timestamp.isoformat():<26} "
                f"{trade.entry_price:>14,.0f} {trade.exit_price:>14,.0f} {trade.profit:>+12,.0f}  {trade.exit_reason}"
            )


def main():
    parser = argparse.ArgumentParser(
        description="Backtest a trading strategy on hourly candles",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Percent strategy on the last 30 days of KRW-BTC
    python -m cli.backtest --market KRW-BTC --strategy percent --days 30

    # RSI with custom levels
    python -m cli.backtest --strategy rsi --buy-threshold 25 --sell-threshold 75

    # Offline, from a CSV file
    python -m cli.backtest --strategy bollinger --csv data/krw-btc-1h.csv
        """
    )
    parser.add_argument("--market", "-m", default=DEFAULT_MARKET, help=f"Market code (default: {DEFAULT_MARKET})")
    parser.add_argument(
        "--strategy", "-s",
        default=StrategyKind.PERCENT.value,
        choices=[k.value for k in StrategyKind],
        help="Strategy to replay (default: percent)",
    )
    parser.add_argument("--days", "-d", type=int, default=30, help=f"Days of hourly candles, 1-{BACKTEST_MAX_DAYS} (default: 30)")
    parser.add_argument("--csv", type=str, help="Read candles from a CSV file instead of the exchange")

    parser.add_argument("--buy-threshold", type=float, help="Buy threshold (percent, or RSI level for rsi)")
    parser.add_argument("--sell-threshold", type=float, help="Sell threshold (percent, or RSI level for rsi)")
    parser.add_argument("--target-amount", type=float, help="KRW per buy")
    parser.add_argument("--stop-loss", type=float, help="Stop-loss percent (0 disables)")
    parser.add_argument("--take-profit", type=float, help="Take-profit percent (0 disables)")
    parser.add_argument("--fee-rate", type=float, default=DEFAULT_FEE_RATE, help=f"Fee rate per side (default: {DEFAULT_FEE_RATE})")
    parser.add_argument(
        "--initial-capital",
        type=float,
        default=BACKTEST_INITIAL_CAPITAL,
        help=f"Starting KRW balance (default: {BACKTEST_INITIAL_CAPITAL:,})",
    )

    parser.add_argument("--trades", action="store_true", help="List every simulated trade")
    parser.add_argument("--json", action="store_true", help="Print the result as JSON")
    args = parser.parse_args()

    if not 1 <= args.days <= BACKTEST_MAX_DAYS:
        print(f"Error: --days must be between 1 and {BACKTEST_MAX_DAYS}", file=sys.stderr)
        return 1

    market = args.market.strip().upper()
    if args.csv:
        csv_path = Path(args.csv)
        if not csv_path.exists():
            print(f"Error: CSV file not found: {csv_path}", file=sys.stderr)
            return 1
        candles = load_candles_csv(csv_path)
    else:
        candles = UpbitClient().get_candles(market, BACKTEST_CANDLE_UNIT_MINUTES, args.days * 24)

    if not candles:
        print(f"Error: no candle data for {market}", file=sys.stderr)
        return 1

    simulator = BacktestSimulator(initial_capital=args.initial_capital, fee_rate=args.fee_rate)
    try:
        result = simulator.run(candles, args.strategy, params=build_params(args), market=market)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    if args.json:
        print(json.dumps(result.to_dict(), indent=2))
    else:
        print_result(result, args.trades)
    return 0


if __name__ == "__main__":
    sys.exit(main())
