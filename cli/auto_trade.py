#!/usr/bin/env python3
"""
Automated trading service for Upbit KRW markets.

Long-running service that, every tick (10s by default):
1. Loads all active users from the settings store
2. Fetches price, candles and balances for each user's markets
3. Evaluates the configured strategy per market
4. Places market orders and records them in the trade log
5. Persists reference prices and trade times for restarts

Usage:
    python -m cli.auto_trade [--config CONFIG] [--dry-run] [--user USER_ID]
"""
import os
import sys
import signal
import logging
import argparse
from pathlib import Path
from typing import List, Optional

from engine.automation.scheduler import Scheduler
from engine.automation.trader import AutomatedTrader
from engine.automation.state import JsonSettingsStore, JsonTradeLogStore
from engine.broker.upbit_client import UpbitClient
from engine.config import EngineConfig, load_engine_config
from engine.trading.allocator import PortfolioAllocator


ACCESS_KEY_ENV = "UPBIT_ACCESS_KEY"
SECRET_KEY_ENV = "UPBIT_SECRET_KEY"


def setup_logging(log_path: Optional[Path] = None, verbose: bool = False):
    """
    Route all log records to stdout and, when configured, the service log file.

    Args:
        log_path: Log file written next to stdout (None = stdout only)
        verbose: DEBUG level including per-market hold decisions, otherwise INFO
    """
    level = logging.DEBUG if verbose else logging.INFO
    formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_path:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_path))

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(level)
    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        root_logger.addHandler(handler)

    logging.getLogger("urllib3").setLevel(logging.WARNING)


def seed_credentials_from_env(settings_store: JsonSettingsStore, user_id: str, logger: logging.Logger) -> bool:
    """
    Store API keys from the environment for a user that has none yet.

    Returns:
        True if keys were written
    """
    access_key = os.environ.get(ACCESS_KEY_ENV, "").strip()
    secret_key = os.environ.get(SECRET_KEY_ENV, "").strip()
    if not access_key or not secret_key:
        return False

    current = settings_store.get_state(user_id)
    if current is not None and current.has_credentials:
        logger.info(f"User {user_id} already has API keys, ignoring {ACCESS_KEY_ENV}/{SECRET_KEY_ENV}")
        return False

    settings_store.update_state(user_id, {"access_key": access_key, "secret_key": secret_key})
    logger.info(f"Stored API keys from environment for user {user_id}")
    return True


def build_trader(config: EngineConfig, dry_run: bool) -> AutomatedTrader:
    """Wire the gateway, stores and allocator from the config."""
    gateway = UpbitClient(
        base_url=config.base_url,
        timeout=config.timeout_seconds,
        min_order_amount=config.min_order_amount,
    )
    return AutomatedTrader(
        gateway=gateway,
        settings_store=JsonSettingsStore(config.state_path),
        trade_log=JsonTradeLogStore(config.trade_log_path),
        allocator=PortfolioAllocator(config.min_order_amount),
        candle_unit_minutes=config.candle_unit_minutes,
        candle_count=config.candle_count,
        dry_run=dry_run,
    )


def main():
    """Main service loop."""
    parser = argparse.ArgumentParser(description="Upbit automated trading service")
    parser.add_argument(
        "--config",
        type=str,
        default="configs/engine.yaml",
        help="Path to service config file (default: configs/engine.yaml)"
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Evaluate strategies but don't place orders (for testing)"
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable verbose logging (DEBUG level)"
    )
    parser.add_argument(
        "--user",
        type=str,
        help=f"User ID that receives API keys from {ACCESS_KEY_ENV}/{SECRET_KEY_ENV}"
    )
    args = parser.parse_args()

    config_path = Path(args.config)
    try:
        config = load_engine_config(config_path)
    except (FileNotFoundError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    setup_logging(config.log_path, args.verbose)
    logger = logging.getLogger(__name__)

    logger.info("=" * 80)
    logger.info("Upbit Automated Trading Service Starting")
    logger.info("=" * 80)
    logger.info(f"Config: {config_path}")
    logger.info(f"Tick interval: {config.tick_seconds}s")
    logger.info(f"Candles: {config.candle_count} x {config.candle_unit_minutes}m")
    logger.info(f"State: {config.state_path}")
    logger.info(f"Dry run: {args.dry_run}")

    try:
        trader = build_trader(config, args.dry_run)
        if args.user:
            seed_credentials_from_env(trader.settings_store, args.user, logger)
        scheduler = Scheduler(
            tick=trader.run_cycle,
            interval_seconds=config.tick_seconds,
            timezone=config.timezone,
        )
        logger.info("All components initialized successfully")
    except Exception as e:
        logger.exception(f"Failed to initialize components: {e}")
        return 1

    def signal_handler(signum, frame):
        """Handle shutdown signals (SIGTERM, SIGINT)."""
        logger.info(f"Received signal {signum}, initiating graceful shutdown...")
        scheduler.stop()

    signal.signal(signal.SIGTERM, signal_handler)
    signal.signal(signal.SIGINT, signal_handler)

    logger.info("Entering main service loop...")
    try:
        scheduler.run_forever()
    except Exception as e:
        logger.exception(f"Fatal error in main loop: {e}")
        return 1
    finally:
        logger.info(
            f"Service stopped ({scheduler.ticks_run} ticks run, {scheduler.ticks_skipped} skipped)"
        )

    return 0


if __name__ == "__main__":
    sys.exit(main())
