"""
Automation module for the long-running trading service.

Handles the tick schedule, per-user strategy evaluation, order placement and
state persistence.
"""
from .scheduler import Scheduler
from .trader import AutomatedTrader, CycleResult
from .state import JsonSettingsStore, JsonTradeLogStore, SettingsStore, TradeLogStore

__all__ = [
    "Scheduler",
    "AutomatedTrader",
    "CycleResult",
    "JsonSettingsStore",
    "JsonTradeLogStore",
    "SettingsStore",
    "TradeLogStore",
]
