"""
Strategy evaluation.

One policy per StrategyKind behind a common interface, dispatched by
evaluator.evaluate().
"""
from .base import MarketContext, StrategyPolicy
from .evaluator import evaluate, POLICIES, cooldown_remaining, cooldown_seconds, check_risk_exit

__all__ = [
    "MarketContext",
    "StrategyPolicy",
    "evaluate",
    "POLICIES",
    "cooldown_remaining",
    "cooldown_seconds",
    "check_risk_exit",
]
