"""
Portfolio allocator for splitting a base trade amount across markets.

Handles weight normalization and the exchange minimum order size.
"""
import logging
import math
from dataclasses import dataclass
from typing import List, Optional, Sequence

from ..shared.types import BotSettings
from ..shared.defaults import MIN_ORDER_AMOUNT, DEFAULT_MARKET


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Allocation:
    """Order size for one market of a portfolio plan."""
    market: str
    weight: float  # Normalized percent (all weights of a plan sum to 100)
    amount: float  # KRW per buy


def normalize_weights(weights: Optional[Sequence[float]], count: int) -> List[float]:
    """
    Rescale weights so they sum to 100.

    Falls back to an equal split when weights are missing, do not match the
    number of markets, or contain non-positive values.
    """
    if count <= 0:
        return []

    equal = [100.0 / count] * count
    if not weights or len(weights) != count:
        return equal

    try:
        values = [float(w) for w in weights]
    except (TypeError, ValueError):
        return equal

    if any(not math.isfinite(w) or w <= 0 for w in values):
        return equal

    total = sum(values)
    return [w / total * 100.0 for w in values]


class PortfolioAllocator:
    """
    Builds per-market order sizes from a base amount.

    Handles:
    - Single-market mode (no portfolio configured)
    - Weight normalization with equal-split fallback
    - Dropping markets whose share falls below the exchange minimum
    """

    def __init__(self, min_order_amount: float = MIN_ORDER_AMOUNT):
        """
        Initialize PortfolioAllocator.

        Args:
            min_order_amount: Smallest order value the exchange accepts (KRW)
        """
        self.min_order_amount = min_order_amount

    def allocate(
        self,
        base_amount: float,
        markets: Optional[Sequence[str]] = None,
        weights: Optional[Sequence[float]] = None,
        default_market: str = DEFAULT_MARKET,
    ) -> List[Allocation]:
        """
        Split base_amount across markets.

        Args:
            base_amount: KRW amount per buy before splitting
            markets: Portfolio markets (None or empty = single-market mode)
            weights: Raw weights per market (any scale)
            default_market: Market used in single-market mode

        Returns:
            List of Allocation objects; markets below the minimum are omitted
        """
        unique_markets: List[str] = []
        unique_weights: List[float] = []
        for i, market in enumerate(markets or []):
            market = market.strip().upper()
            if not market or market in unique_markets:
                continue
            unique_markets.append(market)
            if weights is not None and i < len(weights):
                unique_weights.append(weights[i])

        if not unique_markets:
            amount = float(math.floor(base_amount))
            if amount < self.min_order_amount:
                logger.warning(
                    f"Amount {amount:.0f} for {default_market} below minimum order "
                    f"{self.min_order_amount:.0f}, nothing to allocate"
                )
                return []
            return [Allocation(default_market, 100.0, amount)]

        raw = unique_weights if weights is not None and len(unique_weights) == len(unique_markets) else None
        normalized = normalize_weights(raw, len(unique_markets))

        plan = []
        for market, weight in zip(unique_markets, normalized):
            amount = float(math.floor(base_amount * weight / 100.0))
            if amount < self.min_order_amount:
                logger.info(
                    f"Dropping {market}: allocation {amount:.0f} ({weight:.1f}%) below minimum order "
                    f"{self.min_order_amount:.0f}"
                )
                continue
            plan.append(Allocation(market, weight, amount))

        logger.debug(f"Allocation plan for {base_amount:.0f}: {[(a.market, a.amount) for a in plan]}")
        return plan

    def plan_for(self, settings: BotSettings) -> List[Allocation]:
        """Allocation plan for a user's settings."""
        return self.allocate(
            settings.target_amount,
            markets=settings.portfolio_markets,
            weights=settings.portfolio_allocations or None,
            default_market=settings.market,
        )
