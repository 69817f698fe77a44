"""
Fee model: per-trade fees and the minimum profitable price move.
"""
from dataclasses import dataclass

from ..shared.defaults import DEFAULT_FEE_RATE, SLIPPAGE_MARGIN


def fee_buffer(fee_rate: float, slippage_margin: float = SLIPPAGE_MARGIN) -> float:
    """Minimum round-trip price move (fraction) that can be profitable: 2 * fee + slippage."""
    return 2 * fee_rate + slippage_margin


def fee(amount: float, fee_rate: float) -> float:
    """Fee charged on a trade of `amount`."""
    return amount * fee_rate


@dataclass(frozen=True)
class FeeModel:
    """
    Fee model for one account.

    Thresholds are configured in percent; effective_threshold returns a
    fraction that is never tighter than the fee buffer.
    """
    fee_rate: float = DEFAULT_FEE_RATE
    slippage_margin: float = SLIPPAGE_MARGIN

    def __post_init__(self):
        if self.fee_rate < 0:
            raise ValueError(f"fee_rate must be >= 0, got {self.fee_rate}")
        if self.slippage_margin < 0:
            raise ValueError(f"slippage_margin must be >= 0, got {self.slippage_margin}")

    @property
    def buffer(self) -> float:
        return fee_buffer(self.fee_rate, self.slippage_margin)

    def fee(self, amount: float) -> float:
        return fee(amount, self.fee_rate)

    def effective_threshold(self, threshold_percent: float) -> float:
        """max(threshold, buffer) as a fraction; a threshold is raised to the buffer, never loosened."""
        return max(threshold_percent / 100.0, self.buffer)
