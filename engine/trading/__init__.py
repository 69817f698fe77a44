"""
Order sizing: fee model and portfolio allocation.
"""
from .fees import FeeModel, fee_buffer, fee
from .allocator import PortfolioAllocator, Allocation, normalize_weights

__all__ = ["FeeModel", "fee_buffer", "fee", "PortfolioAllocator", "Allocation", "normalize_weights"]
