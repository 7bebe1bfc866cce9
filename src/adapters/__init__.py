"""Lending market and swap collaborators."""

from .base import AccountData, LendingMarketAdapter, SwapAdapter
from .simulated import SimulatedLendingMarket, SimulatedSwap

__all__ = [
    "AccountData",
    "LendingMarketAdapter",
    "SwapAdapter",
    "SimulatedLendingMarket",
    "SimulatedSwap",
]
