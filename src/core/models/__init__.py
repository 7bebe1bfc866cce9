"""Core data models for the leverage engine."""

from .position import PositionState, PositionSnapshot
from .risk import RiskConfiguration
from .audit import (
    LoopResult,
    RebalanceAction,
    RebalanceReason,
    RebalanceRecord,
    StopReason,
)

__all__ = [
    "PositionState",
    "PositionSnapshot",
    "RiskConfiguration",
    "LoopResult",
    "RebalanceAction",
    "RebalanceReason",
    "RebalanceRecord",
    "StopReason",
]
