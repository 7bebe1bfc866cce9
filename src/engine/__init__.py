"""Leverage engine components."""

from .leverage import LeverageLoopController
from .deleverage import DeleverageController
from .scheduler import RebalanceScheduler, SchedulerState
from .manager import LeverageManager
from .simulator import StressSimulator, StressResult

__all__ = [
    "LeverageLoopController",
    "DeleverageController",
    "RebalanceScheduler",
    "SchedulerState",
    "LeverageManager",
    "StressSimulator",
    "StressResult",
]
