"""Loop results and rebalance audit records."""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import List, Optional

from .position import PositionState


class RebalanceAction(Enum):
    """What a rebalance call did."""
    NONE = "none"
    LEVERAGE = "leverage"
    DELEVERAGE = "deleverage"
    EMERGENCY_DELEVERAGE = "emergency_deleverage"
    UNWIND = "unwind"


class RebalanceReason(Enum):
    """Why a controller ran."""
    SCHEDULED = "scheduled"    # Public rebalance() trigger
    EMERGENCY = "emergency"    # Health factor below hard floor
    DEPOSIT = "deposit"        # New capital deployed
    OPERATOR = "operator"      # Operator action (close position)


class StopReason(Enum):
    """Why a controller loop ended."""
    TARGET_REACHED = "target_reached"
    ZERO_AMOUNT = "zero_amount"
    BORROW_EXHAUSTED = "borrow_exhausted"
    SLIPPAGE = "slippage"
    ITERATION_CAP = "iteration_cap"
    DEADLINE = "deadline"
    EMERGENCY = "emergency"
    MIN_LEVERAGE = "min_leverage"
    DEBT_CLEARED = "debt_cleared"
    NO_COLLATERAL = "no_collateral"


@dataclass
class LoopResult:
    """
    Outcome of one controller invocation.

    ``iterations`` counts the controller's own iterations and never exceeds
    ``max_iterations_per_call``. When a leverage loop hands over to the
    emergency path, the emergency iterations are reported separately in
    ``emergency_iterations``.
    """

    position: PositionState
    iterations: int = 0
    stop_reason: StopReason = StopReason.ITERATION_CAP
    step_amounts: List[Decimal] = field(default_factory=list)
    emergency_triggered: bool = False
    emergency_iterations: int = 0

    @property
    def mutated(self) -> bool:
        return self.iterations > 0 or self.emergency_iterations > 0


@dataclass
class RebalanceRecord:
    """Audit entry for one rebalance-style call."""

    action: RebalanceAction
    reason: RebalanceReason
    timestamp: datetime

    iterations: int
    leverage_before: Optional[int]    # None when insolvent
    leverage_after: Optional[int]
    health_factor_before: Decimal
    health_factor_after: Decimal

    stop_reason: Optional[StopReason] = None
    step_amounts: List[Decimal] = field(default_factory=list)
    emergency_triggered: bool = False
    emergency_iterations: int = 0
    success: bool = True
    detail: str = ""

    @property
    def is_noop(self) -> bool:
        return self.action == RebalanceAction.NONE

    def to_dict(self) -> dict:
        return {
            "action": self.action.value,
            "reason": self.reason.value,
            "timestamp": self.timestamp.isoformat(),
            "iterations": self.iterations,
            "leverage_before": self.leverage_before,
            "leverage_after": self.leverage_after,
            "health_factor_before": str(self.health_factor_before),
            "health_factor_after": str(self.health_factor_after),
            "stop_reason": self.stop_reason.value if self.stop_reason else None,
            "step_amounts": [str(a) for a in self.step_amounts],
            "emergency_triggered": self.emergency_triggered,
            "emergency_iterations": self.emergency_iterations,
            "success": self.success,
            "detail": self.detail,
        }
