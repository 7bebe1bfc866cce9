"""Rebalance scheduler: cooldown and tolerance gated dispatch."""

import logging
from datetime import datetime
from enum import Enum
from typing import Optional

from src.core.exceptions import CooldownActiveError
from src.core.models import (
    LoopResult,
    PositionState,
    RebalanceAction,
    RebalanceReason,
    RebalanceRecord,
    RiskConfiguration,
)
from src.engine.deleverage import DeleverageController
from src.engine.leverage import LeverageLoopController

logger = logging.getLogger(__name__)


class SchedulerState(Enum):
    """Scheduler states within one invocation."""
    IDLE = "idle"
    EVALUATING = "evaluating"
    LEVERAGING = "leveraging"
    DELEVERAGING = "deleveraging"


class RebalanceScheduler:
    """
    Decides whether a rebalance levers up, levers down, or does nothing.

    IDLE -> EVALUATING -> (LEVERAGING | DELEVERAGING | IDLE), and back to
    IDLE when the chosen controller completes or raises.

    A health factor below ``health_factor_emergency`` always dispatches the
    emergency deleverage, bypassing the cooldown and tolerance band. So does
    an insolvent position, whose leverage is undefined.

    ``last_action`` keeps the action chosen by the latest ``run`` so a caller
    can record what was attempted when a controller raises.
    """

    def __init__(
        self,
        leverage: LeverageLoopController,
        deleverage: DeleverageController,
    ):
        self.leverage = leverage
        self.deleverage = deleverage
        self.state = SchedulerState.IDLE
        self.last_action: Optional[RebalanceAction] = None

    def decide(self, position: PositionState, config: RiskConfiguration) -> RebalanceAction:
        """
        Pick the action for the current position, ignoring the cooldown.

        Args:
            position: Current position
            config: Risk configuration

        Returns:
            RebalanceAction
        """
        if position.health_factor < config.health_factor_emergency or not position.is_solvent:
            return RebalanceAction.EMERGENCY_DELEVERAGE

        leverage = position.current_leverage
        if leverage < config.lower_band:
            if config.auto_leverage_enabled and position.total_supplied > 0:
                return RebalanceAction.LEVERAGE
            return RebalanceAction.NONE
        if leverage > config.upper_band:
            return RebalanceAction.DELEVERAGE
        return RebalanceAction.NONE

    @staticmethod
    def cooldown_remaining(
        position: PositionState,
        config: RiskConfiguration,
        now: datetime,
    ) -> float:
        """Seconds left before a scheduled rebalance may run (0 when elapsed)."""
        if position.last_rebalance_timestamp is None:
            return 0.0
        elapsed = (now - position.last_rebalance_timestamp).total_seconds()
        return max(0.0, config.rebalance_cooldown - elapsed)

    def run(
        self,
        position: PositionState,
        config: RiskConfiguration,
        now: datetime,
        reason: RebalanceReason = RebalanceReason.SCHEDULED,
        enforce_cooldown: bool = True,
        deadline: Optional[datetime] = None,
    ) -> tuple[PositionState, RebalanceRecord]:
        """
        Evaluate the position and run the chosen controller.

        Args:
            position: Current position
            config: Risk configuration (read-only for the whole call)
            now: Current time, stamped on the position if it changes
            reason: Trigger recorded in the audit record
            enforce_cooldown: Whether the cooldown gates this call
            deadline: Optional loop deadline passed to the controller

        Returns:
            Tuple of (committed position, audit record)

        Raises:
            CooldownActiveError: Cooldown not elapsed (never for emergencies)
            EmergencyDeleverageError: Health factor could not be restored
        """
        self.state = SchedulerState.EVALUATING
        self.last_action = None
        try:
            action = self.decide(position, config)
            self.last_action = action

            if action == RebalanceAction.EMERGENCY_DELEVERAGE:
                reason = RebalanceReason.EMERGENCY
            elif enforce_cooldown:
                remaining = self.cooldown_remaining(position, config, now)
                if remaining > 0:
                    raise CooldownActiveError(remaining)

            logger.info(
                f"Rebalance ({reason.value}): HF {position.health_factor}, action={action.value}"
            )

            if action == RebalanceAction.NONE:
                return position, self._record(
                    action, reason, now, position, LoopResult(position=position)
                )

            if action == RebalanceAction.LEVERAGE:
                self.state = SchedulerState.LEVERAGING
                result = self.leverage.apply_leverage(position, config, deadline)
            elif action == RebalanceAction.DELEVERAGE:
                self.state = SchedulerState.DELEVERAGING
                amount = self.deleverage.amount_to_target(position, config.target_leverage)
                result = self.deleverage.deleverage(position, config, amount, deadline)
            else:
                self.state = SchedulerState.DELEVERAGING
                result = self.deleverage.emergency_deleverage(position, config)

            if result.mutated:
                result.position = result.position.touched(now)
            return result.position, self._record(action, reason, now, position, result)
        finally:
            self.state = SchedulerState.IDLE

    @staticmethod
    def _record(
        action: RebalanceAction,
        reason: RebalanceReason,
        now: datetime,
        before: PositionState,
        result: LoopResult,
    ) -> RebalanceRecord:
        after = result.position
        return RebalanceRecord(
            action=action,
            reason=reason,
            timestamp=now,
            iterations=result.iterations,
            leverage_before=before.leverage_or_none,
            leverage_after=after.leverage_or_none,
            health_factor_before=before.health_factor,
            health_factor_after=after.health_factor,
            stop_reason=result.stop_reason if action != RebalanceAction.NONE else None,
            step_amounts=list(result.step_amounts),
            emergency_triggered=(
                result.emergency_triggered or action == RebalanceAction.EMERGENCY_DELEVERAGE
            ),
            emergency_iterations=result.emergency_iterations,
        )
