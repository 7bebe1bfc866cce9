"""Deleverage controller: withdraw, swap, repay loops."""

import logging
from datetime import datetime
from decimal import Decimal
from typing import Optional

from src.core.constants import BPS
from src.core.exceptions import EmergencyDeleverageError, SlippageExceededError
from src.core.fixed_point import bps_mul, checked_div
from src.core.models import LoopResult, PositionState, RiskConfiguration, StopReason
from src.engine.base import BaseController

logger = logging.getLogger(__name__)


class DeleverageController(BaseController):
    """
    Reduces leverage by unwinding collateral into debt repayment.

    Each iteration:
    1. Withdraws collateral
    2. Swaps it to the debt asset
    3. Repays debt with the swap output

    Supplied and borrowed both drop by roughly the same value, so equity is
    preserved and leverage falls.

    Three entry points share the iteration:
    - ``deleverage``: ordinary rebalance toward target leverage
    - ``emergency_deleverage``: forced unwind after a health factor breach
    - ``unwind_all``: repay all debt before closing the position
    """

    def deleverage(
        self,
        position: PositionState,
        config: RiskConfiguration,
        amount_to_unwind: Decimal,
        deadline: Optional[datetime] = None,
    ) -> LoopResult:
        """
        Unwind up to ``amount_to_unwind`` collateral.

        Stops early when leverage reaches ``min_leverage``. If the health
        factor falls below the emergency floor mid-loop, control passes to
        the emergency path.

        Args:
            position: Current position
            config: Risk configuration (read-only for the whole loop)
            amount_to_unwind: Collateral value to withdraw and repay
            deadline: Optional time after which no new iteration starts

        Returns:
            LoopResult
        """
        logger.info(
            f"Deleverage start: unwind {amount_to_unwind}, "
            f"leverage {position.leverage_or_none}bps, HF {position.health_factor}"
        )
        result = self._unwind_loop(
            position, config, amount_to_unwind, deadline, respect_min_leverage=True
        )

        if result.position.health_factor < config.health_factor_emergency:
            logger.warning(
                f"HF {result.position.health_factor} below emergency floor "
                f"{config.health_factor_emergency} during deleverage"
            )
            emergency = self.emergency_deleverage(result.position, config)
            result.position = emergency.position
            result.stop_reason = StopReason.EMERGENCY
            result.emergency_triggered = True
            result.emergency_iterations = emergency.iterations

        logger.info(
            f"Deleverage done: {result.iterations} iterations, "
            f"leverage {result.position.leverage_or_none}bps, stop={result.stop_reason.value}"
        )
        return result

    def emergency_deleverage(
        self,
        position: PositionState,
        config: RiskConfiguration,
    ) -> LoopResult:
        """
        Force the health factor back above the emergency floor.

        Aims for ``health_factor_target`` plus ``emergency_buffer``. Each
        iteration sizes its unwind from fresh state:

            amount = (target_hf - current_hf) * borrowed / (2 * current_hf)

        Raises:
            EmergencyDeleverageError: If the health factor is still below
                ``health_factor_emergency`` when the loop ends. The position
                on the exception is the last consistent state.
        """
        target_hf = bps_mul(config.health_factor_target, BPS + config.emergency_buffer)
        logger.warning(
            f"Emergency deleverage: HF {position.health_factor} < "
            f"{config.health_factor_emergency}, aiming for {target_hf}"
        )

        iterations = 0
        steps = []
        stop_reason = StopReason.ITERATION_CAP

        while iterations < config.max_iterations_per_call:
            if position.health_factor >= target_hf:
                stop_reason = StopReason.TARGET_REACHED
                break
            if not position.has_debt:
                stop_reason = StopReason.DEBT_CLEARED
                break
            if position.total_supplied <= 0:
                stop_reason = StopReason.NO_COLLATERAL
                break

            amount = self.emergency_amount(position, target_hf)
            step = self._step_size(position, config, amount)
            if step == 0:
                stop_reason = StopReason.ZERO_AMOUNT
                break

            try:
                position = self._execute_iteration(position, config, step)
            except SlippageExceededError as e:
                logger.warning(f"Emergency deleverage stopped on slippage: {e}")
                stop_reason = StopReason.SLIPPAGE
                break

            iterations += 1
            steps.append(step)
            logger.debug(
                f"Emergency iteration {iterations}: unwound {step}, HF {position.health_factor}"
            )

        if position.health_factor < config.health_factor_emergency:
            logger.error(
                f"Emergency deleverage failed: HF {position.health_factor} still below "
                f"{config.health_factor_emergency} after {iterations} iterations"
            )
            raise EmergencyDeleverageError(
                f"Health factor {position.health_factor} not restored above "
                f"{config.health_factor_emergency} within {config.max_iterations_per_call} "
                f"iterations (stop: {stop_reason.value})",
                position=position,
                iterations=iterations,
            )

        logger.info(
            f"Emergency deleverage done: {iterations} iterations, HF {position.health_factor}"
        )
        return LoopResult(
            position=position,
            iterations=iterations,
            stop_reason=stop_reason,
            step_amounts=steps,
        )

    def unwind_all(
        self,
        position: PositionState,
        config: RiskConfiguration,
        deadline: Optional[datetime] = None,
    ) -> LoopResult:
        """
        Repay as much debt as the iteration cap allows, ignoring min_leverage.

        Withdraws a little more than the debt value so swap slippage does not
        leave dust behind.
        """
        amount = bps_mul(position.total_borrowed, BPS + config.slippage_tolerance)
        logger.info(f"Unwinding position: debt {position.total_borrowed}")
        return self._unwind_loop(
            position, config, amount, deadline, respect_min_leverage=False
        )

    # ========== SIZING ==========

    @staticmethod
    def emergency_amount(position: PositionState, target_hf: Decimal) -> Decimal:
        """Collateral to unwind to move HF halfway toward ``target_hf``."""
        current_hf = position.health_factor
        if current_hf >= target_hf:
            return Decimal("0")
        return checked_div(
            (target_hf - current_hf) * position.total_borrowed,
            2 * current_hf,
            "emergency deleverage amount",
        )

    @staticmethod
    def amount_to_target(position: PositionState, target_leverage: int) -> Decimal:
        """
        Collateral to unwind to bring leverage down to ``target_leverage``.

        Withdraw-and-repay keeps equity constant, so the target supply is
        target_leverage * equity / 10000.
        """
        target_supplied = bps_mul(position.equity, target_leverage)
        return max(Decimal("0"), position.total_supplied - target_supplied)

    def _step_size(
        self,
        position: PositionState,
        config: RiskConfiguration,
        amount: Decimal,
    ) -> Decimal:
        """Cap a desired unwind at the per-loop limit and the outstanding debt value."""
        debt_with_slippage = bps_mul(position.total_borrowed, BPS + config.slippage_tolerance)
        capped = min(
            amount,
            config.max_single_loop_amount,
            debt_with_slippage,
            position.total_supplied,
        )
        return self.quantize(capped)

    # ========== LOOP ==========

    def _unwind_loop(
        self,
        position: PositionState,
        config: RiskConfiguration,
        amount_to_unwind: Decimal,
        deadline: Optional[datetime],
        respect_min_leverage: bool,
    ) -> LoopResult:
        remaining = amount_to_unwind
        iterations = 0
        steps = []
        stop_reason = StopReason.ITERATION_CAP

        while iterations < config.max_iterations_per_call:
            if self.deadline_passed(deadline):
                stop_reason = StopReason.DEADLINE
                break
            if not position.has_debt:
                stop_reason = StopReason.DEBT_CLEARED
                break
            if (
                respect_min_leverage
                and position.is_solvent
                and position.current_leverage <= config.min_leverage
            ):
                stop_reason = StopReason.MIN_LEVERAGE
                break
            if remaining <= 0:
                stop_reason = StopReason.TARGET_REACHED
                break

            step = self._step_size(position, config, remaining)
            if step == 0:
                stop_reason = StopReason.ZERO_AMOUNT
                break

            try:
                position = self._execute_iteration(position, config, step)
            except SlippageExceededError as e:
                logger.warning(f"Deleverage stopped on slippage: {e}")
                stop_reason = StopReason.SLIPPAGE
                break

            iterations += 1
            remaining -= step
            steps.append(step)
            logger.debug(
                f"Deleverage iteration {iterations}: unwound {step}, "
                f"leverage {position.leverage_or_none}bps, HF {position.health_factor}"
            )

            if position.health_factor < config.health_factor_emergency:
                stop_reason = StopReason.EMERGENCY
                break
        else:
            if remaining <= 0:
                stop_reason = StopReason.TARGET_REACHED

        return LoopResult(
            position=position,
            iterations=iterations,
            stop_reason=stop_reason,
            step_amounts=steps,
        )

    def _execute_iteration(
        self,
        position: PositionState,
        config: RiskConfiguration,
        amount: Decimal,
    ) -> PositionState:
        """
        Withdraw ``amount`` collateral, swap to debt asset, repay.

        If the swap fails the withdrawn collateral is supplied back before
        the error propagates. If the repay fails the swap output is swapped
        back to collateral and supplied. Either way the debt is untouched and
        the account ends where it started, less any swap slippage.
        """
        withdrawn = self.lending_market.withdraw(self.collateral_asset, amount, self.owner)

        expected_debt = self.collateral_to_debt(withdrawn)
        min_out = self.quantize(self.min_amount_out(expected_debt, config))

        try:
            amount_out = self.swap.swap(
                self.collateral_asset, self.debt_asset, withdrawn, min_out
            )
        except Exception:
            logger.error(f"Swap failed after withdrawing {withdrawn}, re-supplying collateral")
            self.lending_market.supply(self.collateral_asset, withdrawn)
            raise

        try:
            repaid = self.lending_market.repay(
                self.debt_asset, amount_out, self.rate_mode, self.owner
            )
        except Exception:
            logger.error(f"Repay failed after swapping {withdrawn}, restoring collateral")
            restored = self.swap.swap(
                self.debt_asset, self.collateral_asset, amount_out, Decimal("0")
            )
            self.lending_market.supply(self.collateral_asset, restored)
            raise

        if repaid < amount_out:
            logger.debug(f"Debt fully repaid, {amount_out - repaid} {self.debt_asset} left in wallet")

        return self.read_position(position.last_rebalance_timestamp)
