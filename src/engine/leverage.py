"""Leverage loop controller: borrow, swap, re-supply loops."""

import logging
from datetime import datetime
from decimal import Decimal
from typing import Optional

from src.adapters.base import LendingMarketAdapter, SwapAdapter
from src.core.exceptions import LeverageDisabledError, SlippageExceededError
from src.core.fixed_point import checked_div
from src.core.models import LoopResult, PositionState, RiskConfiguration, StopReason
from src.engine.base import BaseController
from src.engine.deleverage import DeleverageController

logger = logging.getLogger(__name__)


class LeverageLoopController(BaseController):
    """
    Levers a position up toward the target leverage.

    Each iteration:
    1. Borrows the debt asset against supplied collateral
    2. Swaps it into the collateral asset
    3. Re-supplies the output

    Example wstETH/WETH from 1.0x to 2.0x, 1000 wstETH supplied, no slippage:
    - Iteration 1 borrows 500  -> 1500 / 500  (1.5x)
    - Iteration 2 borrows 250  -> 1750 / 750  (1.75x)
    - Iteration 3 borrows 125  -> 1875 / 875  (1.875x)
    - ... each step closes half the remaining gap

    The halfway step keeps a single iteration from overshooting the target
    when leverage moves non-linearly near it.
    """

    def __init__(
        self,
        lending_market: LendingMarketAdapter,
        swap: SwapAdapter,
        collateral_asset: str,
        debt_asset: str,
        owner: str,
        deleverage: Optional[DeleverageController] = None,
        **kwargs,
    ):
        super().__init__(lending_market, swap, collateral_asset, debt_asset, owner, **kwargs)
        self.deleverage = deleverage or DeleverageController(
            lending_market, swap, collateral_asset, debt_asset, owner, **kwargs
        )

    def apply_leverage(
        self,
        position: PositionState,
        config: RiskConfiguration,
        deadline: Optional[datetime] = None,
    ) -> LoopResult:
        """
        Lever up toward ``config.target_leverage``.

        Args:
            position: Current position, already holding collateral
            config: Risk configuration (read-only for the whole loop)
            deadline: Optional time after which no new iteration starts

        Returns:
            LoopResult with at most ``max_iterations_per_call`` iterations

        Raises:
            LeverageDisabledError: If auto leverage is switched off
            EmergencyDeleverageError: If a health factor breach could not be
                repaired by the emergency path
        """
        if not config.auto_leverage_enabled:
            raise LeverageDisabledError("Auto leverage is disabled")

        if position.total_supplied <= 0:
            return LoopResult(position=position, stop_reason=StopReason.NO_COLLATERAL)

        if position.current_leverage >= config.target_leverage:
            return LoopResult(position=position, stop_reason=StopReason.TARGET_REACHED)

        logger.info(
            f"Leverage start: {position.current_leverage}bps -> {config.target_leverage}bps, "
            f"supplied {position.total_supplied}, borrowed {position.total_borrowed}"
        )

        result = LoopResult(position=position)

        while result.iterations < config.max_iterations_per_call:
            if self.deadline_passed(deadline):
                result.stop_reason = StopReason.DEADLINE
                break
            if position.current_leverage >= config.target_leverage:
                result.stop_reason = StopReason.TARGET_REACHED
                break

            amount = self.borrow_amount(position, config)
            if amount == 0:
                result.stop_reason = (
                    StopReason.BORROW_EXHAUSTED
                    if position.available_borrow == 0
                    else StopReason.ZERO_AMOUNT
                )
                logger.info(f"Leverage loop reached fixed point: {result.stop_reason.value}")
                break

            try:
                position = self._execute_iteration(position, config, amount)
            except SlippageExceededError as e:
                logger.warning(f"Leverage stopped on slippage: {e}")
                result.stop_reason = StopReason.SLIPPAGE
                break

            result.iterations += 1
            result.step_amounts.append(amount)
            result.position = position
            logger.debug(
                f"Leverage iteration {result.iterations}: borrowed {amount}, "
                f"leverage {position.current_leverage}bps, HF {position.health_factor}"
            )

            if position.health_factor < config.health_factor_emergency:
                logger.warning(
                    f"HF {position.health_factor} below emergency floor "
                    f"{config.health_factor_emergency}, switching to emergency deleverage"
                )
                emergency = self.deleverage.emergency_deleverage(position, config)
                position = emergency.position
                result.position = position
                result.stop_reason = StopReason.EMERGENCY
                result.emergency_triggered = True
                result.emergency_iterations = emergency.iterations
                break

        result.position = position
        logger.info(
            f"Leverage done: {result.iterations} iterations, "
            f"leverage {position.current_leverage}bps, HF {position.health_factor}, "
            f"stop={result.stop_reason.value}"
        )
        return result

    def borrow_amount(self, position: PositionState, config: RiskConfiguration) -> Decimal:
        """
        Size the next borrow, in collateral units.

        borrow = (target - current) * supplied / (2 * current)

        capped at ``max_single_loop_amount`` and the market's available
        borrow, rounded down to token precision.
        """
        current = position.current_leverage
        gap = config.target_leverage - current
        if gap <= 0:
            return Decimal("0")

        raw = checked_div(gap * position.total_supplied, 2 * current, "leverage borrow amount")
        capped = min(raw, config.max_single_loop_amount, position.available_borrow)
        return self.quantize(capped)

    def _execute_iteration(
        self,
        position: PositionState,
        config: RiskConfiguration,
        amount: Decimal,
    ) -> PositionState:
        """
        Borrow, swap and re-supply ``amount`` (collateral units).

        The projected state is validated before the first collaborator call.
        If the swap fails after the borrow went through, the borrowed amount
        is repaid before the error propagates. If the supply fails, the swap
        output is swapped back and repaid.
        """
        debt_amount = self.quantize(self.collateral_to_debt(amount))
        expected_collateral = self.debt_to_collateral(debt_amount)
        min_out = self.quantize(self.min_amount_out(expected_collateral, config))

        projected = position.with_amounts(
            position.total_supplied + min_out,
            position.total_borrowed + expected_collateral,
        )
        self.validate_projection(projected)

        self.lending_market.borrow(self.debt_asset, debt_amount, self.rate_mode, self.owner)

        try:
            amount_out = self.swap.swap(
                self.debt_asset, self.collateral_asset, debt_amount, min_out
            )
        except Exception:
            logger.error(f"Swap failed after borrowing {debt_amount}, repaying")
            self.lending_market.repay(self.debt_asset, debt_amount, self.rate_mode, self.owner)
            raise

        try:
            self.lending_market.supply(self.collateral_asset, amount_out)
        except Exception:
            logger.error(f"Supply failed after swapping {debt_amount}, unwinding the borrow")
            returned = self.swap.swap(
                self.collateral_asset, self.debt_asset, amount_out, Decimal("0")
            )
            self.lending_market.repay(self.debt_asset, returned, self.rate_mode, self.owner)
            raise

        return self.read_position(position.last_rebalance_timestamp)
