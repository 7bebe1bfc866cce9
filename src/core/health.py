"""Health factor and borrow capacity evaluation."""

from dataclasses import dataclass
from decimal import Decimal, ROUND_DOWN

from src.core.constants import (
    BPS,
    INFINITE_HEALTH_FACTOR,
    LIQUIDATION_HEALTH_FACTOR_BPS,
    UNIT_LEVERAGE_BPS,
)
from src.core.exceptions import InsolventPositionError
from src.core.fixed_point import bps_mul, checked_div, saturating_sub


@dataclass(frozen=True)
class HealthEvaluation:
    """Result of a health evaluation."""

    health_factor: Decimal       # bps, Infinity when nothing is borrowed
    available_borrow: Decimal    # collateral units still borrowable

    @property
    def is_liquidatable(self) -> bool:
        return self.health_factor < LIQUIDATION_HEALTH_FACTOR_BPS


class HealthFactorEvaluator:
    """
    Pure calculator for position solvency metrics.

    All ratios are basis points (10000 = 1.0x). Callers pass freshly read
    supplied/borrowed values after every state-changing step, nothing here is
    cached.
    """

    @staticmethod
    def evaluate(
        supplied_value: Decimal,
        borrowed_value: Decimal,
        liquidation_threshold_bps: int,
        max_ltv_bps: int,
    ) -> HealthEvaluation:
        """
        Evaluate health factor and remaining borrow capacity.

        Args:
            supplied_value: Collateral supplied, in collateral units
            borrowed_value: Debt, valued in collateral units
            liquidation_threshold_bps: Market liquidation threshold (e.g. 8000)
            max_ltv_bps: Market max loan-to-value for new borrows (e.g. 7500)

        Returns:
            HealthEvaluation
        """
        return HealthEvaluation(
            health_factor=HealthFactorEvaluator.health_factor(
                supplied_value, borrowed_value, liquidation_threshold_bps
            ),
            available_borrow=HealthFactorEvaluator.available_borrow(
                supplied_value, borrowed_value, max_ltv_bps
            ),
        )

    @staticmethod
    def health_factor(
        supplied_value: Decimal,
        borrowed_value: Decimal,
        liquidation_threshold_bps: int,
    ) -> Decimal:
        """
        Calculate health factor in bps.

        HF = supplied * liquidation_threshold_bps / borrowed

        Scenario: supplied=1000, borrowed=900, LT=8000 -> 8888 (0.888x)
        """
        _require_non_negative(supplied_value, borrowed_value)
        if borrowed_value == 0:
            return INFINITE_HEALTH_FACTOR

        hf = checked_div(
            Decimal(supplied_value) * liquidation_threshold_bps,
            borrowed_value,
            "health factor",
        )
        return hf.to_integral_value(rounding=ROUND_DOWN)

    @staticmethod
    def borrow_capacity(supplied_value: Decimal, max_ltv_bps: int) -> Decimal:
        """Maximum total debt the supplied collateral supports."""
        return bps_mul(supplied_value, max_ltv_bps)

    @staticmethod
    def available_borrow(
        supplied_value: Decimal,
        borrowed_value: Decimal,
        max_ltv_bps: int,
    ) -> Decimal:
        """max(0, supplied * max_ltv / 10000 - borrowed)"""
        _require_non_negative(supplied_value, borrowed_value)
        capacity = HealthFactorEvaluator.borrow_capacity(supplied_value, max_ltv_bps)
        return saturating_sub(capacity, Decimal(borrowed_value))

    @staticmethod
    def leverage(supplied_value: Decimal, borrowed_value: Decimal) -> int:
        """
        Calculate leverage in bps.

        Leverage = supplied / (supplied - borrowed)

        Unlevered and empty positions are 1.0x (10000).

        Raises:
            InsolventPositionError: If debt meets or exceeds collateral
        """
        _require_non_negative(supplied_value, borrowed_value)
        if borrowed_value == 0:
            return UNIT_LEVERAGE_BPS

        equity = Decimal(supplied_value) - Decimal(borrowed_value)
        if equity <= 0:
            raise InsolventPositionError(
                f"Debt {borrowed_value} meets or exceeds collateral {supplied_value}"
            )

        ratio = checked_div(Decimal(supplied_value) * BPS, equity, "leverage")
        return int(ratio.to_integral_value(rounding=ROUND_DOWN))


def _require_non_negative(supplied_value: Decimal, borrowed_value: Decimal) -> None:
    if supplied_value < 0 or borrowed_value < 0:
        raise ValueError(
            f"Amounts must be non-negative: supplied={supplied_value}, borrowed={borrowed_value}"
        )


evaluate = HealthFactorEvaluator.evaluate
