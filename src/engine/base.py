"""Base class shared by the leverage and deleverage controllers."""

from abc import ABC
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, Optional

from src.adapters.base import AccountData, LendingMarketAdapter, SwapAdapter
from src.core.constants import BPS, DEFAULT_AMOUNT_DECIMALS, RATE_MODE_VARIABLE
from src.core.exceptions import InvariantViolationError
from src.core.fixed_point import bps_mul, checked_div, quantize_down
from src.core.models import PositionState, RiskConfiguration

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(tz=timezone.utc)


class BaseController(ABC):
    """
    Common plumbing for loop controllers.

    Controllers hold no position state of their own. Each call receives the
    current PositionState and RiskConfiguration and returns a new state read
    back from the lending market after every committed iteration.
    """

    def __init__(
        self,
        lending_market: LendingMarketAdapter,
        swap: SwapAdapter,
        collateral_asset: str,
        debt_asset: str,
        owner: str,
        amount_decimals: int = DEFAULT_AMOUNT_DECIMALS,
        rate_mode: int = RATE_MODE_VARIABLE,
        clock: Optional[Clock] = None,
    ):
        """
        Initialize controller.

        Args:
            lending_market: Lending market collaborator
            swap: Swap collaborator
            collateral_asset: Asset supplied as collateral
            debt_asset: Asset borrowed
            owner: Account that holds the position
            amount_decimals: Token precision loop amounts are rounded down to
            rate_mode: Interest rate mode passed to borrow/repay
            clock: Time source, defaults to UTC now
        """
        self.lending_market = lending_market
        self.swap = swap
        self.collateral_asset = collateral_asset
        self.debt_asset = debt_asset
        self.owner = owner
        self.amount_decimals = amount_decimals
        self.rate_mode = rate_mode
        self.clock = clock or utc_now

    # ========== STATE ==========

    def read_position(self, last_rebalance_timestamp: Optional[datetime] = None) -> PositionState:
        """Build a fresh PositionState from the market's account data."""
        data = self.lending_market.get_account_data(self.owner)
        return self.position_from_account(data, last_rebalance_timestamp)

    @staticmethod
    def position_from_account(
        data: AccountData,
        last_rebalance_timestamp: Optional[datetime] = None,
    ) -> PositionState:
        return PositionState(
            total_supplied=data.total_collateral_value,
            total_borrowed=data.total_debt_value,
            liquidation_threshold_bps=data.liquidation_threshold_bps,
            max_ltv_bps=data.max_ltv_bps,
            last_rebalance_timestamp=last_rebalance_timestamp,
        )

    # ========== UNITS ==========

    def collateral_to_debt(self, value: Decimal) -> Decimal:
        """Convert a collateral-unit value into debt asset units."""
        return checked_div(
            value * self.lending_market.get_asset_price(self.collateral_asset),
            self.lending_market.get_asset_price(self.debt_asset),
            "debt amount",
        )

    def debt_to_collateral(self, amount: Decimal) -> Decimal:
        """Convert a debt asset amount into collateral units."""
        return checked_div(
            amount * self.lending_market.get_asset_price(self.debt_asset),
            self.lending_market.get_asset_price(self.collateral_asset),
            "collateral value",
        )

    def quantize(self, amount: Decimal) -> Decimal:
        return quantize_down(amount, self.amount_decimals)

    @staticmethod
    def min_amount_out(expected: Decimal, config: RiskConfiguration) -> Decimal:
        """Lowest swap output accepted under the configured slippage tolerance."""
        return bps_mul(expected, BPS - config.slippage_tolerance)

    # ========== BOUNDS ==========

    def deadline_passed(self, deadline: Optional[datetime]) -> bool:
        return deadline is not None and self.clock() >= deadline

    @staticmethod
    def validate_projection(projected: PositionState) -> None:
        """
        Check a projected post-iteration state before any collaborator call.

        Raises:
            InvariantViolationError: If debt would exceed borrow capacity
        """
        if projected.total_borrowed > projected.borrow_capacity:
            raise InvariantViolationError(
                f"Projected debt {projected.total_borrowed} exceeds borrow capacity "
                f"{projected.borrow_capacity}"
            )
