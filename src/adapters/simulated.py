"""In-memory lending market and swap venue for the sandbox.

The simulated market holds a single account. Withdrawals are only limited by
the supplied balance, not by the health factor: a withdraw/repay pair is
assumed to settle atomically, as it does on-chain inside one transaction.
"""

import logging
from decimal import Decimal
from typing import Callable, Dict, List, Optional, Tuple

from src.adapters.base import AccountData, LendingMarketAdapter, SwapAdapter
from src.core.constants import BPS
from src.core.exceptions import LendingMarketError, SlippageExceededError, SwapError
from src.core.fixed_point import bps_mul, checked_div

logger = logging.getLogger(__name__)


class SimulatedLendingMarket(LendingMarketAdapter):
    """
    Single-account lending pool with oracle prices.

    Collateral is tracked in collateral units, debt in debt asset units.
    ``get_account_data`` converts debt into collateral units using the
    current prices, so moving a price moves the health factor.

    Example (debt asset priced at 1.0, collateral at 1.0):
        market = SimulatedLendingMarket("wstETH", "WETH", owner="0xowner")
        market.supply("wstETH", Decimal("1000"))
        market.borrow("WETH", Decimal("500"), 2, "0xowner")
        market.get_account_data("0xowner")  # 1000 collateral, 500 debt
    """

    def __init__(
        self,
        collateral_asset: str,
        debt_asset: str,
        owner: str,
        liquidation_threshold_bps: int = 8000,
        max_ltv_bps: int = 7500,
        prices: Optional[Dict[str, Decimal]] = None,
        borrow_liquidity: Decimal = Decimal("Infinity"),
        initial_collateral: Decimal = Decimal("0"),
        initial_debt: Decimal = Decimal("0"),
    ):
        self.collateral_asset = collateral_asset
        self.debt_asset = debt_asset
        self.owner = owner
        self.liquidation_threshold_bps = liquidation_threshold_bps
        self.max_ltv_bps = max_ltv_bps
        self.prices: Dict[str, Decimal] = {
            collateral_asset: Decimal("1"),
            debt_asset: Decimal("1"),
        }
        if prices:
            self.prices.update(prices)
        self.borrow_liquidity = borrow_liquidity

        self.collateral_balance = Decimal(initial_collateral)
        self.debt_balance = Decimal(initial_debt)

        # (operation, asset, amount) in call order
        self.calls: List[Tuple[str, str, Decimal]] = []

    # ========== PRICES ==========

    def set_price(self, asset: str, price: Decimal) -> None:
        """Move the oracle price of an asset."""
        if price <= 0:
            raise ValueError(f"Price must be positive, got {price}")
        self.prices[asset] = Decimal(price)

    def get_asset_price(self, asset: str) -> Decimal:
        if asset not in self.prices:
            raise LendingMarketError(f"No price for asset: {asset}")
        return self.prices[asset]

    def debt_value(self) -> Decimal:
        """Debt expressed in collateral units."""
        return checked_div(
            self.debt_balance * self.prices[self.debt_asset],
            self.prices[self.collateral_asset],
            "debt value",
        )

    # ========== ACCOUNT ==========

    def get_account_data(self, owner: str) -> AccountData:
        self._require_owner(owner)
        return AccountData(
            total_collateral_value=self.collateral_balance,
            total_debt_value=self.debt_value(),
            liquidation_threshold_bps=self.liquidation_threshold_bps,
            max_ltv_bps=self.max_ltv_bps,
        )

    def accrue(self, supply_growth_bps: int = 0, debt_growth_bps: int = 0) -> None:
        """Apply interest growth to both sides of the account."""
        self.collateral_balance += bps_mul(self.collateral_balance, supply_growth_bps)
        self.debt_balance += bps_mul(self.debt_balance, debt_growth_bps)

    # ========== POOL OPERATIONS ==========

    def supply(self, asset: str, amount: Decimal) -> None:
        self._require_asset(asset, self.collateral_asset, "supply")
        self._require_positive(amount, "supply")
        self.collateral_balance += amount
        self.calls.append(("supply", asset, amount))

    def withdraw(self, asset: str, amount: Decimal, recipient: str) -> Decimal:
        self._require_asset(asset, self.collateral_asset, "withdraw")
        self._require_positive(amount, "withdraw")
        actual = min(amount, self.collateral_balance)
        self.collateral_balance -= actual
        self.calls.append(("withdraw", asset, actual))
        return actual

    def borrow(self, asset: str, amount: Decimal, rate_mode: int, recipient: str) -> None:
        self._require_asset(asset, self.debt_asset, "borrow")
        self._require_positive(amount, "borrow")

        if amount > self.borrow_liquidity:
            raise LendingMarketError(
                f"Insufficient liquidity: requested {amount}, available {self.borrow_liquidity}"
            )

        new_debt_value = checked_div(
            (self.debt_balance + amount) * self.prices[self.debt_asset],
            self.prices[self.collateral_asset],
            "debt value",
        )
        capacity = bps_mul(self.collateral_balance, self.max_ltv_bps)
        if new_debt_value > capacity:
            raise LendingMarketError(
                f"Borrow exceeds capacity: debt value {new_debt_value} > {capacity}"
            )

        self.debt_balance += amount
        self.borrow_liquidity -= amount
        self.calls.append(("borrow", asset, amount))

    def repay(self, asset: str, amount: Decimal, rate_mode: int, recipient: str) -> Decimal:
        self._require_asset(asset, self.debt_asset, "repay")
        self._require_positive(amount, "repay")
        actual = min(amount, self.debt_balance)
        self.debt_balance -= actual
        self.borrow_liquidity += actual
        self.calls.append(("repay", asset, actual))
        return actual

    # ========== VALIDATION ==========

    def _require_owner(self, owner: str) -> None:
        if owner != self.owner:
            raise LendingMarketError(f"Unknown account: {owner}")

    @staticmethod
    def _require_asset(asset: str, expected: str, operation: str) -> None:
        if asset != expected:
            raise LendingMarketError(f"Cannot {operation} {asset}, expected {expected}")

    @staticmethod
    def _require_positive(amount: Decimal, operation: str) -> None:
        if amount <= 0:
            raise LendingMarketError(f"{operation} amount must be positive, got {amount}")


class SimulatedSwap(SwapAdapter):
    """
    Constant-price swap venue with a fixed execution shortfall.

    Output = amount_in * price_in / price_out * (1 - slippage_bps / 10000).
    An optional ``max_amount_in`` models thin liquidity.
    """

    def __init__(
        self,
        price_feed: Callable[[str], Decimal],
        slippage_bps: int = 0,
        max_amount_in: Optional[Decimal] = None,
    ):
        if not 0 <= slippage_bps < BPS:
            raise ValueError(f"slippage_bps must be in [0, {BPS}), got {slippage_bps}")
        self.price_feed = price_feed
        self.slippage_bps = slippage_bps
        self.max_amount_in = max_amount_in
        self.swaps: List[Tuple[str, str, Decimal, Decimal]] = []

    def quote(self, token_in: str, token_out: str, amount_in: Decimal) -> Decimal:
        """Output the venue would return for ``amount_in``."""
        gross = checked_div(
            amount_in * self.price_feed(token_in),
            self.price_feed(token_out),
            "swap output",
        )
        return bps_mul(gross, BPS - self.slippage_bps)

    def swap(
        self,
        token_in: str,
        token_out: str,
        amount_in: Decimal,
        min_amount_out: Decimal,
    ) -> Decimal:
        if amount_in <= 0:
            raise SwapError(f"Swap amount must be positive, got {amount_in}")
        if self.max_amount_in is not None and amount_in > self.max_amount_in:
            raise SwapError(
                f"Insufficient swap liquidity: {amount_in} {token_in} > {self.max_amount_in}"
            )

        amount_out = self.quote(token_in, token_out, amount_in)
        if amount_out < min_amount_out:
            raise SlippageExceededError(amount_out, min_amount_out)

        self.swaps.append((token_in, token_out, amount_in, amount_out))
        logger.debug(f"Swapped {amount_in} {token_in} -> {amount_out} {token_out}")
        return amount_out
