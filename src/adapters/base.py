"""Collaborator interfaces for the leverage engine.

Defines the lending market and swap venue contracts the controllers call
out to. Concrete adapters wrap a real protocol or, for the sandbox, an
in-memory simulation.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal


@dataclass(frozen=True)
class AccountData:
    """Account summary reported by the lending market.

    Values are expressed in collateral asset units.
    """

    total_collateral_value: Decimal
    total_debt_value: Decimal
    liquidation_threshold_bps: int
    max_ltv_bps: int


class LendingMarketAdapter(ABC):
    """Abstract lending market (Aave-style pool).

    Any method may raise; the controllers treat a raised exception as a hard
    failure of the whole operation.
    """

    @abstractmethod
    def supply(self, asset: str, amount: Decimal) -> None:
        """Supply collateral on behalf of the position owner."""
        ...

    @abstractmethod
    def withdraw(self, asset: str, amount: Decimal, recipient: str) -> Decimal:
        """Withdraw collateral.

        Returns:
            Amount actually withdrawn
        """
        ...

    @abstractmethod
    def borrow(self, asset: str, amount: Decimal, rate_mode: int, recipient: str) -> None:
        """Borrow against supplied collateral."""
        ...

    @abstractmethod
    def repay(self, asset: str, amount: Decimal, rate_mode: int, recipient: str) -> Decimal:
        """Repay debt.

        Returns:
            Amount actually repaid (capped at outstanding debt)
        """
        ...

    @abstractmethod
    def get_account_data(self, owner: str) -> AccountData:
        """Fetch the owner's collateral, debt and market risk parameters."""
        ...

    @abstractmethod
    def get_asset_price(self, asset: str) -> Decimal:
        """Oracle price of an asset in the market's base unit."""
        ...


class SwapAdapter(ABC):
    """Abstract swap venue."""

    @abstractmethod
    def swap(
        self,
        token_in: str,
        token_out: str,
        amount_in: Decimal,
        min_amount_out: Decimal,
    ) -> Decimal:
        """Swap ``amount_in`` of ``token_in`` for ``token_out``.

        Returns:
            Amount of ``token_out`` received

        Raises:
            SlippageExceededError: If output is below ``min_amount_out``
        """
        ...
