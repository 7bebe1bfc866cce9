"""Position state model for a leveraged lending position."""

from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal
from typing import Optional

from src.core.constants import UNIT_LEVERAGE_BPS
from src.core.health import HealthEvaluation, HealthFactorEvaluator


@dataclass(frozen=True)
class PositionSnapshot:
    """Read-only view of a position for observers."""

    current_leverage: Optional[int]    # None when insolvent
    health_factor: Decimal
    total_supplied: Decimal
    total_borrowed: Decimal
    last_rebalance_timestamp: Optional[datetime]
    is_leveraged: bool

    def to_dict(self) -> dict:
        return {
            "current_leverage": self.current_leverage,
            "health_factor": str(self.health_factor),
            "total_supplied": str(self.total_supplied),
            "total_borrowed": str(self.total_borrowed),
            "last_rebalance_timestamp": (
                self.last_rebalance_timestamp.isoformat()
                if self.last_rebalance_timestamp
                else None
            ),
            "is_leveraged": self.is_leveraged,
        }


@dataclass(frozen=True)
class PositionState:
    """
    Supplied and borrowed amounts of one leveraged position.

    Both amounts are in collateral asset units. Leverage and health factor
    are derived on access from the amounts and the market parameters read
    alongside them, so they are never stale relative to the amounts.

    Instances are immutable: a controller iteration builds a new state and
    only hands it back once every collaborator call of the iteration has
    succeeded.
    """

    total_supplied: Decimal = Decimal("0")
    total_borrowed: Decimal = Decimal("0")

    # Market parameters snapshot
    liquidation_threshold_bps: int = 0
    max_ltv_bps: int = 0

    last_rebalance_timestamp: Optional[datetime] = None

    def __post_init__(self):
        if self.total_supplied < 0 or self.total_borrowed < 0:
            raise ValueError(
                f"Position amounts must be non-negative: "
                f"supplied={self.total_supplied}, borrowed={self.total_borrowed}"
            )

    @property
    def equity(self) -> Decimal:
        """Net equity (supplied - borrowed)."""
        return self.total_supplied - self.total_borrowed

    @property
    def current_leverage(self) -> int:
        """Leverage in bps, 10000 when nothing is borrowed."""
        return HealthFactorEvaluator.leverage(self.total_supplied, self.total_borrowed)

    @property
    def is_solvent(self) -> bool:
        """False when debt meets or exceeds collateral."""
        return not self.has_debt or self.equity > 0

    @property
    def leverage_or_none(self) -> Optional[int]:
        """Leverage in bps, None when the position is insolvent."""
        return self.current_leverage if self.is_solvent else None

    @property
    def evaluation(self) -> HealthEvaluation:
        return HealthFactorEvaluator.evaluate(
            self.total_supplied,
            self.total_borrowed,
            self.liquidation_threshold_bps,
            self.max_ltv_bps,
        )

    @property
    def health_factor(self) -> Decimal:
        """Health factor in bps, Infinity when nothing is borrowed."""
        return self.evaluation.health_factor

    @property
    def available_borrow(self) -> Decimal:
        return self.evaluation.available_borrow

    @property
    def borrow_capacity(self) -> Decimal:
        return HealthFactorEvaluator.borrow_capacity(self.total_supplied, self.max_ltv_bps)

    @property
    def is_leveraged(self) -> bool:
        leverage = self.leverage_or_none
        return leverage is None or leverage > UNIT_LEVERAGE_BPS

    @property
    def has_debt(self) -> bool:
        return self.total_borrowed > 0

    def with_amounts(self, total_supplied: Decimal, total_borrowed: Decimal) -> "PositionState":
        """Copy with new amounts, keeping market parameters and timestamp."""
        return replace(self, total_supplied=total_supplied, total_borrowed=total_borrowed)

    def touched(self, timestamp: datetime) -> "PositionState":
        """Copy stamped with a new rebalance timestamp."""
        return replace(self, last_rebalance_timestamp=timestamp)

    def snapshot(self) -> PositionSnapshot:
        return PositionSnapshot(
            current_leverage=self.leverage_or_none,
            health_factor=self.health_factor,
            total_supplied=self.total_supplied,
            total_borrowed=self.total_borrowed,
            last_rebalance_timestamp=self.last_rebalance_timestamp,
            is_leveraged=self.is_leveraged,
        )

    def to_dict(self) -> dict:
        """Serialize to dictionary."""
        return {
            "total_supplied": str(self.total_supplied),
            "total_borrowed": str(self.total_borrowed),
            "liquidation_threshold_bps": self.liquidation_threshold_bps,
            "max_ltv_bps": self.max_ltv_bps,
            "last_rebalance_timestamp": (
                self.last_rebalance_timestamp.isoformat()
                if self.last_rebalance_timestamp
                else None
            ),
            "current_leverage": self.leverage_or_none,
            "health_factor": str(self.health_factor),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "PositionState":
        """Deserialize from dictionary."""
        return cls(
            total_supplied=Decimal(data.get("total_supplied", "0")),
            total_borrowed=Decimal(data.get("total_borrowed", "0")),
            liquidation_threshold_bps=int(data.get("liquidation_threshold_bps", 0)),
            max_ltv_bps=int(data.get("max_ltv_bps", 0)),
            last_rebalance_timestamp=(
                datetime.fromisoformat(data["last_rebalance_timestamp"])
                if data.get("last_rebalance_timestamp")
                else None
            ),
        )
