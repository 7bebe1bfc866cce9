"""Risk configuration model."""

from dataclasses import dataclass, fields, replace
from decimal import Decimal

from src.core.constants import (
    BPS,
    DEFAULT_EMERGENCY_BUFFER_BPS,
    DEFAULT_RISK_PARAMS,
    DEFAULT_SLIPPAGE_TOLERANCE_BPS,
    UNIT_LEVERAGE_BPS,
)
from src.core.exceptions import ConfigurationError


@dataclass(frozen=True)
class RiskConfiguration:
    """
    Bounds consulted by every controller.

    Leverage and health factor values are basis points (10000 = 1.0x).
    Instances are frozen and validated on construction; use :meth:`replace`
    to derive a changed configuration, which validates again. Invalid bounds
    are therefore rejected when the configuration is set, never while a loop
    is running.
    """

    # Leverage bounds
    target_leverage: int = DEFAULT_RISK_PARAMS["TARGET_LEVERAGE"]
    min_leverage: int = DEFAULT_RISK_PARAMS["MIN_LEVERAGE"]
    max_leverage: int = DEFAULT_RISK_PARAMS["MAX_LEVERAGE"]
    leverage_tolerance: int = DEFAULT_RISK_PARAMS["LEVERAGE_TOLERANCE"]

    # Health factor floors
    health_factor_target: int = DEFAULT_RISK_PARAMS["HEALTH_FACTOR_TARGET"]        # soft
    health_factor_emergency: int = DEFAULT_RISK_PARAMS["HEALTH_FACTOR_EMERGENCY"]  # hard

    # Loop limits
    max_iterations_per_call: int = DEFAULT_RISK_PARAMS["MAX_ITERATIONS_PER_CALL"]
    max_single_loop_amount: Decimal = DEFAULT_RISK_PARAMS["MAX_SINGLE_LOOP_AMOUNT"]
    rebalance_cooldown: int = DEFAULT_RISK_PARAMS["REBALANCE_COOLDOWN"]  # seconds

    # Execution
    slippage_tolerance: int = DEFAULT_SLIPPAGE_TOLERANCE_BPS
    emergency_buffer: int = DEFAULT_EMERGENCY_BUFFER_BPS
    auto_leverage_enabled: bool = True

    def __post_init__(self):
        self.validate()

    def validate(self) -> None:
        """
        Check all bounds.

        Raises:
            ConfigurationError: On the first violated bound
        """
        if self.min_leverage < UNIT_LEVERAGE_BPS:
            raise ConfigurationError(
                f"min_leverage {self.min_leverage} below 1.0x ({UNIT_LEVERAGE_BPS})"
            )
        if not self.min_leverage <= self.target_leverage <= self.max_leverage:
            raise ConfigurationError(
                f"Leverage bounds must satisfy min <= target <= max, got "
                f"{self.min_leverage} / {self.target_leverage} / {self.max_leverage}"
            )
        if self.leverage_tolerance < 0:
            raise ConfigurationError(f"leverage_tolerance must be >= 0, got {self.leverage_tolerance}")
        if self.health_factor_emergency <= 0:
            raise ConfigurationError(
                f"health_factor_emergency must be positive, got {self.health_factor_emergency}"
            )
        if self.health_factor_emergency >= self.health_factor_target:
            raise ConfigurationError(
                f"health_factor_emergency ({self.health_factor_emergency}) must be below "
                f"health_factor_target ({self.health_factor_target})"
            )
        if self.max_iterations_per_call < 1:
            raise ConfigurationError(
                f"max_iterations_per_call must be >= 1, got {self.max_iterations_per_call}"
            )
        if self.max_single_loop_amount <= 0:
            raise ConfigurationError(
                f"max_single_loop_amount must be positive, got {self.max_single_loop_amount}"
            )
        if self.rebalance_cooldown < 0:
            raise ConfigurationError(f"rebalance_cooldown must be >= 0, got {self.rebalance_cooldown}")
        if not 0 <= self.slippage_tolerance < BPS:
            raise ConfigurationError(
                f"slippage_tolerance must be in [0, {BPS}), got {self.slippage_tolerance}"
            )
        if self.emergency_buffer < 0:
            raise ConfigurationError(f"emergency_buffer must be >= 0, got {self.emergency_buffer}")

    def replace(self, **changes) -> "RiskConfiguration":
        """Return a validated copy with the given fields changed."""
        unknown = set(changes) - {f.name for f in fields(self)}
        if unknown:
            raise ConfigurationError(f"Unknown risk parameters: {sorted(unknown)}")
        return replace(self, **changes)

    @property
    def lower_band(self) -> int:
        """Leverage below which a rebalance levers up."""
        return self.target_leverage - self.leverage_tolerance

    @property
    def upper_band(self) -> int:
        """Leverage above which a rebalance levers down."""
        return self.target_leverage + self.leverage_tolerance

    def to_dict(self) -> dict:
        """Serialize to dictionary."""
        return {
            "target_leverage": self.target_leverage,
            "min_leverage": self.min_leverage,
            "max_leverage": self.max_leverage,
            "leverage_tolerance": self.leverage_tolerance,
            "health_factor_target": self.health_factor_target,
            "health_factor_emergency": self.health_factor_emergency,
            "max_iterations_per_call": self.max_iterations_per_call,
            "max_single_loop_amount": str(self.max_single_loop_amount),
            "rebalance_cooldown": self.rebalance_cooldown,
            "slippage_tolerance": self.slippage_tolerance,
            "emergency_buffer": self.emergency_buffer,
            "auto_leverage_enabled": self.auto_leverage_enabled,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "RiskConfiguration":
        """Deserialize from dictionary, falling back to defaults."""
        kwargs = {}
        for name in (f.name for f in fields(cls)):
            if name not in data:
                continue
            value = data[name]
            if name == "max_single_loop_amount":
                value = Decimal(str(value))
            elif name == "auto_leverage_enabled":
                value = bool(value)
            else:
                value = int(value)
            kwargs[name] = value
        return cls(**kwargs)
