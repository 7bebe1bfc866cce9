"""Pydantic settings for Leverage Engine configuration."""

from decimal import Decimal
from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from src.core.constants import (
    DEFAULT_AMOUNT_DECIMALS,
    DEFAULT_EMERGENCY_BUFFER_BPS,
    DEFAULT_RISK_PARAMS,
    DEFAULT_SLIPPAGE_TOLERANCE_BPS,
    RATE_MODE_STABLE,
    RATE_MODE_VARIABLE,
)
from src.core.models import RiskConfiguration


class Settings(BaseSettings):
    """Application settings loaded from environment variables (prefix LEVERAGE_)."""

    model_config = SettingsConfigDict(
        env_prefix="LEVERAGE_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Leverage bounds (bps, 10000 = 1.0x)
    target_leverage: int = Field(default=DEFAULT_RISK_PARAMS["TARGET_LEVERAGE"], ge=10_000, description="Target leverage")
    min_leverage: int = Field(default=DEFAULT_RISK_PARAMS["MIN_LEVERAGE"], ge=10_000, description="Minimum leverage")
    max_leverage: int = Field(default=DEFAULT_RISK_PARAMS["MAX_LEVERAGE"], ge=10_000, description="Maximum leverage")
    leverage_tolerance: int = Field(default=DEFAULT_RISK_PARAMS["LEVERAGE_TOLERANCE"], ge=0, description="No-rebalance band around target")

    # Health factor floors (bps)
    health_factor_target: int = Field(default=DEFAULT_RISK_PARAMS["HEALTH_FACTOR_TARGET"], gt=0, description="Soft health factor floor")
    health_factor_emergency: int = Field(default=DEFAULT_RISK_PARAMS["HEALTH_FACTOR_EMERGENCY"], gt=0, description="Hard floor, forces unwind")

    # Loop limits
    max_iterations_per_call: int = Field(default=DEFAULT_RISK_PARAMS["MAX_ITERATIONS_PER_CALL"], ge=1, le=100, description="Iteration cap per call")
    max_single_loop_amount: Decimal = Field(default=DEFAULT_RISK_PARAMS["MAX_SINGLE_LOOP_AMOUNT"], gt=0, description="Per-iteration cap in collateral units")
    rebalance_cooldown: int = Field(default=DEFAULT_RISK_PARAMS["REBALANCE_COOLDOWN"], ge=0, description="Seconds between scheduled rebalances")
    auto_leverage_enabled: bool = Field(default=True, description="Allow the scheduler to lever up")

    # Execution
    slippage_tolerance_bps: int = Field(default=DEFAULT_SLIPPAGE_TOLERANCE_BPS, ge=0, le=1000, description="Accepted swap shortfall")
    emergency_buffer_bps: int = Field(default=DEFAULT_EMERGENCY_BUFFER_BPS, ge=0, le=10_000, description="Emergency target margin above health_factor_target")
    amount_decimals: int = Field(default=DEFAULT_AMOUNT_DECIMALS, ge=0, le=36, description="Token precision for loop amounts")
    interest_rate_mode: int = Field(default=RATE_MODE_VARIABLE, description="1 = stable, 2 = variable")

    # Logging
    log_level: str = Field(default="INFO", description="Root log level")

    @field_validator("interest_rate_mode")
    @classmethod
    def validate_rate_mode(cls, v):
        """Only stable and variable rate modes exist."""
        if v not in (RATE_MODE_STABLE, RATE_MODE_VARIABLE):
            raise ValueError(f"interest_rate_mode must be 1 or 2, got {v}")
        return v

    @field_validator("log_level", mode="before")
    @classmethod
    def normalize_log_level(cls, v):
        """Accept lowercase level names."""
        if isinstance(v, str):
            v = v.strip().upper()
        if v not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Unknown log level: {v}")
        return v

    def risk_configuration(self) -> RiskConfiguration:
        """Build a validated RiskConfiguration from these settings."""
        return RiskConfiguration(
            target_leverage=self.target_leverage,
            min_leverage=self.min_leverage,
            max_leverage=self.max_leverage,
            leverage_tolerance=self.leverage_tolerance,
            health_factor_target=self.health_factor_target,
            health_factor_emergency=self.health_factor_emergency,
            max_iterations_per_call=self.max_iterations_per_call,
            max_single_loop_amount=self.max_single_loop_amount,
            rebalance_cooldown=self.rebalance_cooldown,
            slippage_tolerance=self.slippage_tolerance_bps,
            emergency_buffer=self.emergency_buffer_bps,
            auto_leverage_enabled=self.auto_leverage_enabled,
        )


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
