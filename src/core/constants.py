"""Constants for leveraged position calculations."""

from decimal import Decimal

# Fixed-point scale: 10000 bps = 1.0x = 100%
BPS = 10_000
BPS_DECIMAL = Decimal(BPS)

# Leverage of an unlevered position
UNIT_LEVERAGE_BPS = BPS

# Health factor of a position with no debt
INFINITE_HEALTH_FACTOR = Decimal("Infinity")

# Liquidation happens below 1.0x
LIQUIDATION_HEALTH_FACTOR_BPS = BPS

# Emergency unwind aims this far above the soft health factor floor (20%)
DEFAULT_EMERGENCY_BUFFER_BPS = 2_000

# Default slippage accepted on each swap leg (0.5%)
DEFAULT_SLIPPAGE_TOLERANCE_BPS = 50

# Token precision used to quantize loop amounts
DEFAULT_AMOUNT_DECIMALS = 18

# Aave-style interest rate modes
RATE_MODE_STABLE = 1
RATE_MODE_VARIABLE = 2

# Default risk parameters (bps unless noted)
DEFAULT_RISK_PARAMS = {
    "TARGET_LEVERAGE": 20_000,        # 2.0x
    "MIN_LEVERAGE": 10_000,           # 1.0x
    "MAX_LEVERAGE": 30_000,           # 3.0x
    "HEALTH_FACTOR_TARGET": 15_000,   # 1.5
    "HEALTH_FACTOR_EMERGENCY": 11_000,  # 1.1
    "LEVERAGE_TOLERANCE": 500,        # +/- 0.05x
    "MAX_ITERATIONS_PER_CALL": 10,
    "MAX_SINGLE_LOOP_AMOUNT": Decimal("1000000"),  # collateral units
    "REBALANCE_COOLDOWN": 3600,       # seconds
}
