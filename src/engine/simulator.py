"""Stress simulation of the rebalance loop over price paths."""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import List, Optional

import numpy as np

from config.settings import Settings, get_settings
from src.adapters.simulated import SimulatedLendingMarket, SimulatedSwap
from src.core.constants import INFINITE_HEALTH_FACTOR
from src.core.exceptions import EmergencyDeleverageError
from src.core.models import RiskConfiguration
from src.engine.manager import LeverageManager

logger = logging.getLogger(__name__)

COLLATERAL = "COLL"
DEBT = "DEBT"
OWNER = "sim-owner"


@dataclass
class StressPoint:
    """Position state after one simulated step."""

    step: int
    debt_price: Decimal
    leverage: int
    health_factor: Decimal
    action: str = ""
    iterations: int = 0

    def to_dict(self) -> dict:
        return {
            "step": self.step,
            "debt_price": str(self.debt_price),
            "leverage": self.leverage,
            "health_factor": str(self.health_factor),
            "action": self.action,
            "iterations": self.iterations,
        }


@dataclass
class StressResult:
    """Outcome of one simulated run."""

    target_leverage: int
    initial_capital: Decimal
    points: List[StressPoint] = field(default_factory=list)

    # Convergence of the initial deposit
    entry_leverage: int = 0
    entry_iterations: int = 0
    converged: bool = False

    # Path statistics
    min_health_factor: Decimal = INFINITE_HEALTH_FACTOR
    max_leverage_seen: int = 0
    rebalance_count: int = 0
    emergency_count: int = 0

    success: bool = True
    error_message: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "target_leverage": self.target_leverage,
            "initial_capital": str(self.initial_capital),
            "entry_leverage": self.entry_leverage,
            "entry_iterations": self.entry_iterations,
            "converged": self.converged,
            "min_health_factor": str(self.min_health_factor),
            "max_leverage_seen": self.max_leverage_seen,
            "rebalance_count": self.rebalance_count,
            "emergency_count": self.emergency_count,
            "success": self.success,
            "error_message": self.error_message,
            "points": [p.to_dict() for p in self.points],
        }


class SteppedClock:
    """Clock that only moves when told to."""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2024, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


class StressSimulator:
    """
    Runs a leverage manager against a simulated market under price shocks.

    The debt asset's price (in collateral units) follows a geometric random
    walk. A rising debt price lowers the health factor and raises leverage,
    exercising the deleverage and emergency paths; a falling one exercises
    re-leveraging.

    Used to validate the halfway-step and emergency-buffer heuristics per
    target leverage range.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        seed: Optional[int] = None,
        liquidation_threshold_bps: int = 8000,
        max_ltv_bps: int = 7500,
        swap_slippage_bps: int = 0,
    ):
        self.settings = settings or get_settings()
        self.rng = np.random.default_rng(seed)
        self.liquidation_threshold_bps = liquidation_threshold_bps
        self.max_ltv_bps = max_ltv_bps
        self.swap_slippage_bps = swap_slippage_bps

    def price_path(
        self,
        steps: int,
        volatility: float = 0.01,
        drift: float = 0.0,
        start: float = 1.0,
    ) -> List[Decimal]:
        """
        Generate a geometric random walk of debt prices.

        Args:
            steps: Number of prices
            volatility: Per-step standard deviation of log returns
            drift: Per-step mean log return
            start: Starting price

        Returns:
            List of prices, rounded to 8 decimals
        """
        shocks = self.rng.normal(drift, volatility, size=steps)
        path = start * np.exp(np.cumsum(shocks))
        return [Decimal(str(round(float(p), 8))) for p in path]

    def run(
        self,
        config: RiskConfiguration,
        capital: Decimal,
        prices: List[Decimal],
    ) -> StressResult:
        """
        Deposit ``capital`` and call ``rebalance`` once per price.

        The clock advances by the cooldown between steps so every scheduled
        rebalance is allowed to run.
        """
        logger.info(
            f"Starting stress run: target {config.target_leverage}bps, "
            f"{len(prices)} steps, capital {capital}"
        )

        clock = SteppedClock()
        market = SimulatedLendingMarket(
            COLLATERAL,
            DEBT,
            owner=OWNER,
            liquidation_threshold_bps=self.liquidation_threshold_bps,
            max_ltv_bps=self.max_ltv_bps,
        )
        swap = SimulatedSwap(market.get_asset_price, slippage_bps=self.swap_slippage_bps)
        manager = LeverageManager(
            market,
            swap,
            COLLATERAL,
            DEBT,
            owner=OWNER,
            operator=OWNER,
            config=config,
            settings=self.settings,
            clock=clock,
        )

        result = StressResult(target_leverage=config.target_leverage, initial_capital=capital)

        entry = manager.deposit(capital)
        result.entry_leverage = manager.position.current_leverage
        result.entry_iterations = entry.iterations if entry else 0
        result.converged = (
            abs(result.entry_leverage - config.target_leverage) <= config.leverage_tolerance
        )

        for step, price in enumerate(prices):
            clock.advance(config.rebalance_cooldown)
            market.set_price(DEBT, price)

            try:
                record = manager.rebalance()
            except EmergencyDeleverageError as e:
                logger.warning(f"Stress run failed at step {step}: {e}")
                result.success = False
                result.error_message = str(e)
                result.emergency_count += 1
                break

            position = manager.position
            if position.evaluation.is_liquidatable:
                logger.warning(f"Position liquidatable at step {step}: HF {position.health_factor}")
                result.success = False
                result.error_message = "position liquidatable"
                break

            if not record.is_noop:
                result.rebalance_count += 1
            if record.emergency_triggered:
                result.emergency_count += 1

            result.points.append(
                StressPoint(
                    step=step,
                    debt_price=price,
                    leverage=position.current_leverage,
                    health_factor=position.health_factor,
                    action=record.action.value,
                    iterations=record.iterations,
                )
            )
            result.min_health_factor = min(result.min_health_factor, position.health_factor)
            result.max_leverage_seen = max(result.max_leverage_seen, position.current_leverage)

        logger.info(
            f"Stress run complete: {len(result.points)} steps, "
            f"{result.rebalance_count} rebalances, {result.emergency_count} emergencies"
        )
        return result

    def run_target_sweep(
        self,
        base_config: RiskConfiguration,
        targets: List[int],
        capital: Decimal = Decimal("1000"),
        steps: int = 100,
        volatility: float = 0.01,
    ) -> List[StressResult]:
        """
        Run the same price path for each target leverage.

        Targets outside the base config's min/max leverage widen the bounds
        for that run.
        """
        prices = self.price_path(steps, volatility)
        results = []

        for target in targets:
            config = base_config.replace(
                target_leverage=target,
                min_leverage=min(base_config.min_leverage, target),
                max_leverage=max(base_config.max_leverage, target),
            )
            results.append(self.run(config, capital, prices))

        return results

    def format_comparison(self, results: List[StressResult]) -> str:
        """
        Format a plain-text comparison of sweep results.

        Args:
            results: List of stress results

        Returns:
            Formatted comparison string
        """
        lines = []
        lines.append("=" * 80)
        lines.append("TARGET LEVERAGE SWEEP")
        lines.append("=" * 80)
        lines.append("")

        header = f"{'Target':>8} {'Entry':>8} {'Iters':>6} {'Conv':>5} {'MinHF':>10} {'Rebal':>6} {'Emerg':>6}"
        lines.append(header)
        lines.append("-" * 80)

        for r in results:
            if not r.success:
                lines.append(f"{r.target_leverage:>8} {'FAILED':>8} {r.error_message or ''}")
                continue
            line = (
                f"{r.target_leverage:>8} "
                f"{r.entry_leverage:>8} "
                f"{r.entry_iterations:>6} "
                f"{'yes' if r.converged else 'no':>5} "
                f"{str(r.min_health_factor):>10} "
                f"{r.rebalance_count:>6} "
                f"{r.emergency_count:>6}"
            )
            lines.append(line)

        lines.append("=" * 80)
        return "\n".join(lines)
