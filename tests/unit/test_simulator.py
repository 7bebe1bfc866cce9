"""Unit tests for the stress simulator and report tables."""

import pytest
from datetime import datetime, timezone
from decimal import Decimal

from rich.console import Console

from src.core.models import PositionState, RebalanceAction, RebalanceReason, RebalanceRecord, RiskConfiguration
from src.engine import StressResult, StressSimulator
from src.ui.tables import (
    audit_table,
    format_health_factor,
    format_leverage,
    position_table,
    sweep_table,
)


def render(table) -> str:
    console = Console(record=True, width=160)
    console.print(table)
    return console.export_text()


class TestStressSimulator:
    """Tests for StressSimulator."""

    @pytest.fixture
    def simulator(self, settings):
        return StressSimulator(settings=settings, seed=42)

    def test_price_path_reproducible(self, settings):
        a = StressSimulator(settings=settings, seed=7).price_path(50)
        b = StressSimulator(settings=settings, seed=7).price_path(50)
        assert a == b
        assert len(a) == 50
        assert all(p > 0 for p in a)

    def test_flat_path_keeps_position_in_band(self, simulator):
        config = RiskConfiguration()
        prices = [Decimal("1")] * 5

        result = simulator.run(config, Decimal("1000"), prices)

        assert result.success
        assert result.converged
        assert len(result.points) == 5
        assert result.rebalance_count == 0
        assert result.emergency_count == 0

    def test_target_sweep(self, simulator):
        results = simulator.run_target_sweep(
            RiskConfiguration(), targets=[15000, 20000], steps=20, volatility=0.005
        )

        assert [r.target_leverage for r in results] == [15000, 20000]
        for r in results:
            assert r.success
            assert r.converged
            assert r.entry_iterations <= 10
            assert r.min_health_factor >= Decimal("11000")

    def test_sweep_widens_bounds(self, simulator):
        results = simulator.run_target_sweep(
            RiskConfiguration(), targets=[32000], steps=5, volatility=0.001
        )
        assert results[0].target_leverage == 32000

    def test_format_comparison(self, simulator):
        results = [
            StressResult(target_leverage=20000, initial_capital=Decimal("1000"), entry_leverage=19990, converged=True),
            StressResult(
                target_leverage=30000,
                initial_capital=Decimal("1000"),
                success=False,
                error_message="liquidated",
            ),
        ]
        text = simulator.format_comparison(results)
        assert "TARGET LEVERAGE SWEEP" in text
        assert "19990" in text
        assert "FAILED" in text


class TestTables:
    """Tests for rich report tables."""

    def test_formatters(self):
        assert format_leverage(20000) == "2.00x"
        assert format_leverage(None) == "-"
        assert format_health_factor(Decimal("15000")) == "1.50"
        assert format_health_factor(Decimal("Infinity")) == "∞"

    def test_position_table(self):
        position = PositionState(
            total_supplied=Decimal("2000"),
            total_borrowed=Decimal("1000"),
            liquidation_threshold_bps=8000,
            max_ltv_bps=7500,
        )
        text = render(position_table(position.snapshot(), RiskConfiguration()))
        assert "2.00x" in text
        assert "1.60" in text

    def test_audit_table(self):
        record = RebalanceRecord(
            action=RebalanceAction.LEVERAGE,
            reason=RebalanceReason.DEPOSIT,
            timestamp=datetime(2024, 1, 1, tzinfo=timezone.utc),
            iterations=3,
            leverage_before=10000,
            leverage_after=18750,
            health_factor_before=Decimal("Infinity"),
            health_factor_after=Decimal("17142"),
        )
        table = audit_table([record])
        assert table.row_count == 1
        text = render(table)
        assert "leverage" in text
        assert "1.88x" in text

    def test_sweep_table(self):
        results = [
            StressResult(target_leverage=20000, initial_capital=Decimal("1000")),
            StressResult(target_leverage=30000, initial_capital=Decimal("1000"), success=False),
        ]
        table = sweep_table(results)
        assert table.row_count == 2
        assert "FAILED" in render(table)
