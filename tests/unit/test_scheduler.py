"""Unit tests for the rebalance scheduler."""

import pytest
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import MagicMock

from src.core.exceptions import CooldownActiveError, SwapError
from src.core.models import (
    LoopResult,
    PositionState,
    RebalanceAction,
    RebalanceReason,
    RiskConfiguration,
    StopReason,
)
from src.engine import DeleverageController, LeverageLoopController, RebalanceScheduler, SchedulerState

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


def make_position(supplied: str, borrowed: str, last_rebalance=None) -> PositionState:
    return PositionState(
        total_supplied=Decimal(supplied),
        total_borrowed=Decimal(borrowed),
        liquidation_threshold_bps=8000,
        max_ltv_bps=7500,
        last_rebalance_timestamp=last_rebalance,
    )


class TestDecide:
    """Tests for RebalanceScheduler.decide."""

    @pytest.fixture
    def scheduler(self):
        return RebalanceScheduler(MagicMock(), MagicMock())

    @pytest.fixture
    def config(self):
        return RiskConfiguration()

    def test_within_band(self, scheduler, config):
        assert scheduler.decide(make_position("2000", "1000"), config) == RebalanceAction.NONE
        assert scheduler.decide(make_position("1960", "960"), config) == RebalanceAction.NONE

    def test_below_band_levers(self, scheduler, config):
        assert scheduler.decide(make_position("1000", "0"), config) == RebalanceAction.LEVERAGE

    def test_below_band_with_auto_disabled(self, scheduler):
        config = RiskConfiguration(auto_leverage_enabled=False)
        assert scheduler.decide(make_position("1000", "0"), config) == RebalanceAction.NONE

    def test_empty_position(self, scheduler, config):
        assert scheduler.decide(make_position("0", "0"), config) == RebalanceAction.NONE

    def test_above_band_delevers(self, scheduler, config):
        assert scheduler.decide(make_position("3000", "2000"), config) == RebalanceAction.DELEVERAGE

    def test_emergency_has_priority(self, scheduler, config):
        position = make_position("1000", "900")
        assert scheduler.decide(position, config) == RebalanceAction.EMERGENCY_DELEVERAGE

    def test_insolvent_position_is_emergency(self, scheduler, config):
        position = make_position("1000", "1080")
        assert not position.is_solvent
        assert scheduler.decide(position, config) == RebalanceAction.EMERGENCY_DELEVERAGE


class TestRun:
    """Tests for RebalanceScheduler.run."""

    @pytest.fixture
    def leverage(self):
        return MagicMock(spec=LeverageLoopController)

    @pytest.fixture
    def deleverage(self):
        return MagicMock(spec=DeleverageController)

    @pytest.fixture
    def scheduler(self, leverage, deleverage):
        return RebalanceScheduler(leverage, deleverage)

    @pytest.fixture
    def config(self):
        return RiskConfiguration()

    def test_cooldown_remaining(self, config):
        position = make_position("1000", "0", NOW - timedelta(seconds=600))
        assert RebalanceScheduler.cooldown_remaining(position, config, NOW) == 3000
        assert RebalanceScheduler.cooldown_remaining(make_position("1000", "0"), config, NOW) == 0

    def test_cooldown_blocks(self, scheduler, leverage, config):
        position = make_position("1000", "0", NOW - timedelta(seconds=10))

        with pytest.raises(CooldownActiveError) as exc_info:
            scheduler.run(position, config, NOW)

        assert exc_info.value.remaining_seconds == 3590
        leverage.apply_leverage.assert_not_called()
        assert scheduler.state == SchedulerState.IDLE

    def test_cooldown_not_enforced(self, scheduler, leverage, config):
        position = make_position("1000", "0", NOW - timedelta(seconds=10))
        after = make_position("1500", "500")
        leverage.apply_leverage.return_value = LoopResult(
            position=after, iterations=1, stop_reason=StopReason.ITERATION_CAP
        )

        new_position, record = scheduler.run(
            position, config, NOW, RebalanceReason.DEPOSIT, enforce_cooldown=False
        )

        assert record.action == RebalanceAction.LEVERAGE
        assert record.reason == RebalanceReason.DEPOSIT
        assert new_position.last_rebalance_timestamp == NOW

    def test_emergency_bypasses_cooldown(self, scheduler, deleverage, config):
        position = make_position("1000", "900", NOW - timedelta(seconds=10))
        deleverage.emergency_deleverage.return_value = LoopResult(
            position=make_position("300", "200"),
            iterations=3,
            stop_reason=StopReason.TARGET_REACHED,
        )

        new_position, record = scheduler.run(position, config, NOW)

        deleverage.emergency_deleverage.assert_called_once()
        assert record.action == RebalanceAction.EMERGENCY_DELEVERAGE
        assert record.reason == RebalanceReason.EMERGENCY
        assert record.emergency_triggered
        assert record.health_factor_before == Decimal("8888")
        assert new_position.last_rebalance_timestamp == NOW

    def test_noop_keeps_timestamp(self, scheduler, leverage, deleverage, config):
        last = NOW - timedelta(hours=2)
        position = make_position("2000", "1000", last)

        new_position, record = scheduler.run(position, config, NOW)

        assert record.is_noop
        assert record.stop_reason is None
        assert new_position.last_rebalance_timestamp == last
        leverage.apply_leverage.assert_not_called()
        deleverage.deleverage.assert_not_called()

    def test_deleverage_dispatch(self, scheduler, deleverage, config):
        position = make_position("3000", "2000")
        deleverage.amount_to_target.return_value = Decimal("1000")
        deleverage.deleverage.return_value = LoopResult(
            position=make_position("2000", "1000"),
            iterations=1,
            stop_reason=StopReason.TARGET_REACHED,
        )

        _, record = scheduler.run(position, config, NOW)

        deleverage.amount_to_target.assert_called_once_with(position, config.target_leverage)
        deleverage.deleverage.assert_called_once_with(position, config, Decimal("1000"), None)
        assert record.leverage_before == 30000
        assert record.leverage_after == 20000

    def test_state_returns_to_idle_on_error(self, scheduler, leverage, config):
        leverage.apply_leverage.side_effect = SwapError("venue down")

        with pytest.raises(SwapError):
            scheduler.run(make_position("1000", "0"), config, NOW)

        assert scheduler.state == SchedulerState.IDLE
        assert scheduler.last_action == RebalanceAction.LEVERAGE

    def test_insolvent_position_recorded_without_leverage(self, scheduler, deleverage, config):
        deleverage.emergency_deleverage.return_value = LoopResult(
            position=make_position("500", "300"),
            iterations=2,
            stop_reason=StopReason.TARGET_REACHED,
        )

        position, record = scheduler.run(make_position("1000", "1080"), config, NOW)

        assert record.action == RebalanceAction.EMERGENCY_DELEVERAGE
        assert record.leverage_before is None
        assert record.leverage_after == 25000
        assert position.last_rebalance_timestamp == NOW

    def test_state_during_run(self, scheduler, leverage, config):
        seen = []

        def apply_leverage(position, config, deadline):
            seen.append(scheduler.state)
            return LoopResult(position=position, stop_reason=StopReason.TARGET_REACHED)

        leverage.apply_leverage.side_effect = apply_leverage
        scheduler.run(make_position("1000", "0"), config, NOW)

        assert seen == [SchedulerState.LEVERAGING]
        assert scheduler.state == SchedulerState.IDLE
