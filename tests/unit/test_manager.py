"""Unit tests for LeverageManager."""

import pytest
from decimal import Decimal

from src.adapters import SimulatedLendingMarket, SimulatedSwap
from src.core.exceptions import (
    ConfigurationError,
    ConfigurationLockedError,
    CooldownActiveError,
    EmergencyDeleverageError,
    EmergencyNotRequiredError,
    OperationInFlightError,
    SwapError,
    UnauthorizedError,
)
from src.core.models import RebalanceAction, RebalanceReason, RiskConfiguration
from src.engine import LeverageManager


class ReentrantSwap(SimulatedSwap):
    """Swap venue that calls back into the manager mid-iteration."""

    def __init__(self, price_feed, callback=None):
        super().__init__(price_feed)
        self.callback = callback
        self.errors = []

    def swap(self, token_in, token_out, amount_in, min_amount_out):
        if self.callback is not None:
            try:
                self.callback()
            except Exception as e:
                self.errors.append(e)
        return super().swap(token_in, token_out, amount_in, min_amount_out)


class FlakySwap(SimulatedSwap):
    """Swap venue that reverts on one specific call."""

    def __init__(self, price_feed, fail_on_call: int):
        super().__init__(price_feed)
        self.fail_on_call = fail_on_call
        self.call_count = 0

    def swap(self, token_in, token_out, amount_in, min_amount_out):
        self.call_count += 1
        if self.call_count == self.fail_on_call:
            raise SwapError("venue halted")
        return super().swap(token_in, token_out, amount_in, min_amount_out)


class TestDeposit:
    """Tests for deposit and scheduled rebalance."""

    def test_deposit_levers_to_target(self, manager):
        record = manager.deposit(Decimal("1000"))

        assert record.action == RebalanceAction.LEVERAGE
        assert record.reason == RebalanceReason.DEPOSIT
        assert 1 <= record.iterations <= manager.config.max_iterations_per_call
        assert 19500 <= manager.position.current_leverage <= 20500
        assert manager.position.last_rebalance_timestamp is not None

    def test_deposit_without_rebalance(self, manager, market):
        assert manager.deposit(Decimal("1000"), rebalance=False) is None
        assert manager.position.total_supplied == Decimal("1000")
        assert market.debt_balance == Decimal("0")

    def test_deposit_rejects_non_positive(self, manager):
        with pytest.raises(ValueError):
            manager.deposit(Decimal("0"))

    def test_second_deposit_ignores_cooldown(self, manager):
        manager.deposit(Decimal("1000"))
        record = manager.deposit(Decimal("500"))
        assert record.action == RebalanceAction.LEVERAGE
        assert 19500 <= manager.position.current_leverage <= 20500

    def test_rebalance_inside_cooldown(self, manager):
        manager.deposit(Decimal("1000"))
        with pytest.raises(CooldownActiveError):
            manager.rebalance()
        assert len(manager.audit_log) == 1

    def test_rebalance_within_tolerance_is_noop(self, manager, clock, market):
        manager.deposit(Decimal("1000"))
        log_size = len(manager.audit_log)
        calls = len(market.calls)

        for _ in range(2):
            clock.advance(manager.config.rebalance_cooldown)
            record = manager.rebalance()
            assert record.is_noop

        assert len(manager.audit_log) == log_size
        assert len(market.calls) == calls

    def test_refresh_picks_up_accrual(self, manager, market):
        manager.deposit(Decimal("1000"), rebalance=False)
        market.accrue(supply_growth_bps=100)
        assert manager.refresh_position().total_supplied == Decimal("1010")


class TestEmergency:
    """Tests for the emergency path through the manager."""

    def test_price_shock_triggers_emergency(self, manager, market):
        manager.deposit(Decimal("1000"))
        market.set_price(market.debt_asset, Decimal("1.8"))
        before = manager.refresh_position()
        assert before.health_factor < manager.config.health_factor_emergency

        # No clock advance: emergencies are not rate limited
        record = manager.rebalance()

        assert record.action == RebalanceAction.EMERGENCY_DELEVERAGE
        assert record.reason == RebalanceReason.EMERGENCY
        assert manager.position.health_factor > before.health_factor
        assert manager.position.health_factor >= manager.config.health_factor_emergency
        assert manager.position.current_leverage <= before.current_leverage

    def test_explicit_emergency_call(self, manager, market):
        manager.deposit(Decimal("1000"))
        market.set_price(market.debt_asset, Decimal("1.8"))

        record = manager.emergency_deleverage()

        assert record.action == RebalanceAction.EMERGENCY_DELEVERAGE
        assert manager.position.health_factor >= manager.config.health_factor_emergency

    def test_emergency_not_required(self, manager):
        manager.deposit(Decimal("1000"))
        with pytest.raises(EmergencyNotRequiredError):
            manager.emergency_deleverage()

    def test_failed_emergency_is_recorded(self, settings, clock):
        market = SimulatedLendingMarket(
            "wstETH", "WETH", owner="0xowner",
            initial_collateral=Decimal("1000"), initial_debt=Decimal("900"),
        )
        swap = SimulatedSwap(market.get_asset_price)
        config = RiskConfiguration(max_iterations_per_call=1, max_single_loop_amount=Decimal("10"))
        manager = LeverageManager(
            market, swap, "wstETH", "WETH", "0xowner", "0xoperator",
            config=config, settings=settings, clock=clock,
        )

        with pytest.raises(EmergencyDeleverageError):
            manager.emergency_deleverage()

        record = manager.audit_log[-1]
        assert not record.success
        assert record.emergency_triggered
        assert manager.position.total_supplied == Decimal("990")
        assert manager.position.last_rebalance_timestamp == clock.now


class TestFailures:
    """Tests for errors escaping a controller after partial progress."""

    def test_failed_iteration_keeps_committed_progress(self, market, settings, clock):
        swap = FlakySwap(market.get_asset_price, fail_on_call=3)
        manager = LeverageManager(
            market, swap, market.collateral_asset, market.debt_asset, market.owner, "0xoperator",
            settings=settings, clock=clock,
        )

        with pytest.raises(SwapError):
            manager.deposit(Decimal("1000"))

        # Two iterations committed (borrow 500, then 250), the third was repaid
        assert market.debt_balance == Decimal("750")
        assert manager.position.total_supplied == Decimal("1750")
        assert manager.position.total_borrowed == Decimal("750")
        assert manager.position.last_rebalance_timestamp == clock.now

        record = manager.audit_log[-1]
        assert not record.success
        assert record.action == RebalanceAction.LEVERAGE
        assert record.reason == RebalanceReason.DEPOSIT
        assert record.leverage_after == 17500
        assert "venue halted" in record.detail

    def test_failure_without_progress_keeps_timestamp(self, market, settings, clock):
        swap = FlakySwap(market.get_asset_price, fail_on_call=1)
        manager = LeverageManager(
            market, swap, market.collateral_asset, market.debt_asset, market.owner, "0xoperator",
            settings=settings, clock=clock,
        )

        with pytest.raises(SwapError):
            manager.deposit(Decimal("1000"))

        assert market.debt_balance == Decimal("0")
        assert manager.position.total_supplied == Decimal("1000")
        assert manager.position.last_rebalance_timestamp is None
        assert not manager.audit_log[-1].success

    def test_insolvent_position_goes_to_emergency(self, settings, clock):
        market = SimulatedLendingMarket(
            "wstETH", "WETH", owner="0xowner",
            initial_collateral=Decimal("1000"), initial_debt=Decimal("900"),
        )
        market.set_price("WETH", Decimal("1.2"))
        swap = SimulatedSwap(market.get_asset_price)
        manager = LeverageManager(
            market, swap, "wstETH", "WETH", "0xowner", "0xoperator",
            settings=settings, clock=clock,
        )
        assert not manager.position.is_solvent

        with pytest.raises(EmergencyDeleverageError):
            manager.rebalance()

        record = manager.audit_log[-1]
        assert not record.success
        assert record.action == RebalanceAction.EMERGENCY_DELEVERAGE
        assert record.reason == RebalanceReason.EMERGENCY
        assert record.leverage_before is None
        assert record.iterations > 0
        assert market.debt_balance < Decimal("900")
        assert manager.position.last_rebalance_timestamp == clock.now
        assert manager.snapshot().current_leverage is None


class TestOperator:
    """Tests for operator-only calls."""

    def test_unauthorized(self, manager):
        with pytest.raises(UnauthorizedError):
            manager.set_leverage_config("0xmallory", 25000, 30000, 15000, True)
        with pytest.raises(UnauthorizedError):
            manager.set_risk_parameters("0xmallory", Decimal("10"), 60, 5)
        with pytest.raises(UnauthorizedError):
            manager.close_position("0xmallory", "0xmallory")

    def test_set_leverage_config(self, manager):
        config = manager.set_leverage_config(manager.operator, 25000, 30000, 16000, False)
        assert config.target_leverage == 25000
        assert config.health_factor_target == 16000
        assert not config.auto_leverage_enabled
        assert manager.config is config

    def test_invalid_config_leaves_previous(self, manager):
        previous = manager.config
        with pytest.raises(ConfigurationError):
            manager.set_leverage_config(manager.operator, 35000, 30000, 15000, True)
        assert manager.config is previous

    def test_set_risk_parameters(self, manager):
        config = manager.set_risk_parameters(manager.operator, Decimal("250"), 60, 5)
        assert config.max_single_loop_amount == Decimal("250")
        assert config.rebalance_cooldown == 60
        assert config.max_iterations_per_call == 5

    def test_config_locked_while_loop_in_flight(self, market, settings, clock):
        swap = ReentrantSwap(market.get_asset_price)
        manager = LeverageManager(
            market, swap, market.collateral_asset, market.debt_asset, market.owner, "0xoperator",
            settings=settings, clock=clock,
        )
        original = manager.config
        swap.callback = lambda: manager.set_risk_parameters("0xoperator", Decimal("1"), 0, 1)

        manager.deposit(Decimal("1000"))

        assert swap.errors
        assert all(isinstance(e, ConfigurationLockedError) for e in swap.errors)
        assert manager.config == original

    def test_reentrant_call_rejected(self, market, settings, clock):
        swap = ReentrantSwap(market.get_asset_price)
        manager = LeverageManager(
            market, swap, market.collateral_asset, market.debt_asset, market.owner, "0xoperator",
            settings=settings, clock=clock,
        )
        swap.callback = lambda: manager.rebalance()

        manager.deposit(Decimal("1000"))

        assert swap.errors
        assert isinstance(swap.errors[0], OperationInFlightError)

    def test_close_position(self, manager, market):
        manager.deposit(Decimal("1000"))

        record = manager.close_position(manager.operator, "0xrecipient")

        assert record.action == RebalanceAction.UNWIND
        assert record.reason == RebalanceReason.OPERATOR
        assert market.debt_balance == Decimal("0")
        assert market.collateral_balance == Decimal("0")
        assert not manager.position.has_debt
        assert manager.position.current_leverage == 10000
        assert manager.audit_log[-1] is record


class TestObservability:
    """Tests for snapshot and audit log."""

    def test_snapshot(self, manager):
        manager.deposit(Decimal("1000"))
        snap = manager.snapshot()
        assert snap.current_leverage == manager.position.current_leverage
        assert snap.is_leveraged
        assert snap.last_rebalance_timestamp is not None

    def test_audit_log_is_a_copy(self, manager):
        manager.deposit(Decimal("1000"))
        log = manager.audit_log
        log.clear()
        assert len(manager.audit_log) == 1
