"""Leverage manager: public surface of one leveraged position."""

import logging
from contextlib import contextmanager
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from config.settings import Settings, get_settings
from src.adapters.base import LendingMarketAdapter, SwapAdapter
from src.core.exceptions import (
    ConfigurationLockedError,
    CooldownActiveError,
    EmergencyDeleverageError,
    EmergencyNotRequiredError,
    OperationInFlightError,
    UnauthorizedError,
)
from src.core.models import (
    PositionSnapshot,
    PositionState,
    RebalanceAction,
    RebalanceReason,
    RebalanceRecord,
    RiskConfiguration,
)
from src.engine.base import Clock, utc_now
from src.engine.deleverage import DeleverageController
from src.engine.leverage import LeverageLoopController
from src.engine.scheduler import RebalanceScheduler

logger = logging.getLogger(__name__)


class LeverageManager:
    """
    Owns one leveraged position and exposes its operator and public calls.

    Public (anyone):
    - ``deposit``: supply collateral, then lever up toward target
    - ``rebalance``: cooldown-gated rebalance
    - ``emergency_deleverage``: only when HF is below the emergency floor
    - ``snapshot`` / ``audit_log``: observability

    Operator only:
    - ``set_leverage_config`` / ``set_risk_parameters``
    - ``close_position``

    Every state-changing call either completes (possibly as a no-op) or
    raises; the manager's position is only replaced with states read back
    from the lending market after committed iterations.
    """

    def __init__(
        self,
        lending_market: LendingMarketAdapter,
        swap: SwapAdapter,
        collateral_asset: str,
        debt_asset: str,
        owner: str,
        operator: str,
        config: Optional[RiskConfiguration] = None,
        settings: Optional[Settings] = None,
        clock: Optional[Clock] = None,
    ):
        """
        Initialize manager.

        Args:
            lending_market: Lending market collaborator
            swap: Swap collaborator
            collateral_asset: Asset supplied as collateral
            debt_asset: Asset borrowed
            owner: Account holding the position
            operator: Account allowed to change configuration
            config: Initial risk configuration (default from settings)
            settings: Settings (default: cached environment settings)
            clock: Time source (default: UTC now)
        """
        self.settings = settings or get_settings()
        self.lending_market = lending_market
        self.collateral_asset = collateral_asset
        self.operator = operator
        self.clock = clock or utc_now

        self._config = config or self.settings.risk_configuration()

        controller_kwargs = dict(
            amount_decimals=self.settings.amount_decimals,
            rate_mode=self.settings.interest_rate_mode,
            clock=self.clock,
        )
        self.deleverage_controller = DeleverageController(
            lending_market, swap, collateral_asset, debt_asset, owner, **controller_kwargs
        )
        self.leverage_controller = LeverageLoopController(
            lending_market,
            swap,
            collateral_asset,
            debt_asset,
            owner,
            deleverage=self.deleverage_controller,
            **controller_kwargs,
        )
        self.scheduler = RebalanceScheduler(self.leverage_controller, self.deleverage_controller)

        self._position = self.deleverage_controller.read_position()
        self._audit_log: List[RebalanceRecord] = []
        self._in_flight = False

    # ========== OBSERVABILITY ==========

    @property
    def config(self) -> RiskConfiguration:
        return self._config

    @property
    def position(self) -> PositionState:
        return self._position

    @property
    def audit_log(self) -> List[RebalanceRecord]:
        return list(self._audit_log)

    def snapshot(self) -> PositionSnapshot:
        """Current leverage, health factor, amounts and last rebalance time."""
        return self._position.snapshot()

    def refresh_position(self) -> PositionState:
        """
        Re-read the position from the lending market.

        Picks up externally accrued yield and interest and price moves.
        """
        self._position = self.deleverage_controller.read_position(
            self._position.last_rebalance_timestamp
        )
        return self._position

    # ========== PUBLIC CALLS ==========

    def deposit(self, amount: Decimal, rebalance: bool = True) -> Optional[RebalanceRecord]:
        """
        Supply collateral and, by default, lever the position toward target.

        The deposit-triggered rebalance is not gated by the cooldown.

        Returns:
            The rebalance record, or None when ``rebalance`` is False
        """
        if amount <= 0:
            raise ValueError(f"Deposit amount must be positive, got {amount}")

        with self._operation():
            self.lending_market.supply(self.collateral_asset, amount)
            self.refresh_position()
            logger.info(f"Deposited {amount}, supplied now {self._position.total_supplied}")

            if not rebalance:
                return None
            return self._dispatch(RebalanceReason.DEPOSIT, enforce_cooldown=False)

    def rebalance(self, deadline: Optional[datetime] = None) -> RebalanceRecord:
        """
        Public rebalance trigger, rate limited by the cooldown.

        Raises:
            CooldownActiveError: If called before the cooldown elapsed and
                the position is not in emergency
            EmergencyDeleverageError: If an emergency unwind failed
        """
        with self._operation():
            self.refresh_position()
            return self._dispatch(RebalanceReason.SCHEDULED, enforce_cooldown=True, deadline=deadline)

    def emergency_deleverage(self) -> RebalanceRecord:
        """
        Force an unwind when the health factor is below the emergency floor.

        Raises:
            EmergencyNotRequiredError: If the position is safe
            EmergencyDeleverageError: If the unwind could not restore safety
        """
        with self._operation():
            self.refresh_position()
            hf = self._position.health_factor
            if hf >= self._config.health_factor_emergency:
                raise EmergencyNotRequiredError(
                    f"Health factor {hf} is at or above emergency floor "
                    f"{self._config.health_factor_emergency}"
                )
            return self._dispatch(RebalanceReason.EMERGENCY, enforce_cooldown=False)

    # ========== OPERATOR CALLS ==========

    def set_leverage_config(
        self,
        caller: str,
        target_leverage: int,
        max_leverage: int,
        health_factor_target: int,
        auto_leverage_enabled: bool,
    ) -> RiskConfiguration:
        """
        Change leverage targets.

        Raises:
            UnauthorizedError: If caller is not the operator
            ConfigurationLockedError: If a loop is in flight
            ConfigurationError: If the new bounds are invalid
        """
        self._require_operator(caller, "set leverage config")
        self._require_unlocked()
        self._config = self._config.replace(
            target_leverage=target_leverage,
            max_leverage=max_leverage,
            health_factor_target=health_factor_target,
            auto_leverage_enabled=auto_leverage_enabled,
        )
        logger.info(
            f"Leverage config updated: target={target_leverage}, max={max_leverage}, "
            f"hf_target={health_factor_target}, auto={auto_leverage_enabled}"
        )
        return self._config

    def set_risk_parameters(
        self,
        caller: str,
        max_single_loop_amount: Decimal,
        rebalance_cooldown: int,
        max_iterations_per_call: int,
    ) -> RiskConfiguration:
        """
        Change loop limits.

        Raises:
            UnauthorizedError: If caller is not the operator
            ConfigurationLockedError: If a loop is in flight
            ConfigurationError: If the new limits are invalid
        """
        self._require_operator(caller, "set risk parameters")
        self._require_unlocked()
        self._config = self._config.replace(
            max_single_loop_amount=max_single_loop_amount,
            rebalance_cooldown=rebalance_cooldown,
            max_iterations_per_call=max_iterations_per_call,
        )
        logger.info(
            f"Risk parameters updated: max_single_loop={max_single_loop_amount}, "
            f"cooldown={rebalance_cooldown}s, max_iterations={max_iterations_per_call}"
        )
        return self._config

    def close_position(self, caller: str, recipient: str) -> RebalanceRecord:
        """
        Repay all debt and withdraw the collateral to ``recipient``.

        If the iteration cap is hit before the debt is cleared, the collateral
        stays supplied and the record says so; call again to continue.
        """
        self._require_operator(caller, "close position")

        with self._operation():
            before = self.refresh_position()
            now = self.clock()

            result = self.deleverage_controller.unwind_all(before, self._config)
            position = result.position
            withdrawn = Decimal("0")

            if not position.has_debt and position.total_supplied > 0:
                withdrawn = self.lending_market.withdraw(
                    self.collateral_asset, position.total_supplied, recipient
                )
                position = self.deleverage_controller.read_position(position.last_rebalance_timestamp)

            if result.mutated or withdrawn > 0:
                position = position.touched(now)
            self._position = position

            if position.has_debt:
                detail = f"Debt {position.total_borrowed} remaining after {result.iterations} iterations"
                logger.warning(f"Close incomplete: {detail}")
            else:
                detail = f"Withdrew {withdrawn} {self.collateral_asset} to {recipient}"
                logger.info(f"Position closed: {detail}")

            record = RebalanceRecord(
                action=RebalanceAction.UNWIND,
                reason=RebalanceReason.OPERATOR,
                timestamp=now,
                iterations=result.iterations,
                leverage_before=before.leverage_or_none,
                leverage_after=position.leverage_or_none,
                health_factor_before=before.health_factor,
                health_factor_after=position.health_factor,
                stop_reason=result.stop_reason,
                step_amounts=list(result.step_amounts),
                detail=detail,
            )
            self._audit_log.append(record)
            return record

    # ========== INTERNALS ==========

    def _dispatch(
        self,
        reason: RebalanceReason,
        enforce_cooldown: bool,
        deadline: Optional[datetime] = None,
    ) -> RebalanceRecord:
        before = self._position
        now = self.clock()

        try:
            position, record = self.scheduler.run(
                before, self._config, now, reason, enforce_cooldown, deadline
            )
        except CooldownActiveError:
            raise
        except Exception as e:
            self._record_failure(before, now, reason, e)
            raise

        self._position = position
        if not record.is_noop:
            self._audit_log.append(record)
        return record

    def _record_failure(
        self,
        before: PositionState,
        now: datetime,
        reason: RebalanceReason,
        error: Exception,
    ) -> None:
        """Store the committed position after a failed dispatch and log a failed record."""
        emergency_failed = isinstance(error, EmergencyDeleverageError)
        if emergency_failed and error.position is not None:
            after = error.position
        else:
            after = self.deleverage_controller.read_position(before.last_rebalance_timestamp)

        changed = (
            after.total_supplied != before.total_supplied
            or after.total_borrowed != before.total_borrowed
        )
        self._position = after.touched(now) if changed else after

        action = self.scheduler.last_action or RebalanceAction.NONE
        if action == RebalanceAction.EMERGENCY_DELEVERAGE:
            reason = RebalanceReason.EMERGENCY
        logger.error(f"{action.value} failed ({reason.value}): {error}")

        self._audit_log.append(
            RebalanceRecord(
                action=action,
                reason=reason,
                timestamp=now,
                iterations=error.iterations if emergency_failed else 0,
                leverage_before=before.leverage_or_none,
                leverage_after=self._position.leverage_or_none,
                health_factor_before=before.health_factor,
                health_factor_after=self._position.health_factor,
                emergency_triggered=(
                    emergency_failed or action == RebalanceAction.EMERGENCY_DELEVERAGE
                ),
                success=False,
                detail=f"{type(error).__name__}: {error}",
            )
        )

    @contextmanager
    def _operation(self):
        if self._in_flight:
            raise OperationInFlightError("Another operation is in flight for this position")
        self._in_flight = True
        try:
            yield
        finally:
            self._in_flight = False

    def _require_operator(self, caller: str, action: str) -> None:
        if caller != self.operator:
            raise UnauthorizedError(caller, action)

    def _require_unlocked(self) -> None:
        if self._in_flight:
            raise ConfigurationLockedError("Risk configuration cannot change while a loop is in flight")
