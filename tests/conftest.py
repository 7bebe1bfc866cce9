"""Pytest configuration and fixtures."""

import pytest
from datetime import datetime, timezone

from config.settings import Settings
from src.adapters import SimulatedLendingMarket, SimulatedSwap
from src.core.models import RiskConfiguration
from src.engine import DeleverageController, LeverageLoopController, LeverageManager
from src.engine.simulator import SteppedClock

COLLATERAL = "wstETH"
DEBT = "WETH"
OWNER = "0xowner"
OPERATOR = "0xoperator"


@pytest.fixture
def settings() -> Settings:
    """Settings with defaults only, ignoring any .env file."""
    return Settings(_env_file=None)


@pytest.fixture
def clock() -> SteppedClock:
    return SteppedClock(datetime(2024, 6, 1, tzinfo=timezone.utc))


@pytest.fixture
def config() -> RiskConfiguration:
    return RiskConfiguration()


@pytest.fixture
def market() -> SimulatedLendingMarket:
    """Empty market: LT 80%, max LTV 75%, both assets priced at 1.0."""
    return SimulatedLendingMarket(COLLATERAL, DEBT, owner=OWNER)


@pytest.fixture
def swap(market) -> SimulatedSwap:
    return SimulatedSwap(market.get_asset_price)


@pytest.fixture
def deleverage_controller(market, swap, clock) -> DeleverageController:
    return DeleverageController(market, swap, COLLATERAL, DEBT, OWNER, clock=clock)


@pytest.fixture
def leverage_controller(market, swap, clock, deleverage_controller) -> LeverageLoopController:
    return LeverageLoopController(
        market, swap, COLLATERAL, DEBT, OWNER, deleverage=deleverage_controller, clock=clock
    )


@pytest.fixture
def manager(market, swap, config, settings, clock) -> LeverageManager:
    return LeverageManager(
        market,
        swap,
        COLLATERAL,
        DEBT,
        owner=OWNER,
        operator=OPERATOR,
        config=config,
        settings=settings,
        clock=clock,
    )
