"""Command line entry point: demo run and target leverage sweep."""

import argparse
import logging
from decimal import Decimal
from typing import List, Optional

from rich.console import Console

from config.settings import get_settings
from src.adapters import SimulatedLendingMarket, SimulatedSwap
from src.core.exceptions import LeverageEngineError
from src.engine import LeverageManager, StressSimulator
from src.engine.simulator import COLLATERAL, DEBT, OWNER, SteppedClock
from src.ui.tables import audit_table, position_table, sweep_table


def run_demo(args, console: Console) -> int:
    """Deposit, shock the debt price, rebalance, then close."""
    settings = get_settings()
    config = settings.risk_configuration()
    clock = SteppedClock()

    market = SimulatedLendingMarket(COLLATERAL, DEBT, owner=OWNER)
    swap = SimulatedSwap(market.get_asset_price)
    manager = LeverageManager(
        market, swap, COLLATERAL, DEBT,
        owner=OWNER, operator=OWNER, config=config, settings=settings, clock=clock,
    )

    manager.deposit(Decimal(str(args.capital)))
    console.print(position_table(manager.snapshot(), manager.config))

    for shock in args.shocks:
        clock.advance(config.rebalance_cooldown)
        price = market.get_asset_price(DEBT) * Decimal(str(shock))
        market.set_price(DEBT, price)
        console.print(f"[cyan]Debt price -> {price}[/cyan]")
        try:
            manager.rebalance()
        except LeverageEngineError as e:
            console.print(f"[bold red]Rebalance failed:[/bold red] {e}")
            break
        console.print(position_table(manager.snapshot(), manager.config))

    if args.close:
        manager.close_position(OWNER, OWNER)
        console.print(position_table(manager.snapshot(), manager.config))

    console.print(audit_table(manager.audit_log))
    return 0


def run_sweep(args, console: Console) -> int:
    """Run the stress simulator over several target leverages."""
    settings = get_settings()
    simulator = StressSimulator(settings=settings, seed=args.seed)
    results = simulator.run_target_sweep(
        settings.risk_configuration(),
        targets=args.targets,
        capital=Decimal(str(args.capital)),
        steps=args.steps,
        volatility=args.volatility,
    )
    console.print(sweep_table(results))
    return 0 if all(r.success for r in results) else 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Leveraged lending position engine (simulated market)"
    )
    sub = parser.add_subparsers(dest="command", required=True)

    demo = sub.add_parser("demo", help="Lever a position and rebalance through price shocks")
    demo.add_argument("--capital", type=float, default=1000.0, help="Initial deposit")
    demo.add_argument(
        "--shocks",
        type=float,
        nargs="*",
        default=[1.05, 1.1, 0.9],
        help="Debt price multipliers applied one per rebalance",
    )
    demo.add_argument("--close", action="store_true", help="Unwind and withdraw at the end")

    sweep = sub.add_parser("sweep", help="Stress test several target leverages")
    sweep.add_argument(
        "--targets",
        type=int,
        nargs="+",
        default=[15000, 20000, 25000, 30000],
        help="Target leverages in bps",
    )
    sweep.add_argument("--capital", type=float, default=1000.0, help="Initial deposit")
    sweep.add_argument("--steps", type=int, default=100, help="Price path length")
    sweep.add_argument("--volatility", type=float, default=0.01, help="Per-step log-return stdev")
    sweep.add_argument("--seed", type=int, default=None, help="RNG seed")

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=get_settings().log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    console = Console()

    if args.command == "demo":
        return run_demo(args, console)
    return run_sweep(args, console)


if __name__ == "__main__":
    raise SystemExit(main())
