"""Rich tables for position snapshots, audit records and sweeps."""

from decimal import Decimal
from typing import List, Optional

from rich.table import Table
from rich.text import Text

from src.core.fixed_point import from_bps
from src.core.models import PositionSnapshot, RebalanceRecord, RiskConfiguration
from src.engine.simulator import StressResult


def format_leverage(bps: Optional[int]) -> str:
    """20000 -> '2.00x', None (insolvent) -> '-'"""
    if bps is None:
        return "-"
    return f"{from_bps(bps):.2f}x"


def format_health_factor(hf: Decimal) -> str:
    """15000 -> '1.50', Infinity -> '∞'"""
    if hf.is_infinite():
        return "∞"
    return f"{from_bps(hf):.2f}"


def health_style(hf: Decimal, config: RiskConfiguration) -> str:
    """Color by distance to the health factor floors."""
    if hf < config.health_factor_emergency:
        return "bold red"
    if hf < config.health_factor_target:
        return "yellow"
    return "green"


def position_table(snapshot: PositionSnapshot, config: RiskConfiguration) -> Table:
    """Two-column table of the current position."""
    table = Table(title="Position", show_header=False)
    table.add_column("Field", style="cyan")
    table.add_column("Value", justify="right")

    leverage = snapshot.current_leverage
    leverage_style = ""
    if leverage is None:
        leverage_style = "bold red"
    elif leverage > config.upper_band:
        leverage_style = "yellow"
    table.add_row("Supplied", f"{snapshot.total_supplied:.4f}")
    table.add_row("Borrowed", f"{snapshot.total_borrowed:.4f}")
    table.add_row(
        "Leverage",
        Text(
            f"{format_leverage(snapshot.current_leverage)} (target {format_leverage(config.target_leverage)})",
            style=leverage_style,
        ),
    )
    table.add_row(
        "Health factor",
        Text(
            format_health_factor(snapshot.health_factor),
            style=health_style(snapshot.health_factor, config),
        ),
    )
    table.add_row(
        "Last rebalance",
        snapshot.last_rebalance_timestamp.isoformat() if snapshot.last_rebalance_timestamp else "-",
    )
    return table


def audit_table(records: List[RebalanceRecord]) -> Table:
    """One row per rebalance record."""
    table = Table(title="Rebalance log")
    table.add_column("Time")
    table.add_column("Reason")
    table.add_column("Action")
    table.add_column("Iter", justify="right")
    table.add_column("Leverage", justify="right")
    table.add_column("HF", justify="right")
    table.add_column("Stop")

    for r in records:
        action = Text(r.action.value, style="bold red" if not r.success else "")
        table.add_row(
            r.timestamp.strftime("%Y-%m-%d %H:%M:%S"),
            r.reason.value,
            action,
            str(r.iterations + r.emergency_iterations),
            f"{format_leverage(r.leverage_before)} → {format_leverage(r.leverage_after)}",
            f"{format_health_factor(r.health_factor_before)} → {format_health_factor(r.health_factor_after)}",
            r.stop_reason.value if r.stop_reason else "-",
        )
    return table


def sweep_table(results: List[StressResult]) -> Table:
    """One row per target leverage in a stress sweep."""
    table = Table(title="Target leverage sweep")
    table.add_column("Target", justify="right")
    table.add_column("Entry", justify="right")
    table.add_column("Iter", justify="right")
    table.add_column("Converged")
    table.add_column("Min HF", justify="right")
    table.add_column("Rebalances", justify="right")
    table.add_column("Emergencies", justify="right")

    for r in results:
        if not r.success:
            table.add_row(
                format_leverage(r.target_leverage),
                Text("FAILED", style="bold red"),
                "", "", "", "", str(r.emergency_count),
            )
            continue
        table.add_row(
            format_leverage(r.target_leverage),
            format_leverage(r.entry_leverage),
            str(r.entry_iterations),
            Text("yes", style="green") if r.converged else Text("no", style="yellow"),
            format_health_factor(r.min_health_factor),
            str(r.rebalance_count),
            str(r.emergency_count),
        )
    return table
