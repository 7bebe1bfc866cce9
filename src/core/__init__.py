"""Core module - models, constants and solvency math."""

from .models import PositionState, PositionSnapshot, RiskConfiguration
from .health import HealthEvaluation, HealthFactorEvaluator, evaluate
from .constants import BPS, INFINITE_HEALTH_FACTOR

__all__ = [
    "PositionState",
    "PositionSnapshot",
    "RiskConfiguration",
    "HealthEvaluation",
    "HealthFactorEvaluator",
    "evaluate",
    "BPS",
    "INFINITE_HEALTH_FACTOR",
]
