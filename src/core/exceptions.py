"""Exception types raised by the leverage engine."""

from typing import Optional


class LeverageEngineError(Exception):
    """Base class for all leverage engine failures."""


class ConfigurationError(LeverageEngineError, ValueError):
    """Risk configuration bounds are invalid."""


class UnauthorizedError(LeverageEngineError):
    """Caller is not allowed to perform an operator action."""

    def __init__(self, caller: str, action: str):
        self.caller = caller
        self.action = action
        super().__init__(f"{caller} is not authorized to {action}")


class OperationInFlightError(LeverageEngineError):
    """A state-changing call re-entered while another is running."""


class ConfigurationLockedError(OperationInFlightError):
    """Configuration change attempted while a loop is in flight."""


class CooldownActiveError(LeverageEngineError):
    """Rebalance requested before the cooldown elapsed."""

    def __init__(self, remaining_seconds: float):
        self.remaining_seconds = remaining_seconds
        super().__init__(f"Rebalance cooldown active: {remaining_seconds:.0f}s remaining")


class EmergencyNotRequiredError(LeverageEngineError):
    """Emergency deleverage requested while the position is safe."""


class LeverageDisabledError(LeverageEngineError):
    """Leverage requested while auto leverage is switched off."""


class InsolventPositionError(LeverageEngineError):
    """Debt is at or above collateral, leverage is undefined."""


class InvariantViolationError(LeverageEngineError):
    """A projected iteration would break a position invariant."""


class CollaboratorError(LeverageEngineError):
    """An external collaborator (lending market or swap venue) failed."""


class LendingMarketError(CollaboratorError):
    """The lending market rejected an operation."""


class SwapError(CollaboratorError):
    """The swap venue rejected a swap."""


class SlippageExceededError(SwapError):
    """Swap output fell below the accepted minimum."""

    def __init__(self, amount_out, min_amount_out):
        self.amount_out = amount_out
        self.min_amount_out = min_amount_out
        super().__init__(f"Swap output {amount_out} below minimum {min_amount_out}")


class EmergencyDeleverageError(LeverageEngineError):
    """
    Emergency deleverage could not restore the health factor.

    The position is left in its last consistent, partially unwound state,
    which is attached as ``position``.
    """

    def __init__(self, message: str, position: Optional[object] = None, iterations: int = 0):
        self.position = position
        self.iterations = iterations
        super().__init__(message)
