"""Exception types for the settlement engine.

Every mutating operation raises one of these before touching state, so a
caught ``SettlementError`` always means "nothing changed".
"""

from __future__ import annotations


class SettlementError(Exception):
    """Base class for all rejections raised by the engine."""


class StorageInvalidError(SettlementError):
    """Raised when a value does not fit its packed field."""

    def __init__(self, field: str, value: int, lo: int, hi: int) -> None:
        self.field = field
        self.value = value
        self.lo = lo
        self.hi = hi
        super().__init__(f"{field}={value} outside packed range [{lo}, {hi}]")


class ParameterInvalidError(SettlementError):
    """Raised when a parameter update violates protocol-wide bounds."""

    def __init__(self, violations: list[str]) -> None:
        self.violations = violations
        super().__init__(f"parameter violations: {', '.join(violations)}")


class MarketClosedError(SettlementError):
    """Raised when a closed market is asked to open or grow a position."""


class OperationNotImplementedError(SettlementError):
    """Raised when an operation is disabled by the market's configuration."""


class VersionOrderError(SettlementError):
    """Raised on out-of-order or duplicate oracle version transitions."""


class OracleInconsistencyError(SettlementError):
    """Raised when the oracle changes its answer for an observed version."""


class StalePriceError(SettlementError):
    """Raised when the latest oracle version is older than ``stale_after``."""


class PositionLimitError(SettlementError):
    """Raised when an update breaks a position limit."""

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(f"position limit: {reason}")


class InsufficientCollateralError(SettlementError):
    """Raised when collateral would not cover the next position's maintenance."""
