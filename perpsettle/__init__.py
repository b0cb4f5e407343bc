"""`perpsettle`: version-keyed settlement engine for a perpetual market.

Deterministic, integer-only accounting:
- global funding, PnL and liquidity share accrue per oracle version into a
  sparse, packed accumulator store,
- each account settles lazily against that store when it next interacts,
- parameter updates are validated against protocol-wide bounds and stored as
  packed records.

Public API:
- `Market(oracle, ...)` with `settle`, `update`, `update_risk_parameter`,
  `update_parameter`, `maintenance`, `is_liquidatable`
- `load_market_config(path) -> MarketConfig`
"""

from .core.errors import (
    InsufficientCollateralError,
    MarketClosedError,
    OperationNotImplementedError,
    OracleInconsistencyError,
    ParameterInvalidError,
    PositionLimitError,
    SettlementError,
    StalePriceError,
    StorageInvalidError,
    VersionOrderError,
)
from .core.fixed import UNIT, from_decimal
from .core.oracle import IdentityPayoff, OracleProvider, ScaledPayoff, SquaredPayoff
from .core.parameters import (
    MarketParameter,
    PController,
    ProtocolParameter,
    RiskParameter,
    UtilizationCurve,
)
from .core.types import Accumulator, OracleVersion
from .integration.config import MarketConfig, load_market_config
from .integration.market import Account, Market
from .state.local import Local
from .state.position import Position

__all__ = [
    "Market",
    "Account",
    "MarketConfig",
    "load_market_config",
    "UNIT",
    "from_decimal",
    "OracleProvider",
    "IdentityPayoff",
    "ScaledPayoff",
    "SquaredPayoff",
    "OracleVersion",
    "Accumulator",
    "Position",
    "Local",
    "MarketParameter",
    "PController",
    "ProtocolParameter",
    "RiskParameter",
    "UtilizationCurve",
    "SettlementError",
    "StorageInvalidError",
    "ParameterInvalidError",
    "MarketClosedError",
    "OperationNotImplementedError",
    "VersionOrderError",
    "OracleInconsistencyError",
    "StalePriceError",
    "InsufficientCollateralError",
    "PositionLimitError",
]
