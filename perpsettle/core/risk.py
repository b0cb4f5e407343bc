"""Maintenance and liquidation-eligibility math.

Stateless helpers over fixed-point ints. Only eligibility is computed here;
executing a liquidation is the caller's business.
"""

from __future__ import annotations

from ..state.position import Position
from .fixed import abs_val, clamp, mul
from .parameters import RiskParameter


def notional(magnitude: int, price: int) -> int:
    """Absolute notional ``|magnitude * price|``."""
    return abs_val(mul(magnitude, price))


def maintenance(magnitude: int, price: int, risk_parameter: RiskParameter) -> int:
    """Maintenance requirement, floored at ``min_maintenance`` (0 when flat)."""
    if magnitude == 0:
        return 0
    required = mul(notional(magnitude, price), risk_parameter.maintenance)
    return max(required, risk_parameter.min_maintenance)


def liquidation_fee(magnitude: int, price: int, risk_parameter: RiskParameter) -> int:
    """Fee owed to a liquidator: ``maintenance * liquidation_fee`` within the fee bounds."""
    raw = mul(maintenance(magnitude, price, risk_parameter), risk_parameter.liquidation_fee)
    return clamp(raw, risk_parameter.min_liquidation_fee, risk_parameter.max_liquidation_fee)


def is_liquidatable(position: Position, collateral: int, price: int, risk_parameter: RiskParameter) -> bool:
    """True when an open active position's collateral is below maintenance."""
    magnitude = position.magnitude()
    if magnitude == 0:
        return False
    return collateral < maintenance(magnitude, price, risk_parameter)
