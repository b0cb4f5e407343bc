"""Funding rate model.

The annual funding rate combines two terms:

- a utilization curve: piecewise linear from ``min_rate`` (utilization 0) to
  ``target_rate`` (``target_utilization``) to ``max_rate`` (utilization 1),
- a proportional controller: ``clamp(k * skew, -max, max)``.

The sum is clamped to ``[-curve.max_rate, curve.max_rate]``. Positive rates
mean longs pay makers; negative rates mean makers pay longs.
"""

from __future__ import annotations

from ..state.position import Position
from .fixed import UNIT, clamp, mul, mul_div
from .parameters import PController, RiskParameter, UtilizationCurve


def curve_rate(curve: UtilizationCurve, utilization: int) -> int:
    """Annual rate from the utilization curve (utilization capped at 1)."""
    u = clamp(utilization, 0, UNIT)
    if u < curve.target_utilization:
        # target_utilization > u >= 0 here, so the divisor is positive.
        return curve.min_rate + mul_div(curve.target_rate - curve.min_rate, u, curve.target_utilization)
    span = UNIT - curve.target_utilization
    if span <= 0:
        return curve.target_rate
    return curve.target_rate + mul_div(curve.max_rate - curve.target_rate, u - curve.target_utilization, span)


def controller_rate(controller: PController, skew: int) -> int:
    """Proportional contribution ``k * skew``, capped at ``±max``."""
    return clamp(mul(controller.k, skew), -controller.max, controller.max)


def funding_rate(position: Position, risk_parameter: RiskParameter) -> int:
    """Annual funding rate for the given active position snapshot."""
    curve = risk_parameter.utilization_curve
    rate = curve_rate(curve, position.utilization()) + controller_rate(risk_parameter.p_controller, position.skew())
    rate = clamp(rate, -curve.max_rate, curve.max_rate)
    if risk_parameter.maker_receive_only and rate < 0:
        return 0
    return rate
