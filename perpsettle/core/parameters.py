"""Market configuration: risk, market and protocol parameters.

`RiskParameter` and `MarketParameter` are persisted as packed records and only
change through their store's ``validate_and_store``. `ProtocolParameter` is
supplied by governance on each update and bounds what a market may configure.

Validation mirrors the invariant-registry pattern: each rule is a named
predicate, ``check_*`` returns the ordered list of violated rule IDs, and a
non-empty list aborts the update before anything is encoded.

Risk parameter packed layout (`RISK_PARAMETER_LAYOUT`, 3 words, unsigned):
- ratios, fees and rates: 24 bits (max 16.777215, i.e. <= 1677%)
- maker_limit: 64 bits
- min/max liquidation fee, min_maintenance: 48 bits
- p_controller_k: 40 bits
- stale_after: 24 bits (seconds)
- maker_receive_only: 1 bit
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable

from ..state.packing import Layout, unsigned
from .errors import ParameterInvalidError
from .fixed import UNIT

RATE_BITS = 24


def _require_int(name: str, value: object) -> None:
    if not isinstance(value, int) or isinstance(value, bool):
        raise TypeError(f"{name} must be int, got {type(value).__name__}")


def _require_bool(name: str, value: object) -> None:
    if not isinstance(value, bool):
        raise TypeError(f"{name} must be bool, got {type(value).__name__}")


# ---------------------------------------------------------------------------
# Types
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class UtilizationCurve:
    """Piecewise-linear annual funding rate as a function of utilization."""

    min_rate: int = 0
    max_rate: int = UNIT
    target_rate: int = 200_000
    target_utilization: int = 800_000

    def __post_init__(self) -> None:
        for name in ("min_rate", "max_rate", "target_rate", "target_utilization"):
            _require_int(name, getattr(self, name))


@dataclass(frozen=True)
class PController:
    """Proportional controller: ``clamp(k * skew, -max, max)``."""

    k: int = 0
    max: int = 0

    def __post_init__(self) -> None:
        _require_int("k", self.k)
        _require_int("max", self.max)


@dataclass(frozen=True)
class RiskParameter:
    maintenance: int = 300_000
    taker_fee: int = 0
    taker_skew_fee: int = 0
    taker_impact_fee: int = 0
    maker_fee: int = 0
    maker_impact_fee: int = 0
    maker_limit: int = 1_000 * UNIT
    efficiency_limit: int = 500_000
    liquidation_fee: int = 500_000
    min_liquidation_fee: int = 0
    max_liquidation_fee: int = 1_000 * UNIT
    utilization_curve: UtilizationCurve = field(default_factory=UtilizationCurve)
    p_controller: PController = field(default_factory=PController)
    min_maintenance: int = 0
    stale_after: int = 7_200
    maker_receive_only: bool = False

    def __post_init__(self) -> None:
        for name in _RISK_INT_FIELDS:
            _require_int(name, getattr(self, name))
        if not isinstance(self.utilization_curve, UtilizationCurve):
            raise TypeError("utilization_curve must be a UtilizationCurve")
        if not isinstance(self.p_controller, PController):
            raise TypeError("p_controller must be a PController")
        _require_bool("maker_receive_only", self.maker_receive_only)


_RISK_INT_FIELDS: tuple[str, ...] = (
    "maintenance",
    "taker_fee",
    "taker_skew_fee",
    "taker_impact_fee",
    "maker_fee",
    "maker_impact_fee",
    "maker_limit",
    "efficiency_limit",
    "liquidation_fee",
    "min_liquidation_fee",
    "max_liquidation_fee",
    "min_maintenance",
    "stale_after",
)


@dataclass(frozen=True)
class MarketParameter:
    """Market-level switches and the funding fee share."""

    funding_fee: int = 0
    closed: bool = False
    short_enabled: bool = True

    def __post_init__(self) -> None:
        _require_int("funding_fee", self.funding_fee)
        _require_bool("closed", self.closed)
        _require_bool("short_enabled", self.short_enabled)


@dataclass(frozen=True)
class ProtocolParameter:
    """Protocol-wide bounds applied to every market parameter update."""

    protocol_fee: int = 0
    max_fee: int = UNIT
    max_fee_absolute: int = 1_000_000 * UNIT
    max_cut: int = UNIT
    max_rate: int = 5 * UNIT
    min_maintenance: int = 0
    min_efficiency: int = 0

    def __post_init__(self) -> None:
        for name in (
            "protocol_fee", "max_fee", "max_fee_absolute", "max_cut",
            "max_rate", "min_maintenance", "min_efficiency",
        ):
            val = getattr(self, name)
            _require_int(name, val)
            if val < 0:
                raise ValueError(f"{name} must be non-negative: {val}")
        if self.protocol_fee > UNIT:
            raise ValueError(f"protocol_fee must be <= 1: {self.protocol_fee}")


# ---------------------------------------------------------------------------
# Packed layouts
# ---------------------------------------------------------------------------

RISK_PARAMETER_LAYOUT = Layout(
    "RiskParameter",
    (
        unsigned("maintenance", RATE_BITS),
        unsigned("taker_fee", RATE_BITS),
        unsigned("taker_skew_fee", RATE_BITS),
        unsigned("taker_impact_fee", RATE_BITS),
        unsigned("maker_fee", RATE_BITS),
        unsigned("maker_impact_fee", RATE_BITS),
        unsigned("maker_limit", 64),
        unsigned("efficiency_limit", RATE_BITS),
        unsigned("liquidation_fee", RATE_BITS),
        unsigned("min_liquidation_fee", 48),
        unsigned("max_liquidation_fee", 48),
        unsigned("curve_min_rate", RATE_BITS),
        unsigned("curve_max_rate", RATE_BITS),
        unsigned("curve_target_rate", RATE_BITS),
        unsigned("curve_target_utilization", RATE_BITS),
        unsigned("p_controller_k", 40),
        unsigned("p_controller_max", RATE_BITS),
        unsigned("min_maintenance", 48),
        unsigned("stale_after", 24),
        unsigned("maker_receive_only", 1),
    ),
)

MARKET_PARAMETER_LAYOUT = Layout(
    "MarketParameter",
    (
        unsigned("funding_fee", RATE_BITS),
        unsigned("closed", 1),
        unsigned("short_enabled", 1),
    ),
)


def risk_parameter_to_fields(p: RiskParameter) -> dict[str, int | bool]:
    out: dict[str, int | bool] = {name: getattr(p, name) for name in _RISK_INT_FIELDS}
    out.update(
        curve_min_rate=p.utilization_curve.min_rate,
        curve_max_rate=p.utilization_curve.max_rate,
        curve_target_rate=p.utilization_curve.target_rate,
        curve_target_utilization=p.utilization_curve.target_utilization,
        p_controller_k=p.p_controller.k,
        p_controller_max=p.p_controller.max,
        maker_receive_only=p.maker_receive_only,
    )
    return out


def risk_parameter_from_fields(d: dict[str, int]) -> RiskParameter:
    return RiskParameter(
        **{name: d[name] for name in _RISK_INT_FIELDS},
        utilization_curve=UtilizationCurve(
            min_rate=d["curve_min_rate"],
            max_rate=d["curve_max_rate"],
            target_rate=d["curve_target_rate"],
            target_utilization=d["curve_target_utilization"],
        ),
        p_controller=PController(k=d["p_controller_k"], max=d["p_controller_max"]),
        maker_receive_only=bool(d["maker_receive_only"]),
    )


def market_parameter_to_fields(p: MarketParameter) -> dict[str, int | bool]:
    return {"funding_fee": p.funding_fee, "closed": p.closed, "short_enabled": p.short_enabled}


def market_parameter_from_fields(d: dict[str, int]) -> MarketParameter:
    return MarketParameter(
        funding_fee=d["funding_fee"],
        closed=bool(d["closed"]),
        short_enabled=bool(d["short_enabled"]),
    )


# ---------------------------------------------------------------------------
# Validation rules (evaluated in registry order)
# ---------------------------------------------------------------------------

RiskRule = Callable[[RiskParameter, ProtocolParameter], bool]


def _fees_within_max_fee(p: RiskParameter, pp: ProtocolParameter) -> bool:
    return all(
        fee <= pp.max_fee
        for fee in (p.taker_fee, p.taker_skew_fee, p.taker_impact_fee, p.maker_fee, p.maker_impact_fee)
    )


def _absolute_fees_within_max(p: RiskParameter, pp: ProtocolParameter) -> bool:
    return all(
        amount <= pp.max_fee_absolute
        for amount in (p.min_liquidation_fee, p.max_liquidation_fee, p.min_maintenance)
    )


def _liquidation_fee_within_max_cut(p: RiskParameter, pp: ProtocolParameter) -> bool:
    return p.liquidation_fee <= pp.max_cut


def _rates_within_max_rate(p: RiskParameter, pp: ProtocolParameter) -> bool:
    curve = p.utilization_curve
    return all(
        rate <= pp.max_rate
        for rate in (curve.min_rate, curve.max_rate, curve.target_rate, p.p_controller.max)
    )


def _maintenance_above_protocol_min(p: RiskParameter, pp: ProtocolParameter) -> bool:
    return p.maintenance >= pp.min_maintenance


def _efficiency_above_protocol_min(p: RiskParameter, pp: ProtocolParameter) -> bool:
    return p.efficiency_limit >= pp.min_efficiency


def _target_utilization_at_most_one(p: RiskParameter, pp: ProtocolParameter) -> bool:
    return p.utilization_curve.target_utilization <= UNIT


def _min_maintenance_covers_min_liquidation_fee(p: RiskParameter, pp: ProtocolParameter) -> bool:
    return p.min_maintenance >= p.min_liquidation_fee


RISK_RULES: dict[str, RiskRule] = {
    "fee_exceeds_max_fee": _fees_within_max_fee,
    "absolute_fee_exceeds_max": _absolute_fees_within_max,
    "liquidation_fee_exceeds_max_cut": _liquidation_fee_within_max_cut,
    "rate_exceeds_max_rate": _rates_within_max_rate,
    "maintenance_below_protocol_min": _maintenance_above_protocol_min,
    "efficiency_below_protocol_min": _efficiency_above_protocol_min,
    "target_utilization_above_one": _target_utilization_at_most_one,
    "min_maintenance_below_min_liquidation_fee": _min_maintenance_covers_min_liquidation_fee,
}


def check_risk_parameter(p: RiskParameter, pp: ProtocolParameter) -> list[str]:
    """Return the violated rule IDs (empty = valid)."""
    return [rule_id for rule_id, rule in RISK_RULES.items() if not rule(p, pp)]


def check_market_parameter(p: MarketParameter, pp: ProtocolParameter) -> list[str]:
    violations: list[str] = []
    if p.funding_fee > pp.max_cut:
        violations.append("funding_fee_exceeds_max_cut")
    return violations


# ---------------------------------------------------------------------------
# Stores
# ---------------------------------------------------------------------------

class RiskParameterStore:
    """Holds the packed `RiskParameter` record for one market."""

    def __init__(
        self,
        initial: RiskParameter | None = None,
        protocol_parameter: ProtocolParameter | None = None,
    ) -> None:
        """Start from defaults; a supplied *initial* goes through `validate_and_store`."""
        self._packed = RISK_PARAMETER_LAYOUT.encode(risk_parameter_to_fields(RiskParameter()))
        if initial is not None:
            self.validate_and_store(initial, protocol_parameter if protocol_parameter is not None else ProtocolParameter())

    @property
    def packed(self) -> bytes:
        return self._packed

    def read(self) -> RiskParameter:
        return risk_parameter_from_fields(RISK_PARAMETER_LAYOUT.decode(self._packed))

    def validate_and_store(self, new_value: RiskParameter, protocol_parameter: ProtocolParameter) -> RiskParameter:
        """Validate against protocol bounds, then encode and store atomically.

        Raises:
            ParameterInvalidError: a protocol-wide bound is violated.
            StorageInvalidError: a field does not fit its packed lane.
        """
        violations = check_risk_parameter(new_value, protocol_parameter)
        if violations:
            raise ParameterInvalidError(violations)
        packed = RISK_PARAMETER_LAYOUT.encode(risk_parameter_to_fields(new_value))
        self._packed = packed
        return self.read()


class MarketParameterStore:
    """Holds the packed `MarketParameter` record for one market."""

    def __init__(
        self,
        initial: MarketParameter | None = None,
        protocol_parameter: ProtocolParameter | None = None,
    ) -> None:
        self._packed = MARKET_PARAMETER_LAYOUT.encode(market_parameter_to_fields(MarketParameter()))
        if initial is not None:
            self.validate_and_store(initial, protocol_parameter if protocol_parameter is not None else ProtocolParameter())

    @property
    def packed(self) -> bytes:
        return self._packed

    def read(self) -> MarketParameter:
        return market_parameter_from_fields(MARKET_PARAMETER_LAYOUT.decode(self._packed))

    def validate_and_store(self, new_value: MarketParameter, protocol_parameter: ProtocolParameter) -> MarketParameter:
        violations = check_market_parameter(new_value, protocol_parameter)
        if violations:
            raise ParameterInvalidError(violations)
        packed = MARKET_PARAMETER_LAYOUT.encode(market_parameter_to_fields(new_value))
        self._packed = packed
        return self.read()
