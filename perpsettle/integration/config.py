"""
YAML market configuration.

Loads the protocol bounds, the initial risk and market parameters and the
payoff transform for one market from a YAML file:

    protocol:  {protocol_fee: "0.1", max_fee: "0.01", ...}
    risk:      {maintenance: "0.3", utilization_curve: {...}, p_controller: {...}, ...}
    market:    {funding_fee: "0.1", closed: false, short_enabled: true}
    payoff:    {kind: identity}           # or {kind: scaled, scale: "2"}

Fixed-point values are quoted decimal strings (or plain ints, meaning whole
units). Floats are rejected since their binary value is not what was written.
`stale_after` is a plain int of seconds; flags are YAML booleans.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping, Optional, Union

import yaml

from ..core.fixed import from_decimal
from ..core.oracle import IdentityPayoff, PayoffTransform, payoff_from_name
from ..core.parameters import (
    MarketParameter,
    PController,
    ProtocolParameter,
    RiskParameter,
    UtilizationCurve,
)

_SECTIONS = frozenset({"protocol", "risk", "market", "payoff"})

_PROTOCOL_DECIMALS = frozenset({
    "protocol_fee", "max_fee", "max_fee_absolute", "max_cut",
    "max_rate", "min_maintenance", "min_efficiency",
})
_RISK_DECIMALS = frozenset({
    "maintenance", "taker_fee", "taker_skew_fee", "taker_impact_fee", "maker_fee",
    "maker_impact_fee", "maker_limit", "efficiency_limit", "liquidation_fee",
    "min_liquidation_fee", "max_liquidation_fee", "min_maintenance",
})
_CURVE_DECIMALS = frozenset({"min_rate", "max_rate", "target_rate", "target_utilization"})
_CONTROLLER_DECIMALS = frozenset({"k", "max"})


@dataclass(frozen=True)
class MarketConfig:
    protocol: ProtocolParameter = field(default_factory=ProtocolParameter)
    risk: RiskParameter = field(default_factory=RiskParameter)
    market: MarketParameter = field(default_factory=MarketParameter)
    payoff: PayoffTransform = field(default_factory=IdentityPayoff)


def _section(obj: Any, name: str) -> Mapping[str, Any]:
    if obj is None:
        return {}
    if not isinstance(obj, Mapping):
        raise TypeError(f"{name} must be a mapping")
    return obj


def _reject_unknown(section: Mapping[str, Any], allowed: frozenset[str], name: str) -> None:
    unknown = sorted(set(section) - allowed)
    if unknown:
        raise ValueError(f"unknown keys in {name}: {', '.join(map(str, unknown))}")


def _decimals(section: Mapping[str, Any], keys: frozenset[str], name: str) -> dict[str, int]:
    return {
        key: from_decimal(section[key], name=f"{name}.{key}")
        for key in keys
        if key in section
    }


def _flag(section: Mapping[str, Any], key: str, name: str) -> dict[str, bool]:
    if key not in section:
        return {}
    value = section[key]
    if not isinstance(value, bool):
        raise TypeError(f"{name}.{key} must be a boolean")
    return {key: value}


def _protocol(obj: Any) -> ProtocolParameter:
    section = _section(obj, "protocol")
    _reject_unknown(section, _PROTOCOL_DECIMALS, "protocol")
    return ProtocolParameter(**_decimals(section, _PROTOCOL_DECIMALS, "protocol"))


def _risk(obj: Any) -> RiskParameter:
    section = _section(obj, "risk")
    _reject_unknown(
        section,
        _RISK_DECIMALS | {"utilization_curve", "p_controller", "stale_after", "maker_receive_only"},
        "risk",
    )
    kwargs: dict[str, Any] = _decimals(section, _RISK_DECIMALS, "risk")

    if "utilization_curve" in section:
        curve = _section(section["utilization_curve"], "risk.utilization_curve")
        _reject_unknown(curve, _CURVE_DECIMALS, "risk.utilization_curve")
        kwargs["utilization_curve"] = UtilizationCurve(
            **_decimals(curve, _CURVE_DECIMALS, "risk.utilization_curve")
        )
    if "p_controller" in section:
        controller = _section(section["p_controller"], "risk.p_controller")
        _reject_unknown(controller, _CONTROLLER_DECIMALS, "risk.p_controller")
        kwargs["p_controller"] = PController(
            **_decimals(controller, _CONTROLLER_DECIMALS, "risk.p_controller")
        )
    if "stale_after" in section:
        stale_after = section["stale_after"]
        if not isinstance(stale_after, int) or isinstance(stale_after, bool):
            raise TypeError("risk.stale_after must be an int (seconds)")
        kwargs["stale_after"] = stale_after
    kwargs.update(_flag(section, "maker_receive_only", "risk"))
    return RiskParameter(**kwargs)


def _market(obj: Any) -> MarketParameter:
    section = _section(obj, "market")
    _reject_unknown(section, frozenset({"funding_fee", "closed", "short_enabled"}), "market")
    kwargs: dict[str, Any] = _decimals(section, frozenset({"funding_fee"}), "market")
    kwargs.update(_flag(section, "closed", "market"))
    kwargs.update(_flag(section, "short_enabled", "market"))
    return MarketParameter(**kwargs)


def _payoff(obj: Any) -> PayoffTransform:
    section = _section(obj, "payoff")
    _reject_unknown(section, frozenset({"kind", "scale"}), "payoff")
    kind = section.get("kind", IdentityPayoff.name)
    if not isinstance(kind, str):
        raise TypeError("payoff.kind must be a string")
    scale: Optional[int] = None
    if "scale" in section:
        scale = from_decimal(section["scale"], name="payoff.scale")
    return payoff_from_name(kind, scale)


def parse_market_config(obj: Any) -> MarketConfig:
    """Build a `MarketConfig` from an already-parsed YAML document."""
    doc = _section(obj, "config")
    _reject_unknown(doc, _SECTIONS, "config")
    return MarketConfig(
        protocol=_protocol(doc.get("protocol")),
        risk=_risk(doc.get("risk")),
        market=_market(doc.get("market")),
        payoff=_payoff(doc.get("payoff")),
    )


def load_market_config(path: Union[str, Path]) -> MarketConfig:
    obj = yaml.safe_load(Path(path).read_text(encoding="utf-8"))
    return parse_market_config(obj)
