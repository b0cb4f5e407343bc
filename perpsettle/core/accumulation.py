"""Accumulation engine: per-unit deltas for one oracle version transition.

``accumulate(position, from_version, to_version, risk_parameter, market_parameter)``
is pure. It combines three independently computed parts:

1. funding   (maker <-> long, driven by `funding.funding_rate`),
2. price PnL (maker <-> long, on the price move between the two versions),
3. share     (liquidity-time per unit of each side, independent of price).

Funding and PnL are zero when either maker or long is empty. Share is computed
per side with its own zero guard.

The snapshot is pegged to `from_version`: funding over a window that skipped
intermediate oracle versions uses the `from_version` price and position.

The funding fee is withheld from the flow, not charged on top of it: makers
receive `net = funding - fee` and longs pay the same `net`, while `fee` is
reported to the caller and booked in the fee ledger. Value credited to the
ledger is therefore not debited from any position; this matches the
settlement formula `maker += net / maker`, `long -= net / long` and must not be
changed to debit longs the gross `funding` without changing that formula.
"""

from __future__ import annotations

from ..state.position import Position
from .errors import VersionOrderError
from .fixed import SECONDS_PER_YEAR, UNIT, abs_val, div, div_trunc, mul, sign
from .funding import funding_rate
from .parameters import MarketParameter, RiskParameter
from .types import AccumulationResult, Accumulator, OracleVersion, ZERO_ACCUMULATOR


def elapsed_seconds(from_version: OracleVersion, to_version: OracleVersion) -> int:
    if to_version.version < from_version.version:
        raise VersionOrderError(f"to_version {to_version.version} precedes from_version {from_version.version}")
    elapsed = to_version.timestamp - from_version.timestamp
    if elapsed < 0:
        raise VersionOrderError(
            f"timestamp went backwards: {from_version.timestamp} -> {to_version.timestamp}"
        )
    return elapsed


def accumulate_funding(
    position: Position,
    from_version: OracleVersion,
    elapsed: int,
    risk_parameter: RiskParameter,
    funding_fee: int,
) -> tuple[Accumulator, int]:
    """Funding per unit and the fee withheld from it."""
    if position.long == 0 or position.maker == 0:
        return ZERO_ACCUMULATOR, 0

    notional = abs_val(mul(position.long, from_version.price))
    socialized_notional = mul(notional, position.socialization_factor_long())
    rate = funding_rate(position, risk_parameter)

    # rate is annual; one rounding for rate * elapsed / year * notional.
    funding = div_trunc(rate * elapsed * socialized_notional, UNIT * SECONDS_PER_YEAR)
    fee = mul(abs_val(funding), funding_fee)
    net = sign(funding) * (abs_val(funding) - fee)

    return Accumulator(maker=div(net, position.maker), long=div(-net, position.long)), fee


def accumulate_position_pnl(
    position: Position,
    from_version: OracleVersion,
    to_version: OracleVersion,
) -> Accumulator:
    """Price PnL per unit: longs gain what makers lose."""
    if position.long == 0 or position.maker == 0:
        return ZERO_ACCUMULATOR

    total_delta = mul(to_version.price - from_version.price, position.long)
    socialized_delta = mul(total_delta, position.socialization_factor_long())

    return Accumulator(maker=div(-socialized_delta, position.maker), long=div(socialized_delta, position.long))


def accumulate_share(position: Position, elapsed: int) -> Accumulator:
    """Liquidity-time accrued per unit of each side."""
    elapsed_fixed = elapsed * UNIT
    return Accumulator(
        maker=div(elapsed_fixed, position.maker) if position.maker else 0,
        long=div(elapsed_fixed, position.long) if position.long else 0,
        short=div(elapsed_fixed, position.short) if position.short else 0,
    )


def accumulate(
    position: Position,
    from_version: OracleVersion,
    to_version: OracleVersion,
    risk_parameter: RiskParameter,
    market_parameter: MarketParameter | None = None,
) -> AccumulationResult:
    """Compute the value delta, share delta and fee for ``from -> to``.

    A closed market accrues no funding, PnL or fee; share still accrues.
    """
    market_parameter = market_parameter if market_parameter is not None else MarketParameter()
    elapsed = elapsed_seconds(from_version, to_version)
    share = accumulate_share(position, elapsed)

    if market_parameter.closed:
        return AccumulationResult(value=ZERO_ACCUMULATOR, share=share, fee=0)

    funding, fee = accumulate_funding(
        position, from_version, elapsed, risk_parameter, market_parameter.funding_fee,
    )
    pnl = accumulate_position_pnl(position, from_version, to_version)
    return AccumulationResult(value=funding + pnl, share=share, fee=fee)
