"""Tests for perpsettle/integration/market.py: the settlement driver."""

from dataclasses import replace
import logging

import pytest

from perpsettle.core.errors import (
    InsufficientCollateralError,
    MarketClosedError,
    OperationNotImplementedError,
    ParameterInvalidError,
    PositionLimitError,
    StalePriceError,
    StorageInvalidError,
)
from perpsettle.core.fixed import SECONDS_PER_YEAR, UNIT
from perpsettle.core.parameters import (
    MarketParameter,
    ProtocolParameter,
    RiskParameter,
    UtilizationCurve,
)
from perpsettle.core.types import Accumulator
from perpsettle.integration.market import Market

NO_FUNDING = RiskParameter(
    utilization_curve=UtilizationCurve(min_rate=0, max_rate=0, target_rate=0, target_utilization=800_000),
)


def _open_book(market: Market) -> None:
    """maker 10, taker long 10, both with 1000 collateral."""
    market.update("maker", 10 * UNIT, 0, 0, collateral=1_000 * UNIT)
    market.update("taker", 0, 10 * UNIT, 0, collateral=1_000 * UNIT)


# ---------------------------------------------------------------------------
# Settlement
# ---------------------------------------------------------------------------

class TestSettlement:
    def test_initial_state(self, oracle):
        market = Market(oracle)
        assert market.position.latest_version == 1
        assert market.accumulator.stamped_versions() == ()
        assert market.account("nobody").position.latest_version == 1

    def test_pending_takes_effect_at_next_version(self, oracle):
        market = Market(oracle, risk_parameter=NO_FUNDING)
        _open_book(market)
        assert market.position.maker == 0
        assert market.position.maker_next == 10 * UNIT

        oracle.push(2, 1_100, 100 * UNIT)
        market.settle()
        assert market.position.latest_version == 2
        assert (market.position.maker, market.position.long) == (10 * UNIT, 10 * UNIT)

    def test_price_move_settles_accounts(self, oracle):
        market = Market(oracle, risk_parameter=NO_FUNDING)
        _open_book(market)
        oracle.push(2, 1_100, 100 * UNIT)
        oracle.push(3, 1_200, 110 * UNIT)
        # the market skipped straight to version 3; 2 is never stamped
        market.settle("maker")
        market.settle("taker")

        maker = market.account("maker")
        taker = market.account("taker")
        assert maker.position.latest_version == 3
        assert maker.position.maker == 10 * UNIT
        assert taker.position.long == 10 * UNIT
        # promoted at 3, so no value accrued yet
        assert maker.local.collateral == 1_000 * UNIT
        assert taker.local.collateral == 1_000 * UNIT

    def test_two_phase_account_sync(self, oracle):
        market = Market(oracle, risk_parameter=NO_FUNDING)
        _open_book(market)
        oracle.push(2, 1_100, 100 * UNIT)
        market.settle()
        oracle.push(3, 1_200, 110 * UNIT)
        market.settle()

        value, share = market.accumulated(2, 3)
        assert value == Accumulator(maker=-10 * UNIT, long=10 * UNIT)
        assert share == Accumulator(maker=10 * UNIT, long=10 * UNIT)

        # accounts last synced at 1: pending promoted at stamp 2, then accrue 2 -> 3
        market.settle("maker")
        market.settle("taker")
        maker = market.account("maker")
        taker = market.account("taker")
        assert maker.local.collateral == 900 * UNIT
        assert taker.local.collateral == 1_100 * UNIT
        assert maker.local.reward == 100 * UNIT
        assert taker.local.reward == 100 * UNIT

    def test_settle_is_idempotent(self, oracle):
        market = Market(oracle, risk_parameter=NO_FUNDING)
        _open_book(market)
        oracle.push(2, 1_100, 100 * UNIT)
        market.settle()
        stamps = market.accumulator.stamped_versions()
        market.settle()
        market.settle()
        assert market.accumulator.stamped_versions() == stamps == (2,)

    def test_account_settle_twice_does_not_double_count(self, oracle):
        market = Market(oracle, risk_parameter=NO_FUNDING)
        _open_book(market)
        oracle.push(2, 1_100, 100 * UNIT)
        oracle.push(3, 1_200, 110 * UNIT)
        market.settle()
        market.settle("maker")
        first = market.account("maker")
        market.settle("maker")
        assert market.account("maker") == first

    def test_invalid_latest_version_is_skipped(self, oracle):
        market = Market(oracle, risk_parameter=NO_FUNDING)
        oracle.push(2, 1_100, 0, valid=False)
        market.settle()
        assert market.position.latest_version == 1
        assert market.accumulator.stamped_versions() == ()

    def test_funding_fee_credited_to_ledger(self, oracle):
        market = Market(
            oracle,
            market_parameter=MarketParameter(funding_fee=100_000),
            protocol_parameter=ProtocolParameter(protocol_fee=200_000),
        )
        market.update("maker", 10 * UNIT, 0, 0, collateral=1_000 * UNIT)
        market.update("taker", 0, 5 * UNIT, 0, collateral=1_000 * UNIT)
        oracle.push(2, 1_100, 100 * UNIT)
        market.settle()
        oracle.push(3, 1_100 + SECONDS_PER_YEAR, 100 * UNIT)
        market.settle()
        assert market.fees.total == 6_250_000
        assert market.fees.protocol == 1_250_000

    def test_funding_across_skipped_version_uses_last_settled_price(self, oracle):
        market = Market(oracle)
        market.update("maker", 10 * UNIT, 0, 0, collateral=1_000 * UNIT)
        market.update("taker", 0, 5 * UNIT, 0, collateral=1_000 * UNIT)
        oracle.push(2, 1_100, 100 * UNIT)
        market.settle()
        # version 3 spikes the price but is never settled
        oracle.push(3, 1_100 + SECONDS_PER_YEAR // 2, 150 * UNIT)
        oracle.push(4, 1_100 + SECONDS_PER_YEAR, 100 * UNIT)
        market.settle("maker")
        market.settle("taker")

        assert market.accumulator.stamped_versions() == (2, 4)
        # 12.5% annual on 500 notional at the version-2 price
        value, _ = market.accumulated(2, 4)
        assert value == Accumulator(maker=6_250_000, long=-12_500_000)
        assert market.account("maker").local.collateral == 1_062_500_000
        assert market.account("taker").local.collateral == 937_500_000

    def test_dust_position_does_not_lock_market(self, oracle):
        market = Market(oracle, risk_parameter=NO_FUNDING)
        market.update("maker", 10 * UNIT, 0, 0, collateral=1_000 * UNIT)
        market.update("dust", 0, 1, 0, collateral=UNIT)
        oracle.push(2, 1_100, 100 * UNIT)
        market.settle()
        elapsed = 110 * 86_400
        oracle.push(3, 1_100 + elapsed, 100 * UNIT)
        market.settle()

        # one raw unit of long earns elapsed * UNIT**2 share per unit, past 2**63
        _, share = market.accumulated(2, 3)
        assert share.long == elapsed * UNIT * UNIT
        assert share.long > (1 << 63)

        market.update("dust", 0, 0, 0)
        market.update("maker", 0, 0, 0)
        assert market.position.latest_version == 3
        assert market.position.magnitude_next() == 0
        assert market.account("dust").local.reward == elapsed * UNIT
        assert market.account("maker").local.reward == elapsed * UNIT


# ---------------------------------------------------------------------------
# Update guards
# ---------------------------------------------------------------------------

class TestUpdateGuards:
    def test_stale_price(self, oracle):
        market = Market(oracle)
        oracle.now = 1_000 + RiskParameter().stale_after
        with pytest.raises(StalePriceError):
            market.update("maker", UNIT, 0, 0, collateral=1_000 * UNIT)

    def test_single_sided(self, oracle):
        market = Market(oracle)
        with pytest.raises(PositionLimitError) as exc:
            market.update("a", UNIT, UNIT, 0, collateral=1_000 * UNIT)
        assert exc.value.reason == "single_sided"

    def test_maker_limit(self, oracle):
        market = Market(oracle, risk_parameter=replace(RiskParameter(), maker_limit=10 * UNIT))
        market.update("a", 10 * UNIT, 0, 0, collateral=1_000 * UNIT)
        with pytest.raises(PositionLimitError) as exc:
            market.update("b", UNIT, 0, 0, collateral=1_000 * UNIT)
        assert exc.value.reason == "maker_limit"

    def test_efficiency_limit(self, oracle):
        market = Market(oracle)
        market.update("maker", 10 * UNIT, 0, 0, collateral=1_000 * UNIT)
        with pytest.raises(PositionLimitError) as exc:
            market.update("taker", 0, 30 * UNIT, 0, collateral=10_000 * UNIT)
        assert exc.value.reason == "efficiency_limit"

    def test_negative_target_rejected(self, oracle):
        market = Market(oracle)
        with pytest.raises(StorageInvalidError):
            market.update("a", -UNIT, 0, 0)

    def test_insufficient_collateral_changes_nothing(self, oracle):
        market = Market(oracle)
        market.update("maker", 10 * UNIT, 0, 0, collateral=1_000 * UNIT)
        with pytest.raises(InsufficientCollateralError):
            market.update("taker", 0, 5 * UNIT, 0, collateral=100 * UNIT)
        assert market.position.long_next == 0
        assert market.account("taker").local.collateral == 0

    def test_withdrawal_below_zero_rejected(self, oracle):
        market = Market(oracle)
        market.update("a", 0, 0, 0, collateral=10 * UNIT)
        with pytest.raises(InsufficientCollateralError):
            market.update("a", 0, 0, 0, collateral=-11 * UNIT)
        assert market.account("a").local.collateral == 10 * UNIT

    def test_short_disabled(self, oracle):
        market = Market(oracle, market_parameter=MarketParameter(short_enabled=False))
        market.update("maker", 10 * UNIT, 0, 0, collateral=1_000 * UNIT)
        with pytest.raises(OperationNotImplementedError):
            market.update("taker", 0, 0, UNIT, collateral=1_000 * UNIT)

    def test_rejection_is_logged(self, oracle, caplog):
        market = Market(oracle)
        with caplog.at_level(logging.WARNING, logger="perpsettle.integration.market"):
            with pytest.raises(PositionLimitError):
                market.update("a", UNIT, UNIT, 0, collateral=1_000 * UNIT)
        assert "update rejected for a" in caplog.text


# ---------------------------------------------------------------------------
# Position fees
# ---------------------------------------------------------------------------

class TestPositionFees:
    def test_taker_fee_charged_and_split(self, oracle):
        market = Market(
            oracle,
            risk_parameter=replace(RiskParameter(), taker_fee=1_000),
            protocol_parameter=ProtocolParameter(protocol_fee=100_000),
        )
        _open_book(market)
        # 10 units at 100 = 1000 notional, 0.1% taker fee
        assert market.account("taker").local.collateral == 999 * UNIT
        assert market.account("maker").local.collateral == 1_000 * UNIT
        assert market.fees.protocol == 100_000
        assert market.fees.market == 900_000

    def test_skew_and_impact_fees(self, oracle):
        market = Market(
            oracle,
            risk_parameter=replace(
                RiskParameter(), taker_skew_fee=1_000, taker_impact_fee=2_000, maker_fee=500,
            ),
        )
        market.update("maker", 10 * UNIT, 0, 0, collateral=1_000 * UNIT)
        # maker fee: 1000 notional * 0.05%
        assert market.account("maker").local.collateral == 1_000 * UNIT - 500_000
        market.update("taker", 0, 5 * UNIT, 0, collateral=1_000 * UNIT)
        # skew 0 -> 0.5: rate = 0.1% * 0.5 + 0.2% * 0.5 = 0.15% on 500 notional
        assert market.account("taker").local.collateral == 1_000 * UNIT - 750_000


# ---------------------------------------------------------------------------
# Closed market
# ---------------------------------------------------------------------------

class TestClosedMarket:
    def _closed(self, oracle) -> Market:
        market = Market(oracle, risk_parameter=replace(NO_FUNDING, taker_fee=1_000))
        _open_book(market)
        oracle.push(2, 1_100, 100 * UNIT)
        market.update_parameter(MarketParameter(closed=True))
        return market

    def test_increase_rejected(self, oracle):
        market = self._closed(oracle)
        with pytest.raises(MarketClosedError):
            market.update("taker", 0, 11 * UNIT, 0)

    def test_close_allowed_without_fee(self, oracle):
        market = self._closed(oracle)
        before = market.account("taker")
        market.update("taker", 0, 0, 0)
        after = market.account("taker")
        assert after.position.long_next == 0
        assert after.local.collateral == before.local.collateral

    def test_no_pnl_after_close(self, oracle):
        market = self._closed(oracle)
        oracle.push(3, 1_200, 200 * UNIT)
        market.settle("taker")
        value, share = market.accumulated(2, 3)
        assert value.is_zero()
        assert share.maker == 10 * UNIT

    def test_never_liquidatable(self, oracle):
        market = self._closed(oracle)
        assert market.is_liquidatable("maker") is False


# ---------------------------------------------------------------------------
# Risk views and governance
# ---------------------------------------------------------------------------

class TestRiskViews:
    def test_liquidatable_after_adverse_move(self, oracle):
        market = Market(oracle, risk_parameter=NO_FUNDING)
        market.update("maker", 10 * UNIT, 0, 0, collateral=300 * UNIT)
        market.update("taker", 0, 10 * UNIT, 0, collateral=1_000 * UNIT)
        oracle.push(2, 1_100, 100 * UNIT)
        market.settle("maker")
        assert market.maintenance("maker") == 300 * UNIT
        assert market.is_liquidatable("maker") is False

        oracle.push(3, 1_200, 110 * UNIT)
        market.settle("maker")
        assert market.account("maker").local.collateral == 200 * UNIT
        assert market.maintenance("maker") == 330 * UNIT
        assert market.is_liquidatable("maker") is True
        assert market.is_liquidatable("taker") is False


class TestGovernance:
    def test_initial_risk_parameter_checked_against_protocol(self, oracle):
        with pytest.raises(ParameterInvalidError):
            Market(
                oracle,
                risk_parameter=replace(RiskParameter(), taker_fee=500_000),
                protocol_parameter=ProtocolParameter(max_fee=1_000),
            )

    def test_initial_market_parameter_checked_against_protocol(self, oracle):
        with pytest.raises(ParameterInvalidError):
            Market(
                oracle,
                market_parameter=MarketParameter(funding_fee=600_000),
                protocol_parameter=ProtocolParameter(max_cut=500_000),
            )

    def test_update_risk_parameter(self, oracle):
        market = Market(oracle)
        stored = market.update_risk_parameter(replace(RiskParameter(), taker_fee=2_000))
        assert stored.taker_fee == 2_000
        assert market.risk_parameter.taker_fee == 2_000

    def test_rejected_risk_parameter_keeps_old(self, oracle):
        market = Market(oracle, protocol_parameter=ProtocolParameter(max_fee=1_000))
        with pytest.raises(ParameterInvalidError):
            market.update_risk_parameter(replace(RiskParameter(), taker_fee=2_000))
        assert market.risk_parameter == RiskParameter()

    def test_parameter_update_settles_first(self, oracle):
        market = Market(oracle, risk_parameter=NO_FUNDING)
        _open_book(market)
        oracle.push(2, 1_100, 100 * UNIT)
        market.update_parameter(MarketParameter(funding_fee=100_000))
        assert market.position.latest_version == 2
        assert market.market_parameter.funding_fee == 100_000

    def test_protocol_parameter_swap(self, oracle):
        market = Market(oracle)
        market.update_protocol_parameter(ProtocolParameter(protocol_fee=UNIT))
        assert market.protocol_parameter.protocol_fee == UNIT
