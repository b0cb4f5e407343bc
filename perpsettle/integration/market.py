"""
Settlement driver for a single market.

`Market` owns the global `Position`, the `VersionedAccumulator`, the parameter
stores, the fee ledger and the per-account records, and is their only mutator.
Guarantees:
- each step (global sync, account sync, update) computes its complete next
  state first and swaps it in only after all guards pass, so a step that
  raises `SettlementError` leaves its state unchanged,
- global settlement with no newer valid oracle version is a no-op, which makes
  repeated triggers for the same transition idempotent,
- the accumulator store rejects re-stamping, so a transition that slipped past
  the driver twice still cannot be counted twice.

Per-account settlement never writes to the accumulator store. It reads two
stamps per window: first up to the stamp at which the account's pending
position took effect, then on to the global version.

Execution is single-threaded; callers serialize access.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import logging
from typing import Dict, Optional

from ..core.errors import (
    InsufficientCollateralError,
    MarketClosedError,
    OperationNotImplementedError,
    PositionLimitError,
    SettlementError,
    StalePriceError,
)
from ..core.fees import FeeLedger
from ..core.fixed import abs_val, mul
from ..core.oracle import OracleProvider, OracleVersionCache, PayoffTransform, is_fresh
from ..core.parameters import (
    MarketParameter,
    MarketParameterStore,
    ProtocolParameter,
    RiskParameter,
    RiskParameterStore,
)
from ..core.risk import is_liquidatable as position_is_liquidatable
from ..core.risk import maintenance as maintenance_requirement
from ..core.risk import notional
from ..core.types import Accumulator, OracleVersion
from ..state.local import Local
from ..state.position import Position
from ..state.versioned import VersionedAccumulator

logger = logging.getLogger(__name__)

AccountId = str


@dataclass(frozen=True)
class Account:
    position: Position
    local: Local = field(default_factory=Local)


def _dot(position: Position, acc: Accumulator) -> int:
    """Owed amount for an active position given per-unit deltas."""
    return mul(position.maker, acc.maker) + mul(position.long, acc.long) + mul(position.short, acc.short)


class Market:
    def __init__(
        self,
        oracle: OracleProvider,
        *,
        risk_parameter: Optional[RiskParameter] = None,
        market_parameter: Optional[MarketParameter] = None,
        protocol_parameter: Optional[ProtocolParameter] = None,
        payoff: Optional[PayoffTransform] = None,
    ) -> None:
        self.oracle = OracleVersionCache(oracle, payoff)
        self.protocol_parameter = protocol_parameter if protocol_parameter is not None else ProtocolParameter()
        self.risk_parameter_store = RiskParameterStore(risk_parameter, self.protocol_parameter)
        self.market_parameter_store = MarketParameterStore(market_parameter, self.protocol_parameter)

        latest = self.oracle.latest()
        self.position = Position(latest_version=latest.version)
        self.accumulator = VersionedAccumulator(latest_version=latest.version)
        self.fees = FeeLedger()
        self._accounts: Dict[AccountId, Account] = {}

    # -- Views ---------------------------------------------------------------

    @property
    def risk_parameter(self) -> RiskParameter:
        return self.risk_parameter_store.read()

    @property
    def market_parameter(self) -> MarketParameter:
        return self.market_parameter_store.read()

    @property
    def latest_version(self) -> OracleVersion:
        """Oracle version the global position was last settled at."""
        return self.oracle.at_version(self.position.latest_version)

    def account(self, account: AccountId) -> Account:
        existing = self._accounts.get(account)
        if existing is not None:
            return existing
        return Account(position=Position(latest_version=self.position.latest_version))

    def accumulated(self, from_version: int, to_version: int) -> tuple[Accumulator, Accumulator]:
        return self.accumulator.accumulated(from_version, to_version)

    def maintenance(self, account: AccountId) -> int:
        """Maintenance requirement of the account's active position (as of its last sync)."""
        return maintenance_requirement(
            self.account(account).position.magnitude(), self.latest_version.price, self.risk_parameter,
        )

    def is_liquidatable(self, account: AccountId) -> bool:
        """Eligibility only; closed markets never liquidate."""
        if self.market_parameter.closed:
            return False
        acct = self.account(account)
        return position_is_liquidatable(
            acct.position, acct.local.collateral, self.latest_version.price, self.risk_parameter,
        )

    # -- Settlement ----------------------------------------------------------

    def settle(self, account: Optional[AccountId] = None) -> None:
        """Bring the market (and optionally one account) up to the latest oracle version."""
        self._settle_global()
        if account is not None:
            self._accounts[account] = self._settle_account(self.account(account))

    def _settle_global(self) -> None:
        latest = self.oracle.latest()
        if not latest.valid or latest.version <= self.position.latest_version:
            return

        from_version = self.oracle.at_version(self.position.latest_version)
        next_position = self.position.settle(latest)
        result = self.accumulator.accumulate(
            self.position, from_version, latest, self.risk_parameter, self.market_parameter,
        )
        self.fees = self.fees.credit(result.fee, self.protocol_parameter.protocol_fee)
        self.position = next_position
        logger.debug(
            "stamped version %d (from %d): value=%s share=%s fee=%d",
            latest.version, from_version.version, result.value, result.share, result.fee,
        )

    def _settle_account(self, acct: Account) -> Account:
        position, local = acct.position, acct.local
        target = self.position.latest_version
        if position.latest_version >= target:
            return acct

        # Pending quantities took effect at the first stamp after the last sync.
        first = self.accumulator.next_stamp_after(position.latest_version)
        if first is not None and first < target:
            local = self._accrue(local, position, position.latest_version, first)
            position = position.settle(self.oracle.at_version(first))

        local = self._accrue(local, position, position.latest_version, target)
        position = position.settle(self.oracle.at_version(target))
        logger.debug("account synced to %d: collateral=%d reward=%d", target, local.collateral, local.reward)
        return Account(position=position, local=local)

    def _accrue(self, local: Local, position: Position, from_version: int, to_version: int) -> Local:
        value, share = self.accumulator.accumulated(from_version, to_version)
        return local.credit(collateral=_dot(position, value), reward=_dot(position, share))

    # -- Updates -------------------------------------------------------------

    def update(
        self,
        account: AccountId,
        maker: int,
        long: int,
        short: int,
        collateral: int = 0,
    ) -> Account:
        """Settle, then set the account's pending position to the given targets.

        `collateral` is a signed bookkeeping delta (no token movement).
        """
        self.settle(account)
        try:
            return self._update(account, maker, long, short, collateral)
        except SettlementError as exc:
            logger.warning("update rejected for %s: %s", account, exc)
            raise

    def _update(self, account: AccountId, maker: int, long: int, short: int, collateral: int) -> Account:
        acct = self.account(account)
        risk = self.risk_parameter
        market = self.market_parameter
        latest = self.latest_version

        maker_delta = maker - acct.position.maker_next
        long_delta = long - acct.position.long_next
        short_delta = short - acct.position.short_next

        next_position = acct.position.update(maker_delta, long_delta, short_delta)
        next_global = self.position.update(maker_delta, long_delta, short_delta)

        increasing = maker_delta > 0 or long_delta > 0 or short_delta > 0
        if increasing and market.closed:
            raise MarketClosedError("market is closed to new exposure")
        if increasing and not is_fresh(latest, self.oracle.current(), risk.stale_after):
            raise StalePriceError(f"latest version {latest.version} is stale")
        if short_delta > 0 and not market.short_enabled:
            raise OperationNotImplementedError("short positions are disabled for this market")
        if not next_position.is_single_sided_next():
            raise PositionLimitError("single_sided")
        if maker_delta > 0 and next_global.maker_next > risk.maker_limit:
            raise PositionLimitError("maker_limit")
        if (
            not market.closed
            and (maker_delta < 0 or long_delta > 0 or short_delta > 0)
            and next_global.efficiency_next() < risk.efficiency_limit
        ):
            raise PositionLimitError("efficiency_limit")

        fee = 0
        if not market.closed:
            fee = self._position_fee(latest.price, maker_delta, long_delta, short_delta, self.position, next_global, risk)
        local = acct.local.credit(collateral=collateral - fee)

        magnitude = next_position.magnitude_next()
        if magnitude > 0:
            if local.collateral < maintenance_requirement(magnitude, latest.price, risk):
                raise InsufficientCollateralError(
                    f"collateral {local.collateral} below maintenance for {magnitude}"
                )
        elif collateral < 0 and local.collateral < 0:
            raise InsufficientCollateralError(f"withdrawal leaves collateral at {local.collateral}")

        fees = self.fees.credit(fee, self.protocol_parameter.protocol_fee)

        self.position = next_global
        self.fees = fees
        updated = Account(position=next_position, local=local)
        self._accounts[account] = updated
        logger.debug(
            "updated %s at %d: maker=%d long=%d short=%d fee=%d",
            account, latest.version, maker, long, short, fee,
        )
        return updated

    @staticmethod
    def _position_fee(
        price: int,
        maker_delta: int,
        long_delta: int,
        short_delta: int,
        before: Position,
        after: Position,
        risk: RiskParameter,
    ) -> int:
        """Taker fee (base + skew + impact) plus maker fee (base + impact)."""
        skew_before = abs_val(before.skew_next())
        skew_after = abs_val(after.skew_next())
        taker_rate = (
            risk.taker_fee
            + mul(risk.taker_skew_fee, skew_after)
            + mul(risk.taker_impact_fee, max(0, skew_after - skew_before))
        )
        maker_rate = risk.maker_fee + mul(
            risk.maker_impact_fee, abs_val(after.utilization_next() - before.utilization_next()),
        )
        taker = abs_val(long_delta) + abs_val(short_delta)
        return mul(notional(taker, price), taker_rate) + mul(notional(abs_val(maker_delta), price), maker_rate)

    # -- Governance ----------------------------------------------------------

    def update_protocol_parameter(self, protocol_parameter: ProtocolParameter) -> None:
        self.protocol_parameter = protocol_parameter
        logger.info("protocol parameter updated: %s", protocol_parameter)

    def update_risk_parameter(self, risk_parameter: RiskParameter) -> RiskParameter:
        """Settle, then validate and store; new values apply from the next window."""
        self._settle_global()
        stored = self.risk_parameter_store.validate_and_store(risk_parameter, self.protocol_parameter)
        logger.info("risk parameter updated at %d", self.position.latest_version)
        return stored

    def update_parameter(self, market_parameter: MarketParameter) -> MarketParameter:
        self._settle_global()
        stored = self.market_parameter_store.validate_and_store(market_parameter, self.protocol_parameter)
        logger.info("market parameter updated at %d: %s", self.position.latest_version, stored)
        return stored
