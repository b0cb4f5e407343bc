"""
Versioned accumulator store.

Two sparse maps, keyed by oracle version, hold the cumulative per-unit value
(PnL + funding) and share (liquidity time) of each side. A key exists only if a
settlement actually stamped that version. Reading an unstamped version returns
the entry at the greatest stamped version <= the query; the zero accumulator is
returned only when nothing was stamped at or before it.

Entries are stored packed and decoded on read:
- value: `ACCUMULATOR_LAYOUT`, three signed 64-bit lanes, one word,
- share: `SHARE_LAYOUT`, three signed 128-bit lanes, two words. Share per unit
  grows as ``elapsed * UNIT**2 / side`` (a one-raw-unit side passes 2**63
  after about 107 days).
"""

from __future__ import annotations

from bisect import bisect_left, bisect_right
from typing import Dict, List, Optional

from ..core.accumulation import accumulate as compute_accumulation
from ..core.errors import VersionOrderError
from ..core.parameters import MarketParameter, RiskParameter
from ..core.types import AccumulationResult, Accumulator, OracleVersion, ZERO_ACCUMULATOR
from .packing import Layout, signed
from .position import Position

ACCUMULATOR_LAYOUT = Layout(
    "Accumulator",
    (
        signed("maker", 64),
        signed("long", 64),
        signed("short", 64),
    ),
)

SHARE_LAYOUT = Layout(
    "Share",
    (
        signed("maker", 128),
        signed("long", 128),
        signed("short", 128),
    ),
)


def encode_accumulator(acc: Accumulator) -> bytes:
    return ACCUMULATOR_LAYOUT.encode({"maker": acc.maker, "long": acc.long, "short": acc.short})


def decode_accumulator(data: bytes) -> Accumulator:
    return Accumulator(**ACCUMULATOR_LAYOUT.decode(data))


def encode_share(acc: Accumulator) -> bytes:
    return SHARE_LAYOUT.encode({"maker": acc.maker, "long": acc.long, "short": acc.short})


def decode_share(data: bytes) -> Accumulator:
    return Accumulator(**SHARE_LAYOUT.decode(data))


class VersionedAccumulator:
    """
    Sparse version -> (value, share) table with "last stamp at or before" reads.

    Stamps are strictly increasing; re-stamping an existing or older version is
    rejected, which makes a duplicated ``accumulate`` call for the same
    transition fail instead of double counting.
    """

    def __init__(self, latest_version: int = 0) -> None:
        self.latest_version = latest_version
        self._versions: List[int] = []
        self._value: Dict[int, bytes] = {}
        self._share: Dict[int, bytes] = {}

    # -- Reads ---------------------------------------------------------------

    def is_stamped(self, version: int) -> bool:
        return version in self._value

    def stamped_versions(self) -> tuple[int, ...]:
        return tuple(self._versions)

    def latest_stamp(self) -> Optional[int]:
        return self._versions[-1] if self._versions else None

    def stamp_at_or_before(self, version: int) -> Optional[int]:
        i = bisect_right(self._versions, version)
        return self._versions[i - 1] if i else None

    def next_stamp_after(self, version: int) -> Optional[int]:
        i = bisect_right(self._versions, version)
        return self._versions[i] if i < len(self._versions) else None

    def value_at(self, version: int) -> Accumulator:
        key = self.stamp_at_or_before(version)
        if key is None:
            return ZERO_ACCUMULATOR
        return decode_accumulator(self._value[key])

    def share_at(self, version: int) -> Accumulator:
        key = self.stamp_at_or_before(version)
        if key is None:
            return ZERO_ACCUMULATOR
        return decode_share(self._share[key])

    def accumulated(self, from_version: int, to_version: int) -> tuple[Accumulator, Accumulator]:
        """Per-unit (value, share) accrued between two versions."""
        if to_version < from_version:
            raise VersionOrderError(f"to_version {to_version} precedes from_version {from_version}")
        return (
            self.value_at(to_version) - self.value_at(from_version),
            self.share_at(to_version) - self.share_at(from_version),
        )

    # -- Writes --------------------------------------------------------------

    def stamp(self, version: int, value: Accumulator, share: Accumulator) -> None:
        """Record cumulative entries at *version*.

        Raises:
            VersionOrderError: *version* is not after the latest stamp.
            StorageInvalidError: an entry does not fit its packed lanes.
        """
        last = self.latest_stamp()
        if last is not None and version <= last:
            raise VersionOrderError(f"version {version} already covered by stamp {last}")
        # Encode both before writing either.
        packed_value = encode_accumulator(value)
        packed_share = encode_share(share)
        self._versions.insert(bisect_left(self._versions, version), version)
        self._value[version] = packed_value
        self._share[version] = packed_share

    def accumulate(
        self,
        position: Position,
        from_version: OracleVersion,
        to_version: OracleVersion,
        risk_parameter: RiskParameter,
        market_parameter: MarketParameter | None = None,
    ) -> AccumulationResult:
        """Accumulate ``from -> to`` on top of the stamp at `from_version`.

        Writes one stamp at `to_version`, advances `latest_version` and returns
        the deltas and fee.
        """
        last = self.latest_stamp()
        if last is not None and from_version.version < last:
            raise VersionOrderError(
                f"from_version {from_version.version} precedes latest stamp {last}"
            )

        result = compute_accumulation(position, from_version, to_version, risk_parameter, market_parameter)
        self.stamp(
            to_version.version,
            self.value_at(from_version.version) + result.value,
            self.share_at(from_version.version) + result.share,
        )
        self.latest_version = to_version.version
        return result
