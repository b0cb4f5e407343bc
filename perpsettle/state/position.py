"""
Position ledger (one record per scope: the global market or a single account).

Active quantities (`maker`, `long`, `short`) only change through `settle`;
pending quantities (`maker_next`, ...) only change through `update`. Both
return a new `Position`, so a rejected call leaves the caller's record intact.

Packed layout (`POSITION_LAYOUT`, 2 words):
- latest_version: u32
- maker, long, short, maker_next, long_next, short_next: u64 each
"""

from __future__ import annotations

from dataclasses import dataclass, replace

from ..core.errors import VersionOrderError
from ..core.fixed import UNIT, abs_val, div
from ..core.types import OracleVersion
from .packing import Layout, unsigned

QUANTITY_BITS = 64

POSITION_LAYOUT = Layout(
    "Position",
    (
        unsigned("latest_version", 32),
        unsigned("maker", QUANTITY_BITS),
        unsigned("long", QUANTITY_BITS),
        unsigned("short", QUANTITY_BITS),
        unsigned("maker_next", QUANTITY_BITS),
        unsigned("long_next", QUANTITY_BITS),
        unsigned("short_next", QUANTITY_BITS),
    ),
)

# Auto-derived from the layout (single source of truth).
POSITION_FIELD_NAMES: tuple[str, ...] = tuple(f.name for f in POSITION_LAYOUT.fields)


def socialization_factor(maker: int, opposite: int, same: int) -> int:
    """Fraction of a side's payout the counterparties can cover, in [0, 1].

    ``1`` when the side is empty, else ``min(1, (maker + opposite) / same)``.
    """
    if same == 0:
        return UNIT
    return min(UNIT, div(maker + opposite, same))


@dataclass(frozen=True)
class Position:
    latest_version: int = 0

    maker: int = 0
    long: int = 0
    short: int = 0

    maker_next: int = 0
    long_next: int = 0
    short_next: int = 0

    def __post_init__(self) -> None:
        for name in POSITION_FIELD_NAMES:
            val = getattr(self, name)
            if not isinstance(val, int) or isinstance(val, bool):
                raise TypeError(f"{name} must be int, got {type(val).__name__}")

    # -- Mutators (return new records) ---------------------------------------

    def update(self, maker_delta: int, long_delta: int, short_delta: int) -> Position:
        """Add signed deltas to the pending quantities.

        Raises:
            StorageInvalidError: a resulting quantity is negative or exceeds
                its packed lane.
        """
        new = replace(
            self,
            maker_next=self.maker_next + maker_delta,
            long_next=self.long_next + long_delta,
            short_next=self.short_next + short_delta,
        )
        new.check_storage()
        return new

    def settle(self, oracle_version: OracleVersion) -> Position:
        """Promote pending quantities to active at *oracle_version*.

        Pending quantities stay as the baseline for further updates.
        """
        if oracle_version.version < self.latest_version:
            raise VersionOrderError(
                f"cannot settle position at {self.latest_version} back to {oracle_version.version}"
            )
        new = replace(
            self,
            latest_version=oracle_version.version,
            maker=self.maker_next,
            long=self.long_next,
            short=self.short_next,
        )
        new.check_storage()
        return new

    # -- Derived quantities --------------------------------------------------

    def utilization(self) -> int:
        """``|long - short| / maker``; 0 when there is no maker liquidity."""
        if self.maker == 0:
            return 0
        return div(abs_val(self.long - self.short), self.maker)

    def skew(self) -> int:
        """Signed ``(long - short) / maker``; 0 when there is no maker liquidity."""
        if self.maker == 0:
            return 0
        return div(self.long - self.short, self.maker)

    def socialization_factor_long(self) -> int:
        return socialization_factor(self.maker, self.short, self.long)

    def socialization_factor_short(self) -> int:
        return socialization_factor(self.maker, self.long, self.short)

    def socialization_factor_long_next(self) -> int:
        return socialization_factor(self.maker_next, self.short_next, self.long_next)

    def socialization_factor_short_next(self) -> int:
        return socialization_factor(self.maker_next, self.long_next, self.short_next)

    def utilization_next(self) -> int:
        if self.maker_next == 0:
            return 0
        return div(abs_val(self.long_next - self.short_next), self.maker_next)

    def skew_next(self) -> int:
        if self.maker_next == 0:
            return 0
        return div(self.long_next - self.short_next, self.maker_next)

    def magnitude(self) -> int:
        return self.maker + self.long + self.short

    def magnitude_next(self) -> int:
        return self.maker_next + self.long_next + self.short_next

    def efficiency_next(self) -> int:
        """``maker_next / max(long_next, short_next)``; 1 with no taker exposure."""
        major = max(self.long_next, self.short_next)
        if major == 0:
            return UNIT
        return div(self.maker_next, major)

    def is_single_sided_next(self) -> bool:
        return sum(1 for q in (self.maker_next, self.long_next, self.short_next) if q != 0) <= 1

    # -- Persistence ---------------------------------------------------------

    def to_fields(self) -> dict[str, int]:
        return {name: getattr(self, name) for name in POSITION_FIELD_NAMES}

    def check_storage(self) -> None:
        POSITION_LAYOUT.check(self.to_fields())

    def encode(self) -> bytes:
        return POSITION_LAYOUT.encode(self.to_fields())

    @classmethod
    def decode(cls, data: bytes) -> Position:
        return cls(**POSITION_LAYOUT.decode(data))
