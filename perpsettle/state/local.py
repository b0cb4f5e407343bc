"""
Per-account settled balances.

`collateral` absorbs realized value (PnL + funding) and position fees;
`reward` accumulates the account's liquidity-time share. Both are fixed-point.
"""

from __future__ import annotations

from dataclasses import dataclass, replace

from .packing import Layout, signed, unsigned

LOCAL_LAYOUT = Layout(
    "Local",
    (
        signed("collateral", 64),
        unsigned("reward", 64),
    ),
)


@dataclass(frozen=True)
class Local:
    collateral: int = 0
    reward: int = 0

    def __post_init__(self) -> None:
        for name in ("collateral", "reward"):
            val = getattr(self, name)
            if not isinstance(val, int) or isinstance(val, bool):
                raise TypeError(f"{name} must be int, got {type(val).__name__}")

    def credit(self, *, collateral: int = 0, reward: int = 0) -> Local:
        """Return a new record with the amounts added (range-checked)."""
        new = replace(self, collateral=self.collateral + collateral, reward=self.reward + reward)
        LOCAL_LAYOUT.check(new.to_fields())
        return new

    def to_fields(self) -> dict[str, int]:
        return {"collateral": self.collateral, "reward": self.reward}

    def encode(self) -> bytes:
        return LOCAL_LAYOUT.encode(self.to_fields())

    @classmethod
    def decode(cls, data: bytes) -> Local:
        return cls(**LOCAL_LAYOUT.decode(data))
