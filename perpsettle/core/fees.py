"""
Fee ledger (deterministic, integer-only).

Collected fees (funding fees from accumulation, position fees from updates) are
split between the protocol and the market. The protocol part is truncated and
the remainder goes to the market, so every split conserves the fee exactly.
"""

from __future__ import annotations

from dataclasses import dataclass, replace

from .fixed import UNIT, mul


@dataclass(frozen=True)
class FeeLedger:
    protocol: int = 0
    market: int = 0

    def __post_init__(self) -> None:
        for name, v in (("protocol", self.protocol), ("market", self.market)):
            if not isinstance(v, int) or isinstance(v, bool):
                raise TypeError(f"{name} must be an int")
            if v < 0:
                raise ValueError(f"{name} must be non-negative: {v}")

    def credit(self, fee: int, protocol_fee: int) -> FeeLedger:
        """Split *fee* by the protocol's share ``protocol_fee`` (fixed-point)."""
        if not isinstance(fee, int) or isinstance(fee, bool) or fee < 0:
            raise ValueError(f"fee must be a non-negative int, got {fee}")
        if not (0 <= protocol_fee <= UNIT):
            raise ValueError(f"protocol_fee must be in [0, 1]: {protocol_fee}")

        protocol_part = mul(fee, protocol_fee)
        return replace(
            self,
            protocol=self.protocol + protocol_part,
            market=self.market + (fee - protocol_part),
        )

    @property
    def total(self) -> int:
        return self.protocol + self.market
