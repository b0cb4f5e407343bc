"""Data types shared by the accumulation engine and the stores.

All types are frozen dataclasses (immutable).

Units/conventions:
- prices, quantities and per-unit values are fixed-point ints (``UNIT = 1e6``),
- timestamps are integer seconds,
- ``version`` is the oracle's monotonically increasing version number.
"""

from __future__ import annotations

from dataclasses import dataclass


def _require_int(name: str, value: object) -> None:
    if not isinstance(value, int) or isinstance(value, bool):
        raise TypeError(f"{name} must be int, got {type(value).__name__}")


@dataclass(frozen=True)
class OracleVersion:
    """One (version, timestamp, price) observation from the oracle."""

    version: int
    timestamp: int
    price: int
    valid: bool = True

    def __post_init__(self) -> None:
        for name in ("version", "timestamp", "price"):
            _require_int(name, getattr(self, name))
        if self.version < 0:
            raise ValueError(f"version must be non-negative: {self.version}")
        if self.timestamp < 0:
            raise ValueError(f"timestamp must be non-negative: {self.timestamp}")
        if not isinstance(self.valid, bool):
            raise TypeError("valid must be bool")


@dataclass(frozen=True)
class Accumulator:
    """Per-unit amounts for each position side."""

    maker: int = 0
    long: int = 0
    short: int = 0

    def __post_init__(self) -> None:
        for name in ("maker", "long", "short"):
            _require_int(name, getattr(self, name))

    def __add__(self, other: Accumulator) -> Accumulator:
        if not isinstance(other, Accumulator):
            return NotImplemented
        return Accumulator(
            maker=self.maker + other.maker,
            long=self.long + other.long,
            short=self.short + other.short,
        )

    def __sub__(self, other: Accumulator) -> Accumulator:
        if not isinstance(other, Accumulator):
            return NotImplemented
        return Accumulator(
            maker=self.maker - other.maker,
            long=self.long - other.long,
            short=self.short - other.short,
        )

    def is_zero(self) -> bool:
        return self.maker == 0 and self.long == 0 and self.short == 0


ZERO_ACCUMULATOR = Accumulator()


@dataclass(frozen=True)
class AccumulationResult:
    """Output of one accumulation step (per-unit deltas and the fee taken)."""

    value: Accumulator = ZERO_ACCUMULATOR
    share: Accumulator = ZERO_ACCUMULATOR
    fee: int = 0
