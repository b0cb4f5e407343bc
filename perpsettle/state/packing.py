"""
Bounds-checked fixed-width packed records.

Each persisted entity (Position, Local, accumulator entries, parameters) is
described by a `Layout`: an ordered tuple of `Field` lanes with explicit bit
widths. Encoding rules:
- lanes are packed from the least significant bit in declaration order,
- signed lanes use two's complement within the lane,
- the record occupies a whole number of 32-byte words (big-endian),
- bits past the last lane are reserved and must be zero.

Nothing is ever truncated: a value outside its lane raises
`StorageInvalidError` before any bytes are produced.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping

from ..core.errors import StorageInvalidError

WORD_BITS = 256
WORD_BYTES = 32


@dataclass(frozen=True)
class Field:
    """One lane of a packed record."""

    name: str
    bits: int
    signed: bool = False

    def __post_init__(self) -> None:
        if not isinstance(self.bits, int) or isinstance(self.bits, bool) or self.bits <= 0:
            raise ValueError(f"field {self.name!r} must have a positive bit width")

    @property
    def min_value(self) -> int:
        return -(1 << (self.bits - 1)) if self.signed else 0

    @property
    def max_value(self) -> int:
        return (1 << (self.bits - 1)) - 1 if self.signed else (1 << self.bits) - 1

    def check(self, value: int | bool, *, layout: str = "") -> int:
        """Return *value* as an int, or raise if it does not fit the lane."""
        if isinstance(value, bool):
            value = int(value)
        if not isinstance(value, int):
            raise TypeError(f"{self.name} must be an int, got {type(value).__name__}")
        if not (self.min_value <= value <= self.max_value):
            qualified = f"{layout}.{self.name}" if layout else self.name
            raise StorageInvalidError(qualified, value, self.min_value, self.max_value)
        return value


@dataclass(frozen=True)
class Layout:
    """Ordered set of lanes making up a packed record."""

    name: str
    fields: tuple[Field, ...]

    def __post_init__(self) -> None:
        names = [f.name for f in self.fields]
        if len(set(names)) != len(names):
            raise ValueError(f"layout {self.name!r} has duplicate field names")

    @property
    def used_bits(self) -> int:
        return sum(f.bits for f in self.fields)

    @property
    def words(self) -> int:
        return max(1, -(-self.used_bits // WORD_BITS))

    @property
    def size(self) -> int:
        """Encoded size in bytes."""
        return self.words * WORD_BYTES

    def field(self, name: str) -> Field:
        for f in self.fields:
            if f.name == name:
                return f
        raise KeyError(f"{self.name} has no field {name!r}")

    def check(self, values: Mapping[str, int | bool]) -> None:
        """Range-check every lane without encoding."""
        self._lanes(values)

    def encode(self, values: Mapping[str, int | bool]) -> bytes:
        packed = 0
        offset = 0
        for f, v in zip(self.fields, self._lanes(values)):
            lane = v & ((1 << f.bits) - 1)
            packed |= lane << offset
            offset += f.bits
        return packed.to_bytes(self.size, "big")

    def decode(self, data: bytes) -> dict[str, int]:
        if not isinstance(data, (bytes, bytearray)):
            raise TypeError(f"{self.name} record must be bytes")
        if len(data) != self.size:
            raise StorageInvalidError(f"{self.name}.<size>", len(data), self.size, self.size)
        packed = int.from_bytes(data, "big")
        padding = packed >> self.used_bits
        if padding != 0:
            raise StorageInvalidError(f"{self.name}.<reserved>", padding, 0, 0)

        out: dict[str, int] = {}
        offset = 0
        for f in self.fields:
            lane = (packed >> offset) & ((1 << f.bits) - 1)
            if f.signed and lane >> (f.bits - 1):
                lane -= 1 << f.bits
            out[f.name] = lane
            offset += f.bits
        return out

    def _lanes(self, values: Mapping[str, int | bool]) -> list[int]:
        extra = set(values) - {f.name for f in self.fields}
        if extra:
            raise KeyError(f"{self.name} has no fields {sorted(extra)}")
        # Missing keys raise KeyError: a record is always written whole.
        return [f.check(values[f.name], layout=self.name) for f in self.fields]


def unsigned(name: str, bits: int) -> Field:
    return Field(name, bits, signed=False)


def signed(name: str, bits: int) -> Field:
    return Field(name, bits, signed=True)
