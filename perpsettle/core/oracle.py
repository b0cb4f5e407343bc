"""
Oracle boundary: version source protocol, version pinning and payoff transforms.

Contents:
- `OracleProvider` is the external price feed (not implemented here).
- `OracleVersionCache` pins every version it observes so the sparse
  accumulator store never sees two different histories for the same version.
- Payoff transforms map the raw oracle price to the market's payoff price and
  are chosen once, at configuration time.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Dict, Optional, Protocol

from .errors import OracleInconsistencyError, VersionOrderError
from .fixed import mul
from .types import OracleVersion


class OracleProvider(Protocol):
    """External source of oracle versions."""

    def at_version(self, version: int) -> OracleVersion: ...

    def current(self) -> int:
        """Current timestamp as seen by the oracle."""
        ...

    def latest(self) -> OracleVersion: ...


# ---------------------------------------------------------------------------
# Payoff transforms
# ---------------------------------------------------------------------------

class PayoffTransform:
    """Maps an oracle price to the price the market settles on."""

    name = "abstract"

    def transform(self, price: int) -> int:
        raise NotImplementedError


@dataclass(frozen=True)
class IdentityPayoff(PayoffTransform):
    name = "identity"

    def transform(self, price: int) -> int:
        return price


@dataclass(frozen=True)
class SquaredPayoff(PayoffTransform):
    name = "squared"

    def transform(self, price: int) -> int:
        return mul(price, price)


@dataclass(frozen=True)
class ScaledPayoff(PayoffTransform):
    scale: int

    name = "scaled"

    def __post_init__(self) -> None:
        if not isinstance(self.scale, int) or isinstance(self.scale, bool):
            raise TypeError("scale must be int")
        if self.scale == 0:
            raise ValueError("scale must be non-zero")

    def transform(self, price: int) -> int:
        return mul(price, self.scale)


def payoff_from_name(name: str, scale: Optional[int] = None) -> PayoffTransform:
    if name == IdentityPayoff.name:
        return IdentityPayoff()
    if name == SquaredPayoff.name:
        return SquaredPayoff()
    if name == ScaledPayoff.name:
        if scale is None:
            raise ValueError("scaled payoff requires a scale")
        return ScaledPayoff(scale)
    raise ValueError(f"unknown payoff kind: {name!r}")


# ---------------------------------------------------------------------------
# Freshness
# ---------------------------------------------------------------------------

def is_fresh(latest: OracleVersion, current_timestamp: int, stale_after: int) -> bool:
    """True if *latest* is younger than ``stale_after`` seconds."""
    if current_timestamp < 0:
        raise ValueError(f"current_timestamp must be non-negative: {current_timestamp}")
    if latest.timestamp > current_timestamp:
        return True
    return (current_timestamp - latest.timestamp) < stale_after


# ---------------------------------------------------------------------------
# Version pinning
# ---------------------------------------------------------------------------

class OracleVersionCache:
    """
    Read-through cache over an `OracleProvider` that pins observed versions.

    Once a version has been observed, `at_version` answers from the cache, and
    a provider that later reports a different (timestamp, price) for it is
    rejected with `OracleInconsistencyError`.
    """

    def __init__(self, provider: OracleProvider, payoff: Optional[PayoffTransform] = None) -> None:
        self._provider = provider
        self._payoff = payoff if payoff is not None else IdentityPayoff()
        self._pinned: Dict[int, OracleVersion] = {}
        self._latest_seen: Optional[int] = None

    @property
    def payoff(self) -> PayoffTransform:
        return self._payoff

    def is_pinned(self, version: int) -> bool:
        return version in self._pinned

    def at_version(self, version: int) -> OracleVersion:
        pinned = self._pinned.get(version)
        if pinned is not None:
            return pinned
        raw = self._provider.at_version(version)
        if raw.version != version:
            raise OracleInconsistencyError(f"asked for version {version}, oracle answered {raw.version}")
        return self._pin(raw)

    def latest(self) -> OracleVersion:
        raw = self._provider.latest()
        if self._latest_seen is not None and raw.version < self._latest_seen:
            raise VersionOrderError(f"oracle latest moved back from {self._latest_seen} to {raw.version}")
        observed = self._pin(raw)
        self._latest_seen = observed.version
        return observed

    def current(self) -> int:
        return self._provider.current()

    def _pin(self, raw: OracleVersion) -> OracleVersion:
        observed = replace(raw, price=self._payoff.transform(raw.price))
        pinned = self._pinned.get(observed.version)
        if pinned is None:
            self._pinned[observed.version] = observed
            return observed
        if pinned != observed:
            raise OracleInconsistencyError(
                f"version {observed.version} changed: {pinned} -> {observed}"
            )
        return pinned
