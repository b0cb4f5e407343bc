"""Shared fixtures: an in-memory oracle with a settable clock."""

from __future__ import annotations

from typing import Dict

import pytest

from perpsettle.core.fixed import UNIT
from perpsettle.core.types import OracleVersion


class FakeOracle:
    """Scripted `OracleProvider`: versions are pushed by the test."""

    def __init__(self) -> None:
        self.versions: Dict[int, OracleVersion] = {}
        self.now = 0

    def push(self, version: int, timestamp: int, price: int, valid: bool = True) -> OracleVersion:
        ov = OracleVersion(version=version, timestamp=timestamp, price=price, valid=valid)
        self.versions[version] = ov
        self.now = max(self.now, timestamp)
        return ov

    def at_version(self, version: int) -> OracleVersion:
        found = self.versions.get(version)
        if found is None:
            return OracleVersion(version=version, timestamp=0, price=0, valid=False)
        return found

    def current(self) -> int:
        return self.now

    def latest(self) -> OracleVersion:
        return self.versions[max(self.versions)]


@pytest.fixture
def oracle() -> FakeOracle:
    fake = FakeOracle()
    fake.push(1, 1_000, 100 * UNIT)
    return fake
