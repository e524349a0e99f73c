"""
Shared pytest fixtures for car-fetch tests.

Provides:
- A deterministic clock/sleep pair for polling loops
- CAR byte builders for scanner and repair tests
- Scripted extractor backends for orchestration tests
"""

from __future__ import annotations

import sys
from collections.abc import Iterable, Sequence
from pathlib import Path

import pytest

SRC_ROOT = Path(__file__).resolve().parents[1] / "src"
if SRC_ROOT.is_dir():
    sys.path.insert(0, str(SRC_ROOT))

from car_fetch.config import FetchConfig  # noqa: E402
from car_fetch.container_scan import encode_uvarint  # noqa: E402
from car_fetch.extractors import ExtractorBackend  # noqa: E402
from car_fetch.result import Err, Ok, Result  # noqa: E402


# =============================================================================
# Polling helpers
# =============================================================================


class FakeClock:
    """Monotonic clock that only moves when the code under test sleeps."""

    def __init__(self, start: float = 0.0, tick: float = 0.0) -> None:
        self.now = start
        self.tick = tick
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        value = self.now
        self.now += self.tick
        return value

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fetch_config() -> FetchConfig:
    return FetchConfig(transport_retries=0)


# =============================================================================
# CAR builders
# =============================================================================


def build_car(
    header: bytes = b"\xa2eroots\x80gversion\x01",
    sections: Sequence[bytes] = (b"block-one", b"block-two"),
    padding: bytes = b"\x00" * 32,
) -> bytes:
    """Assemble a CARv1-shaped byte string: header, sections, sentinel, padding.

    ``padding`` starts with the zero-length sentinel when non-empty, matching
    files that were zero-padded after the last section.
    """
    out = bytearray(encode_uvarint(len(header)))
    out += header
    for body in sections:
        out += encode_uvarint(len(body))
        out += body
    out += padding
    return bytes(out)


def expected_offset(header: bytes, sections: Iterable[bytes]) -> int:
    offset = len(encode_uvarint(len(header))) + len(header)
    for body in sections:
        offset += len(encode_uvarint(len(body))) + len(body)
    return offset


@pytest.fixture
def padded_car(tmp_path: Path) -> Path:
    path = tmp_path / "bundle.car"
    path.write_bytes(build_car())
    return path


# =============================================================================
# Scripted backends
# =============================================================================


class ScriptedBackend(ExtractorBackend):
    """Backend returning pre-set results in order and recording each call."""

    def __init__(self, name: str, results: Sequence[Result], *, available: bool = True) -> None:
        self.name = name
        self.executable = name
        self._results = list(results)
        self._available = available
        self.calls: list[Path] = []

    def probe(self) -> bool:
        return self._available

    def command(self, path: Path, out_dir: Path) -> list[str]:
        return [self.name, str(path)]

    def extract(self, path: Path, out_dir: Path) -> Result[Path]:
        self.calls.append(path)
        if not self._results:
            return Err("extractor_failed", "no scripted result", backend=self.name)
        return self._results.pop(0)


def ok() -> Result:
    return Ok(Path("."))


def zero_length() -> Result:
    return Err("zero_length_section", "car: invalid section: zero length")


def failed(message: str = "boom") -> Result:
    return Err("extractor_failed", message)
