"""Tests for extractor backends and the backend registry."""

from __future__ import annotations

from pathlib import Path

import pytest

from car_fetch import extractors
from car_fetch.config import FetchConfig
from car_fetch.extractors import (
    ERROR_FAILED,
    ERROR_ZERO_LENGTH,
    BackendRegistry,
    CarPadBackend,
    GoCarBackend,
    IpfsCarBackend,
    build_registry,
)
from car_fetch.utils.subprocess import CommandOutcome


class Recorder:
    def __init__(self) -> None:
        self.calls: list[tuple[list[str], Path | None]] = []
        self.outcomes: list[CommandOutcome] = []

    def __call__(self, cmd, cwd=None) -> CommandOutcome:
        self.calls.append((list(cmd), cwd))
        return self.outcomes.pop(0) if self.outcomes else CommandOutcome(0, "")


@pytest.fixture
def recorded(monkeypatch: pytest.MonkeyPatch) -> Recorder:
    recorder = Recorder()
    monkeypatch.setattr(extractors, "run_capture", recorder)
    return recorder


def test_commands(tmp_path: Path) -> None:
    car = tmp_path / "a.car"
    assert CarPadBackend().command(car, tmp_path) == ["car-pad", "x", "-f", str(car)]
    assert GoCarBackend().command(car, tmp_path) == ["car", "x", "-f", str(car)]
    assert IpfsCarBackend().command(car, tmp_path) == [
        "ipfs-car",
        "unpack",
        str(car),
        "--output",
        str(tmp_path),
    ]


def test_extract_success_runs_in_output_dir(recorded, tmp_path: Path) -> None:
    result = GoCarBackend().extract(tmp_path / "a.car", tmp_path)
    assert result.is_ok
    assert result.extras["backend"] == "car"
    cmd, cwd = recorded.calls[0]
    assert cwd == tmp_path
    assert cmd[-1] == str((tmp_path / "a.car").resolve())


@pytest.mark.parametrize(
    "output",
    [
        "Error: invalid section: ZeroLengthSectionAsEOF option not set",
        "error: Zero Length section",
        "unexpected NULL PADDING at offset 1234",
    ],
)
def test_zero_length_signature(recorded, tmp_path: Path, output: str) -> None:
    recorded.outcomes.append(CommandOutcome(1, output))
    result = GoCarBackend().extract(tmp_path / "a.car", tmp_path)
    assert result.error == ERROR_ZERO_LENGTH
    assert result.extras["returncode"] == 1


def test_other_failure(recorded, tmp_path: Path) -> None:
    recorded.outcomes.append(CommandOutcome(2, "invalid cid"))
    result = IpfsCarBackend().extract(tmp_path / "a.car", tmp_path)
    assert result.error == ERROR_FAILED
    assert result.message == "invalid cid"


def test_probe_uses_path_lookup(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(extractors, "which", lambda name: "/usr/bin/car" if name == "car" else None)
    assert GoCarBackend().probe() is True
    assert CarPadBackend().probe() is False


def test_default_priority_order() -> None:
    assert build_registry(FetchConfig()).names() == ["car-pad", "car", "ipfs-car"]


def test_prefer_ipfs_car_reorders() -> None:
    registry = build_registry(FetchConfig(prefer_ipfs_car=True))
    assert registry.names() == ["ipfs-car", "car-pad", "car"]


def test_registry_rejects_duplicates() -> None:
    registry = BackendRegistry([GoCarBackend()])
    with pytest.raises(ValueError):
        registry.register(GoCarBackend())


def test_available_filters_unprobed(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(extractors, "which", lambda name: "/x" if name == "ipfs-car" else None)
    registry = build_registry(FetchConfig())
    assert [b.name for b in registry.available()] == ["ipfs-car"]
