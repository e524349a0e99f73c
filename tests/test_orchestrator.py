"""Tests for the extraction orchestrator."""

from __future__ import annotations

import hashlib
from pathlib import Path

import pytest

from car_fetch.config import FetchConfig
from car_fetch.exceptions import (
    ContainerNotFound,
    DependencyMissingError,
    ExtractionExhausted,
    NoHeader,
    OutputError,
    UnsupportedFilesystem,
)
from car_fetch.extractors import BackendRegistry
from car_fetch.orchestrator import (
    ExtractionOrchestrator,
    candidate_paths,
    ensure_output_dir,
    resolve_container_path,
)
from car_fetch.repair import ContainerRepair, repaired_path
from conftest import ScriptedBackend, failed, ok, zero_length


class CountingRepair(ContainerRepair):
    def __init__(self, **kwargs) -> None:
        super().__init__(**kwargs)
        self.repairs: list[Path] = []

    def repair(self, src: Path, dst: Path | None = None):
        self.repairs.append(src)
        return super().repair(src, dst)


def _orchestrator(*backends: ScriptedBackend, allow_copy: bool = True) -> tuple[ExtractionOrchestrator, CountingRepair]:
    repair = CountingRepair(allow_copy=allow_copy, strategies=[])
    orchestrator = ExtractionOrchestrator(
        FetchConfig(allow_copy=allow_copy),
        registry=BackendRegistry(backends),
        repair=repair,
    )
    return orchestrator, repair


def _sha(path: Path) -> str:
    return hashlib.sha256(path.read_bytes()).hexdigest()


class TestPathResolution:
    def test_candidates_with_suffix(self, tmp_path: Path) -> None:
        assert candidate_paths(tmp_path / "a.car") == [tmp_path / "a.car", tmp_path / "a"]

    def test_candidates_without_suffix(self, tmp_path: Path) -> None:
        assert candidate_paths(tmp_path / "a") == [tmp_path / "a", tmp_path / "a.car"]

    def test_resolves_saved_without_suffix(self, tmp_path: Path) -> None:
        (tmp_path / "bafy").write_bytes(b"x")
        assert resolve_container_path(tmp_path / "bafy.car") == tmp_path / "bafy"

    def test_resolves_saved_with_suffix(self, tmp_path: Path) -> None:
        (tmp_path / "bafy.car").write_bytes(b"x")
        assert resolve_container_path(tmp_path / "bafy") == tmp_path / "bafy.car"

    def test_missing(self, tmp_path: Path) -> None:
        with pytest.raises(ContainerNotFound):
            resolve_container_path(tmp_path / "nope.car")


def test_first_backend_success(padded_car: Path, tmp_path: Path) -> None:
    first = ScriptedBackend("car-pad", [ok()])
    second = ScriptedBackend("car", [ok()])
    orchestrator, repair = _orchestrator(first, second)
    report = orchestrator.extract(padded_car, tmp_path / "out")
    assert report.backend == "car-pad"
    assert report.repair is None
    assert second.calls == []
    assert repair.repairs == []
    assert (tmp_path / "out").is_dir()


def test_other_failure_falls_through_without_repair(padded_car: Path, tmp_path: Path) -> None:
    first = ScriptedBackend("car-pad", [failed()])
    second = ScriptedBackend("car", [ok()])
    orchestrator, repair = _orchestrator(first, second)
    report = orchestrator.extract(padded_car, tmp_path)
    assert report.backend == "car"
    assert repair.repairs == []
    assert not repaired_path(padded_car).exists()


def test_signature_triggers_single_repair_and_retry(padded_car: Path, tmp_path: Path) -> None:
    backend = ScriptedBackend("car", [zero_length(), ok()])
    orchestrator, repair = _orchestrator(backend)
    report = orchestrator.extract(padded_car, tmp_path)
    assert report.backend == "car"
    assert report.repair is not None
    assert backend.calls == [padded_car, repaired_path(padded_car)]
    assert repair.repairs == [padded_car]
    assert [a.repaired for a in report.attempts] == [False, True]


def test_failed_retry_moves_to_next_backend(padded_car: Path, tmp_path: Path) -> None:
    first = ScriptedBackend("car", [zero_length(), zero_length()])
    second = ScriptedBackend("ipfs-car", [ok()])
    orchestrator, repair = _orchestrator(first, second)
    report = orchestrator.extract(padded_car, tmp_path)
    assert len(first.calls) == 2
    assert repair.repairs == [padded_car]
    assert second.calls == [padded_car]
    assert report.backend == "ipfs-car"


def test_exhausted_leaves_original_untouched(padded_car: Path, tmp_path: Path) -> None:
    before = _sha(padded_car)
    backends = [
        ScriptedBackend("car-pad", [failed("bad block")]),
        ScriptedBackend("car", [zero_length(), failed("still bad")]),
        ScriptedBackend("ipfs-car", [zero_length(), zero_length()]),
    ]
    orchestrator, repair = _orchestrator(*backends)
    with pytest.raises(ExtractionExhausted) as excinfo:
        orchestrator.extract(padded_car, tmp_path)
    assert _sha(padded_car) == before
    assert repair.repairs == [padded_car, padded_car]
    attempts = excinfo.value.context["attempts"]
    assert [(a["backend"], a["repaired"]) for a in attempts] == [
        ("car-pad", False),
        ("car", False),
        ("car", True),
        ("ipfs-car", False),
        ("ipfs-car", True),
    ]


def test_unavailable_backends_are_skipped(padded_car: Path, tmp_path: Path) -> None:
    missing = ScriptedBackend("car-pad", [ok()], available=False)
    present = ScriptedBackend("car", [ok()])
    orchestrator, _ = _orchestrator(missing, present)
    assert orchestrator.extract(padded_car, tmp_path).backend == "car"
    assert missing.calls == []


def test_no_backend_available(padded_car: Path, tmp_path: Path) -> None:
    orchestrator, _ = _orchestrator(ScriptedBackend("car", [], available=False))
    with pytest.raises(DependencyMissingError):
        orchestrator.extract(padded_car, tmp_path)


def test_clone_unsupported_is_fatal(padded_car: Path, tmp_path: Path) -> None:
    before = _sha(padded_car)
    backend = ScriptedBackend("car", [zero_length()])
    fallback = ScriptedBackend("ipfs-car", [ok()])
    orchestrator, _ = _orchestrator(backend, fallback, allow_copy=False)
    with pytest.raises(UnsupportedFilesystem):
        orchestrator.extract(padded_car, tmp_path)
    assert fallback.calls == []
    assert _sha(padded_car) == before


def test_malformed_container_is_fatal(tmp_path: Path) -> None:
    broken = tmp_path / "broken.car"
    broken.write_bytes(b"")
    orchestrator, _ = _orchestrator(ScriptedBackend("car", [zero_length()]))
    with pytest.raises(NoHeader):
        orchestrator.extract(broken, tmp_path)


def test_output_dir_under_a_file_is_output_error(padded_car: Path, tmp_path: Path) -> None:
    blocker = tmp_path / "blocker"
    blocker.write_bytes(b"")
    with pytest.raises(OutputError) as excinfo:
        ensure_output_dir(blocker / "out")
    assert excinfo.value.context["path"] == str(blocker / "out")

    backend = ScriptedBackend("car", [ok()])
    orchestrator, _ = _orchestrator(backend)
    with pytest.raises(OutputError):
        orchestrator.extract(padded_car, blocker / "out")
    assert backend.calls == []
