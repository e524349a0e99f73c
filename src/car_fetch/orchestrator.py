"""Extraction orchestration across prioritised backends with a single repair retry."""

from __future__ import annotations

import dataclasses
import logging
from pathlib import Path

from car_fetch.config import FetchConfig
from car_fetch.exceptions import (
    ContainerNotFound,
    DependencyMissingError,
    ExtractionExhausted,
    OutputError,
)
from car_fetch.extractors import (
    ERROR_ZERO_LENGTH,
    BackendRegistry,
    ExtractorBackend,
    build_registry,
)
from car_fetch.logging_config import LogContext
from car_fetch.repair import ContainerRepair, RepairOutcome
from car_fetch.result import Result

logger = logging.getLogger(__name__)

CONTAINER_SUFFIX = ".car"


def candidate_paths(path: Path) -> list[Path]:
    """The path as given, then with its ``.car`` suffix removed or added."""
    if path.name.endswith(CONTAINER_SUFFIX):
        return [path, path.with_name(path.name[: -len(CONTAINER_SUFFIX)])]
    return [path, path.with_name(f"{path.name}{CONTAINER_SUFFIX}")]


def ensure_output_dir(out_dir: Path) -> Path:
    try:
        out_dir.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise OutputError(
            f"Cannot create output directory {out_dir}: {exc.strerror or exc}",
            context={"path": str(out_dir)},
        ) from exc
    return out_dir


def resolve_container_path(path: Path) -> Path:
    for candidate in candidate_paths(path):
        if candidate.is_file():
            return candidate
    raise ContainerNotFound(f"CAR file not found: {path}", context={"path": str(path)})


@dataclasses.dataclass(frozen=True)
class Attempt:
    backend: str
    path: Path
    repaired: bool
    result: Result[Path]

    def to_dict(self) -> dict[str, object]:
        return {
            "backend": self.backend,
            "path": str(self.path),
            "repaired": self.repaired,
            **self.result.to_dict(),
        }


@dataclasses.dataclass
class ExtractionReport:
    backend: str
    source: Path
    out_dir: Path
    repair: RepairOutcome | None = None
    attempts: list[Attempt] = dataclasses.field(default_factory=list)


class ExtractionOrchestrator:
    def __init__(
        self,
        config: FetchConfig,
        *,
        registry: BackendRegistry | None = None,
        repair: ContainerRepair | None = None,
    ) -> None:
        self.config = config
        self.registry = registry if registry is not None else build_registry(config)
        self.repair = repair or ContainerRepair(allow_copy=config.allow_copy)

    def available_backends(self) -> list[ExtractorBackend]:
        backends = self.registry.available()
        if not backends:
            raise DependencyMissingError(
                f"No CAR extractor available (tried {', '.join(self.registry.names())}). "
                "Run --install-deps first.",
                dependency=" | ".join(self.registry.names()),
                install="car-fetch --install-deps",
            )
        return backends

    def extract(self, path: Path, out_dir: Path) -> ExtractionReport:
        """Unpack the container at ``path`` (with or without ``.car``) into ``out_dir``.

        Each backend is tried in order. A failure carrying the padding
        signature triggers one scan + clone + truncate and one retry of the
        same backend on the clone. Any other failure moves on to the next
        backend.

        Raises:
            ContainerNotFound: neither spelling of ``path`` exists.
            NoHeader, TruncatedSection: the container is malformed.
            OutputError: ``out_dir`` cannot be created.
            UnsupportedFilesystem: a repair was needed but cloning is impossible.
            ExtractionExhausted: every backend (and its retry) failed.
        """
        source = resolve_container_path(path)
        ensure_output_dir(out_dir)
        backends = self.available_backends()
        logger.info("Unpacking CAR: %s", source)
        attempts: list[Attempt] = []
        for backend in backends:
            with LogContext(backend=backend.name):
                result = backend.extract(source, out_dir)
                attempts.append(Attempt(backend.name, source, False, result))
                if result.is_ok:
                    return ExtractionReport(backend.name, source, out_dir, attempts=attempts)
                if result.error != ERROR_ZERO_LENGTH:
                    logger.warning(
                        "%s failed (%s); trying other extractors...\n%s",
                        backend.name,
                        result.error,
                        result.message or "",
                    )
                    continue
                logger.warning(
                    "%s detected zero-length section/padding. Fixing safely (clone + truncate)...",
                    backend.name,
                )
                outcome = self.repair.repair(source)
                retry = backend.extract(outcome.clone, out_dir)
                attempts.append(Attempt(backend.name, outcome.clone, True, retry))
                if retry.is_ok:
                    return ExtractionReport(
                        backend.name, source, out_dir, repair=outcome, attempts=attempts
                    )
                logger.warning(
                    "%s failed after fix; trying other extractors...\n%s",
                    backend.name,
                    retry.message or "",
                )
        raise ExtractionExhausted(
            f"No working extractor available (tried {', '.join(b.name for b in backends)}).",
            context={"path": str(source), "attempts": [a.to_dict() for a in attempts]},
        )
