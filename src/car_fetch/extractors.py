"""Extractor backends for CAR files.

Each backend wraps an external CLI. The system never decodes blocks itself;
it only needs to know whether a run succeeded and, if not, whether the
failure was the zero-length-section / null-padding signature that repair can
fix.
"""

from __future__ import annotations

import abc
import logging
import re
from collections.abc import Iterable, Sequence
from pathlib import Path

from car_fetch.config import FetchConfig
from car_fetch.result import Err, Ok, Result
from car_fetch.utils.subprocess import run_capture, which

logger = logging.getLogger(__name__)

ZERO_LENGTH_SIGNATURE = re.compile(r"ZeroLengthSectionAsEOF|zero length|null padding", re.IGNORECASE)

ERROR_ZERO_LENGTH = "zero_length_section"
ERROR_FAILED = "extractor_failed"


class ExtractorBackend(abc.ABC):
    """A named external extractor."""

    name: str = ""
    executable: str = ""

    def probe(self) -> bool:
        return which(self.executable) is not None

    @abc.abstractmethod
    def command(self, path: Path, out_dir: Path) -> list[str]:
        raise NotImplementedError

    def extract(self, path: Path, out_dir: Path) -> Result[Path]:
        """Unpack ``path`` into ``out_dir``.

        Returns ``Ok(out_dir)`` on success, ``Err("zero_length_section")`` when
        the output carries the padding signature, ``Err("extractor_failed")``
        otherwise.
        """
        cmd = self.command(path.resolve(), out_dir.resolve())
        logger.info("Running %s on %s", self.name, path.name)
        outcome = run_capture(cmd, cwd=out_dir)
        if outcome.ok:
            return Ok(out_dir, backend=self.name)
        error = ERROR_ZERO_LENGTH if ZERO_LENGTH_SIGNATURE.search(outcome.output) else ERROR_FAILED
        return Err(
            error,
            outcome.tail(),
            backend=self.name,
            returncode=outcome.returncode,
            path=str(path),
        )

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r})"


class CarPadBackend(ExtractorBackend):
    """Padding-tolerant go-car fork, installed as ``car-pad``."""

    name = "car-pad"
    executable = "car-pad"

    def command(self, path: Path, out_dir: Path) -> list[str]:
        return [self.executable, "x", "-f", str(path)]


class GoCarBackend(ExtractorBackend):
    """Upstream go-car ``car`` CLI."""

    name = "car"
    executable = "car"

    def command(self, path: Path, out_dir: Path) -> list[str]:
        return [self.executable, "x", "-f", str(path)]


class IpfsCarBackend(ExtractorBackend):
    """JavaScript ``ipfs-car`` CLI."""

    name = "ipfs-car"
    executable = "ipfs-car"

    def command(self, path: Path, out_dir: Path) -> list[str]:
        return [self.executable, "unpack", str(path), "--output", str(out_dir)]


class BackendRegistry:
    """Priority-ordered backends; earlier entries are tried first."""

    def __init__(self, backends: Iterable[ExtractorBackend] = ()) -> None:
        self._backends: list[ExtractorBackend] = []
        for backend in backends:
            self.register(backend)

    def register(self, backend: ExtractorBackend) -> None:
        if any(b.name == backend.name for b in self._backends):
            raise ValueError(f"Backend already registered: {backend.name}")
        self._backends.append(backend)

    def prefer(self, name: str) -> None:
        """Move ``name`` to the front, keeping the others in order."""
        preferred = [b for b in self._backends if b.name == name]
        if not preferred:
            return
        self._backends = preferred + [b for b in self._backends if b.name != name]

    def names(self) -> list[str]:
        return [b.name for b in self._backends]

    def available(self) -> list[ExtractorBackend]:
        found = [b for b in self._backends if b.probe()]
        logger.debug("Available extractors: %s", [b.name for b in found])
        return found

    def __iter__(self):
        return iter(list(self._backends))

    def __len__(self) -> int:
        return len(self._backends)


def default_backends() -> Sequence[ExtractorBackend]:
    return (CarPadBackend(), GoCarBackend(), IpfsCarBackend())


def build_registry(config: FetchConfig) -> BackendRegistry:
    registry = BackendRegistry(default_backends())
    if config.prefer_ipfs_car:
        registry.prefer(IpfsCarBackend.name)
    return registry
