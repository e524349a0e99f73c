"""Non-destructive repair of padded CAR containers.

The original file is only ever opened for reading. Repair makes a
copy-on-write clone next to it and truncates the clone at the end-of-stream
marker reported by the scanner.
"""

from __future__ import annotations

import dataclasses
import logging
import os
import shutil
import sys
from collections.abc import Callable, Sequence
from pathlib import Path

from car_fetch.container_scan import scan_container
from car_fetch.exceptions import UnsupportedFilesystem
from car_fetch.utils.subprocess import run_capture, which

logger = logging.getLogger(__name__)

CLONE_SUFFIX = ".fixed.car"
FICLONE = 0x40049409  # _IOW(0x94, 9, int) on Linux

CloneStrategy = Callable[[Path, Path], bool]


def repaired_path(src: Path) -> Path:
    return src.with_name(f"{src.name}{CLONE_SUFFIX}")


def clone_ficlone(src: Path, dst: Path) -> bool:
    """Reflink via the FICLONE ioctl (Btrfs, XFS, bcachefs)."""
    if not sys.platform.startswith("linux"):
        return False
    import fcntl

    try:
        with src.open("rb") as s, dst.open("wb") as d:
            fcntl.ioctl(d.fileno(), FICLONE, s.fileno())
    except OSError as exc:
        logger.debug("FICLONE unsupported for %s: %s", dst, exc)
        return False
    return True


def clone_cp_c(src: Path, dst: Path) -> bool:
    """APFS clonefile through BSD ``cp -c``."""
    if sys.platform != "darwin" or not which("cp"):
        return False
    return run_capture(["cp", "-c", str(src), str(dst)]).ok


def clone_cp_reflink(src: Path, dst: Path) -> bool:
    """GNU ``cp --reflink=always``."""
    if sys.platform in ("darwin", "win32") or not which("cp"):
        return False
    return run_capture(["cp", "--reflink=always", str(src), str(dst)]).ok


DEFAULT_STRATEGIES: tuple[tuple[str, CloneStrategy], ...] = (
    ("ficlone", clone_ficlone),
    ("clonefile", clone_cp_c),
    ("reflink", clone_cp_reflink),
)


@dataclasses.dataclass(frozen=True)
class RepairOutcome:
    original: Path
    clone: Path
    offset: int
    method: str


class ContainerRepair:
    def __init__(
        self,
        *,
        allow_copy: bool = False,
        strategies: Sequence[tuple[str, CloneStrategy]] = DEFAULT_STRATEGIES,
    ) -> None:
        self.allow_copy = allow_copy
        self.strategies = tuple(strategies)

    def clone(self, src: Path, dst: Path) -> str:
        """Duplicate ``src`` at ``dst`` and return the method used.

        Raises:
            UnsupportedFilesystem: no fast clone worked and copying is not
                allowed, or ``dst`` cannot be written at all.
        """
        if src.resolve() == dst.resolve():
            raise ValueError(f"Refusing to clone {src} onto itself")
        try:
            return self._clone(src, dst)
        except OSError as exc:
            raise UnsupportedFilesystem(
                f"Cannot write repaired copy {dst}: {exc.strerror or exc}",
                context={"src": str(src), "dst": str(dst)},
            ) from exc

    def _clone(self, src: Path, dst: Path) -> str:
        for name, strategy in self.strategies:
            dst.unlink(missing_ok=True)
            if strategy(src, dst):
                logger.info("Cloned %s -> %s (%s)", src.name, dst.name, name)
                return name
        dst.unlink(missing_ok=True)
        if not self.allow_copy:
            raise UnsupportedFilesystem(
                "Fast clone unsupported on this filesystem. "
                "Re-run with ALLOW_COPY=1 or --allow-copy to permit a real copy.",
                context={"src": str(src), "dst": str(dst)},
            )
        logger.warning("Fast clone unsupported; doing real copy (this may be slow and use disk space).")
        shutil.copyfile(src, dst)
        return "copy"

    def truncate(self, dst: Path, offset: int) -> None:
        size = dst.stat().st_size
        if offset < 0 or offset > size:
            raise ValueError(f"Cannot truncate {dst} ({size} bytes) to {offset}")
        try:
            os.truncate(dst, offset)
        except OSError as exc:
            raise UnsupportedFilesystem(
                f"Cannot truncate repaired copy {dst}: {exc.strerror or exc}",
                context={"dst": str(dst), "offset": offset},
            ) from exc

    def repair(self, src: Path, dst: Path | None = None) -> RepairOutcome:
        """Scan ``src`` and write a truncated clone, leaving ``src`` untouched."""
        scan = scan_container(src)
        target = dst or repaired_path(src)
        method = self.clone(src, target)
        self.truncate(target, scan.offset)
        logger.info("Wrote repaired copy %s (%s bytes)", target, scan.offset)
        return RepairOutcome(original=src, clone=target, offset=scan.offset, method=method)
