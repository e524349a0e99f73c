"""Execution of external programs.

Extractor backends, clone helpers and the dependency bootstrap all go through
these functions so tests can replace a single seam.
"""

from __future__ import annotations

import dataclasses
import logging
import shutil
import subprocess
from collections.abc import Sequence
from pathlib import Path

logger = logging.getLogger(__name__)


@dataclasses.dataclass(frozen=True)
class CommandOutcome:
    returncode: int
    output: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    def tail(self, lines: int = 20) -> str:
        return "\n".join(self.output.splitlines()[-lines:])


def which(name: str) -> str | None:
    return shutil.which(name)


def run_cmd(cmd: Sequence[str], cwd: Path | None = None) -> str:
    """Run a command and return its combined stdout/stderr.

    Raises:
        subprocess.CalledProcessError: If the command exits with non-zero status.
    """
    logger.debug("Running: %s", " ".join(cmd))
    p = subprocess.run(
        list(cmd),
        cwd=str(cwd) if cwd else None,
        check=True,
        stdout=subprocess.PIPE,
        stderr=subprocess.STDOUT,
    )
    return p.stdout.decode("utf-8", errors="ignore")


def run_capture(cmd: Sequence[str], cwd: Path | None = None) -> CommandOutcome:
    """Run a command without raising on failure; a missing program is exit 127."""
    logger.debug("Running: %s", " ".join(cmd))
    try:
        p = subprocess.run(
            list(cmd),
            cwd=str(cwd) if cwd else None,
            check=False,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
        )
    except FileNotFoundError as exc:
        return CommandOutcome(127, str(exc))
    return CommandOutcome(p.returncode, p.stdout.decode("utf-8", errors="ignore"))
