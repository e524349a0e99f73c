"""Dependency bootstrap for the external CAR extractors.

Installs the build toolchains with the platform package manager, then tries
to provide at least one extractor: the padding-tolerant ``car-pad`` fork
(built with Go into ``~/.local/bin``), upstream ``car`` (``go install``) or
``ipfs-car`` (``npm i -g``).
"""

from __future__ import annotations

import logging
import os
import platform
import subprocess
import tempfile
from collections.abc import Callable, Sequence
from pathlib import Path

from car_fetch.config import FetchConfig
from car_fetch.exceptions import DependencyMissingError
from car_fetch.extractors import BackendRegistry, build_registry
from car_fetch.utils.subprocess import run_cmd, which

logger = logging.getLogger(__name__)

Runner = Callable[..., str]

CAR_PAD_REPO = "https://github.com/kacperzuk-neti/go-car"
GO_CAR_MODULE = "github.com/ipld/go-car/cmd/car@latest"
IPFS_CAR_PACKAGE = "ipfs-car"

PACKAGE_COMMANDS: dict[str, list[list[str]]] = {
    "macos": [
        ["brew", "update"],
        ["brew", "install", "go", "node"],
    ],
    "debian": [
        ["apt-get", "update", "-y"],
        ["apt-get", "install", "-y", "git", "nodejs", "npm", "golang-go"],
    ],
    "fedora": [
        ["dnf", "install", "-y", "git", "nodejs", "npm", "golang"],
    ],
    "arch": [
        ["pacman", "-Sy", "--noconfirm", "git", "nodejs", "npm", "go"],
    ],
}


def parse_os_release(text: str) -> dict[str, str]:
    values: dict[str, str] = {}
    for line in text.splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, _, value = line.partition("=")
        values[key.strip()] = value.strip().strip("\"'")
    return values


def family_from_os_release(values: dict[str, str]) -> str:
    ids = f"{values.get('ID_LIKE') or values.get('ID', '')}".lower()
    if "debian" in ids or "ubuntu" in ids:
        return "debian"
    if any(name in ids for name in ("rhel", "fedora", "centos", "rocky", "alma")):
        return "fedora"
    if "arch" in ids:
        return "arch"
    return "unknown"


def detect_os_family(
    system: str | None = None,
    os_release: Path = Path("/etc/os-release"),
) -> str:
    name = system if system is not None else platform.system()
    if name == "Darwin":
        return "macos"
    if name == "Windows" or name.startswith(("MINGW", "MSYS", "CYGWIN")):
        return "windows"
    if name == "Linux":
        if not os_release.is_file():
            return "unknown"
        return family_from_os_release(parse_os_release(os_release.read_text(encoding="utf-8")))
    return "unknown"


def with_privileges(cmd: Sequence[str], family: str) -> list[str]:
    """Prefix Linux package-manager commands with sudo when needed; never Homebrew."""
    if family == "macos" or family == "windows":
        return list(cmd)
    if hasattr(os, "geteuid") and os.geteuid() == 0:
        return list(cmd)
    if which("sudo"):
        return ["sudo", *cmd]
    return list(cmd)


def _prepend_path(directory: Path) -> None:
    current = os.environ.get("PATH", "")
    if str(directory) not in current.split(os.pathsep):
        os.environ["PATH"] = f"{directory}{os.pathsep}{current}" if current else str(directory)


class Bootstrapper:
    def __init__(
        self,
        config: FetchConfig,
        *,
        registry: BackendRegistry | None = None,
        runner: Runner = run_cmd,
        home: Path | None = None,
    ) -> None:
        self.config = config
        self.registry = registry if registry is not None else build_registry(config)
        self.runner = runner
        self.home = home or Path.home()

    def _try(self, cmd: Sequence[str], cwd: Path | None = None) -> bool:
        try:
            self.runner(list(cmd), cwd=cwd)
        except (subprocess.CalledProcessError, OSError) as exc:
            output = getattr(exc, "output", None)
            if isinstance(output, bytes):
                output = output.decode("utf-8", errors="ignore")
            logger.warning("Command failed: %s (%s)%s", " ".join(cmd), exc, f"\n{output}" if output else "")
            return False
        return True

    def install_system_packages(self, family: str) -> None:
        if family == "macos" and not which("brew"):
            raise DependencyMissingError(
                "Homebrew not found. Install from https://brew.sh (no sudo) and re-run --install-deps.",
                dependency="brew",
                install="https://brew.sh",
            )
        if family == "fedora" and not which("dnf"):
            commands = [["yum", *cmd[1:]] for cmd in PACKAGE_COMMANDS["fedora"]]
        else:
            commands = PACKAGE_COMMANDS.get(family, [])
        if family == "windows":
            logger.info("Windows detected. Please install Node.js (for ipfs-car) or Go (for car).")
            logger.info("Example (winget): winget install OpenJS.NodeJS.LTS ; winget install GoLang.Go")
        elif not commands:
            logger.info("Unknown OS. Please ensure Node.js (ipfs-car) or Go (car) is installed.")
        for cmd in commands:
            self._try(with_privileges(cmd, family))

    def ensure_car_pad(self) -> bool:
        """Build the padding-tolerant fork as ``car-pad`` into ~/.local/bin."""
        if which("car-pad"):
            return True
        if not which("go"):
            logger.warning("Go is not installed; cannot build car-pad.")
            return False
        bin_dir = self.home / ".local" / "bin"
        bin_dir.mkdir(parents=True, exist_ok=True)
        logger.info("Building car-pad from fork (no sudo)...")
        with tempfile.TemporaryDirectory() as tmp:
            checkout = Path(tmp) / "go-car"
            if not self._try(["git", "clone", "--depth", "1", CAR_PAD_REPO, str(checkout)]):
                return False
            target = bin_dir / "car-pad"
            if not self._try(
                ["go", "build", "-trimpath", "-ldflags", "-s -w", "-o", str(target), "."],
                cwd=checkout / "cmd" / "car",
            ):
                return False
        _prepend_path(bin_dir)
        logger.info("Installed car-pad -> %s", target)
        return True

    def _go_bin(self) -> Path:
        for query in (["go", "env", "GOBIN"], ["go", "env", "GOPATH"]):
            try:
                value = self.runner(query).strip()
            except (subprocess.CalledProcessError, OSError):
                continue
            if value and value != "''":
                return Path(value) if query[-1] == "GOBIN" else Path(value) / "bin"
        return self.home / "go" / "bin"

    def ensure_extractor(self) -> bool:
        """Make sure ``car`` or ``ipfs-car`` exists, installing in user space."""
        if which("car") or which("ipfs-car"):
            return True
        if which("go"):
            logger.info("Installing 'car' via Go (user space)...")
            if self._try(["go", "install", GO_CAR_MODULE]):
                _prepend_path(self._go_bin())
                if which("car"):
                    return True
        if which("npm"):
            logger.info("Installing 'ipfs-car' via npm (user space)...")
            if self._try(["npm", "i", "-g", IPFS_CAR_PACKAGE]):
                return True
            prefix = self.home / ".npm-global"
            logger.info("npm global install failed; using user prefix: %s", prefix)
            (prefix / "bin").mkdir(parents=True, exist_ok=True)
            if self._try(["npm", "config", "set", "prefix", str(prefix)]):
                _prepend_path(prefix / "bin")
                return self._try(["npm", "i", "-g", IPFS_CAR_PACKAGE])
        return False

    def install(self, family: str | None = None) -> list[str]:
        """Install dependencies and return the names of usable extractors."""
        resolved = family or self.config.os_family or detect_os_family()
        logger.info("Installing dependencies for: %s", resolved)
        self.install_system_packages(resolved)
        self.ensure_car_pad()
        self.ensure_extractor()
        available = [backend.name for backend in self.registry.available()]
        if not available:
            raise DependencyMissingError(
                "Could not install a CAR extractor (car-pad, car or ipfs-car).",
                dependency="car-pad | car | ipfs-car",
                install="Install Go or Node.js and re-run --install-deps",
            )
        logger.info("Dependency setup complete. Extractors: %s", ", ".join(available))
        return available
