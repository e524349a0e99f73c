#!/usr/bin/env python3
"""car-fetch command line.

Three mutually exclusive modes:

    car-fetch --install-deps [--os macos|debian|fedora|arch|windows]
    car-fetch --client CLIENT_ID [--provider PROVIDER_ID] --dir DIR
    car-fetch --unpack-only /path/to/file[.car] [--dir DIR]

Any fatal condition is logged with its context and exits 1; success exits 0.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from collections.abc import Sequence
from pathlib import Path
from typing import Any

from car_fetch.__version__ import __version__
from car_fetch.bootstrap import Bootstrapper
from car_fetch.config import OS_FAMILIES, FetchConfig, load_config
from car_fetch.exceptions import CarFetchError
from car_fetch.fetcher import ContentFetcher
from car_fetch.jobs import JobCoordinator
from car_fetch.logging_config import add_logging_args, configure_logging
from car_fetch.network_utils import session_for
from car_fetch.orchestrator import (
    ExtractionOrchestrator,
    ExtractionReport,
    candidate_paths,
    ensure_output_dir,
)

logger = logging.getLogger("car_fetch")

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_INTERRUPTED = 130


class _ArgumentParser(argparse.ArgumentParser):
    def error(self, message: str) -> None:  # type: ignore[override]
        self.print_usage(sys.stderr)
        self.exit(EXIT_FAILURE, f"{self.prog}: error: {message}\n")


def build_parser() -> argparse.ArgumentParser:
    ap = _ArgumentParser(
        prog="car-fetch",
        description="Fetch a client's CAR bundle from the SP tool API and unpack it safely.",
        epilog=(
            "Unpacking never modifies the original file: padded or zero-length "
            "CARv1 files are cloned, the clone is truncated, and extraction is retried."
        ),
    )
    mode = ap.add_mutually_exclusive_group(required=True)
    mode.add_argument(
        "--install-deps",
        action="store_true",
        help="Install extractor dependencies (car-pad, car or ipfs-car) and exit.",
    )
    mode.add_argument("--client", help="Client id to request a bundle for.")
    mode.add_argument(
        "--unpack-only",
        metavar="PATH",
        help=(
            "Only unpack an existing file (with or without its .car suffix). "
            "A relative PATH missing here is looked up under --dir."
        ),
    )
    ap.add_argument("--provider", help="Optional provider id for job creation.")
    ap.add_argument("--dir", help="Output directory (required with --client).")
    ap.add_argument("--api-base", help="API base URL (env: API_BASE).")
    ap.add_argument("--timeout", type=float, help="Async job poll timeout in seconds (env: POLL_TIMEOUT).")
    ap.add_argument(
        "--sync-timeout", type=float, help="Sync fallback poll timeout in seconds (env: SYNC_TIMEOUT)."
    )
    ap.add_argument("--os", choices=OS_FAMILIES, help="OS family hint for --install-deps (env: OS_FAMILY).")
    ap.add_argument(
        "--allow-copy",
        action="store_true",
        default=None,
        help="Allow a real copy if fast clone/reflink is unsupported (env: ALLOW_COPY=1).",
    )
    ap.add_argument(
        "--prefer-ipfs-car",
        action="store_true",
        default=None,
        help="Try ipfs-car before the go-car extractors (env: PREFER_IPFS_CAR=1).",
    )
    ap.add_argument("--config", type=Path, help="YAML file with configuration defaults.")
    ap.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    add_logging_args(ap)
    return ap


def _overrides(args: argparse.Namespace) -> dict[str, Any]:
    return {
        "api_base": args.api_base,
        "poll_timeout": args.timeout,
        "sync_timeout": args.sync_timeout,
        "os_family": args.os,
        "allow_copy": args.allow_copy,
        "prefer_ipfs_car": args.prefer_ipfs_car,
    }


def run_install_deps(config: FetchConfig, *, bootstrapper: Bootstrapper | None = None) -> int:
    (bootstrapper or Bootstrapper(config)).install(config.os_family)
    return EXIT_OK


def unpack_source(path: Path, out_dir: Path) -> Path:
    """Resolve a relative PATH under ``out_dir`` when it does not exist in the working directory."""
    if path.is_absolute() or any(c.is_file() for c in candidate_paths(path)):
        return path
    nested = out_dir / path
    if any(c.is_file() for c in candidate_paths(nested)):
        return nested
    return path


def run_unpack_only(
    config: FetchConfig,
    path: Path,
    out_dir: Path,
    *,
    orchestrator: ExtractionOrchestrator | None = None,
) -> ExtractionReport:
    report = (orchestrator or ExtractionOrchestrator(config)).extract(path, out_dir)
    logger.info("Success. CAR unpacked in: %s (extractor: %s)", out_dir, report.backend)
    return report


def run_acquire(
    config: FetchConfig,
    client: str,
    out_dir: Path,
    *,
    provider: str | None = None,
    coordinator: JobCoordinator | None = None,
    fetcher: ContentFetcher | None = None,
    orchestrator: ExtractionOrchestrator | None = None,
) -> ExtractionReport:
    ensure_output_dir(out_dir)
    orchestrator = orchestrator or ExtractionOrchestrator(config)
    # Fail before creating a remote job if nothing could unpack the result.
    orchestrator.available_backends()
    session = None
    if coordinator is None or fetcher is None:
        session = session_for(config)
    coordinator = coordinator or JobCoordinator(config, session=session)
    fetcher = fetcher or ContentFetcher(config, session=session)

    acquisition = coordinator.acquire(client, provider)
    download = fetcher.download(acquisition.url, out_dir)
    report = orchestrator.extract(download.path, out_dir)
    logger.info("Success. File downloaded and unpacked in: %s", out_dir)
    return report


def _report_failure(exc: CarFetchError) -> None:
    logger.error("ERROR: %s", exc.message)
    if exc.context:
        logger.error("Context (%s): %s", exc.code, json.dumps(exc.context, indent=2, default=str))


def main(argv: Sequence[str] | None = None) -> int:
    ap = build_parser()
    args = ap.parse_args(argv)
    configure_logging(level=args.log_level, fmt=args.log_format)

    try:
        config = load_config(config_path=args.config, overrides=_overrides(args))
        if args.install_deps:
            return run_install_deps(config)
        if args.unpack_only:
            out_dir = Path(args.dir) if args.dir else Path.cwd()
            run_unpack_only(config, unpack_source(Path(args.unpack_only), out_dir), out_dir)
            return EXIT_OK
        if not args.dir:
            ap.print_usage(sys.stderr)
            logger.error("ERROR: Missing --dir (or use --unpack-only)")
            return EXIT_FAILURE
        run_acquire(config, args.client, Path(args.dir), provider=args.provider)
        return EXIT_OK
    except CarFetchError as exc:
        _report_failure(exc)
        return EXIT_FAILURE
    except OSError as exc:
        logger.error("ERROR: %s", exc)
        return EXIT_FAILURE
    except KeyboardInterrupt:
        logger.error("Interrupted.")
        return EXIT_INTERRUPTED


if __name__ == "__main__":
    raise SystemExit(main())
