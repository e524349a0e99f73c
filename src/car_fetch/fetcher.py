"""Resumable streaming download of the resolved bundle URL."""

from __future__ import annotations

import dataclasses
import logging
from pathlib import Path, PurePosixPath
from urllib.parse import unquote, urlsplit

import requests

from car_fetch.config import FetchConfig
from car_fetch.exceptions import NetworkError, OutputError, SchemaError
from car_fetch.network_utils import session_for
from car_fetch.response_paths import URL_RE

logger = logging.getLogger(__name__)

CHUNK_SIZE = 1024 * 1024  # 1 MB


@dataclasses.dataclass
class DownloadResult:
    """Outcome of a download.

    Attributes:
        path: Local file holding the complete payload
        bytes_downloaded: Bytes transferred by this call (not the file size)
        resumed: Whether a partial file was continued with a Range request
        status_code: Final HTTP status code
    """

    path: Path
    bytes_downloaded: int
    resumed: bool = False
    status_code: int | None = None


def file_name_from_url(url: str) -> str:
    """Basename of the URL path, with query and fragment removed."""
    if not URL_RE.match(url):
        raise SchemaError(f"Extracted value is not a valid URL: {url}", context={"url": url})
    name = PurePosixPath(unquote(urlsplit(url).path)).name
    if not name or name in (".", ".."):
        raise SchemaError("Could not derive filename from URL", context={"url": url})
    return name


def _stream(response: requests.Response, out_path: Path, mode: str) -> int:
    written = 0
    with out_path.open(mode) as f:
        for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
            if chunk:
                f.write(chunk)
                written += len(chunk)
    return written


class ContentFetcher:
    def __init__(self, config: FetchConfig, *, session: requests.Session | None = None) -> None:
        self.config = config
        self.session = session or session_for(config)

    def download(self, url: str, out_dir: Path) -> DownloadResult:
        out_path = out_dir / file_name_from_url(url)
        logger.info("Downloading: %s", out_path.name)
        try:
            return self._download(url, out_path)
        except requests.exceptions.RequestException as exc:
            raise NetworkError(
                f"Download failed: {exc}",
                context={"url": url, "path": str(out_path)},
            ) from exc
        except OSError as exc:
            raise OutputError(
                f"Cannot write {out_path}: {exc.strerror or exc}",
                context={"url": url, "path": str(out_path)},
            ) from exc

    def _download(self, url: str, out_path: Path) -> DownloadResult:
        existing = out_path.stat().st_size if out_path.exists() else 0
        headers = {"Range": f"bytes={existing}-"} if existing else {}
        with self.session.get(
            url, stream=True, headers=headers, timeout=self.config.request_timeout
        ) as r:
            if existing and r.status_code == 416:
                logger.info("%s is already complete (%s bytes)", out_path.name, existing)
                return DownloadResult(out_path, 0, resumed=True, status_code=r.status_code)
            r.raise_for_status()
            if existing and r.status_code == 206:
                logger.info("Resuming %s at byte %s", out_path.name, existing)
                written = _stream(r, out_path, "ab")
                return DownloadResult(out_path, written, resumed=True, status_code=r.status_code)
            if existing:
                logger.info("Server ignored the range request; restarting %s", out_path.name)
            written = _stream(r, out_path, "wb")
            return DownloadResult(out_path, written, status_code=r.status_code)
